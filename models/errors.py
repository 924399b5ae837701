"""Error taxonomy for the monitor core."""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for failures raised by the monitor or its collaborators."""


class ConnectivityError(MonitorError):
    """The remote telemetry source is unreachable or returned invalid data."""


class StorageError(MonitorError):
    """The local reading cache could not be read or written."""


class AggregationFailure(MonitorError):
    """Neither the remote source nor the local cache produced usable history."""
