"""Collaborator contracts for telemetry sources and reading stores."""

from __future__ import annotations

from functools import lru_cache
from typing import Protocol, Sequence

from models.readings import Reading, TimeRange
from settings import get_settings
from sources.remote import RemoteTelemetrySource
from sources.simulated import SimulatedTelemetrySource


class TelemetrySource(Protocol):
    def fetch_latest(self) -> Reading:
        """Return the newest reading or raise ``ConnectivityError``."""
        ...

    def fetch_range(self, time_range: TimeRange) -> Sequence[Reading]:
        """Return readings for ``time_range`` in chronological order or raise ``ConnectivityError``."""
        ...


class ReadingStore(Protocol):
    def load_readings(self) -> Sequence[Reading]:
        """Return every cached reading in chronological order or raise ``StorageError``."""
        ...


@lru_cache
def build_default_source() -> TelemetrySource:
    """Use the remote service when configured, otherwise the simulated sensor."""
    settings = get_settings()
    if settings.telemetry_api_base_url:
        return RemoteTelemetrySource(
            settings.telemetry_api_base_url, timeout=settings.fetch_timeout
        )
    return SimulatedTelemetrySource()
