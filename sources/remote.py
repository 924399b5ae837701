"""HTTP client for the remote telemetry service."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence

import httpx

from models.errors import ConnectivityError
from models.readings import Reading, TimeRange, parse_timestamp

logger = logging.getLogger(__name__)

_VALUE_KEYS = ("oxygen_level", "value")


class RemoteTelemetrySource:
    """Fetches latest and historical oxygen readings over HTTP.

    Transport failures, error statuses, and payloads that do not decode into
    valid readings all surface as :class:`ConnectivityError`.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def fetch_latest(self) -> Reading:
        payload = self._get_json("/readings/latest")
        if not isinstance(payload, Mapping):
            raise ConnectivityError("Latest reading payload is not an object.")
        return _parse_reading(payload)

    def fetch_range(self, time_range: TimeRange) -> Sequence[Reading]:
        payload = self._get_json("/readings/history", params={"range": time_range.value})
        if isinstance(payload, Mapping):
            payload = payload.get("readings")
        if not isinstance(payload, list):
            raise ConnectivityError("Historical readings payload is not a list.")
        readings: List[Reading] = []
        for item in payload:
            if not isinstance(item, Mapping):
                raise ConnectivityError("Historical reading entry is not an object.")
            readings.append(_parse_reading(item))
        return readings

    def _get_json(self, path: str, params: Optional[Mapping[str, str]] = None) -> Any:
        try:
            response = self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise ConnectivityError(
                f"Telemetry service returned {exc.response.status_code} for {path}."
            ) from exc
        except httpx.HTTPError as exc:
            raise ConnectivityError(f"Telemetry service unreachable: {exc}") from exc
        except ValueError as exc:
            raise ConnectivityError(f"Telemetry service sent invalid JSON for {path}.") from exc


def _parse_reading(payload: Mapping[str, Any]) -> Reading:
    raw_value = next((payload[key] for key in _VALUE_KEYS if key in payload), None)
    raw_timestamp = payload.get("timestamp")
    if raw_value is None:
        raise ConnectivityError("Reading payload is missing a value.")
    if not isinstance(raw_timestamp, str):
        raise ConnectivityError("Reading payload is missing a timestamp.")
    try:
        value = float(raw_value)
        return Reading(value=value, timestamp=parse_timestamp(raw_timestamp))
    except (TypeError, ValueError) as exc:
        raise ConnectivityError(f"Malformed reading payload: {exc}") from exc
