"""Domain models shared across the monitor services."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple


class Status(str, Enum):
    """Safety classification of a reading, ordered by severity."""

    normal = "Normal"
    warning = "Warning"
    alert = "Alert"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Status):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Status):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Status):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Status):
            return NotImplemented
        return self.severity >= other.severity


_SEVERITY = {Status.normal: 0, Status.warning: 1, Status.alert: 2}


class TimeRange(str, Enum):
    """Named lookback windows for historical queries."""

    last_hour = "last_hour"
    last_24_hours = "last_24_hours"
    last_7_days = "last_7_days"

    @property
    def lookback(self) -> timedelta:
        return _LOOKBACKS[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


_LOOKBACKS = {
    TimeRange.last_hour: timedelta(hours=1),
    TimeRange.last_24_hours: timedelta(hours=24),
    TimeRange.last_7_days: timedelta(days=7),
}

_LABELS = {
    TimeRange.last_hour: "1 Hour",
    TimeRange.last_24_hours: "24 Hours",
    TimeRange.last_7_days: "7 Days",
}

MAX_LOOKBACK = max(_LOOKBACKS.values())


@dataclass(frozen=True, slots=True)
class Reading:
    """A single timestamped oxygen-concentration measurement (percent)."""

    value: float
    timestamp: datetime

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise ValueError(f"Reading value must be numeric, got {self.value!r}.")
        if not math.isfinite(self.value):
            raise ValueError(f"Reading value must be finite, got {self.value!r}.")
        if not isinstance(self.timestamp, datetime):
            raise ValueError(f"Reading timestamp must be a datetime, got {self.timestamp!r}.")


@dataclass(frozen=True, slots=True)
class Statistics:
    """Summary of a reading set, each figure rounded to one decimal place."""

    average: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0


@dataclass(frozen=True)
class TelemetryView:
    """Combined state published to observers after every polling cycle."""

    device_id: str
    reading: Optional[Reading]
    status: Optional[Status]
    recent_readings: Tuple[Reading, ...]
    connected: bool
    last_update_time: Optional[datetime]


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    A trailing ``Z`` is accepted and naive values are assumed to be UTC.
    """
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}.")
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
