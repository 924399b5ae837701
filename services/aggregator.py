"""Historical range queries with remote-then-local fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from functools import lru_cache
from typing import Callable, Iterable, Optional, Sequence, Tuple

from models.errors import AggregationFailure, ConnectivityError, StorageError
from models.readings import Reading, Statistics, TimeRange, utc_now
from sources.base import ReadingStore, TelemetrySource, build_default_source
from storage.reading_cache import build_default_cache

logger = logging.getLogger(__name__)

_ONE_DECIMAL = Decimal("0.1")


class SourceOutcome(str, Enum):
    ok = "ok"
    empty = "empty"
    error = "error"


@dataclass(frozen=True)
class SourceResult:
    """Tagged outcome of a single history source call."""

    outcome: SourceOutcome
    readings: Tuple[Reading, ...] = ()
    error: Optional[Exception] = None

    @classmethod
    def from_readings(cls, readings: Iterable[Reading]) -> "SourceResult":
        items = tuple(readings)
        if not items:
            return cls(outcome=SourceOutcome.empty)
        return cls(outcome=SourceOutcome.ok, readings=items)

    @classmethod
    def failed(cls, error: Exception) -> "SourceResult":
        return cls(outcome=SourceOutcome.error, error=error)


class HistorySource(str, Enum):
    remote = "remote"
    local = "local"


@dataclass(frozen=True)
class HistoryResult:
    time_range: TimeRange
    readings: Tuple[Reading, ...]
    statistics: Statistics
    source: HistorySource


def round_half_up(value: float) -> float:
    """Round to one decimal, ties away from zero on the exact binary value."""
    return float(Decimal(value).quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def compute_statistics(readings: Iterable[Reading]) -> Statistics:
    """Average, minimum and maximum rounded to one decimal; zeros when empty."""
    count = 0
    total = 0.0
    minimum: float | None = None
    maximum: float | None = None

    for reading in readings:
        value = reading.value
        count += 1
        total += value
        if minimum is None or value < minimum:
            minimum = value
        if maximum is None or value > maximum:
            maximum = value

    if not count:
        return Statistics()

    return Statistics(
        average=round_half_up(total / count),
        minimum=round_half_up(minimum),  # type: ignore[arg-type]
        maximum=round_half_up(maximum),  # type: ignore[arg-type]
    )


def filter_to_window(readings: Iterable[Reading], time_range: TimeRange, now: datetime) -> Tuple[Reading, ...]:
    """Keep readings with ``now - lookback <= timestamp < now``, preserving order."""
    start = now - time_range.lookback
    return tuple(reading for reading in readings if start <= reading.timestamp < now)


class HistoricalAggregator:
    """Answers range queries from the remote source, falling back to the cache.

    Decision table:

    ======  ============  =====================================
    remote  local         result
    ======  ============  =====================================
    ok      (unused)      remote readings
    empty   ok / empty    local readings filtered to the window
    error   ok / empty    local readings filtered to the window
    any     error         ``AggregationFailure``
    ======  ============  =====================================
    """

    def __init__(
        self,
        remote: TelemetrySource,
        local: ReadingStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.remote = remote
        self.local = local
        self._clock = clock

    def query(self, time_range: TimeRange) -> HistoryResult:
        remote = self._fetch_remote(time_range)
        if remote.outcome is SourceOutcome.ok:
            return self._result(time_range, remote.readings, HistorySource.remote)

        local = self._load_local()
        if local.outcome is SourceOutcome.error:
            logger.error(
                "History unavailable from remote and local sources",
                extra={"time_range": time_range.value, "reason": str(local.error)},
            )
            raise AggregationFailure(
                f"No history available for {time_range.label}: local cache failed."
            ) from local.error

        readings = filter_to_window(local.readings, time_range, self._clock())
        return self._result(time_range, readings, HistorySource.local)

    def _fetch_remote(self, time_range: TimeRange) -> SourceResult:
        try:
            result = SourceResult.from_readings(self.remote.fetch_range(time_range))
        except ConnectivityError as exc:
            logger.warning(
                "Remote history fetch failed; using local cache",
                extra={"time_range": time_range.value, "reason": str(exc)},
            )
            return SourceResult.failed(exc)
        if result.outcome is SourceOutcome.empty:
            logger.info(
                "Remote history empty; using local cache",
                extra={"time_range": time_range.value},
            )
        return result

    def _load_local(self) -> SourceResult:
        try:
            return SourceResult.from_readings(self.local.load_readings())
        except StorageError as exc:
            return SourceResult.failed(exc)

    @staticmethod
    def _result(
        time_range: TimeRange, readings: Sequence[Reading], source: HistorySource
    ) -> HistoryResult:
        logger.debug(
            "History query answered",
            extra={
                "time_range": time_range.value,
                "source": source.value,
                "reading_count": len(readings),
            },
        )
        return HistoryResult(
            time_range=time_range,
            readings=tuple(readings),
            statistics=compute_statistics(readings),
            source=source,
        )


@lru_cache
def build_default_aggregator() -> HistoricalAggregator:
    """Factory that wires the aggregator with the configured source and cache."""
    return HistoricalAggregator(remote=build_default_source(), local=build_default_cache())
