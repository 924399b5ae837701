"""Simulated cabin sensor for running the monitor without hardware."""

from __future__ import annotations

import random
from datetime import datetime
from typing import Callable, Optional, Sequence

from models.readings import Reading, TimeRange, utc_now

NORMAL_RANGE = (19.5, 21.5)
UNSAFE_RANGE = (18.0, 19.4)


class SimulatedTelemetrySource:
    """Emits plausible readings with an occasional unsafe dip.

    The simulated device keeps no history, so ``fetch_range`` is always empty
    and history queries are answered from the local cache.
    """

    def __init__(
        self,
        unsafe_probability: float = 0.1,
        seed: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not 0.0 <= unsafe_probability <= 1.0:
            raise ValueError("unsafe_probability must be between 0 and 1.")
        self.unsafe_probability = unsafe_probability
        self._random = random.Random(seed)
        self._clock = clock

    def fetch_latest(self) -> Reading:
        low, high = NORMAL_RANGE
        if self._random.random() < self.unsafe_probability:
            low, high = UNSAFE_RANGE
        value = round(self._random.uniform(low, high), 1)
        return Reading(value=value, timestamp=self._clock())

    def fetch_range(self, time_range: TimeRange) -> Sequence[Reading]:
        return []
