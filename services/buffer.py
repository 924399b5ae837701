"""Fixed-capacity rolling window of recent readings."""

from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Deque, Tuple

from models.readings import Reading

DEFAULT_CAPACITY = 10


class RollingWindowBuffer:
    """Thread-safe FIFO holding the most recent readings, oldest first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("Buffer capacity must be a positive integer.")
        self._capacity = capacity
        self._readings: Deque[Reading] = deque(maxlen=capacity)
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, reading: Reading) -> None:
        # deque(maxlen=...) drops the oldest entry when full.
        with self._lock:
            self._readings.append(reading)

    def snapshot(self) -> Tuple[Reading, ...]:
        with self._lock:
            return tuple(self._readings)

    def __len__(self) -> int:
        with self._lock:
            return len(self._readings)
