from __future__ import annotations

import json
from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Callable, List, Optional

from models.errors import StorageError
from models.readings import MAX_LOOKBACK, Reading, parse_timestamp, utc_now
from settings import get_settings


class ReadingCache:
    """Local store of recorded readings, optionally persisted as JSON.

    Entries older than ``retention`` are pruned on every append, so the cache
    never holds more than the longest history window needs.
    """

    def __init__(
        self,
        persistence_path: Optional[Path] = None,
        retention: timedelta = MAX_LOOKBACK,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.persistence_path = persistence_path
        self.retention = retention
        self._clock = clock
        self._readings: List[Reading] = []
        self._loaded = persistence_path is None
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, reading: Reading) -> None:
        with self._lock:
            self._ensure_loaded()
            self._readings.append(reading)
            cutoff = self._clock() - self.retention
            self._readings = [item for item in self._readings if item.timestamp >= cutoff]
            self._persist()

    def load_readings(self) -> List[Reading]:
        with self._lock:
            self._ensure_loaded()
            return list(self._readings)

    def _ensure_loaded(self) -> None:
        # A corrupt file stays unloaded so every read keeps reporting it.
        if self._loaded:
            return
        self._readings = self._read_from_disk()
        self._loaded = True

    def _read_from_disk(self) -> List[Reading]:
        assert self.persistence_path is not None
        if not self.persistence_path.exists():
            return []

        try:
            raw = self.persistence_path.read_text() or "[]"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Reading cache {self.persistence_path} is unreadable.") from exc

        if not isinstance(data, list):
            raise StorageError(f"Reading cache {self.persistence_path} is not a list.")

        readings: List[Reading] = []
        try:
            for entry in data:
                readings.append(
                    Reading(value=entry["value"], timestamp=parse_timestamp(entry["timestamp"]))
                )
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(
                f"Reading cache {self.persistence_path} holds a malformed entry."
            ) from exc
        return readings

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = [
            {"value": reading.value, "timestamp": reading.timestamp.isoformat()}
            for reading in self._readings
        ]
        try:
            self.persistence_path.write_text(json.dumps(payload, indent=2))
        except OSError as exc:
            raise StorageError(f"Could not write reading cache {self.persistence_path}.") from exc


@lru_cache
def build_default_cache(path: Optional[str] = None) -> ReadingCache:
    settings = get_settings()
    cache_path = settings.reading_cache_path if path is None else path
    persistence = Path(cache_path) if cache_path else None
    return ReadingCache(persistence_path=persistence)
