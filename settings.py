from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_DEVICE_ID_ENV = "MONITOR_DEVICE_ID"
_API_BASE_URL_ENV = "TELEMETRY_API_BASE_URL"
_POLL_INTERVAL_ENV = "POLL_INTERVAL_SECONDS"
_FETCH_TIMEOUT_ENV = "FETCH_TIMEOUT_SECONDS"
_BUFFER_CAPACITY_ENV = "BUFFER_CAPACITY"
_CACHE_PATH_ENV = "READING_CACHE_PATH"
_NOTIFICATIONS_ENV = "NOTIFICATIONS_ENABLED"
_PUSH_WEBHOOK_ENV = "PUSH_WEBHOOK_URL"
_EMERGENCY_NUMBER_ENV = "EMERGENCY_NUMBER"
_ALERT_COOLDOWN_ENV = "ALERT_COOLDOWN_SECONDS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    device_id: str
    telemetry_api_base_url: Optional[str]
    poll_interval: float
    fetch_timeout: float
    buffer_capacity: int
    reading_cache_path: Optional[str]
    notifications_enabled: bool
    push_webhook_url: Optional[str]
    emergency_number: str
    alert_cooldown: float
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_float(name: str, default: float, allow_zero: bool = False) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if parsed > 0 or (allow_zero and parsed == 0):
        return parsed
    return default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUE_VALUES:
        return True
    if candidate in _FALSE_VALUES:
        return False
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        device_id=_read_str_env(_DEVICE_ID_ENV, "cabin-sensor"),
        telemetry_api_base_url=_read_optional_env(_API_BASE_URL_ENV, None),
        poll_interval=_read_float(_POLL_INTERVAL_ENV, 10.0),
        fetch_timeout=_read_float(_FETCH_TIMEOUT_ENV, 10.0),
        buffer_capacity=_read_positive_int(_BUFFER_CAPACITY_ENV, 10),
        reading_cache_path=_read_optional_env(_CACHE_PATH_ENV, "./tmp/readings.json"),
        notifications_enabled=_read_bool(_NOTIFICATIONS_ENV, True),
        push_webhook_url=_read_optional_env(_PUSH_WEBHOOK_ENV, None),
        emergency_number=_read_str_env(_EMERGENCY_NUMBER_ENV, "911"),
        alert_cooldown=_read_float(_ALERT_COOLDOWN_ENV, 0.0, allow_zero=True),
        log_level=_read_log_level("INFO"),
    )
