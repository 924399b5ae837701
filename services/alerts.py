"""Alert decision and delivery for unsafe oxygen readings."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from functools import lru_cache
from threading import Lock
from typing import Deque, List, Optional, Protocol, Sequence, Tuple

import httpx

from models.readings import Reading, Status
from settings import get_settings

logger = logging.getLogger(__name__)

ALERT_TITLE = "EMERGENCY ALERT"
PUSH_TITLE = "EMERGENCY: Child Detection Alert"
PUSH_CHANNEL_ID = "child-detection-alerts"
DIALOG_ACTIONS = ("Call Emergency", "Check Now")


@dataclass(frozen=True)
class AlertState:
    """Per-device alert bookkeeping, replaced on every evaluation."""

    last_status: Optional[Status] = None
    last_alert_status: Optional[Status] = None
    last_alerted_at: Optional[datetime] = None


class AlertTrigger:
    """Decides whether a classified reading raises an alert.

    Every Alert reading alerts again unless ``cooldown`` is positive, in which
    case repeats within the cooldown of the previous alert are suppressed.
    """

    def __init__(self, cooldown: float = 0.0) -> None:
        if cooldown < 0:
            raise ValueError("Alert cooldown cannot be negative.")
        self._cooldown = timedelta(seconds=cooldown)

    def evaluate(
        self, reading: Reading, status: Status, prior: AlertState
    ) -> Tuple[bool, AlertState]:
        if status is not Status.alert:
            return False, replace(prior, last_status=status)

        if self._suppressed(reading, prior):
            return False, replace(prior, last_status=status)

        return True, AlertState(
            last_status=status,
            last_alert_status=status,
            last_alerted_at=reading.timestamp,
        )

    def _suppressed(self, reading: Reading, prior: AlertState) -> bool:
        if not self._cooldown or prior.last_alerted_at is None:
            return False
        if prior.last_alert_status is not Status.alert:
            return False
        return reading.timestamp - prior.last_alerted_at < self._cooldown


@dataclass(frozen=True)
class AlertEvent:
    """Payload handed to every alert channel."""

    device_id: str
    value: float
    status: Status
    timestamp: datetime
    title: str
    message: str
    emergency_number: str
    actions: Tuple[str, ...] = DIALOG_ACTIONS


def build_alert_event(reading: Reading, status: Status, device_id: str, emergency_number: str) -> AlertEvent:
    return AlertEvent(
        device_id=device_id,
        value=reading.value,
        status=status,
        timestamp=reading.timestamp,
        title=ALERT_TITLE,
        message=(
            f"Oxygen level at {reading.value:.1f}%. "
            "Possible child detected in vehicle! Check immediately!"
        ),
        emergency_number=emergency_number,
    )


class AlertChannel(Protocol):
    name: str

    def deliver(self, event: AlertEvent) -> None:
        ...


class AlertFeed:
    """Bounded in-memory record of raised alerts, read by the HTTP layer."""

    name = "alert_feed"

    def __init__(self, max_events: int = 50) -> None:
        self._events: Deque[AlertEvent] = deque(maxlen=max_events)
        self._lock = Lock()

    def deliver(self, event: AlertEvent) -> None:
        with self._lock:
            self._events.append(event)

    def events(self) -> List[AlertEvent]:
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class WebhookPushChannel:
    """Forwards alerts to a push gateway as a high-priority JSON notification."""

    name = "push_webhook"

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None) -> None:
        self._url = url
        self._client = client or httpx.Client(timeout=timeout)

    def deliver(self, event: AlertEvent) -> None:
        response = self._client.post(
            self._url,
            json={
                "channel_id": PUSH_CHANNEL_ID,
                "title": PUSH_TITLE,
                "message": event.message,
                "device_id": event.device_id,
                "value": event.value,
                "timestamp": event.timestamp.isoformat(),
                "priority": "high",
                "play_sound": True,
            },
        )
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


class AlertNotifier:
    """Fans an alert out to the user-facing and push channels.

    Each channel is attempted independently; a failing channel is logged and
    skipped without retry, and never raises back into the polling cycle.
    """

    def __init__(
        self,
        user_channel: AlertChannel,
        push_channel: Optional[AlertChannel] = None,
        push_enabled: bool = True,
        device_id: str = "cabin-sensor",
        emergency_number: str = "911",
    ) -> None:
        self.user_channel = user_channel
        self.push_channel = push_channel
        self.push_enabled = push_enabled
        self.device_id = device_id
        self.emergency_number = emergency_number

    def notify(self, reading: Reading, status: Status) -> List[str]:
        """Deliver an alert for ``reading``; return the channels that accepted it."""
        event = build_alert_event(reading, status, self.device_id, self.emergency_number)
        logger.warning(
            "Raising oxygen alert",
            extra={"device_id": self.device_id, "value": reading.value, "status": status.value},
        )

        delivered: List[str] = []
        for channel in self._active_channels():
            try:
                channel.deliver(event)
            except Exception:  # noqa: BLE001 - delivery is best effort
                logger.warning(
                    "Alert delivery failed",
                    exc_info=True,
                    extra={"device_id": self.device_id, "channel": channel.name},
                )
                continue
            delivered.append(channel.name)
        return delivered

    def close(self) -> None:
        """Release the push channel's HTTP client, if it holds one."""
        close_push = getattr(self.push_channel, "close", None)
        if close_push is not None:
            close_push()

    def _active_channels(self) -> Sequence[AlertChannel]:
        channels: List[AlertChannel] = [self.user_channel]
        if self.push_enabled and self.push_channel is not None:
            channels.append(self.push_channel)
        return channels


@lru_cache
def build_default_alert_feed() -> AlertFeed:
    return AlertFeed()


@lru_cache
def build_default_notifier() -> AlertNotifier:
    """Factory that wires the notifier from settings."""
    settings = get_settings()
    push_channel = (
        WebhookPushChannel(settings.push_webhook_url) if settings.push_webhook_url else None
    )
    return AlertNotifier(
        user_channel=build_default_alert_feed(),
        push_channel=push_channel,
        push_enabled=settings.notifications_enabled,
        device_id=settings.device_id,
        emergency_number=settings.emergency_number,
    )
