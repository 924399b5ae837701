"""Oxygen-level safety classification."""

from __future__ import annotations

from models.readings import Status

NORMAL_THRESHOLD = 20.0
ALERT_THRESHOLD = 19.5


def classify(value: float) -> Status:
    """Map an oxygen concentration (percent) onto a safety status.

    Boundaries belong to the safer band: 20.0 is Normal and 19.5 is Warning.
    """
    if value >= NORMAL_THRESHOLD:
        return Status.normal
    if value >= ALERT_THRESHOLD:
        return Status.warning
    return Status.alert
