"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.readings import Reading, Status, TelemetryView, TimeRange
from services.aggregator import HistoryResult, HistorySource
from services.alerts import AlertEvent


class ReadingOut(BaseModel):
    """A single oxygen reading."""

    value: float = Field(..., description="Oxygen concentration in percent.")
    timestamp: datetime

    @classmethod
    def from_reading(cls, reading: Reading) -> "ReadingOut":
        return cls(value=reading.value, timestamp=reading.timestamp)


class TelemetryViewOut(BaseModel):
    """Latest monitor state as published by the poller."""

    device_id: str
    reading: Optional[ReadingOut] = None
    status: Optional[Status] = None
    recent_readings: List[ReadingOut] = Field(default_factory=list)
    connected: bool
    last_update_time: Optional[datetime] = None

    @classmethod
    def from_view(cls, view: TelemetryView) -> "TelemetryViewOut":
        return cls(
            device_id=view.device_id,
            reading=ReadingOut.from_reading(view.reading) if view.reading else None,
            status=view.status,
            recent_readings=[ReadingOut.from_reading(item) for item in view.recent_readings],
            connected=view.connected,
            last_update_time=view.last_update_time,
        )


class StatisticsOut(BaseModel):
    average: float
    minimum: float
    maximum: float


class HistoryResponse(BaseModel):
    """Readings and summary statistics for a named time range."""

    time_range: TimeRange
    label: str
    source: HistorySource
    readings: List[ReadingOut] = Field(default_factory=list)
    statistics: StatisticsOut

    @classmethod
    def from_result(cls, result: HistoryResult) -> "HistoryResponse":
        return cls(
            time_range=result.time_range,
            label=result.time_range.label,
            source=result.source,
            readings=[ReadingOut.from_reading(item) for item in result.readings],
            statistics=StatisticsOut(
                average=result.statistics.average,
                minimum=result.statistics.minimum,
                maximum=result.statistics.maximum,
            ),
        )


class AlertEventOut(BaseModel):
    device_id: str
    value: float
    status: Status
    timestamp: datetime
    title: str
    message: str
    emergency_number: str
    actions: List[str] = Field(default_factory=list)

    @classmethod
    def from_event(cls, event: AlertEvent) -> "AlertEventOut":
        return cls(
            device_id=event.device_id,
            value=event.value,
            status=event.status,
            timestamp=event.timestamp,
            title=event.title,
            message=event.message,
            emergency_number=event.emergency_number,
            actions=list(event.actions),
        )
