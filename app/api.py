"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from app.schemas import AlertEventOut, HistoryResponse, ReadingOut, TelemetryViewOut
from models.errors import AggregationFailure
from models.readings import TimeRange
from services.aggregator import HistoricalAggregator, build_default_aggregator
from services.alerts import AlertFeed, build_default_alert_feed
from services.poller import TelemetryPoller, build_default_poller

router = APIRouter()


def get_poller() -> TelemetryPoller:
    return build_default_poller()


def get_aggregator() -> HistoricalAggregator:
    return build_default_aggregator()


def get_alert_feed() -> AlertFeed:
    return build_default_alert_feed()


@router.get(
    "/telemetry",
    response_model=TelemetryViewOut,
    summary="Latest reading, status, and connectivity for the monitored device.",
)
async def get_telemetry(
    poller: TelemetryPoller = Depends(get_poller),
) -> TelemetryViewOut:
    return TelemetryViewOut.from_view(poller.current_view())


@router.post(
    "/telemetry/refresh",
    response_model=TelemetryViewOut,
    summary="Poll the sensor immediately and return the published view.",
)
async def refresh_telemetry(
    poller: TelemetryPoller = Depends(get_poller),
) -> TelemetryViewOut:
    view = await run_in_threadpool(poller.refresh_now)
    return TelemetryViewOut.from_view(view)


@router.get(
    "/telemetry/recent",
    response_model=List[ReadingOut],
    summary="Rolling window of the most recent readings, oldest first.",
)
async def get_recent_readings(
    poller: TelemetryPoller = Depends(get_poller),
) -> List[ReadingOut]:
    return [ReadingOut.from_reading(item) for item in poller.recent_readings()]


@router.get(
    "/history/{time_range}",
    response_model=HistoryResponse,
    summary="Historical readings and statistics for a named range.",
)
async def get_history(
    time_range: TimeRange,
    aggregator: HistoricalAggregator = Depends(get_aggregator),
) -> HistoryResponse:
    try:
        result = await run_in_threadpool(aggregator.query, time_range)
    except AggregationFailure as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return HistoryResponse.from_result(result)


@router.get(
    "/alerts",
    response_model=List[AlertEventOut],
    summary="Alerts raised since the service started, oldest first.",
)
async def get_alerts(
    feed: AlertFeed = Depends(get_alert_feed),
) -> List[AlertEventOut]:
    return [AlertEventOut.from_event(event) for event in feed.events()]


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
