from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.aggregator import build_default_aggregator
from services.alerts import build_default_alert_feed, build_default_notifier
from services.poller import TelemetryPoller, build_default_poller
from sources.base import build_default_source
from storage.reading_cache import build_default_cache

_CACHED_FACTORIES = (
    build_default_poller,
    build_default_aggregator,
    build_default_notifier,
    build_default_alert_feed,
    build_default_source,
    build_default_cache,
)


def _close_clients(poller: TelemetryPoller) -> None:
    close_source = getattr(poller.source, "close", None)
    if close_source is not None:
        close_source()
    if poller.notifier is not None:
        poller.notifier.close()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    poller = build_default_poller()
    poller.start()
    try:
        yield
    finally:
        poller.stop()
        _close_clients(poller)
        for factory in _CACHED_FACTORIES:
            factory.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Cabin Oxygen Monitor",
        description="Polls a cabin oxygen sensor, raises alerts, and serves reading history.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
