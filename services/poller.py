"""Periodic polling of the telemetry source and publication of monitor state."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from functools import lru_cache
from threading import Event, Lock, RLock, Thread
from typing import Callable, List, Optional, Tuple

from models.errors import ConnectivityError, StorageError
from models.readings import Reading, Status, TelemetryView, utc_now
from services.alerts import AlertNotifier, AlertState, AlertTrigger, build_default_notifier
from services.buffer import RollingWindowBuffer
from services.classifier import classify
from settings import get_settings
from sources.base import TelemetrySource, build_default_source
from storage.reading_cache import ReadingCache, build_default_cache

logger = logging.getLogger(__name__)

Observer = Callable[[TelemetryView], None]


class TelemetryPoller:
    """Owns the fetch → classify → buffer → alert → publish cycle.

    Cycles are single-flight: the timer loop and :meth:`refresh_now` share one
    lock, and a ``refresh_now`` issued while a tick is in flight waits for it
    and then runs a fresh cycle of its own. Observers are called on the thread
    that ran the cycle and must not call :meth:`refresh_now` themselves. They
    run outside the state lock, so a slow observer delays :meth:`stop` by at
    most ``fetch_timeout``.
    """

    def __init__(
        self,
        source: TelemetrySource,
        buffer: Optional[RollingWindowBuffer] = None,
        trigger: Optional[AlertTrigger] = None,
        notifier: Optional[AlertNotifier] = None,
        cache: Optional[ReadingCache] = None,
        device_id: str = "cabin-sensor",
        interval: float = 10.0,
        fetch_timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if interval <= 0:
            raise ValueError("Poll interval must be positive.")
        if fetch_timeout <= 0:
            raise ValueError("Fetch timeout must be positive.")
        self.source = source
        self.buffer = buffer if buffer is not None else RollingWindowBuffer()
        self.trigger = trigger or AlertTrigger()
        self.notifier = notifier
        self.cache = cache
        self.device_id = device_id
        self.interval = interval
        self.fetch_timeout = fetch_timeout
        self._clock = clock

        self.executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="telemetry-fetch")
        self._cycle_lock = Lock()
        self._state_lock = Lock()
        self._delivery_lock = RLock()
        self._observers_lock = Lock()
        self._stop_event = Event()
        self._observers: List[Observer] = []
        self._thread: Optional[Thread] = None
        self._stopped = False

        self._reading: Optional[Reading] = None
        self._status: Optional[Status] = None
        self._connected = False
        self._last_update_time: Optional[datetime] = None
        self._alert_state = AlertState()
        self._view = self._build_view()

    @property
    def alert_state(self) -> AlertState:
        return self._alert_state

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer`` for every published view; returns an unsubscribe hook."""
        with self._observers_lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._observers_lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def current_view(self) -> TelemetryView:
        return self._view

    def recent_readings(self) -> Tuple[Reading, ...]:
        return self.buffer.snapshot()

    def start(self) -> None:
        with self._state_lock:
            if self._stopped:
                raise RuntimeError("A stopped poller cannot be restarted.")
            if self._thread is not None:
                return
            self._thread = Thread(
                target=self._run, name=f"telemetry-poller-{self.device_id}", daemon=True
            )
            self._thread.start()
        logger.info(
            "Telemetry polling started",
            extra={"device_id": self.device_id},
        )

    def stop(self) -> None:
        """Stop polling; no view is published once this returns."""
        with self._state_lock:
            already_stopped = self._stopped
            self._stopped = True
        self._stop_event.set()

        deadline = time.monotonic() + self.fetch_timeout
        # Wait, bounded, for an observer call already under way.
        if self._delivery_lock.acquire(timeout=self.fetch_timeout):
            self._delivery_lock.release()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(0.0, deadline - time.monotonic()))
        self.executor.shutdown(wait=False, cancel_futures=True)
        if not already_stopped:
            logger.info("Telemetry polling stopped", extra={"device_id": self.device_id})

    def refresh_now(self) -> TelemetryView:
        """Run one fetch-and-publish cycle immediately, outside the timer."""
        return self._run_cycle()

    def _run(self) -> None:
        next_tick = time.monotonic()
        while not self._stop_event.is_set():
            try:
                self._run_cycle()
            except Exception:  # noqa: BLE001 - a failed cycle must not end polling
                logger.exception("Telemetry cycle failed", extra={"device_id": self.device_id})
            next_tick += self.interval
            now = time.monotonic()
            # Skip ticks missed during a slow cycle instead of bursting.
            while next_tick <= now:
                next_tick += self.interval
            self._stop_event.wait(next_tick - now)

    def _run_cycle(self) -> TelemetryView:
        with self._cycle_lock:
            if self._stopped:
                return self._view

            reading = self._fetch()

            with self._state_lock:
                if self._stopped:
                    return self._view
                if reading is None:
                    self._connected = False
                    should_alert = False
                else:
                    should_alert = self._apply(reading)
                view = self._build_view()

            if reading is not None:
                if should_alert and self.notifier is not None:
                    self.notifier.notify(reading, Status.alert)
                self._record(reading)

            self._publish(view)
            return view

    def _fetch(self) -> Optional[Reading]:
        log_extra = {"device_id": self.device_id}
        try:
            future = self.executor.submit(self.source.fetch_latest)
        except RuntimeError:
            return None

        try:
            reading = future.result(timeout=self.fetch_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "Telemetry fetch timed out",
                extra={**log_extra, "reason": f"no response within {self.fetch_timeout}s"},
            )
            return None
        except ConnectivityError as exc:
            logger.warning("Telemetry fetch failed", extra={**log_extra, "reason": str(exc)})
            return None
        except Exception:  # noqa: BLE001 - a broken source must not end polling
            logger.exception("Unexpected error from telemetry source", extra=log_extra)
            return None

        if not isinstance(reading, Reading):
            logger.warning(
                "Telemetry source returned malformed data",
                extra={**log_extra, "reason": type(reading).__name__},
            )
            return None
        return reading

    def _apply(self, reading: Reading) -> bool:
        status = classify(reading.value)
        self.buffer.push(reading)
        should_alert, self._alert_state = self.trigger.evaluate(
            reading, status, self._alert_state
        )
        self._reading = reading
        self._status = status
        self._connected = True
        self._last_update_time = self._clock()
        if status is not Status.normal:
            logger.info(
                "Oxygen level outside normal band",
                extra={"device_id": self.device_id, "value": reading.value, "status": status.value},
            )
        return should_alert

    def _record(self, reading: Reading) -> None:
        if self.cache is None:
            return
        try:
            self.cache.append(reading)
        except StorageError as exc:
            logger.warning(
                "Could not record reading in local cache",
                extra={"device_id": self.device_id, "reason": str(exc)},
            )

    def _publish(self, view: TelemetryView) -> None:
        with self._observers_lock:
            observers = list(self._observers)

        with self._delivery_lock:
            with self._state_lock:
                if self._stopped:
                    return
                self._view = view
            for observer in observers:
                if self._stop_event.is_set():
                    return
                try:
                    observer(view)
                except Exception:  # noqa: BLE001 - one observer must not block the rest
                    logger.exception(
                        "Telemetry observer failed",
                        extra={"device_id": self.device_id, "connected": view.connected},
                    )

    def _build_view(self) -> TelemetryView:
        return TelemetryView(
            device_id=self.device_id,
            reading=self._reading,
            status=self._status,
            recent_readings=self.buffer.snapshot(),
            connected=self._connected,
            last_update_time=self._last_update_time,
        )


@lru_cache
def build_default_poller() -> TelemetryPoller:
    """Factory that wires the poller with configured collaborators."""
    settings = get_settings()
    return TelemetryPoller(
        source=build_default_source(),
        buffer=RollingWindowBuffer(settings.buffer_capacity),
        trigger=AlertTrigger(cooldown=settings.alert_cooldown),
        notifier=build_default_notifier(),
        cache=build_default_cache(),
        device_id=settings.device_id,
        interval=settings.poll_interval,
        fetch_timeout=settings.fetch_timeout,
    )
