"""Tests for the telemetry poller cycle, failure handling, and concurrency."""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Sequence, Union

import pytest

from models.errors import ConnectivityError, StorageError
from models.readings import Reading, Status, TelemetryView, TimeRange
from services.alerts import AlertEvent, AlertNotifier
from services.buffer import RollingWindowBuffer
from services.poller import TelemetryPoller
from storage.reading_cache import ReadingCache

_BASE = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
_UPDATED_AT = datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)

Outcome = Union[Reading, Exception, object]


def _reading(value: float, seconds: int = 0) -> Reading:
    return Reading(value=value, timestamp=_BASE + timedelta(seconds=seconds))


class ScriptedSource:
    """Returns or raises the scripted outcomes in order, repeating the last one."""

    def __init__(self, outcomes: Sequence[Outcome]) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0

    def fetch_latest(self) -> Reading:
        index = min(self.calls, len(self._outcomes) - 1)
        self.calls += 1
        outcome = self._outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome  # type: ignore[return-value]

    def fetch_range(self, time_range: TimeRange) -> Sequence[Reading]:
        return []


class BlockingSource:
    """Blocks every fetch until ``release`` is set."""

    def __init__(self, reading: Reading) -> None:
        self.reading = reading
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def fetch_latest(self) -> Reading:
        self.calls += 1
        self.started.set()
        self.release.wait(timeout=5)
        return self.reading

    def fetch_range(self, time_range: TimeRange) -> Sequence[Reading]:
        return []


class RecordingChannel:
    def __init__(self, name: str = "dialog", fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.events: List[AlertEvent] = []

    def deliver(self, event: AlertEvent) -> None:
        self.events.append(event)
        if self.fail:
            raise RuntimeError("dialog unavailable")


class FailingCache(ReadingCache):
    def append(self, reading: Reading) -> None:
        raise StorageError("disk full")


@pytest.fixture()
def views() -> List[TelemetryView]:
    return []


def _poller(source, views: List[TelemetryView], **kwargs) -> TelemetryPoller:
    kwargs.setdefault("clock", lambda: _UPDATED_AT)
    poller = TelemetryPoller(source=source, device_id="car-1", **kwargs)
    poller.subscribe(views.append)
    return poller


@pytest.fixture()
def cleanup() -> Iterator[List[TelemetryPoller]]:
    pollers: List[TelemetryPoller] = []
    yield pollers
    for poller in pollers:
        poller.stop()


def test_successful_cycle_publishes_classified_view(views, cleanup) -> None:
    reading = _reading(19.7)
    poller = _poller(ScriptedSource([reading]), views)
    cleanup.append(poller)

    view = poller.refresh_now()

    assert views == [view]
    assert view.device_id == "car-1"
    assert view.reading == reading
    assert view.status is Status.warning
    assert view.recent_readings == (reading,)
    assert view.connected is True
    assert view.last_update_time == _UPDATED_AT
    assert poller.current_view() is view


def test_initial_view_is_disconnected_and_empty() -> None:
    poller = TelemetryPoller(source=ScriptedSource([_reading(20.0)]))
    try:
        view = poller.current_view()
    finally:
        poller.stop()

    assert view.reading is None
    assert view.status is None
    assert view.connected is False
    assert view.last_update_time is None


def test_consecutive_failures_keep_last_known_reading(views, cleanup) -> None:
    good = _reading(20.8)
    source = ScriptedSource([good, ConnectivityError("offline")])
    poller = _poller(source, views)
    cleanup.append(poller)

    poller.refresh_now()
    for _ in range(3):
        poller.refresh_now()

    failures = views[1:]
    assert len(failures) == 3
    for view in failures:
        assert view.connected is False
        assert view.reading == good
        assert view.status is Status.normal
        assert view.recent_readings == (good,)
        assert view.last_update_time == _UPDATED_AT
    assert len(poller.buffer) == 1


def test_reconnect_after_failure_sets_connected(views, cleanup) -> None:
    source = ScriptedSource([ConnectivityError("offline"), _reading(20.2, 10)])
    poller = _poller(source, views)
    cleanup.append(poller)

    first = poller.refresh_now()
    second = poller.refresh_now()

    assert first.connected is False
    assert first.reading is None
    assert second.connected is True
    assert second.reading == _reading(20.2, 10)


@pytest.mark.parametrize("bad", [None, {"oxygen_level": 20.1}, "20.1"])
def test_malformed_reading_is_treated_as_failure(views, cleanup, bad) -> None:
    poller = _poller(ScriptedSource([bad]), views)
    cleanup.append(poller)

    view = poller.refresh_now()

    assert view.connected is False
    assert len(poller.buffer) == 0


def test_unexpected_source_error_is_absorbed(views, cleanup) -> None:
    poller = _poller(ScriptedSource([KeyError("boom")]), views)
    cleanup.append(poller)

    view = poller.refresh_now()

    assert view.connected is False


def test_fetch_timeout_is_a_failure(views, cleanup) -> None:
    source = BlockingSource(_reading(20.5))
    poller = _poller(source, views, fetch_timeout=0.1)
    cleanup.append(poller)

    started = time.perf_counter()
    view = poller.refresh_now()
    elapsed = time.perf_counter() - started
    source.release.set()

    assert view.connected is False
    assert view.reading is None
    assert elapsed < 2.0
    assert len(poller.buffer) == 0


def test_buffer_keeps_only_latest_readings(views, cleanup) -> None:
    readings = [_reading(20.0 + index / 10, index) for index in range(5)]
    poller = _poller(ScriptedSource(readings), views, buffer=RollingWindowBuffer(capacity=3))
    cleanup.append(poller)

    for _ in readings:
        poller.refresh_now()

    assert poller.recent_readings() == tuple(readings[-3:])
    assert views[-1].recent_readings == tuple(readings[-3:])


def test_unsafe_reading_alerts_on_every_tick(views, cleanup) -> None:
    channel = RecordingChannel()
    notifier = AlertNotifier(user_channel=channel, device_id="car-1")
    source = ScriptedSource([_reading(18.9, 0), _reading(18.7, 10), _reading(20.4, 20)])
    poller = _poller(source, views, notifier=notifier)
    cleanup.append(poller)

    for _ in range(3):
        poller.refresh_now()

    assert [event.value for event in channel.events] == [18.9, 18.7]
    assert views[0].status is Status.alert
    assert poller.alert_state.last_status is Status.normal
    assert poller.alert_state.last_alert_status is Status.alert


def test_failed_alert_delivery_does_not_stall_cycle(views, cleanup) -> None:
    channel = RecordingChannel(fail=True)
    notifier = AlertNotifier(user_channel=channel)
    poller = _poller(ScriptedSource([_reading(18.0)]), views, notifier=notifier)
    cleanup.append(poller)

    view = poller.refresh_now()

    assert len(channel.events) == 1
    assert view.connected is True
    assert views == [view]


def test_failures_skip_alert_evaluation(views, cleanup) -> None:
    channel = RecordingChannel()
    notifier = AlertNotifier(user_channel=channel)
    source = ScriptedSource([_reading(18.0), ConnectivityError("offline")])
    poller = _poller(source, views, notifier=notifier)
    cleanup.append(poller)

    for _ in range(3):
        poller.refresh_now()

    assert len(channel.events) == 1


def test_successful_readings_are_recorded_in_cache(views, cleanup) -> None:
    cache = ReadingCache(clock=lambda: _BASE + timedelta(minutes=1))
    source = ScriptedSource([_reading(20.1), ConnectivityError("offline")])
    poller = _poller(source, views, cache=cache)
    cleanup.append(poller)

    poller.refresh_now()
    poller.refresh_now()

    assert cache.load_readings() == [_reading(20.1)]


def test_cache_failures_do_not_break_publishing(views, cleanup) -> None:
    poller = _poller(ScriptedSource([_reading(20.1)]), views, cache=FailingCache())
    cleanup.append(poller)

    view = poller.refresh_now()

    assert view.connected is True
    assert views == [view]


def test_observer_errors_do_not_block_other_observers(views, cleanup) -> None:
    poller = TelemetryPoller(source=ScriptedSource([_reading(20.1)]))
    cleanup.append(poller)

    def broken(view: TelemetryView) -> None:
        raise RuntimeError("render failed")

    poller.subscribe(broken)
    poller.subscribe(views.append)

    poller.refresh_now()

    assert len(views) == 1


def test_unsubscribe_stops_delivery(views, cleanup) -> None:
    poller = TelemetryPoller(source=ScriptedSource([_reading(20.1)]))
    cleanup.append(poller)
    unsubscribe = poller.subscribe(views.append)

    poller.refresh_now()
    unsubscribe()
    poller.refresh_now()

    assert len(views) == 1


def test_refresh_during_inflight_cycle_never_interleaves(cleanup) -> None:
    source = BlockingSource(_reading(20.6))
    poller = TelemetryPoller(source=source, fetch_timeout=5)
    cleanup.append(poller)

    active = 0
    overlaps: List[int] = []
    published: List[TelemetryView] = []
    guard = threading.Lock()

    def observer(view: TelemetryView) -> None:
        nonlocal active
        with guard:
            active += 1
            if active > 1:
                overlaps.append(active)
        time.sleep(0.02)
        published.append(view)
        with guard:
            active -= 1

    poller.subscribe(observer)

    first = threading.Thread(target=poller.refresh_now)
    first.start()
    assert source.started.wait(timeout=2)

    second = threading.Thread(target=poller.refresh_now)
    second.start()
    time.sleep(0.05)
    # The second refresh is parked behind the in-flight cycle.
    assert source.calls == 1

    source.release.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert overlaps == []
    assert len(published) == 2
    assert source.calls == 2
    assert all(view.connected for view in published)


def test_periodic_loop_polls_until_stopped(views) -> None:
    readings = [_reading(20.0 + index / 10, index) for index in range(50)]
    poller = _poller(ScriptedSource(readings), views, interval=0.02, fetch_timeout=1)

    poller.start()
    deadline = time.monotonic() + 2
    while len(views) < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    poller.stop()
    published = len(views)
    time.sleep(0.1)

    assert published >= 3
    assert len(views) == published
    assert poller.running is False


def test_stop_discards_inflight_fetch(views) -> None:
    source = BlockingSource(_reading(20.6))
    poller = _poller(source, views, interval=10, fetch_timeout=0.5)

    poller.start()
    assert source.started.wait(timeout=2)
    started = time.perf_counter()
    poller.stop()
    elapsed = time.perf_counter() - started
    source.release.set()
    time.sleep(0.1)

    assert elapsed < 2.0
    assert views == []
    assert len(poller.buffer) == 0


def test_stop_is_safe_from_any_state() -> None:
    poller = TelemetryPoller(source=ScriptedSource([_reading(20.1)]))

    poller.stop()
    poller.stop()

    with pytest.raises(RuntimeError):
        poller.start()
    assert poller.refresh_now().reading is None


def test_stop_from_observer_callback(cleanup) -> None:
    poller = TelemetryPoller(source=ScriptedSource([_reading(20.1)]), interval=0.02)
    cleanup.append(poller)
    calls: List[TelemetryView] = []

    def observer(view: TelemetryView) -> None:
        calls.append(view)
        poller.stop()

    poller.subscribe(observer)
    poller.start()
    deadline = time.monotonic() + 2
    while poller.running and time.monotonic() < deadline:
        time.sleep(0.01)
    time.sleep(0.1)

    assert len(calls) == 1


def test_invalid_timing_configuration_is_rejected() -> None:
    with pytest.raises(ValueError):
        TelemetryPoller(source=ScriptedSource([_reading(20.1)]), interval=0)
    with pytest.raises(ValueError):
        TelemetryPoller(source=ScriptedSource([_reading(20.1)]), fetch_timeout=0)


def test_fetch_failures_are_logged_with_device_context(views, cleanup, caplog) -> None:
    poller = _poller(ScriptedSource([ConnectivityError("gateway down")]), views)
    cleanup.append(poller)

    with caplog.at_level(logging.WARNING):
        poller.refresh_now()

    records = [record for record in caplog.records if record.name == "services.poller"]
    assert records, "Expected the failed fetch to be logged."
    assert records[0].getMessage() == "Telemetry fetch failed"
    assert getattr(records[0], "device_id", None) == "car-1"
    assert getattr(records[0], "reason", None) == "gateway down"


class ExplodingCache(ReadingCache):
    def append(self, reading: Reading) -> None:
        raise RuntimeError("cache driver crashed")


def test_failed_cycle_does_not_end_polling(caplog) -> None:
    source = ScriptedSource([_reading(20.0 + index / 10, index) for index in range(50)])
    poller = TelemetryPoller(source=source, cache=ExplodingCache(), interval=0.02, fetch_timeout=1)

    with caplog.at_level(logging.ERROR, logger="services.poller"):
        poller.start()
        deadline = time.monotonic() + 2
        while source.calls < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        alive = poller.running
        poller.stop()

    assert source.calls >= 3
    assert alive is True
    assert any(record.getMessage() == "Telemetry cycle failed" for record in caplog.records)


def test_polling_continues_over_corrupt_cache_file(tmp_path, views) -> None:
    path = tmp_path / "readings.json"
    path.write_text(json.dumps([{"value": 20.0, "timestamp": 1717243200}]))
    source = ScriptedSource([_reading(20.0 + index / 10, index) for index in range(50)])
    poller = _poller(
        source, views, cache=ReadingCache(persistence_path=path), interval=0.02, fetch_timeout=1
    )

    poller.start()
    deadline = time.monotonic() + 2
    while len(views) < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    alive = poller.running
    poller.stop()

    assert len(views) >= 3
    assert alive is True


def test_slow_observer_does_not_hold_up_stop() -> None:
    poller = TelemetryPoller(
        source=ScriptedSource([_reading(20.4)]), interval=10, fetch_timeout=0.2
    )
    entered = threading.Event()
    release = threading.Event()
    calls: List[TelemetryView] = []

    def slow_observer(view: TelemetryView) -> None:
        calls.append(view)
        entered.set()
        release.wait(timeout=2)

    poller.subscribe(slow_observer)
    poller.start()
    assert entered.wait(timeout=2)

    started = time.perf_counter()
    poller.stop()
    elapsed = time.perf_counter() - started
    release.set()
    time.sleep(0.05)

    assert elapsed < 1.0
    assert len(calls) == 1
