import os
import sys
import threading
import time

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.quote import LineItem, QuoteRequest, QuoteStatus, QuoteUnit, utc_now
from services.response_notifier import ResponseNotifier
from services.wait_scheduler import QuoteWaitScheduler


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


class SleepRecorder:
    """Advance the fake clock and run a hook after each pause."""

    def __init__(self, clock, hooks=None):
        self.clock = clock
        self.calls = []
        self.hooks = list(hooks or [])

    def __call__(self, seconds):
        self.calls.append(seconds)
        self.clock.now += seconds
        if self.hooks:
            self.hooks.pop(0)()


@pytest.fixture
def seed(store, add_supplier):
    """Create a request with ``count`` pending units, one per registered supplier."""

    def _seed(request_id, count):
        for index in range(count):
            add_supplier(f"s-{index}", f"Fornecedor {index}", f"55670000000{index:02d}")
        return _create_units(store, request_id, count)

    return _seed


def _create_units(store, request_id, count):
    store.create_request(
        QuoteRequest(
            id=request_id,
            description="arroz",
            items=[LineItem(name="arroz", quantity=10, unit="kg")],
            urgent=False,
            timeout_seconds=60,
            created_at=utc_now(),
        )
    )
    units = []
    for index in range(count):
        unit = QuoteUnit(
            id=f"{request_id}-u{index}",
            request_id=request_id,
            supplier_id=f"s-{index}",
            items=[],
        )
        store.create_unit(unit)
        units.append(unit)
    return units


def test_returns_as_soon_as_all_replies_are_in(store, seed):
    units = seed("req-1", 2)
    clock = FakeClock()
    sleeper = SleepRecorder(
        clock,
        hooks=[
            lambda: store.mark_received(units[0].id, "R$ 10", price=10.0),
            lambda: store.mark_received(units[1].id, "R$ 12", price=12.0),
        ],
    )
    scheduler = QuoteWaitScheduler(store, poll_interval=10, sleep_fn=sleeper, clock=clock)

    result = scheduler.await_responses("req-1", 2, 300)

    assert result.complete is True
    assert result.timed_out is False
    assert len(result.received) == 2
    assert result.polls == 3
    assert sleeper.calls == [10, 10]
    assert result.elapsed_seconds == pytest.approx(20)


def test_deadline_returns_partial_snapshot(store, seed):
    units = seed("req-1", 3)
    clock = FakeClock()
    sleeper = SleepRecorder(clock, hooks=[lambda: store.mark_received(units[1].id, "R$ 9", price=9.0)])
    scheduler = QuoteWaitScheduler(store, poll_interval=10, sleep_fn=sleeper, clock=clock)

    result = scheduler.await_responses("req-1", 3, 25)

    assert result.timed_out is True
    assert result.complete is False
    assert [unit.id for unit in result.received] == ["req-1-u1"]
    assert sum(1 for unit in result.units if unit.status == QuoteStatus.PENDING) == 2
    assert sleeper.calls == [10, 10, 5]
    assert result.elapsed_seconds == pytest.approx(25)


def test_zero_expected_completes_without_sleeping(store):
    clock = FakeClock()
    sleeper = SleepRecorder(clock)
    scheduler = QuoteWaitScheduler(store, poll_interval=10, sleep_fn=sleeper, clock=clock)

    result = scheduler.await_responses("missing", 0, 60)

    assert result.complete is True
    assert result.polls == 1
    assert sleeper.calls == []


def test_cancel_event_stops_the_wait(store, seed):
    seed("req-1", 1)
    clock = FakeClock()
    cancel = threading.Event()
    sleeper = SleepRecorder(clock, hooks=[cancel.set])
    scheduler = QuoteWaitScheduler(store, poll_interval=10, sleep_fn=sleeper, clock=clock)

    result = scheduler.await_responses("req-1", 1, 600, cancel_event=cancel)

    assert result.cancelled is True
    assert result.timed_out is False
    assert result.polls == 2


def test_store_errors_propagate():
    class BrokenStore:
        def units_by_request(self, request_id):
            raise RuntimeError("connection refused")

    scheduler = QuoteWaitScheduler(BrokenStore(), poll_interval=1, sleep_fn=lambda _: None)

    with pytest.raises(RuntimeError):
        scheduler.await_responses("req-1", 1, 10)


def test_poll_interval_must_be_positive(store):
    with pytest.raises(ValueError):
        QuoteWaitScheduler(store, poll_interval=0)


def test_notifier_wakes_the_wait_before_the_poll_interval(store, seed):
    units = seed("req-1", 1)
    notifier = ResponseNotifier()
    scheduler = QuoteWaitScheduler(store, poll_interval=30, notifier=notifier)

    def reply():
        time.sleep(0.2)
        store.mark_received(units[0].id, "R$ 10", price=10.0)
        notifier.notify("req-1")

    worker = threading.Thread(target=reply)
    started = time.monotonic()
    worker.start()
    result = scheduler.await_responses("req-1", 1, 60)
    worker.join(timeout=5)

    assert result.complete is True
    assert time.monotonic() - started < 10


def test_result_summary_counts_received(store, seed):
    units = seed("req-1", 2)
    store.mark_received(units[0].id, "R$ 10", price=10.0)
    scheduler = QuoteWaitScheduler(store, poll_interval=5, sleep_fn=SleepRecorder(FakeClock()), clock=FakeClock())

    summary = scheduler.await_responses("req-1", 2, 0).as_dict()

    assert summary["received_count"] == 1
    assert summary["timed_out"] is True
    assert summary["expected_count"] == 2


def test_cancel_event_interrupts_a_notifier_wait(store, seed):
    seed("req-1", 1)
    notifier = ResponseNotifier()
    cancel = threading.Event()
    scheduler = QuoteWaitScheduler(store, poll_interval=30, notifier=notifier)
    timer = threading.Timer(0.1, cancel.set)

    started = time.monotonic()
    timer.start()
    result = scheduler.await_responses("req-1", 1, 60, cancel_event=cancel)
    timer.join(timeout=5)

    assert result.cancelled is True
    assert time.monotonic() - started < 5


def test_notifier_stops_tracking_the_request_after_the_wait(store, seed):
    seed("req-1", 1)
    notifier = ResponseNotifier()
    scheduler = QuoteWaitScheduler(store, poll_interval=0.05, notifier=notifier)

    scheduler.await_responses("req-1", 1, 0.1)
    notifier.notify("req-1")

    assert notifier.is_watched("req-1") is False
    assert notifier.version("req-1") == 0
