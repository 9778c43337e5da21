"""Bounded wait for supplier replies on a dispatched quote request."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from models.quote import QuoteUnit
from repositories.quote_repo import QuoteStore
from services.response_notifier import ResponseNotifier

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0
# Longest stretch a notifier wait runs before the cancel token is re-checked.
CANCEL_CHECK_SECONDS = 0.1


@dataclass
class WaitResult:
    """Final snapshot of a request's quote units when the wait ended."""

    request_id: str
    expected_count: int
    units: List[QuoteUnit] = field(default_factory=list)
    complete: bool = False
    timed_out: bool = False
    cancelled: bool = False
    polls: int = 0
    elapsed_seconds: float = 0.0

    @property
    def received(self) -> List[QuoteUnit]:
        return [unit for unit in self.units if unit.is_received]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "expected_count": self.expected_count,
            "received_count": len(self.received),
            "complete": self.complete,
            "timed_out": self.timed_out,
            "cancelled": self.cancelled,
            "polls": self.polls,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


class QuoteWaitScheduler:
    """Block the calling workflow until every expected reply arrives or the deadline passes.

    The store is re-read on every tick; replies are written concurrently by the
    response correlator.  Between ticks the scheduler sleeps for
    ``poll_interval`` or, when a :class:`ResponseNotifier` is supplied, until
    the correlator signals a change for the request, whichever comes first.
    Reaching the deadline is a normal outcome and returns the partial snapshot.
    """

    def __init__(
        self,
        store: QuoteStore,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep_fn: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        notifier: Optional[ResponseNotifier] = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._store = store
        self._poll_interval = float(poll_interval)
        self._sleep = sleep_fn
        self._clock = clock
        self._notifier = notifier

    def _pause(self, request_id: str, seconds: float, version: int, cancel_event: Optional[threading.Event]) -> None:
        if self._notifier is not None:
            if cancel_event is None:
                self._notifier.wait(request_id, version, seconds)
                return
            remaining = seconds
            while remaining > 0 and not cancel_event.is_set():
                step = min(CANCEL_CHECK_SECONDS, remaining)
                if self._notifier.wait(request_id, version, step):
                    return
                remaining -= step
        elif cancel_event is not None and self._sleep is time.sleep:
            cancel_event.wait(seconds)
        else:
            self._sleep(seconds)

    def _poll_until_done(
        self,
        request_id: str,
        expected_count: int,
        deadline: float,
        result: WaitResult,
        cancel_event: Optional[threading.Event],
    ) -> None:
        while True:
            version = self._notifier.version(request_id) if self._notifier is not None else 0
            result.units = self._store.units_by_request(request_id)
            result.polls += 1
            received = len(result.received)
            logger.debug("%d/%d replies received for %s", received, expected_count, request_id)

            if received >= expected_count:
                result.complete = True
                return
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                return
            remaining = deadline - self._clock()
            if remaining <= 0:
                result.timed_out = True
                return
            self._pause(request_id, min(self._poll_interval, remaining), version, cancel_event)

    def await_responses(
        self,
        request_id: str,
        expected_count: int,
        timeout_seconds: float,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> WaitResult:
        """Poll ``request_id`` until ``expected_count`` units are received.

        ``cancel_event`` is an optional cancellation token; once set the wait
        returns the current snapshot with ``cancelled=True``.
        """

        started = self._clock()
        deadline = started + max(float(timeout_seconds), 0.0)
        result = WaitResult(request_id=request_id, expected_count=int(expected_count))
        if self._notifier is not None:
            self._notifier.watch(request_id)
        try:
            self._poll_until_done(request_id, expected_count, deadline, result, cancel_event)
        finally:
            if self._notifier is not None:
                self._notifier.forget(request_id)

        result.elapsed_seconds = max(self._clock() - started, 0.0)
        logger.info(
            "Stopped waiting on %s: %d/%d replies (%s)",
            request_id,
            len(result.received),
            expected_count,
            "complete" if result.complete else "cancelled" if result.cancelled else "deadline",
        )
        return result
