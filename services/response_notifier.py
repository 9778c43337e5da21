"""Wake waiting workflows as soon as a reply is recorded."""

from __future__ import annotations

import threading
from typing import Dict, Optional


class ResponseNotifier:
    """Per-request change counter guarded by a condition variable.

    Only watched requests are tracked: :meth:`watch` starts tracking,
    :meth:`forget` stops it, and :meth:`notify` ignores anything else so
    replies that land after a wait ended leave no state behind.

    Waiters read :meth:`version` before inspecting the store and then call
    :meth:`wait` with that value, so a notification that lands between the
    read and the wait is never lost.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._versions: Dict[str, int] = {}

    def watch(self, request_id: str) -> None:
        with self._condition:
            self._versions.setdefault(request_id, 0)

    def is_watched(self, request_id: str) -> bool:
        with self._condition:
            return request_id in self._versions

    def version(self, request_id: str) -> int:
        with self._condition:
            return self._versions.get(request_id, 0)

    def notify(self, request_id: str) -> None:
        with self._condition:
            if request_id not in self._versions:
                return
            self._versions[request_id] += 1
            self._condition.notify_all()

    def wait(self, request_id: str, since_version: int, timeout: Optional[float]) -> bool:
        """Block until ``request_id`` changes past ``since_version`` or ``timeout``.

        Returns ``True`` when woken by a change.
        """

        with self._condition:
            return self._condition.wait_for(
                lambda: self._versions.get(request_id, 0) != since_version,
                timeout=timeout,
            )

    def forget(self, request_id: str) -> None:
        with self._condition:
            self._versions.pop(request_id, None)
