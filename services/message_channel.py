"""Chat message channels used to reach suppliers.

Two variants implement the same contract (``send`` / ``listen`` /
``close``): :class:`SimulatedChannel` records traffic in memory and
:class:`BridgeChannel` talks to an HTTP messaging bridge.  The variant is
chosen once by :func:`build_channel` and injected into the workflow; it is
never replaced on a live object.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import requests

from config.settings import ChannelMode

logger = logging.getLogger(__name__)

InboundHandler = Callable[[str, str], None]


class ChannelError(RuntimeError):
    """Base error for message channel failures."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChannelSendError(ChannelError):
    pass


class ChannelNotPairedError(ChannelError):
    pass


class ChannelClosedError(ChannelError):
    pass


@dataclass
class SendResult:
    """Outcome of a single outbound message."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class PairingState(str, Enum):
    UNPAIRED = "unpaired"
    PAIRED = "paired"
    CLOSED = "closed"


class MessageChannel:
    """Contract consumed by the dispatcher and the correlator."""

    def send(self, address: str, text: str) -> SendResult:
        raise NotImplementedError

    def listen(self, handler: InboundHandler) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    @property
    def is_ready(self) -> bool:
        raise NotImplementedError


class _HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: List[InboundHandler] = []
        self._lock = threading.RLock()

    def add(self, handler: InboundHandler) -> None:
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._lock:
            self._handlers.append(handler)

    def dispatch(self, address: str, text: str) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(address, text)
            except Exception:
                logger.exception("Inbound handler failed for message from %s", address)

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


# ----------------------------------------------------------------------
# Simulated variant
# ----------------------------------------------------------------------
class SimulatedChannel(MessageChannel):
    """In-memory channel that records sends without delivering them."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []
        self._failing: Set[str] = set()
        self._handlers = _HandlerRegistry()
        self._lock = threading.Lock()
        self._closed = False
        self._threads: List[threading.Thread] = []

    @property
    def is_ready(self) -> bool:
        return not self._closed

    def fail_on(self, address: str) -> None:
        """Make subsequent sends to ``address`` raise :class:`ChannelSendError`."""

        self._failing.add(address)

    def send(self, address: str, text: str) -> SendResult:
        if self._closed:
            raise ChannelClosedError("channel is closed")
        if address in self._failing:
            raise ChannelSendError(f"simulated delivery failure for {address}")
        with self._lock:
            self.sent.append((address, text))
        logger.info("[simulated] message to %s (%d chars)", address, len(text))
        return SendResult(success=True, message_id=f"sim-{uuid.uuid4().hex[:12]}")

    def listen(self, handler: InboundHandler) -> None:
        self._handlers.add(handler)

    def simulate_reply(self, address: str, text: str, *, background: bool = False) -> Optional[threading.Thread]:
        """Deliver an inbound message to every registered handler.

        With ``background=True`` delivery happens on a separate thread, the
        way a live channel invokes handlers.
        """

        if self._closed:
            raise ChannelClosedError("channel is closed")
        if not background:
            self._handlers.dispatch(address, text)
            return None
        thread = threading.Thread(
            target=self._handlers.dispatch,
            args=(address, text),
            name="simulated-inbound",
            daemon=True,
        )
        with self._lock:
            self._threads = [alive for alive in self._threads if alive.is_alive()]
            self._threads.append(thread)
        thread.start()
        return thread

    def sent_to(self, address: str) -> List[str]:
        with self._lock:
            return [text for to, text in self.sent if to == address]

    def close(self) -> None:
        self._closed = True
        with self._lock:
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join(timeout=1.0)
        self._handlers.clear()


# ----------------------------------------------------------------------
# Live variant
# ----------------------------------------------------------------------
class BridgeChannel(MessageChannel):
    """Client for an HTTP chat bridge (e.g. a WhatsApp multi-device gateway).

    The bridge owns the transport session.  This client starts ``UNPAIRED``;
    :meth:`pair` moves it to ``PAIRED`` once the bridge reports a connected
    session, and only then are ``send`` and ``listen`` allowed.  Inbound
    messages are pulled from ``/messages/inbound`` by a daemon thread.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: int = 30,
        poll_interval: float = 2.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        url = base_url if base_url.startswith("http") else f"http://{base_url}"
        self.base_url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._session = session or requests.Session()
        self._state = PairingState.UNPAIRED
        self._state_lock = threading.RLock()
        self._handlers = _HandlerRegistry()
        self._stop_event = threading.Event()
        self._poller: Optional[threading.Thread] = None
        self._cursor: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "BridgeChannel":
        return cls(
            base_url=settings.channel_base_url,
            api_key=settings.channel_api_key,
            timeout=settings.channel_timeout,
            poll_interval=settings.channel_inbound_poll_seconds,
        )

    @property
    def state(self) -> PairingState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == PairingState.PAIRED

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self._session.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            message = exc.response.text if exc.response is not None else str(exc)
            raise ChannelError(message, status_code=status_code) from exc
        except requests.RequestException as exc:
            raise ChannelError(str(exc)) from exc
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise ChannelError(f"bridge returned invalid JSON for {path}") from exc
        return payload if isinstance(payload, dict) else {}

    def _require_paired(self) -> None:
        if self._state == PairingState.CLOSED:
            raise ChannelClosedError("channel is closed")
        if self._state != PairingState.PAIRED:
            raise ChannelNotPairedError("channel is not paired; call pair() first")

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------
    def pair(
        self,
        *,
        wait_seconds: float = 120.0,
        on_pairing_code: Optional[Callable[[str], None]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> PairingState:
        """Bring the bridge session up and transition to ``PAIRED``.

        When the bridge asks for device linking it returns a pairing code
        (QR payload) which is handed to ``on_pairing_code``; the session status
        is then re-read until it connects or ``wait_seconds`` elapses.
        """

        with self._state_lock:
            if self._state == PairingState.CLOSED:
                raise ChannelClosedError("channel is closed")
            if self._state == PairingState.PAIRED:
                return self._state
            payload = self._request("POST", "/session/pair")
            waited = 0.0
            announced: Optional[str] = None
            sleep = sleep_fn or self._stop_event.wait
            while str(payload.get("status", "")).lower() != "connected":
                code = payload.get("pairing_code") or payload.get("qr")
                if code and code != announced and on_pairing_code is not None:
                    on_pairing_code(str(code))
                    announced = code
                if waited >= wait_seconds:
                    raise ChannelNotPairedError(
                        f"bridge session not connected after {wait_seconds:.0f}s"
                    )
                sleep(self.poll_interval)
                waited += self.poll_interval
                payload = self._request("GET", "/session/status")
            self._state = PairingState.PAIRED
        logger.info("Messaging bridge paired at %s", self.base_url)
        return self._state

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    def send(self, address: str, text: str) -> SendResult:
        self._require_paired()
        try:
            payload = self._request("POST", "/messages", json={"to": address, "text": text})
        except ChannelError as exc:
            raise ChannelSendError(f"send to {address} failed: {exc}", status_code=exc.status_code) from exc
        message_id = payload.get("id") or payload.get("message_id")
        return SendResult(success=True, message_id=str(message_id) if message_id else None)

    def listen(self, handler: InboundHandler) -> None:
        self._require_paired()
        self._handlers.add(handler)
        with self._state_lock:
            if self._poller is None:
                self._poller = threading.Thread(
                    target=self._poll_inbound, name="bridge-inbound", daemon=True
                )
                self._poller.start()

    def fetch_inbound(self) -> List[Dict[str, Any]]:
        """Pull one batch of inbound messages and advance the cursor."""

        params = {"after": self._cursor} if self._cursor else None
        payload = self._request("GET", "/messages/inbound", params=params)
        cursor = payload.get("cursor")
        if cursor:
            self._cursor = str(cursor)
        messages = payload.get("messages") or []
        return [msg for msg in messages if isinstance(msg, dict)]

    def _poll_inbound(self) -> None:
        while not self._stop_event.is_set():
            try:
                batch = self.fetch_inbound()
            except ChannelError:
                logger.exception("Failed to fetch inbound messages from bridge")
                batch = []
            for message in batch:
                sender = message.get("from") or message.get("sender")
                text = message.get("text") or message.get("body") or ""
                if sender:
                    self._handlers.dispatch(str(sender), str(text))
            self._stop_event.wait(self.poll_interval)

    def close(self) -> None:
        with self._state_lock:
            if self._state == PairingState.CLOSED:
                return
            self._state = PairingState.CLOSED
        self._stop_event.set()
        if self._poller is not None:
            self._poller.join(timeout=self.timeout)
        self._handlers.clear()
        self._session.close()
        logger.info("Messaging bridge channel closed")


def build_channel(settings) -> MessageChannel:
    """Resolve the configured channel variant."""

    mode = ChannelMode(settings.channel_mode)
    if mode == ChannelMode.LIVE:
        return BridgeChannel.from_settings(settings)
    return SimulatedChannel()
