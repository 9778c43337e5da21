"""Attribute inbound supplier replies to pending quote units."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from config.settings import CorrelationPolicy
from models.quote import QuoteStatus, QuoteUnit, Supplier, utc_now
from models.quote_analysis import parse_quoted_price
from repositories.quote_repo import QuoteStore
from repositories.supplier_repo import SupplierDirectory
from services.response_notifier import ResponseNotifier
from utils.quote_tracking import extract_correlation_token

logger = logging.getLogger(__name__)


class ResponseCorrelator:
    """Inbound handler registered on the message channel.

    Called from the channel's delivery thread, possibly concurrently.  Each
    reply moves at most one unit from pending to received through a
    conditional update, so the same unit is never counted twice.

    Policies:

    ``most_recent``
        the newest pending unit of the sender wins.  When a supplier has
        solicitations open on several requests, a reply meant for an older
        one is credited to the newest.
    ``token``
        the reply must echo the ``PWQ-`` reference of the solicitation it
        answers; replies without a usable reference are dropped.
    """

    def __init__(
        self,
        directory: SupplierDirectory,
        store: QuoteStore,
        *,
        policy: CorrelationPolicy = CorrelationPolicy.MOST_RECENT,
        notifier: Optional[ResponseNotifier] = None,
        clock: Callable[[], datetime] = utc_now,
        price_parser: Callable[[str], Optional[float]] = parse_quoted_price,
    ) -> None:
        self._directory = directory
        self._store = store
        self._policy = CorrelationPolicy(policy)
        self._notifier = notifier
        self._clock = clock
        self._price_parser = price_parser

    @property
    def policy(self) -> CorrelationPolicy:
        return self._policy

    def __call__(self, address: str, text: str) -> None:
        self.handle_incoming(address, text)

    def handle_incoming(self, address: str, text: str) -> Optional[QuoteUnit]:
        """Record ``text`` from ``address`` against a pending quote unit.

        Returns the updated unit, or ``None`` when the message was dropped.
        """

        try:
            supplier = self._directory.by_address(address)
            if supplier is None:
                logger.debug("Ignoring message from unknown sender %s", address)
                return None

            if self._policy == CorrelationPolicy.TOKEN:
                candidates = self._token_candidates(supplier, text)
            else:
                candidates = self._store.pending_for_supplier(supplier.id)
            if not candidates:
                logger.info(
                    "Reply from %s (%s) matched no pending quote; ignoring", supplier.name, address
                )
                return None

            price = self._price_parser(text)
            for unit in candidates:
                responded_at = self._clock()
                if self._store.mark_received(unit.id, text, price=price, responded_at=responded_at):
                    unit.status = QuoteStatus.RECEIVED
                    unit.response_text = text
                    unit.price = price
                    unit.responded_at = responded_at
                    logger.info(
                        "Recorded reply from %s for quote request %s", supplier.name, unit.request_id
                    )
                    if self._notifier is not None:
                        self._notifier.notify(unit.request_id)
                    return unit
            logger.info("Pending quote for %s was already answered; ignoring reply", supplier.name)
            return None
        except Exception:
            logger.exception("Failed to record reply from %s", address)
            return None

    def _token_candidates(self, supplier: Supplier, text: str) -> List[QuoteUnit]:
        token = extract_correlation_token(text)
        if not token:
            logger.info("Reply from %s carries no quote reference; ignoring", supplier.name)
            return []
        unit = self._store.find_by_token(token)
        if unit is None or unit.supplier_id != supplier.id:
            logger.info("Reference %s from %s does not match any of its quotes", token, supplier.name)
            return []
        if unit.status != QuoteStatus.PENDING:
            return []
        return [unit]
