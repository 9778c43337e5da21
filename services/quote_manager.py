"""Parse purchase requests, dispatch solicitations and rank received quotes."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from config.settings import CorrelationPolicy
from models.quote import (
    LineItem,
    QuoteComparison,
    QuoteRequest,
    QuoteUnit,
    Supplier,
    utc_now,
)
from repositories.quote_repo import QuoteStore
from services.llm_capability import (
    COMPARE_QUOTES,
    COMPOSE_QUOTE_MESSAGE,
    PARSE_PURCHASE_REQUEST,
    CapabilityError,
    CapabilityRequest,
    LanguageCapability,
)
from services.message_channel import ChannelError, MessageChannel
from services.quote_message_templates import NO_QUOTES_RECEIVED, build_quote_message
from utils.quote_tracking import embed_correlation_token, generate_correlation_token

logger = logging.getLogger(__name__)


class QuoteParseError(RuntimeError):
    """Raised when the purchase description cannot be analysed."""


class QuoteComparisonError(RuntimeError):
    """Raised when the ranking capability fails."""


class QuoteDispatchError(RuntimeError):
    """Raised when composing, sending or recording a solicitation fails.

    ``dispatched`` holds the units created for earlier suppliers; they stay in
    the store.
    """

    def __init__(self, message: str, *, supplier_id: str, dispatched: Sequence[QuoteUnit]) -> None:
        super().__init__(message)
        self.supplier_id = supplier_id
        self.dispatched = list(dispatched)


def _as_text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_float(value) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number == number else 0.0


class QuoteManager:
    """Language-capability backed steps of the quote workflow.

    ``send_quotes`` aborts on the first failure: suppliers after the failing
    one are not contacted and nothing already persisted is rolled back.
    """

    def __init__(
        self,
        capability: LanguageCapability,
        channel: MessageChannel,
        store: QuoteStore,
        *,
        correlation_policy: CorrelationPolicy = CorrelationPolicy.MOST_RECENT,
        token_factory: Callable[[], str] = generate_correlation_token,
    ) -> None:
        self._capability = capability
        self._channel = channel
        self._store = store
        self._policy = CorrelationPolicy(correlation_policy)
        self._token_factory = token_factory

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    def parse_request(self, description: str, *, urgent: bool, timeout: timedelta) -> QuoteRequest:
        request = CapabilityRequest(
            system="You are a purchasing assistant. Read purchase requests and extract items with precise quantities.",
            prompt=f"Analyse this purchase request and extract the items: {json.dumps(description, ensure_ascii=False)}",
            schema=PARSE_PURCHASE_REQUEST,
            payload={"description": description},
        )
        try:
            result = self._capability.complete(request)
        except CapabilityError as exc:
            raise QuoteParseError(f"parse request: {exc}") from exc

        items: List[LineItem] = []
        for entry in result.get("items") or []:
            if not isinstance(entry, dict):
                continue
            item = LineItem.from_dict(entry)
            if item.name:
                items.append(item)

        return QuoteRequest(
            id=str(uuid.uuid4()),
            description=description,
            items=items,
            urgent=urgent,
            timeout_seconds=timeout.total_seconds(),
            created_at=utc_now(),
        )

    # ------------------------------------------------------------------
    # Outbound dispatch
    # ------------------------------------------------------------------
    def compose_message(self, request: QuoteRequest, supplier: Supplier) -> str:
        items = [item.as_dict() for item in request.items]
        prompt = (
            f"Write a friendly, professional chat message to the supplier "
            f"{json.dumps(supplier.name, ensure_ascii=False)} asking for a quote on these items:\n"
            f"{json.dumps(items, ensure_ascii=False)}\n"
            "The message must be clear, list the items and quantities, and ask for the unit "
            "price and delivery time."
        )
        result = self._capability.complete(
            CapabilityRequest(
                system="You write chat messages requesting price quotes from local suppliers. Be direct and professional.",
                prompt=prompt,
                schema=COMPOSE_QUOTE_MESSAGE,
                payload={"supplier_name": supplier.name, "items": items},
            )
        )
        message = _as_text(result.get("message"))
        if not message:
            logger.warning("Composed message for %s was empty; using template", supplier.name)
            message = build_quote_message(supplier.name, request.items)
        return message

    def send_quotes(self, request: QuoteRequest, suppliers: Sequence[Supplier]) -> List[QuoteUnit]:
        """Send one solicitation per supplier, in order, recording a pending unit each."""

        dispatched: List[QuoteUnit] = []
        for supplier in suppliers:
            try:
                message = self.compose_message(request, supplier)
            except CapabilityError as exc:
                raise QuoteDispatchError(
                    f"compose message for {supplier.name}: {exc}",
                    supplier_id=supplier.id,
                    dispatched=dispatched,
                ) from exc

            token: Optional[str] = None
            if self._policy == CorrelationPolicy.TOKEN:
                token = self._token_factory()
                message = embed_correlation_token(message, token)

            try:
                result = self._channel.send(supplier.address, message)
            except ChannelError as exc:
                raise QuoteDispatchError(
                    f"send to {supplier.name}: {exc}",
                    supplier_id=supplier.id,
                    dispatched=dispatched,
                ) from exc
            if not result.success:
                raise QuoteDispatchError(
                    f"send to {supplier.name}: {result.error or 'delivery refused'}",
                    supplier_id=supplier.id,
                    dispatched=dispatched,
                )

            unit = QuoteUnit(
                id=str(uuid.uuid4()),
                request_id=request.id,
                supplier_id=supplier.id,
                items=list(request.items),
                created_at=utc_now(),
                correlation_token=token,
            )
            try:
                self._store.create_unit(unit)
            except Exception as exc:
                logger.exception("Failed to record quote unit for %s", supplier.name)
                raise QuoteDispatchError(
                    f"save quote for {supplier.name}: {exc}",
                    supplier_id=supplier.id,
                    dispatched=dispatched,
                ) from exc
            dispatched.append(unit)
            logger.info(
                "Quote request %s sent to %s (%s)", request.id, supplier.name, supplier.address
            )
        return dispatched

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------
    def compare_quotes(
        self,
        request: QuoteRequest,
        received: Sequence[QuoteUnit],
        suppliers: Mapping[str, Supplier],
    ) -> QuoteComparison:
        """Rank the received quotes.

        With nothing received the capability is not consulted.  A malformed or
        empty answer still yields a :class:`QuoteComparison` with blank fields.
        """

        if not received:
            return QuoteComparison(recommendation=NO_QUOTES_RECEIVED)

        quotes: List[Dict[str, object]] = []
        for unit in received:
            supplier = suppliers.get(unit.supplier_id)
            quotes.append(
                {
                    "supplier_id": unit.supplier_id,
                    "supplier_name": supplier.name if supplier else unit.supplier_id,
                    "items": [item.as_dict() for item in unit.items],
                    "response": unit.response_text,
                    "price": unit.price,
                    "responded_at": unit.responded_at.isoformat() if unit.responded_at else None,
                }
            )

        prompt = (
            f"Analyse the quotes received for: {json.dumps(request.description, ensure_ascii=False)}\n\n"
            f"Quotes:\n{json.dumps(quotes, ensure_ascii=False)}\n\n"
            "Recommend the best option considering price, delivery time and quality."
        )
        try:
            result = self._capability.complete(
                CapabilityRequest(
                    system="You are a purchasing expert. Analyse quotes and recommend the best value option.",
                    prompt=prompt,
                    schema=COMPARE_QUOTES,
                    payload={"description": request.description, "quotes": quotes},
                )
            )
        except CapabilityError as exc:
            raise QuoteComparisonError(f"compare quotes: {exc}") from exc

        if not isinstance(result, dict):
            result = {}
        comparison = QuoteComparison(
            recommendation=_as_text(result.get("recommendation")),
            best_supplier=_as_text(result.get("best_supplier")),
            total_price=_as_float(result.get("total_price")),
            table=_as_text(result.get("comparison_table")),
        )
        if not comparison.recommendation:
            logger.warning("Ranking for request %s returned no recommendation", request.id)
        return comparison
