"""Buyer agent: request quotes from local suppliers and pick the best offer."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from config.logging_config import configure_logging
from config.settings import CapabilityMode, Settings, WaitMode, load_settings
from models.quote import (
    PurchaseRecord,
    QuoteComparison,
    QuoteRun,
    QuoteRunStatus,
    Supplier,
)
from repositories.purchase_memory_repo import PurchaseMemory
from repositories.quote_repo import QuoteStore
from repositories.supplier_repo import SupplierDirectory
from services.db import Database
from services.llm_capability import LanguageCapability, LMStudioCapability
from services.message_channel import BridgeChannel, MessageChannel, build_channel
from services.quote_manager import QuoteManager
from services.quote_message_templates import NO_QUOTES_RECEIVED, NO_SUPPLIERS_FOUND
from services.response_correlator import ResponseCorrelator
from services.response_notifier import ResponseNotifier
from services.rule_based_capability import RuleBasedCapability
from services.supplier_matcher import SupplierMatcher
from services.wait_scheduler import QuoteWaitScheduler
from utils.quote_tracking import generate_correlation_token

logger = logging.getLogger(__name__)


class BuyerAgent:
    """Run the quote workflow: parse, match, dispatch, wait, decide, remember.

    One agent serves any number of concurrent ``quote`` calls; each call owns
    its request and units.  The channel is fixed at construction and the
    correlator is registered on it once.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        directory: SupplierDirectory,
        store: QuoteStore,
        memory: PurchaseMemory,
        capability: LanguageCapability,
        channel: MessageChannel,
        notifier: Optional[ResponseNotifier] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        token_factory: Callable[[], str] = generate_correlation_token,
    ) -> None:
        self.settings = settings
        self.directory = directory
        self.store = store
        self.memory = memory
        self._capability = capability
        self._channel = channel
        if notifier is None and settings.wait_mode == WaitMode.NOTIFY:
            notifier = ResponseNotifier()

        self.correlator = ResponseCorrelator(
            directory,
            store,
            policy=settings.correlation_policy,
            notifier=notifier,
        )
        self.matcher = SupplierMatcher(capability, directory)
        self.quote_manager = QuoteManager(
            capability,
            channel,
            store,
            correlation_policy=settings.correlation_policy,
            token_factory=token_factory,
        )
        self.scheduler = QuoteWaitScheduler(
            store,
            poll_interval=settings.poll_interval_seconds,
            sleep_fn=sleep_fn,
            clock=clock,
            notifier=notifier,
        )
        channel.listen(self.correlator.handle_incoming)

    @property
    def channel(self) -> MessageChannel:
        return self._channel

    # ------------------------------------------------------------------
    # Quote workflow
    # ------------------------------------------------------------------
    def quote(
        self,
        description: str,
        *,
        urgent: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> QuoteRun:
        if not description or not description.strip():
            raise ValueError("description is required")

        timeout = self.settings.timeout_for(urgent)
        logger.info("Analysing purchase request: %r", description)
        request = self.quote_manager.parse_request(description, urgent=urgent, timeout=timeout)
        self.store.create_request(request)
        for item in request.items:
            logger.info("Item identified: %s", item.describe())

        matches = self.matcher.match(request.item_names, self.settings.city)
        if not matches:
            logger.info("No suppliers found for request %s", request.id)
            return QuoteRun(
                status=QuoteRunStatus.NO_SUPPLIERS,
                request=request,
                comparison=QuoteComparison(recommendation=NO_SUPPLIERS_FOUND),
            )
        for match in matches:
            logger.info(
                "Requesting quote from %s (%s): %s",
                match.supplier.name,
                match.supplier.locality,
                match.reason,
            )

        suppliers = [match.supplier for match in matches]
        units = self.quote_manager.send_quotes(request, suppliers)

        if self.settings.dry_run:
            logger.info(
                "[dry-run] would wait %.0f minutes for %d replies",
                timeout.total_seconds() / 60,
                len(units),
            )
            return QuoteRun(status=QuoteRunStatus.DRY_RUN, request=request, matches=matches, units=units)

        logger.info("Waiting for replies (timeout %.0f min)", timeout.total_seconds() / 60)
        wait = self.scheduler.await_responses(
            request.id,
            len(units),
            timeout.total_seconds(),
            cancel_event=cancel_event,
        )

        received = wait.received
        if not received:
            logger.info("No replies received for request %s", request.id)
            return QuoteRun(
                status=QuoteRunStatus.NO_RESPONSES,
                request=request,
                matches=matches,
                units=wait.units,
                comparison=QuoteComparison(recommendation=NO_QUOTES_RECEIVED),
            )

        supplier_index: Dict[str, Supplier] = {supplier.id: supplier for supplier in suppliers}
        comparison = self.quote_manager.compare_quotes(request, received, supplier_index)
        logger.info(
            "Recommendation: %s | best supplier: %s | total: %.2f",
            comparison.recommendation,
            comparison.best_supplier,
            comparison.total_price,
        )

        self.memory.save(
            PurchaseRecord(
                description=description,
                items=request.item_names,
                chosen_supplier=comparison.best_supplier,
                total_price=comparison.total_price,
            )
        )
        return QuoteRun(
            status=QuoteRunStatus.COMPLETED,
            request=request,
            matches=matches,
            units=wait.units,
            comparison=comparison,
        )

    # ------------------------------------------------------------------
    # Purchase memory
    # ------------------------------------------------------------------
    def history(self, limit: int = 5) -> str:
        return self.memory.format(limit)

    def repeat_last(self, *, urgent: bool = False) -> Optional[QuoteRun]:
        """Run a new quote for the most recent purchase description."""

        last = self.memory.last()
        if last is None:
            logger.info("No previous purchase to repeat")
            return None
        logger.info("Repeating purchase: %s", last.description)
        return self.quote(last.description, urgent=urgent)

    # ------------------------------------------------------------------
    # Supplier directory
    # ------------------------------------------------------------------
    def add_supplier(
        self,
        *,
        name: str,
        address: str,
        locality: str = "",
        categories: Optional[List[str]] = None,
        rating: float = 0.0,
    ) -> Supplier:
        supplier = Supplier(
            id="",
            name=name,
            address=address,
            locality=locality,
            categories=list(categories or []),
            rating=rating,
        )
        self.directory.add(supplier)
        return supplier

    def list_suppliers(self) -> List[Supplier]:
        return self.directory.list_active()

    def close(self) -> None:
        self._channel.close()
        self._capability.close()


def build_capability(settings: Settings) -> LanguageCapability:
    if CapabilityMode(settings.capability_mode) == CapabilityMode.LMSTUDIO:
        return LMStudioCapability.from_settings(settings)
    return RuleBasedCapability()


def build_agent(
    settings: Optional[Settings] = None,
    *,
    on_pairing_code: Optional[Callable[[str], None]] = None,
) -> BuyerAgent:
    """Assemble a :class:`BuyerAgent` from configuration.

    Storage is initialised first so a missing or unreachable database fails
    before anything is sent.  A live channel is paired here, before the
    correlator is registered on it.  Without explicit ``settings`` the
    environment is read once here.
    """

    if settings is None:
        settings = load_settings()
    configure_logging(settings.log_level)
    database = Database.from_settings(settings)
    database.init_schema()

    channel = build_channel(settings)
    if isinstance(channel, BridgeChannel):
        channel.pair(on_pairing_code=on_pairing_code)

    return BuyerAgent(
        settings,
        directory=SupplierDirectory(database),
        store=QuoteStore(database),
        memory=PurchaseMemory(database),
        capability=build_capability(settings),
        channel=channel,
    )
