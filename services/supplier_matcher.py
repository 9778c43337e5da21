"""Select which suppliers receive a quote request."""

from __future__ import annotations

import json
import logging
from typing import Dict, List, Sequence, Set

from models.quote import Supplier, SupplierMatch
from repositories.supplier_repo import SupplierDirectory
from services.llm_capability import (
    MATCH_SUPPLIERS,
    CapabilityError,
    CapabilityRequest,
    LanguageCapability,
)

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = "You are a local purchasing specialist."


class SupplierMatchError(RuntimeError):
    """Raised when the matching capability fails."""


class SupplierMatcher:
    """Ask the language capability which active suppliers fit the items.

    The answer is filtered against the directory: ids that are unknown or
    repeated are dropped silently and the first-seen order is preserved.
    """

    def __init__(self, capability: LanguageCapability, directory: SupplierDirectory) -> None:
        self._capability = capability
        self._directory = directory

    @staticmethod
    def _prompt(items: Sequence[str], suppliers: Sequence[Supplier], city: str) -> str:
        return (
            "Given the items to buy and the available suppliers, select which suppliers "
            "should receive a quote request.\n\n"
            f"Items: {json.dumps(list(items), ensure_ascii=False)}\n\n"
            f"Available suppliers: {json.dumps([s.summary() for s in suppliers], ensure_ascii=False)}\n\n"
            f"Target city: {city}\n\n"
            "Prefer suppliers in the same city. Select every supplier able to provide "
            "at least one item."
        )

    def match(self, items: Sequence[str], city: str) -> List[SupplierMatch]:
        suppliers = self._directory.list_active()
        if not suppliers or not items:
            return []

        request = CapabilityRequest(
            system=_SYSTEM_PROMPT,
            prompt=self._prompt(items, suppliers, city),
            schema=MATCH_SUPPLIERS,
            payload={
                "items": list(items),
                "suppliers": [s.summary() for s in suppliers],
                "city": city,
            },
        )
        try:
            result = self._capability.complete(request)
        except CapabilityError as exc:
            raise SupplierMatchError(f"supplier matching failed: {exc}") from exc

        return self.resolve_matches(result.get("matches"), suppliers)

    @staticmethod
    def resolve_matches(raw_matches, suppliers: Sequence[Supplier]) -> List[SupplierMatch]:
        """Map capability output onto known suppliers, keeping first-seen order."""

        index: Dict[str, Supplier] = {supplier.id: supplier for supplier in suppliers}
        seen: Set[str] = set()
        results: List[SupplierMatch] = []
        if not isinstance(raw_matches, list):
            return results
        for entry in raw_matches:
            if not isinstance(entry, dict):
                continue
            supplier_id = str(entry.get("supplier_id") or "").strip()
            if not supplier_id or supplier_id in seen:
                continue
            supplier = index.get(supplier_id)
            if supplier is None:
                logger.debug("Ignoring unknown supplier id %s from matcher", supplier_id)
                continue
            seen.add(supplier_id)
            results.append(SupplierMatch(supplier=supplier, reason=str(entry.get("reason") or "")))
        return results
