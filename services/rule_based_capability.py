"""Deterministic capability variant that works without a language model.

Handlers are keyed by result schema name and read the structured
``CapabilityRequest.payload``.  It is the default for local runs and the
simulated channel, and it keeps the workflow usable when no LM Studio server
is reachable.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from models.quote import LineItem
from models.quote_analysis import parse_lead_time_days, parse_quoted_price
from services.llm_capability import CapabilityRequest, LanguageCapability
from services.quote_message_templates import build_quote_message

logger = logging.getLogger(__name__)

_UNITS = (
    r"kg|kgs|g|mg|t|ton|l|lt|litros?|liters?|litres?|ml|m2|m²|m3|m³|m|cm|"
    r"un|unid|unidades?|units?|pcs|p[çc]s|pe[çc]as?|sacos?|bags?|caixas?|boxes?|cx|"
    r"pacotes?|packs?|fardos?|rolos?|rolls?|dz|d[uú]zias?|dozens?|gal[õo]es|gallons?"
)

_ITEM_PATTERN = re.compile(
    r"^(?P<qty>\d+(?:[.,]\d+)?)\s*(?P<unit>(?:%s)\b)?\.?\s*(?:de|of|do|da)?\s+(?P<name>.+)$" % _UNITS,
    re.IGNORECASE,
)

_SPLIT_PATTERN = re.compile(r"\s*(?:,|;|\n|\s+e\s+|\s+and\s+|\s+\+\s+)\s*", re.IGNORECASE)

_LEADING_NOISE = re.compile(
    r"^(?:(?:preciso\s+de|preciso|quero|comprar|cotar|cota[çc][aã]o\s+de|i\s+need|need|buy|"
    r"please\s+quote|quote)\b|para\s+[^:]+:)\s*",
    re.IGNORECASE,
)

_STOPWORDS = {"de", "da", "do", "of", "the", "para", "com", "and", "e", "a", "o"}


def _fold(text: str) -> str:
    normalised = unicodedata.normalize("NFKD", text or "")
    return "".join(ch for ch in normalised if not unicodedata.combining(ch)).lower()


def _tokens(text: str) -> List[str]:
    return [tok for tok in re.findall(r"[a-z0-9]+", _fold(text)) if tok not in _STOPWORDS]


def _stem(token: str) -> str:
    return token[:-1] if len(token) > 3 and token.endswith("s") else token


class RuleBasedCapability(LanguageCapability):
    """Offline implementation of the four quote workflow schemas."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "parse_purchase_request": self._parse_purchase_request,
            "match_suppliers": self._match_suppliers,
            "compose_quote_message": self._compose_quote_message,
            "compare_quotes": self._compare_quotes,
        }

    def complete(self, request: CapabilityRequest) -> Dict[str, Any]:
        if request.schema is None:
            return {}
        handler = self._handlers.get(request.schema.name)
        if handler is None:
            logger.debug("No rule-based handler for schema %s", request.schema.name)
            return {}
        return handler(dict(request.payload or {}))

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    @staticmethod
    def parse_items(description: str) -> List[LineItem]:
        items: List[LineItem] = []
        text = _LEADING_NOISE.sub("", (description or "").strip())
        for chunk in _SPLIT_PATTERN.split(text):
            chunk = _LEADING_NOISE.sub("", chunk.strip()).strip(" .")
            if not chunk:
                continue
            match = _ITEM_PATTERN.match(chunk)
            if match:
                quantity = float(match.group("qty").replace(",", "."))
                unit = (match.group("unit") or "unit").lower()
                name = match.group("name").strip()
            else:
                quantity, unit, name = 1.0, "unit", chunk
            note: Optional[str] = None
            if "(" in name and name.endswith(")"):
                name, _, note = name[:-1].partition("(")
                name, note = name.strip(), note.strip() or None
            items.append(LineItem(name=name, quantity=quantity, unit=unit, note=note))
        return items

    def _parse_purchase_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        items = self.parse_items(str(payload.get("description") or ""))
        return {"items": [item.as_dict() for item in items]}

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------
    def _match_suppliers(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        item_tokens = {
            name: {_stem(tok) for tok in _tokens(name)} for name in payload.get("items") or []
        }
        city = _fold(str(payload.get("city") or ""))
        local: List[Dict[str, str]] = []
        remote: List[Dict[str, str]] = []
        for supplier in payload.get("suppliers") or []:
            categories = [str(cat) for cat in supplier.get("categories") or []]
            category_tokens = {_stem(tok) for cat in categories for tok in _tokens(cat)}
            covered = [name for name, toks in item_tokens.items() if toks & category_tokens]
            if not covered:
                continue
            match = {
                "supplier_id": str(supplier.get("id")),
                "reason": f"{', '.join(categories)} covers {', '.join(covered)}",
            }
            if city and _fold(str(supplier.get("city") or "")) == city:
                local.append(match)
            else:
                remote.append(match)
        return {"matches": local + remote}

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------
    def _compose_quote_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        items = [LineItem.from_dict(entry) for entry in payload.get("items") or []]
        return {"message": build_quote_message(str(payload.get("supplier_name") or ""), items)}

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------
    @staticmethod
    def build_comparison_frame(quotes: List[Dict[str, Any]]) -> pd.DataFrame:
        rows = []
        for quote in quotes:
            response = str(quote.get("response") or "")
            price = quote.get("price")
            if price is None:
                price = parse_quoted_price(response)
            rows.append(
                {
                    "supplier": str(quote.get("supplier_name") or quote.get("supplier_id") or ""),
                    "price": price,
                    "lead_time_days": parse_lead_time_days(response),
                    "response": response.replace("\n", " ")[:60],
                }
            )
        frame = pd.DataFrame(rows, columns=["supplier", "price", "lead_time_days", "response"])
        frame["price"] = pd.to_numeric(frame["price"], errors="coerce")
        frame["lead_time_days"] = pd.to_numeric(frame["lead_time_days"], errors="coerce")
        return frame.sort_values(
            ["price", "lead_time_days"], na_position="last", kind="mergesort"
        ).reset_index(drop=True)

    def _compare_quotes(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        frame = self.build_comparison_frame(list(payload.get("quotes") or []))
        if frame.empty:
            return {}
        table = frame.astype(object).where(frame.notna(), "-").to_string(index=False)
        priced = frame.dropna(subset=["price"])
        if priced.empty:
            return {
                "recommendation": "Replies received but no price could be read; review them manually.",
                "best_supplier": "",
                "total_price": 0.0,
                "comparison_table": table,
            }
        best = priced.iloc[0]
        recommendation = f"{best['supplier']} offers the lowest price ({best['price']:.2f})"
        if len(priced) > 1:
            runner_up = priced.iloc[1]
            recommendation += f", {runner_up['price'] - best['price']:.2f} below {runner_up['supplier']}"
        return {
            "recommendation": recommendation + ".",
            "best_supplier": str(best["supplier"]),
            "total_price": float(best["price"]),
            "comparison_table": table,
        }
