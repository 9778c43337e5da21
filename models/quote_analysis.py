"""Heuristics for reading commercial signals out of free-text supplier replies.

Replies arrive as chat messages such as ``"Arroz 5kg sai a R$ 27,90, entrego
amanhã"`` or ``"Total $1,250.00, lead time 2 weeks"``.  The helpers here pull
out a best-effort price and lead time so quotes can be ranked without a
language model; anything they cannot read is left as ``None``.
"""

from __future__ import annotations

import re
from typing import Optional

_CURRENCY_AMOUNT = re.compile(
    r"(?:R\$|US\$|USD|BRL|EUR|GBP|[$€£])\s*(?P<amount>\d[\d.,]*)",
    re.IGNORECASE,
)

_KEYWORD_AMOUNT = re.compile(
    r"(?:total|pre[çc]o|price|valor|custo|cost)\s*(?:de|is|:|=|por|of)?\s*(?P<amount>\d[\d.,]*)",
    re.IGNORECASE,
)

_LEAD_TIME_PATTERN = re.compile(
    r"(?P<value>\d+(?:[.,]\d+)?)\s*(?P<unit>business\s+days?|days?|dias?|weeks?|semanas?)",
    re.IGNORECASE,
)


def _clean_amount(text: str) -> Optional[float]:
    """Convert ``1.234,56`` / ``1,234.56`` / ``27,90`` / ``300`` to a float."""

    text = text.strip().rstrip(".,")
    if not text:
        return None
    if "," in text and "." in text:
        decimal = "," if text.rfind(",") > text.rfind(".") else "."
        thousands = "." if decimal == "," else ","
        text = text.replace(thousands, "").replace(decimal, ".")
    elif "," in text or "." in text:
        sep = "," if "," in text else "."
        head, _, tail = text.rpartition(sep)
        if len(tail) == 3 and head.replace(sep, "").isdigit():
            text = text.replace(sep, "")
        else:
            text = head.replace(sep, "") + "." + tail
    try:
        return float(text)
    except ValueError:
        return None


def parse_quoted_price(text: Optional[str]) -> Optional[float]:
    """Return the first price quoted in ``text``.

    Currency-marked amounts win over keyword-marked ones so that quantities
    (``"10 kg"``) are never mistaken for prices.
    """

    if not text:
        return None
    for pattern in (_CURRENCY_AMOUNT, _KEYWORD_AMOUNT):
        match = pattern.search(text)
        if match:
            amount = _clean_amount(match.group("amount"))
            if amount is not None:
                return amount
    return None


def parse_lead_time_days(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    match = _LEAD_TIME_PATTERN.search(text)
    if not match:
        return None
    value = float(match.group("value").replace(",", "."))
    unit = match.group("unit").lower()
    if unit.startswith(("week", "semana")):
        value *= 7
    return int(round(value))
