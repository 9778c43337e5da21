"""Fixed text templates for quote solicitations and outcomes."""

from __future__ import annotations

from typing import Iterable

from models.quote import LineItem

NO_QUOTES_RECEIVED = "No quotes received."
NO_SUPPLIERS_FOUND = "No suppliers found for the requested items."


def format_item_line(item: LineItem) -> str:
    quantity = int(item.quantity) if float(item.quantity).is_integer() else item.quantity
    line = f"- {item.name}: {quantity} {item.unit}".rstrip()
    if item.note:
        line += f" ({item.note})"
    return line


def build_quote_message(supplier_name: str, items: Iterable[LineItem]) -> str:
    """Plain solicitation used when no composed message is available."""

    lines = [f"Hello {supplier_name}! I need a quote for the following items:"]
    lines.extend(format_item_line(item) for item in items)
    lines.append("")
    lines.append("Please send the unit price and delivery time. Thank you!")
    return "\n".join(lines)
