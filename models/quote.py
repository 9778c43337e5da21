"""Domain records for the supplier quote workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_quantity(value: Any) -> float:
    try:
        quantity = float(value)
    except (TypeError, ValueError):
        return 0.0
    if quantity != quantity or quantity < 0:  # NaN or negative
        return 0.0
    return quantity


@dataclass(frozen=True)
class LineItem:
    """One requested item; owned by its :class:`QuoteRequest`."""

    name: str
    quantity: float
    unit: str
    note: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", _coerce_quantity(self.quantity))

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "qty": self.quantity,
            "unit": self.unit,
        }
        if self.note:
            data["note"] = self.note
        return data

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "LineItem":
        note = payload.get("note")
        return cls(
            name=str(payload.get("name") or "").strip(),
            quantity=payload.get("qty", payload.get("quantity", 0)),
            unit=str(payload.get("unit") or "").strip(),
            note=str(note).strip() or None if note else None,
        )

    def describe(self) -> str:
        quantity = int(self.quantity) if self.quantity.is_integer() else self.quantity
        text = f"{quantity} {self.unit} {self.name}".replace("  ", " ").strip()
        return f"{text} ({self.note})" if self.note else text


@dataclass(frozen=True)
class QuoteRequest:
    """A single batch solicitation. Immutable once created."""

    id: str
    description: str
    items: List[LineItem]
    urgent: bool
    timeout_seconds: float
    created_at: datetime

    @property
    def item_names(self) -> List[str]:
        return [item.name for item in self.items]


@dataclass
class Supplier:
    """Directory entry for a party that can answer quote requests."""

    id: str
    name: str
    address: str
    locality: str = ""
    categories: List[str] = field(default_factory=list)
    rating: float = 0.0
    active: bool = True

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "categories": list(self.categories),
            "city": self.locality,
            "rating": self.rating,
        }


class QuoteStatus(str, Enum):
    PENDING = "pending"
    RECEIVED = "received"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class QuoteUnit:
    """Per-supplier correlation record for one outbound solicitation."""

    id: str
    request_id: str
    supplier_id: str
    items: List[LineItem]
    status: QuoteStatus = QuoteStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    response_text: Optional[str] = None
    price: Optional[float] = None
    responded_at: Optional[datetime] = None
    correlation_token: Optional[str] = None

    @property
    def is_received(self) -> bool:
        return self.status == QuoteStatus.RECEIVED

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "supplier_id": self.supplier_id,
            "items": [item.as_dict() for item in self.items],
            "status": self.status.value,
            "response": self.response_text,
            "price": self.price,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
        }


@dataclass(frozen=True)
class SupplierMatch:
    supplier: Supplier
    reason: str = ""


@dataclass(frozen=True)
class QuoteComparison:
    """Outcome of ranking the received quotes; recomputable, never authoritative."""

    recommendation: str
    best_supplier: str = ""
    total_price: float = 0.0
    table: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "recommendation": self.recommendation,
            "best_supplier": self.best_supplier,
            "total_price": self.total_price,
            "comparison_table": self.table,
        }


@dataclass
class PurchaseRecord:
    description: str
    items: List[str]
    chosen_supplier: str = ""
    total_price: float = 0.0
    id: Optional[str] = None
    created_at: Optional[datetime] = None


class QuoteRunStatus(str, Enum):
    COMPLETED = "completed"
    NO_SUPPLIERS = "no_suppliers"
    NO_RESPONSES = "no_responses"
    DRY_RUN = "dry_run"


@dataclass
class QuoteRun:
    """Result of one end-to-end quote workflow."""

    status: QuoteRunStatus
    request: QuoteRequest
    matches: List[SupplierMatch] = field(default_factory=list)
    units: List[QuoteUnit] = field(default_factory=list)
    comparison: Optional[QuoteComparison] = None

    @property
    def received(self) -> List[QuoteUnit]:
        return [unit for unit in self.units if unit.is_received]
