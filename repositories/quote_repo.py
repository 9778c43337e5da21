"""Persistent store for quote requests and their per-supplier quote units."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from models.quote import LineItem, QuoteRequest, QuoteStatus, QuoteUnit, utc_now
from services.db import Database

logger = logging.getLogger(__name__)

_UNIT_COLUMNS = (
    "id, request_id, supplier_id, items, response, price, status, "
    "correlation_token, created_at, responded_at"
)

_DECISION_STATUSES = {QuoteStatus.ACCEPTED, QuoteStatus.REJECTED}


def _json_dump(items: Optional[Iterable[LineItem]]) -> str:
    return json.dumps([item.as_dict() for item in items or []], ensure_ascii=False)


def _json_load(value: Any) -> List[LineItem]:
    if not value:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    if not isinstance(value, list):
        return []
    return [LineItem.from_dict(entry) for entry in value if isinstance(entry, dict)]


def _normalise_dt(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    raise TypeError("expected datetime instance for timestamp fields")


def _coerce_dt(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return _normalise_dt(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return _normalise_dt(parsed)


class QuoteStore:
    """Durable record of quote requests and quote units.

    Every write is a single statement so it is atomic at the storage layer;
    no transaction spans dispatch, correlation and waiting.
    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._requests = database.table("quote_requests")
        self._units = database.table("quote_units")

    def _ts(self, conn, value: Optional[datetime]):
        value = _normalise_dt(value)
        if value is None:
            return None
        return value.isoformat() if isinstance(conn, sqlite3.Connection) else value

    # ------------------------------------------------------------------
    # Quote requests
    # ------------------------------------------------------------------
    def create_request(self, request: QuoteRequest) -> None:
        p = self._db.placeholder
        with self._db.connection() as conn:
            cur = conn.cursor()
            urgent = int(request.urgent) if isinstance(conn, sqlite3.Connection) else request.urgent
            cur.execute(
                f"INSERT INTO {self._requests} (id, description, items, urgent, timeout_seconds, created_at) "
                f"VALUES ({p}, {p}, {p}, {p}, {p}, {p})",
                (
                    request.id,
                    request.description,
                    _json_dump(request.items),
                    urgent,
                    float(request.timeout_seconds),
                    self._ts(conn, request.created_at),
                ),
            )
            cur.close()

    def get_request(self, request_id: str) -> Optional[QuoteRequest]:
        p = self._db.placeholder
        with self._db.connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"SELECT id, description, items, urgent, timeout_seconds, created_at "
                f"FROM {self._requests} WHERE id = {p}",
                (request_id,),
            )
            row = cur.fetchone()
            cur.close()
        if row is None:
            return None
        return QuoteRequest(
            id=row[0],
            description=row[1],
            items=_json_load(row[2]),
            urgent=bool(row[3]),
            timeout_seconds=float(row[4]),
            created_at=_coerce_dt(row[5]),
        )

    # ------------------------------------------------------------------
    # Quote units
    # ------------------------------------------------------------------
    @staticmethod
    def _row_to_unit(row: Sequence[Any]) -> QuoteUnit:
        price = row[5]
        return QuoteUnit(
            id=row[0],
            request_id=row[1],
            supplier_id=row[2],
            items=_json_load(row[3]),
            response_text=row[4],
            price=float(price) if price is not None else None,
            status=QuoteStatus(row[6]),
            correlation_token=row[7],
            created_at=_coerce_dt(row[8]),
            responded_at=_coerce_dt(row[9]),
        )

    def _select_units(self, where: str, params: Sequence[Any], order: str = "created_at, id") -> List[QuoteUnit]:
        with self._db.connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"SELECT {_UNIT_COLUMNS} FROM {self._units} WHERE {where} ORDER BY {order}",
                tuple(params),
            )
            rows = cur.fetchall()
            cur.close()
        return [self._row_to_unit(row) for row in rows]

    def create_unit(self, unit: QuoteUnit) -> None:
        """Persist a new pending unit.

        The ``(request_id, supplier_id)`` pair is unique; a second insert for
        the same pair raises the driver's integrity error.
        """

        if unit.status != QuoteStatus.PENDING:
            raise ValueError("quote units are created in the pending state")
        p = self._db.placeholder
        with self._db.connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"INSERT INTO {self._units} (id, request_id, supplier_id, items, status, "
                f"correlation_token, created_at) VALUES ({p}, {p}, {p}, {p}, {p}, {p}, {p})",
                (
                    unit.id,
                    unit.request_id,
                    unit.supplier_id,
                    _json_dump(unit.items),
                    unit.status.value,
                    unit.correlation_token,
                    self._ts(conn, unit.created_at or utc_now()),
                ),
            )
            cur.close()

    def units_by_request(self, request_id: str) -> List[QuoteUnit]:
        return self._select_units(f"request_id = {self._db.placeholder}", (request_id,))

    def get_unit(self, unit_id: str) -> Optional[QuoteUnit]:
        units = self._select_units(f"id = {self._db.placeholder}", (unit_id,))
        return units[0] if units else None

    def pending_for_supplier(self, supplier_id: str) -> List[QuoteUnit]:
        """Return the supplier's pending units, most recently created first."""

        p = self._db.placeholder
        return self._select_units(
            f"supplier_id = {p} AND status = {p}",
            (supplier_id, QuoteStatus.PENDING.value),
            order="created_at DESC, id DESC",
        )

    def find_by_token(self, token: str) -> Optional[QuoteUnit]:
        if not token:
            return None
        units = self._select_units(
            f"UPPER(correlation_token) = {self._db.placeholder}", (token.strip().upper(),)
        )
        return units[0] if units else None

    def mark_received(
        self,
        unit_id: str,
        response_text: str,
        *,
        price: Optional[float] = None,
        responded_at: Optional[datetime] = None,
    ) -> bool:
        """Transition ``unit_id`` from pending to received.

        Returns ``True`` only for the call that performed the transition; a
        unit that is no longer pending is left untouched.
        """

        p = self._db.placeholder
        with self._db.connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE {self._units} SET status = {p}, response = {p}, price = {p}, responded_at = {p} "
                f"WHERE id = {p} AND status = {p}",
                (
                    QuoteStatus.RECEIVED.value,
                    response_text,
                    price,
                    self._ts(conn, responded_at or utc_now()),
                    unit_id,
                    QuoteStatus.PENDING.value,
                ),
            )
            updated = cur.rowcount
            cur.close()
        return updated == 1

    def update_status(self, unit_id: str, status: QuoteStatus) -> None:
        """Record the accept/reject decision on a received unit."""

        status = QuoteStatus(status)
        if status not in _DECISION_STATUSES:
            raise ValueError(f"Unsupported status transition to {status.value}")
        p = self._db.placeholder
        with self._db.connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE {self._units} SET status = {p} WHERE id = {p} AND status = {p}",
                (status.value, unit_id, QuoteStatus.RECEIVED.value),
            )
            updated = cur.rowcount
            cur.close()
        if not updated:
            logger.error("Quote unit %s is not awaiting a decision", unit_id)
            raise ValueError(f"Quote unit {unit_id} is not in the received state")

    def count_by_status(self, request_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {status.value: 0 for status in QuoteStatus}
        for unit in self.units_by_request(request_id):
            counts[unit.status.value] += 1
        return counts
