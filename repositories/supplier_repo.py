"""Supplier directory backed by the quote store database."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence

from models.quote import Supplier
from services.db import Database

logger = logging.getLogger(__name__)

_ADDRESS_NOISE = re.compile(r"[\s()+\-.]")

_COLUMNS = "id, name, address, locality, categories, rating, active"


def normalise_address(address: Optional[str]) -> str:
    """Reduce a messaging address to its comparable form.

    ``"+55 (67) 99999-0000@s.whatsapp.net"`` and ``"556799990000"`` both
    normalise to ``"556799990000"``.
    """

    if not address:
        return ""
    text = str(address).strip()
    if "@" in text:
        text = text.split("@", 1)[0]
    if ":" in text:
        # device suffix on multi-device JIDs, e.g. 5567...:12
        text = text.split(":", 1)[0]
    return _ADDRESS_NOISE.sub("", text).lower()


def _json_dump(value: Optional[Iterable[str]]) -> str:
    if not value:
        return "[]"
    return json.dumps([str(item) for item in value if item is not None])


def _json_load(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(item) for item in value]
    try:
        loaded = json.loads(value)
    except (TypeError, ValueError):
        return []
    if not isinstance(loaded, list):
        return []
    return [str(item) for item in loaded if item is not None]


class SupplierDirectory:
    """Read/write access to the ``suppliers`` table.

    Suppliers are never deleted; :meth:`deactivate` hides them from matching.
    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._table = database.table("suppliers")

    @staticmethod
    def _row_to_supplier(row: Sequence[Any]) -> Supplier:
        return Supplier(
            id=row[0],
            name=row[1],
            address=row[2],
            locality=row[3] or "",
            categories=_json_load(row[4]),
            rating=float(row[5] or 0.0),
            active=bool(row[6]),
        )

    def _query(self, where: str = "", params: Sequence[Any] = (), order: str = "") -> List[Supplier]:
        sql = f"SELECT {_COLUMNS} FROM {self._table}"
        if where:
            sql += f" WHERE {where}"
        if order:
            sql += f" ORDER BY {order}"
        with self._db.connection() as conn:
            cur = conn.cursor()
            cur.execute(sql, tuple(params))
            rows = cur.fetchall()
            cur.close()
        return [self._row_to_supplier(row) for row in rows]

    def add(self, supplier: Supplier) -> str:
        """Insert ``supplier`` and return its id (generated when blank)."""

        if not supplier.name or not supplier.address:
            raise ValueError("supplier name and address are required")
        supplier_id = supplier.id or str(uuid.uuid4())
        address = normalise_address(supplier.address)
        categories = [str(cat).strip().lower() for cat in supplier.categories if str(cat).strip()]
        p = self._db.placeholder
        with self._db.connection() as conn:
            cur = conn.cursor()
            active = int(bool(supplier.active)) if isinstance(conn, sqlite3.Connection) else bool(supplier.active)
            cur.execute(
                f"INSERT INTO {self._table} (id, name, address, locality, categories, rating, active) "
                f"VALUES ({p}, {p}, {p}, {p}, {p}, {p}, {p})",
                (
                    supplier_id,
                    supplier.name.strip(),
                    address,
                    supplier.locality or "",
                    _json_dump(categories),
                    float(supplier.rating or 0.0),
                    active,
                ),
            )
            cur.close()
        supplier.id = supplier_id
        supplier.address = address
        supplier.categories = categories
        logger.info("Registered supplier %s (%s)", supplier.name, supplier_id)
        return supplier_id

    def list_active(self) -> List[Supplier]:
        return [sup for sup in self._query(order="name") if sup.active]

    def by_category(self, category: str) -> List[Supplier]:
        wanted = str(category or "").strip().lower()
        if not wanted:
            return []
        return [sup for sup in self.list_active() if wanted in sup.categories]

    def get(self, supplier_id: str) -> Optional[Supplier]:
        rows = self._query(f"id = {self._db.placeholder}", (supplier_id,))
        return rows[0] if rows else None

    def by_address(self, address: str) -> Optional[Supplier]:
        """Resolve an inbound sender address; inactive suppliers still resolve."""

        normalised = normalise_address(address)
        if not normalised:
            return None
        rows = self._query(f"address = {self._db.placeholder}", (normalised,), order="active DESC, name")
        return rows[0] if rows else None

    def _update(self, supplier_id: str, column: str, value: Any) -> None:
        p = self._db.placeholder
        with self._db.connection() as conn:
            cur = conn.cursor()
            cur.execute(f"UPDATE {self._table} SET {column} = {p} WHERE id = {p}", (value, supplier_id))
            updated = cur.rowcount
            cur.close()
        if not updated:
            logger.error("Supplier %s not found", supplier_id)
            raise ValueError(f"Unknown supplier: {supplier_id}")

    def update_rating(self, supplier_id: str, rating: float) -> None:
        self._update(supplier_id, "rating", float(rating))

    def deactivate(self, supplier_id: str) -> None:
        self._update(supplier_id, "active", False if not self._db.is_sqlite else 0)
