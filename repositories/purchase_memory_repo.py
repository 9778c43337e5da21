"""History of completed purchases, used for recall and repeat orders."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from models.quote import PurchaseRecord, utc_now
from services.db import Database

logger = logging.getLogger(__name__)

EMPTY_HISTORY_MESSAGE = "No purchases recorded yet."


class PurchaseMemory:
    def __init__(self, database: Database) -> None:
        self._db = database
        self._table = database.table("purchase_memory")

    def save(self, record: PurchaseRecord) -> str:
        record.id = record.id or str(uuid.uuid4())
        record.created_at = record.created_at or utc_now()
        p = self._db.placeholder
        with self._db.connection() as conn:
            cur = conn.cursor()
            created = (
                record.created_at.isoformat()
                if isinstance(conn, sqlite3.Connection)
                else record.created_at
            )
            cur.execute(
                f"INSERT INTO {self._table} (id, description, items, chosen_supplier, total_price, created_at) "
                f"VALUES ({p}, {p}, {p}, {p}, {p}, {p})",
                (
                    record.id,
                    record.description,
                    json.dumps(list(record.items), ensure_ascii=False),
                    record.chosen_supplier,
                    float(record.total_price or 0.0),
                    created,
                ),
            )
            cur.close()
        return record.id

    def recent(self, limit: int) -> List[PurchaseRecord]:
        if limit <= 0:
            return []
        with self._db.connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"SELECT id, description, items, COALESCE(chosen_supplier, ''), COALESCE(total_price, 0), created_at "
                f"FROM {self._table} ORDER BY created_at DESC LIMIT {self._db.placeholder}",
                (int(limit),),
            )
            rows = cur.fetchall()
            cur.close()
        records: List[PurchaseRecord] = []
        for row in rows:
            items = row[2]
            if isinstance(items, str):
                try:
                    items = json.loads(items)
                except ValueError:
                    items = []
            created = row[5]
            if isinstance(created, str):
                created = datetime.fromisoformat(created)
            if isinstance(created, datetime) and created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            records.append(
                PurchaseRecord(
                    id=row[0],
                    description=row[1],
                    items=[str(item) for item in items or []],
                    chosen_supplier=row[3],
                    total_price=float(row[4]),
                    created_at=created,
                )
            )
        return records

    def last(self) -> Optional[PurchaseRecord]:
        records = self.recent(1)
        return records[0] if records else None

    def format(self, limit: int) -> str:
        """Render the most recent purchases as a short text summary."""

        records = self.recent(limit)
        if not records:
            return EMPTY_HISTORY_MESSAGE
        lines = [f"Last {len(records)} purchase(s):", ""]
        for index, record in enumerate(records, start=1):
            date = record.created_at.strftime("%d/%m/%Y") if record.created_at else "-"
            lines.append(f"{index}. {record.description}")
            lines.append(
                f"   Supplier: {record.chosen_supplier or '-'} | Total: {record.total_price:.2f} | Date: {date}"
            )
        return "\n".join(lines)
