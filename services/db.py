"""Connection management and schema bootstrap for the quote store."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class DatabaseConfigurationError(RuntimeError):
    """Raised when no usable database backend can be resolved."""


DDL_PG = """
CREATE SCHEMA IF NOT EXISTS proc;

CREATE TABLE IF NOT EXISTS proc.suppliers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    address TEXT NOT NULL,
    locality TEXT DEFAULT '',
    categories JSONB DEFAULT '[]'::jsonb,
    rating DOUBLE PRECISION DEFAULT 0,
    active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_suppliers_address ON proc.suppliers (address);

CREATE TABLE IF NOT EXISTS proc.quote_requests (
    id TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    items JSONB DEFAULT '[]'::jsonb,
    urgent BOOLEAN DEFAULT FALSE,
    timeout_seconds DOUBLE PRECISION NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS proc.quote_units (
    id TEXT PRIMARY KEY,
    request_id TEXT NOT NULL REFERENCES proc.quote_requests (id),
    supplier_id TEXT NOT NULL REFERENCES proc.suppliers (id),
    items JSONB DEFAULT '[]'::jsonb,
    response TEXT,
    price DOUBLE PRECISION,
    status TEXT NOT NULL DEFAULT 'pending',
    correlation_token TEXT,
    created_at TIMESTAMPTZ NOT NULL,
    responded_at TIMESTAMPTZ,
    UNIQUE (request_id, supplier_id)
);

CREATE INDEX IF NOT EXISTS idx_quote_units_supplier_status
ON proc.quote_units (supplier_id, status);

CREATE UNIQUE INDEX IF NOT EXISTS idx_quote_units_token
ON proc.quote_units (correlation_token);

CREATE TABLE IF NOT EXISTS proc.purchase_memory (
    id TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    items JSONB DEFAULT '[]'::jsonb,
    chosen_supplier TEXT,
    total_price DOUBLE PRECISION,
    created_at TIMESTAMPTZ NOT NULL
);
"""

DDL_SQLITE = """
CREATE TABLE IF NOT EXISTS suppliers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    address TEXT NOT NULL,
    locality TEXT DEFAULT '',
    categories TEXT DEFAULT '[]',
    rating REAL DEFAULT 0,
    active INTEGER DEFAULT 1,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_suppliers_address ON suppliers (address);

CREATE TABLE IF NOT EXISTS quote_requests (
    id TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    items TEXT DEFAULT '[]',
    urgent INTEGER DEFAULT 0,
    timeout_seconds REAL NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quote_units (
    id TEXT PRIMARY KEY,
    request_id TEXT NOT NULL REFERENCES quote_requests (id),
    supplier_id TEXT NOT NULL REFERENCES suppliers (id),
    items TEXT DEFAULT '[]',
    response TEXT,
    price REAL,
    status TEXT NOT NULL DEFAULT 'pending',
    correlation_token TEXT,
    created_at TEXT NOT NULL,
    responded_at TEXT,
    UNIQUE (request_id, supplier_id)
);

CREATE INDEX IF NOT EXISTS idx_quote_units_supplier_status
ON quote_units (supplier_id, status);

CREATE UNIQUE INDEX IF NOT EXISTS idx_quote_units_token
ON quote_units (correlation_token);

CREATE TABLE IF NOT EXISTS purchase_memory (
    id TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    items TEXT DEFAULT '[]',
    chosen_supplier TEXT,
    total_price REAL,
    created_at TEXT NOT NULL
);
"""


class Database:
    """Open short-lived connections against SQLite or PostgreSQL.

    Each repository call opens its own connection so that writes from the
    inbound message thread and reads from waiting workflows never share a
    handle.  ``dsn`` selects PostgreSQL through :mod:`psycopg2`; otherwise
    ``path`` names a SQLite file.
    """

    def __init__(
        self,
        *,
        path: Optional[str] = None,
        dsn: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        if not path and not dsn:
            raise DatabaseConfigurationError(
                "Either a SQLite path or a PostgreSQL DSN is required"
            )
        if not dsn and (path == ":memory:" or str(path).startswith("file::memory:")):
            raise DatabaseConfigurationError(
                "In-memory SQLite is not supported; each operation opens its own connection"
            )
        self.path = path
        self.dsn = dsn
        self.timeout = timeout
        if self.path and not self.dsn:
            directory = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(directory, exist_ok=True)

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(
            path=getattr(settings, "database_path", None),
            dsn=getattr(settings, "database_url", None),
        )

    @property
    def is_sqlite(self) -> bool:
        return not self.dsn

    @property
    def placeholder(self) -> str:
        return "?" if self.is_sqlite else "%s"

    def table(self, name: str) -> str:
        """Return ``name`` qualified for the active dialect."""

        return name if self.is_sqlite else f"proc.{name}"

    def _connect(self):
        if self.dsn:
            try:
                import psycopg2
            except ImportError as exc:  # pragma: no cover - dependency missing
                raise DatabaseConfigurationError("psycopg2 is required for PostgreSQL") from exc
            return psycopg2.connect(self.dsn, connect_timeout=int(self.timeout))

        conn = sqlite3.connect(
            self.path,
            timeout=self.timeout,
            check_same_thread=False,
        )
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def connection(self) -> Iterator:
        """Yield a connection, committing on success and rolling back on error."""

        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self) -> None:
        with self.connection() as conn:
            cur = conn.cursor()
            if isinstance(conn, sqlite3.Connection):
                cur.executescript(DDL_SQLITE)
            else:
                cur.execute(DDL_PG)
            cur.close()
        logger.info(
            "Quote store schema ready (%s)", "sqlite" if self.is_sqlite else "postgres"
        )
