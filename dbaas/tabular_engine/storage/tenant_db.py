"""
Per-tenant SQLite substrate for the tabular engine.

This module manages the SQLite database that stores, for one tenant:
- The schema catalog (tables, columns)
- Rows and their cells
- Series counters and the ledger of issued numbers

Invariants:
    - One SQLite file per tenant
    - Every multi-statement write runs inside transaction(), which takes
      the database write lock (BEGIN IMMEDIATE) before its first read
    - Exactly one cell per (row_id, column_id)
    - No two cells of a unique column share a non-empty value; enforced by
      the idx_cells_unique_value partial index, not only by callers

How to change safely:
    - Schema migrations must be backward compatible
    - Bump SCHEMA_VERSION and add a migration step when altering tables
    - Never write outside transaction() when more than one statement
      must commit together

Table schema:
    tables:
        - id INTEGER PRIMARY KEY
        - tenant_id TEXT, database_id INTEGER
        - name TEXT (unique per tenant database)
        - is_protected INTEGER, protected_kind TEXT

    columns:
        - id INTEGER PRIMARY KEY
        - table_id INTEGER -> tables(id)
        - name TEXT (unique per table), type TEXT, semantic_tag TEXT
        - required, is_unique, is_primary, auto_increment, is_locked INTEGER
        - default_value TEXT, custom_options TEXT (JSON list)
        - reference_table_id INTEGER, sort_order INTEGER

    rows:
        - id INTEGER PRIMARY KEY
        - table_id INTEGER -> tables(id)
        - created_at INTEGER (Unix ms)

    cells:
        - id INTEGER PRIMARY KEY
        - row_id INTEGER -> rows(id), column_id INTEGER -> columns(id)
        - value TEXT (storage form, interpreted via the column type)
        - is_unique INTEGER (copy of columns.is_unique for the partial index)
        - UNIQUE (row_id, column_id)

    series_counters:
        - tenant_id TEXT, database_id INTEGER, series TEXT
        - current_number INTEGER (>= 0)
        - PRIMARY KEY (tenant_id, database_id, series)

    issued_numbers:
        - tenant_id, database_id, series, number, full_number, issued_at
        - UNIQUE (tenant_id, database_id, series, number)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..config import StorageConfig
from ..errors import ConcurrencyError, NotFoundError

logger = logging.getLogger(__name__)


def is_lock_error(error: sqlite3.OperationalError) -> bool:
    """Whether an OperationalError means the database lock was not obtained."""
    message = str(error).lower()
    return "locked" in message or "busy" in message


def is_unique_value_violation(error: sqlite3.IntegrityError) -> bool:
    """Whether an IntegrityError came from the unique-value index on cells."""
    return "cells.column_id, cells.value" in str(error)


class TenantDatabase:
    """Connection and transaction provider for per-tenant SQLite files.

    Thread safety:
        Each operation opens its own connection. Writers serialize on the
        SQLite database lock; readers never block in WAL mode.

    Example:
        >>> db = TenantDatabase(StorageConfig(data_dir="/tmp/tabular"))
        >>> db.initialize_tenant("tenant_1")
        >>> with db.transaction("tenant_1") as conn:
        ...     conn.execute("INSERT INTO rows (table_id, created_at) VALUES (?, ?)", (1, 0))
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(self, config: StorageConfig | None = None) -> None:
        """Initialize the tenant database provider.

        Args:
            config: Storage configuration (defaults used if not provided)
        """
        self.config = config or StorageConfig()
        self.data_dir = Path(self.config.data_dir)
        self._init_lock = threading.Lock()

    def get_db_path(self, tenant_id: str) -> Path:
        """Get database file path for a tenant."""
        # Sanitize tenant_id to prevent path traversal
        safe_id = "".join(c for c in str(tenant_id) if c.isalnum() or c in "-_")
        return self.data_dir / f"tenant_{safe_id}.db"

    def tenant_exists(self, tenant_id: str) -> bool:
        """Check if tenant database exists."""
        return self.get_db_path(tenant_id).exists()

    @contextmanager
    def connection(self, tenant_id: str, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Open a configured connection for a tenant.

        Args:
            tenant_id: Tenant identifier
            create: Whether to create the database file if missing

        Yields:
            SQLite connection in autocommit mode

        Raises:
            NotFoundError: If database doesn't exist and create=False
        """
        db_path = self.get_db_path(tenant_id)

        if not create and not db_path.exists():
            raise NotFoundError(
                f"Tenant database not found: {tenant_id}",
                resource_type="tenant",
                resource_id=tenant_id,
            )

        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(db_path),
            timeout=self.config.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.config.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.config.cache_size_pages}")
            if self.config.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, tenant_id: str) -> Iterator[sqlite3.Connection]:
        """Run a block inside a write-locked transaction.

        BEGIN IMMEDIATE acquires the database write lock up front, so every
        read made inside the block sees state no other writer can change
        until COMMIT.

        Args:
            tenant_id: Tenant identifier

        Yields:
            SQLite connection with an open transaction

        Raises:
            ConcurrencyError: If the write lock could not be acquired
            NotFoundError: If the tenant database doesn't exist
        """
        with self.connection(tenant_id) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if is_lock_error(e):
                    raise ConcurrencyError(
                        f"Could not acquire write lock for tenant {tenant_id}: {e}"
                    ) from e
                raise

            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                # SQLite may already have rolled back on its own (e.g. SQLITE_FULL)
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def initialize_tenant(self, tenant_id: str) -> None:
        """Create the tenant database and schema if they don't exist.

        Args:
            tenant_id: Tenant identifier
        """
        with self._init_lock:
            with self.connection(tenant_id, create=True) as conn:
                self._create_schema(conn)
        logger.info(f"Initialized tenant database: {tenant_id}")

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            -- Schema catalog
            CREATE TABLE IF NOT EXISTS tables (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id TEXT NOT NULL,
                database_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                is_protected INTEGER NOT NULL DEFAULT 0,
                protected_kind TEXT,
                created_at INTEGER NOT NULL,
                UNIQUE (tenant_id, database_id, name)
            );

            CREATE INDEX IF NOT EXISTS idx_tables_database
                ON tables(tenant_id, database_id);

            CREATE TABLE IF NOT EXISTS columns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                table_id INTEGER NOT NULL REFERENCES tables(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                type TEXT NOT NULL,
                semantic_tag TEXT,
                description TEXT NOT NULL DEFAULT '',
                required INTEGER NOT NULL DEFAULT 0,
                is_unique INTEGER NOT NULL DEFAULT 0,
                is_primary INTEGER NOT NULL DEFAULT 0,
                auto_increment INTEGER NOT NULL DEFAULT 0,
                default_value TEXT,
                custom_options TEXT NOT NULL DEFAULT '[]',
                reference_table_id INTEGER,
                sort_order INTEGER NOT NULL DEFAULT 0,
                is_locked INTEGER NOT NULL DEFAULT 0,
                UNIQUE (table_id, name)
            );

            CREATE INDEX IF NOT EXISTS idx_columns_table
                ON columns(table_id, sort_order);

            -- Row/cell store
            CREATE TABLE IF NOT EXISTS rows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                table_id INTEGER NOT NULL REFERENCES tables(id) ON DELETE CASCADE,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_rows_table ON rows(table_id, id);

            CREATE TABLE IF NOT EXISTS cells (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                row_id INTEGER NOT NULL REFERENCES rows(id) ON DELETE CASCADE,
                column_id INTEGER NOT NULL REFERENCES columns(id) ON DELETE CASCADE,
                value TEXT NOT NULL DEFAULT '',
                is_unique INTEGER NOT NULL DEFAULT 0,
                UNIQUE (row_id, column_id)
            );

            CREATE INDEX IF NOT EXISTS idx_cells_column ON cells(column_id, value);

            CREATE UNIQUE INDEX IF NOT EXISTS idx_cells_unique_value
                ON cells(column_id, value)
                WHERE is_unique = 1 AND value <> '';

            -- Sequence counters
            CREATE TABLE IF NOT EXISTS series_counters (
                tenant_id TEXT NOT NULL,
                database_id INTEGER NOT NULL,
                series TEXT NOT NULL,
                current_number INTEGER NOT NULL CHECK (current_number >= 0),
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (tenant_id, database_id, series)
            );

            CREATE TABLE IF NOT EXISTS issued_numbers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id TEXT NOT NULL,
                database_id INTEGER NOT NULL,
                series TEXT NOT NULL,
                number INTEGER NOT NULL,
                full_number TEXT NOT NULL,
                issued_at INTEGER NOT NULL,
                UNIQUE (tenant_id, database_id, series, number)
            );

            CREATE INDEX IF NOT EXISTS idx_issued_numbers_database
                ON issued_numbers(tenant_id, database_id, issued_at DESC);

            -- Record schema version
            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)
