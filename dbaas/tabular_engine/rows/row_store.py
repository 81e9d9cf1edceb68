"""
Row/cell store for runtime-defined tables.

This module materializes logical rows as one typed cell per column:
- Row creation with coercion, defaults, auto-increment and validation
- Cell edits, row deletion and paginated reads
- Bulk import with per-row error reporting

Row creation (create_row_with_cells):
    1. Input cells are deduplicated by column id, first occurrence wins
    2. Cells for columns not in the table are ignored
    3. Each value is coerced to its column's storage form
    4. Absent columns get their auto-increment number, default value,
       or "" when optional; a number given for an auto-increment column
       moves its counter up so later rows never draw it
    5. Every required column must hold a non-empty value
    6. Unique columns are checked, then the row and all its cells are
       written in the same transaction

Invariants:
    - A row has exactly one cell per column of its table once created
    - Validation completes before the row is inserted, and the row and its
      cells commit together; a failed creation leaves no trace
    - Unique values are checked under the write lock and guarded again by
      the partial unique index on cells

How to change safely:
    - Keep every multi-statement write inside TenantDatabase.transaction()
    - Coercion rules live in schema/coercion.py; change them there
"""

from __future__ import annotations

import logging
import math
import sqlite3
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..errors import NotFoundError, UniquenessError, ValidationError
from ..schema.catalog import read_column, read_table
from ..schema.coercion import coerce_cell_value, is_empty
from ..schema.conversion import parse_number
from ..schema.types import ColumnDef, TableDef
from ..sequence.generator import column_series, increment_counter, raise_counter
from ..storage import TenantDatabase, is_unique_value_violation
from .constraints import value_exists

logger = logging.getLogger(__name__)

CellInput = Mapping[str, Any] | tuple[int, Any]


@dataclass
class Cell:
    """A single stored value.

    Attributes:
        id: Cell identifier
        row_id: Owning row
        column_id: Column the value belongs to
        value: Storage text ("" when empty)
    """

    id: int
    row_id: int
    column_id: int
    value: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "row_id": self.row_id,
            "column_id": self.column_id,
            "value": self.value,
        }


@dataclass
class Row:
    """A logical row and its cells.

    Attributes:
        id: Row identifier
        table_id: Owning table
        created_at: Creation timestamp (Unix ms)
        cells: One cell per column of the table
    """

    id: int
    table_id: int
    created_at: int
    cells: list[Cell] = field(default_factory=list)

    def get(self, column_id: int) -> str | None:
        """Get the stored text of a column, or None if the row has no such cell."""
        for cell in self.cells:
            if cell.column_id == column_id:
                return cell.value
        return None

    def values(self) -> dict[int, str]:
        """Map of column id to stored text."""
        return {cell.column_id: cell.value for cell in self.cells}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "table_id": self.table_id,
            "created_at": self.created_at,
            "cells": [cell.to_dict() for cell in self.cells],
        }


@dataclass
class ImportReport:
    """Outcome of a bulk import.

    Attributes:
        imported: Rows written
        skipped: Rows skipped (empty or invalid)
        row_ids: Ids of the written rows, in input order
        errors: "Row <n>: <message>" for every invalid row
        warnings: "Row <n>: <message>" for every empty row
    """

    imported: int = 0
    skipped: int = 0
    row_ids: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "row_ids": list(self.row_ids),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


def _normalize_input(cells: Iterable[CellInput]) -> list[tuple[int, Any]]:
    normalized = []
    for cell in cells:
        if isinstance(cell, Mapping):
            normalized.append((int(cell["column_id"]), cell.get("value")))
        else:
            column_id, value = cell
            normalized.append((int(column_id), value))
    return normalized


class RowStore:
    """Row and cell persistence for tenant tables.

    Example:
        >>> store = RowStore(db)
        >>> row = await store.create_row_with_cells(
        ...     "tenant_1", table.id,
        ...     [{"column_id": email.id, "value": "ana@example.com"}],
        ... )
        >>> row.get(email.id)
        'ana@example.com'
    """

    def __init__(self, db: TenantDatabase) -> None:
        self.db = db

    async def create_row_with_cells(
        self,
        tenant_id: str,
        table_id: int,
        cells: Iterable[CellInput],
    ) -> Row:
        """Create a row with one cell per column of its table.

        Args:
            tenant_id: Tenant identifier
            table_id: Target table
            cells: Input as {"column_id": ..., "value": ...} mappings or
                (column_id, value) pairs

        Returns:
            The created Row with all of its cells

        Raises:
            NotFoundError: If the table doesn't exist
            ValidationError: If a value is invalid or a required column is missing
            UniquenessError: If a unique column value already exists
        """
        inputs = _normalize_input(cells)

        with self.db.transaction(tenant_id) as conn:
            table = read_table(conn, tenant_id, table_id)
            values = self._prepare_values(conn, tenant_id, table, inputs)
            row = self._insert_row(conn, table, values)

        logger.debug(
            "Created row",
            extra={
                "tenant_id": tenant_id,
                "table_id": table_id,
                "row_id": row.id,
                "cell_count": len(row.cells),
            },
        )
        return row

    async def get_row(self, tenant_id: str, row_id: int) -> Row:
        """Get a row with its cells.

        Raises:
            NotFoundError: If the row doesn't exist
        """
        with self.db.connection(tenant_id) as conn:
            return self._read_row(conn, tenant_id, row_id)

    async def list_rows(
        self,
        tenant_id: str,
        table_id: int,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Row]:
        """List rows of a table, oldest first.

        Args:
            tenant_id: Tenant identifier
            table_id: Table identifier
            limit: Maximum rows to return
            offset: Pagination offset

        Raises:
            NotFoundError: If the table doesn't exist
        """
        with self.db.connection(tenant_id) as conn:
            read_table(conn, tenant_id, table_id)
            cursor = conn.execute(
                "SELECT * FROM rows WHERE table_id = ? ORDER BY id LIMIT ? OFFSET ?",
                (table_id, limit, offset),
            )
            rows = [
                Row(id=r["id"], table_id=r["table_id"], created_at=r["created_at"])
                for r in cursor.fetchall()
            ]
            if not rows:
                return rows

            by_id = {row.id: row for row in rows}
            placeholders = ", ".join("?" for _ in rows)
            cursor = conn.execute(
                f"""
                SELECT c.* FROM cells c
                JOIN columns col ON col.id = c.column_id
                WHERE c.row_id IN ({placeholders})
                ORDER BY c.row_id, col.sort_order, col.id
                """,
                tuple(by_id),
            )
            for c in cursor.fetchall():
                by_id[c["row_id"]].cells.append(
                    Cell(id=c["id"], row_id=c["row_id"], column_id=c["column_id"], value=c["value"])
                )
            return rows

    async def count_rows(self, tenant_id: str, table_id: int) -> int:
        with self.db.connection(tenant_id) as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM rows WHERE table_id = ?", (table_id,)
            ).fetchone()[0]

    async def update_cell(
        self,
        tenant_id: str,
        row_id: int,
        column_id: int,
        value: Any,
    ) -> Cell:
        """Edit one cell, coercing the value like row creation does.

        Raises:
            NotFoundError: If the row or column doesn't exist
            ValidationError: If the value is invalid, clears a required
                column, or the column belongs to another table
            UniquenessError: If another row already holds the value
        """
        with self.db.transaction(tenant_id) as conn:
            row = self._read_row(conn, tenant_id, row_id)
            column = read_column(conn, tenant_id, column_id)
            if column.table_id != row.table_id:
                raise ValidationError(
                    f"Column '{column.name}' does not belong to the row's table",
                    column_name=column.name,
                )

            text = coerce_cell_value(column, value)
            if column.required and text == "":
                raise ValidationError(
                    f"Column '{column.name}' is required and cannot be empty",
                    column_name=column.name,
                )
            if column.unique and value_exists(conn, column_id, text, exclude_row_id=row_id):
                raise UniquenessError.for_value(text, column_id)
            if column.auto_increment and text != "":
                database_id = conn.execute(
                    "SELECT database_id FROM tables WHERE id = ?", (column.table_id,)
                ).fetchone()["database_id"]
                self._sync_column_counter(conn, tenant_id, database_id, column, text)

            try:
                conn.execute(
                    """
                    INSERT INTO cells (row_id, column_id, value, is_unique)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (row_id, column_id) DO UPDATE SET value = excluded.value
                    """,
                    (row_id, column_id, text, int(column.unique)),
                )
            except sqlite3.IntegrityError as e:
                if is_unique_value_violation(e):
                    raise UniquenessError.for_value(text, column_id) from e
                raise

            cell = conn.execute(
                "SELECT * FROM cells WHERE row_id = ? AND column_id = ?",
                (row_id, column_id),
            ).fetchone()

        logger.debug(
            "Updated cell",
            extra={"tenant_id": tenant_id, "row_id": row_id, "column_id": column_id},
        )
        return Cell(id=cell["id"], row_id=row_id, column_id=column_id, value=cell["value"])

    async def delete_row(self, tenant_id: str, row_id: int) -> int:
        """Delete a row and its cells.

        Returns:
            Number of cells deleted

        Raises:
            NotFoundError: If the row doesn't exist
        """
        with self.db.transaction(tenant_id) as conn:
            self._read_row(conn, tenant_id, row_id)
            deleted = conn.execute("DELETE FROM cells WHERE row_id = ?", (row_id,)).rowcount
            conn.execute("DELETE FROM rows WHERE id = ?", (row_id,))

        logger.debug(
            "Deleted row",
            extra={"tenant_id": tenant_id, "row_id": row_id, "cells": deleted},
        )
        return deleted

    async def import_rows(
        self,
        tenant_id: str,
        table_id: int,
        rows: Iterable[Mapping[str, Any]],
    ) -> ImportReport:
        """Import rows keyed by column name.

        Empty rows are skipped with a warning; invalid rows are skipped and
        reported. Valid rows are written in a single transaction.

        Args:
            tenant_id: Tenant identifier
            table_id: Target table
            rows: Mappings of column name to raw value

        Returns:
            ImportReport
        """
        report = ImportReport()

        with self.db.transaction(tenant_id) as conn:
            table = read_table(conn, tenant_id, table_id)
            by_name = {c.name: c for c in table.columns}

            for index, data in enumerate(rows, start=1):
                if all(is_empty(v) for v in data.values()):
                    report.warnings.append(f"Row {index}: Empty row - skipping")
                    report.skipped += 1
                    continue

                inputs = [(by_name[name].id, v) for name, v in data.items() if name in by_name]

                # Undo a rejected row's counter increments without losing the batch
                conn.execute("SAVEPOINT import_row")
                try:
                    values = self._prepare_values(conn, tenant_id, table, inputs)
                    row = self._insert_row(conn, table, values)
                except (ValidationError, UniquenessError) as e:
                    conn.execute("ROLLBACK TO import_row")
                    conn.execute("RELEASE import_row")
                    report.errors.append(f"Row {index}: {e.message}")
                    report.skipped += 1
                    continue
                conn.execute("RELEASE import_row")

                report.row_ids.append(row.id)
                report.imported += 1

        logger.info(
            "Imported rows",
            extra={
                "tenant_id": tenant_id,
                "table_id": table_id,
                "imported": report.imported,
                "skipped": report.skipped,
            },
        )
        return report

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _prepare_values(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        table: TableDef,
        inputs: list[tuple[int, Any]],
    ) -> dict[int, str]:
        """Resolve the storage text of every column of a new row."""
        columns: dict[int, ColumnDef] = {c.id: c for c in table.columns}

        values: dict[int, str] = {}
        for column_id, raw in inputs:
            if column_id in values:
                continue
            column = columns.get(column_id)
            if column is None:
                logger.debug(
                    "Ignoring cell for unknown column",
                    extra={"table_id": table.id, "column_id": column_id},
                )
                continue
            values[column_id] = coerce_cell_value(column, raw)

        for column in table.columns:
            if values.get(column.id, "") != "":
                if column.auto_increment:
                    self._sync_column_counter(
                        conn, tenant_id, table.database_id, column, values[column.id]
                    )
                continue
            if column.auto_increment:
                number = increment_counter(
                    conn, tenant_id, table.database_id, column_series(column.id)
                )
                values[column.id] = str(number)
            elif column.default_value:
                values[column.id] = coerce_cell_value(column, column.default_value)
            elif not column.required:
                values[column.id] = ""

        for column in table.columns:
            if column.required and values.get(column.id, "") == "":
                raise ValidationError(
                    f"Missing required column '{column.name}' in row data",
                    column_name=column.name,
                )

        for column in table.columns:
            if column.unique and value_exists(conn, column.id, values[column.id]):
                raise UniquenessError.for_value(values[column.id], column.id)

        return {c.id: values[c.id] for c in table.columns}

    def _sync_column_counter(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        database_id: int,
        column: ColumnDef,
        text: str,
    ) -> None:
        """Keep an auto-increment counter ahead of a number entered by hand."""
        number = parse_number(text)
        if number is None:
            return
        series = column_series(column.id)
        if raise_counter(conn, tenant_id, database_id, series, math.floor(number)):
            logger.debug(
                "Raised auto-increment counter",
                extra={"tenant_id": tenant_id, "column_id": column.id, "current_number": number},
            )

    def _insert_row(
        self, conn: sqlite3.Connection, table: TableDef, values: dict[int, str]
    ) -> Row:
        now = int(time.time() * 1000)
        cursor = conn.execute(
            "INSERT INTO rows (table_id, created_at) VALUES (?, ?)",
            (table.id, now),
        )
        row = Row(id=cursor.lastrowid, table_id=table.id, created_at=now)

        unique = {c.id for c in table.columns if c.unique}
        for column_id, text in values.items():
            try:
                cursor = conn.execute(
                    "INSERT INTO cells (row_id, column_id, value, is_unique) VALUES (?, ?, ?, ?)",
                    (row.id, column_id, text, int(column_id in unique)),
                )
            except sqlite3.IntegrityError as e:
                if is_unique_value_violation(e):
                    raise UniquenessError.for_value(text, column_id) from e
                raise
            row.cells.append(Cell(id=cursor.lastrowid, row_id=row.id, column_id=column_id, value=text))
        return row

    def _read_row(self, conn: sqlite3.Connection, tenant_id: str, row_id: int) -> Row:
        r = conn.execute(
            """
            SELECT r.* FROM rows r
            JOIN tables t ON t.id = r.table_id
            WHERE r.id = ? AND t.tenant_id = ?
            """,
            (row_id, tenant_id),
        ).fetchone()
        if not r:
            raise NotFoundError(f"Row not found: {row_id}", resource_type="row", resource_id=row_id)

        row = Row(id=r["id"], table_id=r["table_id"], created_at=r["created_at"])
        cursor = conn.execute(
            """
            SELECT c.* FROM cells c
            JOIN columns col ON col.id = c.column_id
            WHERE c.row_id = ?
            ORDER BY col.sort_order, col.id
            """,
            (row_id,),
        )
        row.cells = [
            Cell(id=c["id"], row_id=c["row_id"], column_id=c["column_id"], value=c["value"])
            for c in cursor.fetchall()
        ]
        return row
