"""
Schema catalog for runtime-defined tenant tables.

This module persists Table and Column definitions in the tenant database and
applies structural edits to them:
- Table creation, lookup and cascading deletion
- Column addition (with backfill), edits, type changes and deletion
- Protection rules for platform-managed tables and locked columns

Invariants:
    - Table names are unique per (tenant, database)
    - Column names are unique per table
    - Every row has exactly one cell per column; add_column backfills and
      delete_column removes the column's cells with it
    - Protected tables cannot be deleted and their columns cannot be removed
    - Locked columns cannot be renamed, retyped or removed
    - A column type change converts every cell or none of them

How to change safely:
    - Structural edits must run inside TenantDatabase.transaction()
    - New editable column attributes must be added to EDITABLE_COLUMN_FIELDS
      and to _COLUMN_FIELD_SQL
    - Never relax the protection rules without a migration plan for the
      workflows that look columns up by semantic tag
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field, replace
from typing import Any

from ..errors import (
    NotFoundError,
    ProtectedResourceError,
    UniquenessError,
    ValidationError,
)
from ..storage import TenantDatabase, is_unique_value_violation
from .coercion import coerce_cell_value
from .conversion import convert_or_raise, from_storage_text, to_storage_text
from .types import ColumnDef, ColumnType, SemanticTag, TableDef

logger = logging.getLogger(__name__)


def check_default_value(column: ColumnDef) -> None:
    """Reject a default value that would not coerce into the column's type.

    Raises:
        ValidationError: If the default is invalid for the column
    """
    if not column.default_value:
        return
    try:
        coerce_cell_value(replace(column, required=True), column.default_value)
    except ValidationError as e:
        raise ValidationError(
            f"Invalid default value for column '{column.name}': {e.message}",
            column_name=column.name,
        ) from e


EDITABLE_COLUMN_FIELDS = frozenset(
    {
        "name",
        "description",
        "required",
        "unique",
        "primary",
        "default_value",
        "custom_options",
        "order",
        "semantic_tag",
        "reference_table_id",
    }
)

_COLUMN_FIELD_SQL = {
    "name": "name",
    "description": "description",
    "required": "required",
    "unique": "is_unique",
    "primary": "is_primary",
    "default_value": "default_value",
    "custom_options": "custom_options",
    "order": "sort_order",
    "semantic_tag": "semantic_tag",
    "reference_table_id": "reference_table_id",
}


@dataclass
class ColumnTypeChangeReport:
    """Outcome of migrating a column's cells to a new type.

    Attributes:
        column_id: Column that changed type
        from_type: Previous structural type
        to_type: New structural type
        converted: Number of non-empty cells converted
        data_loss: Number of cells whose conversion was lossy
        warnings: Distinct warnings raised by the converter
    """

    column_id: int
    from_type: ColumnType
    to_type: ColumnType
    converted: int = 0
    data_loss: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "column_id": self.column_id,
            "from_type": self.from_type.value,
            "to_type": self.to_type.value,
            "converted": self.converted,
            "data_loss": self.data_loss,
            "warnings": list(self.warnings),
        }


def column_from_row(row: sqlite3.Row) -> ColumnDef:
    """Build a ColumnDef from a columns table row."""
    return ColumnDef(
        id=row["id"],
        table_id=row["table_id"],
        name=row["name"],
        type=ColumnType.from_str(row["type"]),
        semantic_tag=SemanticTag.from_str(row["semantic_tag"]),
        required=bool(row["required"]),
        unique=bool(row["is_unique"]),
        primary=bool(row["is_primary"]),
        auto_increment=bool(row["auto_increment"]),
        default_value=row["default_value"],
        custom_options=tuple(json.loads(row["custom_options"])),
        reference_table_id=row["reference_table_id"],
        order=row["sort_order"],
        is_locked=bool(row["is_locked"]),
        description=row["description"],
    )


def read_columns(conn: sqlite3.Connection, table_id: int) -> list[ColumnDef]:
    """Read a table's columns ordered by display order, then id."""
    cursor = conn.execute(
        "SELECT * FROM columns WHERE table_id = ? ORDER BY sort_order, id",
        (table_id,),
    )
    return [column_from_row(row) for row in cursor.fetchall()]


def read_table(conn: sqlite3.Connection, tenant_id: str, table_id: int) -> TableDef:
    """Read a table and its columns.

    Raises:
        NotFoundError: If the table doesn't exist
    """
    row = conn.execute(
        "SELECT * FROM tables WHERE id = ? AND tenant_id = ?",
        (table_id, tenant_id),
    ).fetchone()
    if not row:
        raise NotFoundError(f"Table not found: {table_id}", resource_type="table", resource_id=table_id)

    return TableDef(
        id=row["id"],
        tenant_id=row["tenant_id"],
        database_id=row["database_id"],
        name=row["name"],
        description=row["description"],
        is_protected=bool(row["is_protected"]),
        protected_kind=row["protected_kind"],
        columns=tuple(read_columns(conn, row["id"])),
    )


def read_column(conn: sqlite3.Connection, tenant_id: str, column_id: int) -> ColumnDef:
    """Read a single column.

    Raises:
        NotFoundError: If the column doesn't exist for the tenant
    """
    row = conn.execute(
        """
        SELECT c.* FROM columns c
        JOIN tables t ON t.id = c.table_id
        WHERE c.id = ? AND t.tenant_id = ?
        """,
        (column_id, tenant_id),
    ).fetchone()
    if not row:
        raise NotFoundError(
            f"Column not found: {column_id}", resource_type="column", resource_id=column_id
        )
    return column_from_row(row)


class SchemaCatalog:
    """Durable Table and Column definitions for tenant databases.

    Example:
        >>> catalog = SchemaCatalog(TenantDatabase(config))
        >>> await catalog.initialize_tenant("tenant_1")
        >>> table = await catalog.create_table(
        ...     "tenant_1", 1, "customers",
        ...     columns=[column("email", "string", required=True, unique=True)],
        ... )
    """

    def __init__(self, db: TenantDatabase) -> None:
        self.db = db

    async def initialize_tenant(self, tenant_id: str) -> None:
        """Create tenant storage if it doesn't exist."""
        self.db.initialize_tenant(tenant_id)

    # =========================================================================
    # Tables
    # =========================================================================

    async def create_table(
        self,
        tenant_id: str,
        database_id: int,
        name: str,
        description: str = "",
        columns: list[ColumnDef] | tuple[ColumnDef, ...] = (),
        is_protected: bool = False,
        protected_kind: str | None = None,
    ) -> TableDef:
        """Create a table with its initial columns.

        Args:
            tenant_id: Tenant identifier
            database_id: Tenant database owning the table
            name: Table name, unique within the database
            description: Human-readable description
            columns: Initial column definitions (ids are assigned here)
            is_protected: Whether the table is platform-managed
            protected_kind: Kind of protected table, e.g. "invoices"

        Returns:
            The persisted TableDef

        Raises:
            ValidationError: If the name is taken or columns are invalid
        """
        try:
            TableDef(name=name, database_id=database_id, columns=tuple(columns))
        except ValueError as e:
            raise ValidationError(str(e)) from e

        with self.db.transaction(tenant_id) as conn:
            existing = conn.execute(
                "SELECT id FROM tables WHERE tenant_id = ? AND database_id = ? AND name = ?",
                (tenant_id, database_id, name),
            ).fetchone()
            if existing:
                raise ValidationError(f"Table '{name}' already exists")

            cursor = conn.execute(
                """
                INSERT INTO tables (tenant_id, database_id, name, description,
                                    is_protected, protected_kind, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tenant_id,
                    database_id,
                    name,
                    description,
                    int(is_protected),
                    protected_kind,
                    int(time.time() * 1000),
                ),
            )
            table_id = cursor.lastrowid

            for index, col in enumerate(columns):
                order = col.order if col.order else index
                self._insert_column(conn, tenant_id, table_id, col, order)

            table = read_table(conn, tenant_id, table_id)

        logger.info(
            "Created table",
            extra={
                "tenant_id": tenant_id,
                "database_id": database_id,
                "table_id": table.id,
                "table_name": name,
                "column_count": len(table.columns),
            },
        )
        return table

    async def get_table(self, tenant_id: str, table_id: int) -> TableDef:
        """Get a table with its columns.

        Raises:
            NotFoundError: If the table doesn't exist
        """
        with self.db.connection(tenant_id) as conn:
            return read_table(conn, tenant_id, table_id)

    async def list_tables(self, tenant_id: str, database_id: int) -> list[TableDef]:
        """List all tables of a tenant database, oldest first."""
        with self.db.connection(tenant_id) as conn:
            cursor = conn.execute(
                "SELECT id FROM tables WHERE tenant_id = ? AND database_id = ? ORDER BY id",
                (tenant_id, database_id),
            )
            return [read_table(conn, tenant_id, row["id"]) for row in cursor.fetchall()]

    async def find_protected_table(
        self, tenant_id: str, database_id: int, kind: str
    ) -> TableDef | None:
        """Find the protected table of a given kind, if it exists."""
        with self.db.connection(tenant_id) as conn:
            row = conn.execute(
                """
                SELECT id FROM tables
                WHERE tenant_id = ? AND database_id = ?
                  AND is_protected = 1 AND protected_kind = ?
                """,
                (tenant_id, database_id, kind),
            ).fetchone()
            if not row:
                return None
            return read_table(conn, tenant_id, row["id"])

    async def is_table_protected(self, tenant_id: str, table_id: int) -> bool:
        table = await self.get_table(tenant_id, table_id)
        return table.is_protected

    async def delete_table(self, tenant_id: str, table_id: int) -> dict[str, int]:
        """Delete a table with all of its columns, rows and cells.

        Returns:
            Counts of deleted cells, rows and columns

        Raises:
            NotFoundError: If the table doesn't exist
            ProtectedResourceError: If the table is protected
        """
        with self.db.transaction(tenant_id) as conn:
            table = read_table(conn, tenant_id, table_id)
            if table.is_protected:
                raise ProtectedResourceError(
                    f"Table '{table.name}' is protected and cannot be deleted",
                    resource_type="table",
                    resource_id=table_id,
                )

            cells = conn.execute(
                "DELETE FROM cells WHERE row_id IN (SELECT id FROM rows WHERE table_id = ?)",
                (table_id,),
            ).rowcount
            rows = conn.execute("DELETE FROM rows WHERE table_id = ?", (table_id,)).rowcount
            columns = conn.execute(
                "DELETE FROM columns WHERE table_id = ?", (table_id,)
            ).rowcount
            conn.execute("DELETE FROM tables WHERE id = ?", (table_id,))

        counts = {"cells": cells, "rows": rows, "columns": columns}
        logger.info(
            "Deleted table",
            extra={"tenant_id": tenant_id, "table_id": table_id, **counts},
        )
        return counts

    # =========================================================================
    # Columns
    # =========================================================================

    async def get_column(self, tenant_id: str, column_id: int) -> ColumnDef:
        """Get a column by id.

        Raises:
            NotFoundError: If the column doesn't exist
        """
        with self.db.connection(tenant_id) as conn:
            return read_column(conn, tenant_id, column_id)

    async def get_columns(self, tenant_id: str, table_id: int) -> list[ColumnDef]:
        """Get a table's columns ordered by display order."""
        table = await self.get_table(tenant_id, table_id)
        return list(table.columns)

    async def find_column_by_semantic_tag(
        self, tenant_id: str, table_id: int, tag: SemanticTag | str
    ) -> ColumnDef | None:
        """Find the first column of a table carrying a semantic tag."""
        table = await self.get_table(tenant_id, table_id)
        return table.get_column_by_tag(SemanticTag.from_str(tag))

    async def is_column_locked(self, tenant_id: str, column_id: int) -> bool:
        col = await self.get_column(tenant_id, column_id)
        return col.is_locked

    async def add_column(self, tenant_id: str, table_id: int, column: ColumnDef) -> ColumnDef:
        """Add a column to a table and backfill a cell for every existing row.

        Existing rows receive the coerced default value, or "" without one.

        Raises:
            NotFoundError: If the table doesn't exist
            ValidationError: If the name is taken, or the column is required
                with no default while the table has rows
            UniquenessError: If a unique column's default would be shared
                by several rows
        """
        with self.db.transaction(tenant_id) as conn:
            table = read_table(conn, tenant_id, table_id)
            if table.get_column(column.name) is not None:
                raise ValidationError(
                    f"Column '{column.name}' already exists in table '{table.name}'",
                    column_name=column.name,
                )

            row_count = conn.execute(
                "SELECT COUNT(*) FROM rows WHERE table_id = ?", (table_id,)
            ).fetchone()[0]

            backfill = ""
            if column.default_value:
                backfill = coerce_cell_value(column, column.default_value)
            if row_count and column.required and not backfill:
                raise ValidationError(
                    f"Column '{column.name}' is required; provide a default value "
                    "to add it to a table that already has rows",
                    column_name=column.name,
                )

            order = column.order or (max((c.order for c in table.columns), default=-1) + 1)
            column_id = self._insert_column(conn, tenant_id, table_id, column, order)

            try:
                conn.execute(
                    """
                    INSERT INTO cells (row_id, column_id, value, is_unique)
                    SELECT id, ?, ?, ? FROM rows WHERE table_id = ?
                    """,
                    (column_id, backfill, int(column.unique), table_id),
                )
            except sqlite3.IntegrityError as e:
                if is_unique_value_violation(e):
                    raise UniquenessError.for_value(backfill, column_id) from e
                raise

            created = read_column(conn, tenant_id, column_id)

        logger.info(
            "Added column",
            extra={
                "tenant_id": tenant_id,
                "table_id": table_id,
                "column_id": column_id,
                "column_name": column.name,
                "backfilled_rows": row_count,
            },
        )
        return created

    async def update_column(self, tenant_id: str, column_id: int, **changes: Any) -> ColumnDef:
        """Edit column attributes other than its type.

        Args:
            tenant_id: Tenant identifier
            column_id: Column to edit
            **changes: New values for any of EDITABLE_COLUMN_FIELDS

        Returns:
            The updated ColumnDef

        Raises:
            ValidationError: If a field isn't editable, the new name is taken,
                or making the column required would leave empty cells
            ProtectedResourceError: If a locked column would be renamed
            UniquenessError: If making the column unique meets duplicates
        """
        unknown = set(changes) - EDITABLE_COLUMN_FIELDS
        if unknown:
            raise ValidationError(f"Column fields cannot be edited: {', '.join(sorted(unknown))}")

        with self.db.transaction(tenant_id) as conn:
            current = read_column(conn, tenant_id, column_id)

            new_name = changes.get("name", current.name)
            if new_name != current.name:
                if current.is_locked:
                    raise ProtectedResourceError(
                        f"Column '{current.name}' is locked and cannot be renamed",
                        resource_type="column",
                        resource_id=column_id,
                    )
                clash = conn.execute(
                    "SELECT id FROM columns WHERE table_id = ? AND name = ? AND id != ?",
                    (current.table_id, new_name, column_id),
                ).fetchone()
                if clash:
                    raise ValidationError(
                        f"Column '{new_name}' already exists", column_name=new_name
                    )

            if changes.get("required") and not current.required:
                empty = conn.execute(
                    "SELECT COUNT(*) FROM cells WHERE column_id = ? AND value = ''",
                    (column_id,),
                ).fetchone()[0]
                if empty:
                    raise ValidationError(
                        f"Column '{current.name}' has {empty} empty values; "
                        "fill them before making it required",
                        column_name=current.name,
                    )

            if "unique" in changes and bool(changes["unique"]) != current.unique:
                if changes["unique"]:
                    duplicate = conn.execute(
                        """
                        SELECT value FROM cells
                        WHERE column_id = ? AND value <> ''
                        GROUP BY value HAVING COUNT(*) > 1
                        LIMIT 1
                        """,
                        (column_id,),
                    ).fetchone()
                    if duplicate:
                        raise UniquenessError.for_value(duplicate["value"], column_id)
                conn.execute(
                    "UPDATE cells SET is_unique = ? WHERE column_id = ?",
                    (int(bool(changes["unique"])), column_id),
                )

            assignments = []
            params: list[Any] = []
            for key, value in changes.items():
                assignments.append(f"{_COLUMN_FIELD_SQL[key]} = ?")
                params.append(self._column_field_to_sql(key, value))

            if assignments:
                conn.execute(
                    f"UPDATE columns SET {', '.join(assignments)} WHERE id = ?",
                    (*params, column_id),
                )

            updated = read_column(conn, tenant_id, column_id)
            if "default_value" in changes or "custom_options" in changes:
                check_default_value(updated)

        logger.info(
            "Updated column",
            extra={
                "tenant_id": tenant_id,
                "column_id": column_id,
                "fields": sorted(changes),
            },
        )
        return updated

    async def change_column_type(
        self,
        tenant_id: str,
        column_id: int,
        new_type: ColumnType | str,
    ) -> ColumnTypeChangeReport:
        """Change a column's structural type, converting every existing cell.

        The change is all-or-nothing: if any cell fails to convert, nothing
        is written.

        Raises:
            ProtectedResourceError: If the column is locked
            ConversionError: If a cell cannot be converted
            UniquenessError: If converted values collide in a unique column
        """
        target = ColumnType.from_str(new_type)

        with self.db.transaction(tenant_id) as conn:
            current = read_column(conn, tenant_id, column_id)
            if current.is_locked:
                raise ProtectedResourceError(
                    f"Column '{current.name}' is locked and its type cannot be changed",
                    resource_type="column",
                    resource_id=column_id,
                )

            report = ColumnTypeChangeReport(
                column_id=column_id, from_type=current.type, to_type=target
            )
            if target == current.type:
                return report

            cells = conn.execute(
                "SELECT id, value FROM cells WHERE column_id = ? AND value <> ''",
                (column_id,),
            ).fetchall()

            updates: list[tuple[str, int]] = []
            options: list[str] = list(current.custom_options)
            for cell in cells:
                value = from_storage_text(cell["value"], current.type)
                result = convert_or_raise(value, current.type, target)
                report.converted += 1
                if result.data_loss:
                    report.data_loss += 1
                if result.warning and result.warning not in report.warnings:
                    report.warnings.append(result.warning)

                if target == ColumnType.CUSTOM_ARRAY and isinstance(result.new_value, list):
                    for item in result.new_value:
                        if item not in options:
                            options.append(item)
                updates.append((to_storage_text(result.new_value), cell["id"]))

            try:
                for text, cell_id in updates:
                    conn.execute("UPDATE cells SET value = ? WHERE id = ?", (text, cell_id))
            except sqlite3.IntegrityError as e:
                if is_unique_value_violation(e):
                    raise UniquenessError.for_value(text, column_id) from e
                raise

            conn.execute(
                """
                UPDATE columns
                SET type = ?, custom_options = ?,
                    auto_increment = CASE WHEN ? = 'number' THEN auto_increment ELSE 0 END
                WHERE id = ?
                """,
                (target.value, json.dumps(options), target.value, column_id),
            )

        log = logger.warning if report.data_loss else logger.info
        log(
            "Changed column type",
            extra={
                "tenant_id": tenant_id,
                "column_id": column_id,
                "from_type": current.type.value,
                "to_type": target.value,
                "converted": report.converted,
                "data_loss": report.data_loss,
            },
        )
        return report

    async def delete_column(self, tenant_id: str, column_id: int) -> int:
        """Delete a column and its cells.

        Returns:
            Number of cells deleted

        Raises:
            ProtectedResourceError: If the column is locked or its table is protected
        """
        with self.db.transaction(tenant_id) as conn:
            current = read_column(conn, tenant_id, column_id)
            table = read_table(conn, tenant_id, current.table_id)
            if current.is_locked or table.is_protected:
                raise ProtectedResourceError(
                    f"Column '{current.name}' is protected and cannot be deleted",
                    resource_type="column",
                    resource_id=column_id,
                )

            deleted = conn.execute(
                "DELETE FROM cells WHERE column_id = ?", (column_id,)
            ).rowcount
            conn.execute("DELETE FROM columns WHERE id = ?", (column_id,))

        logger.info(
            "Deleted column",
            extra={"tenant_id": tenant_id, "column_id": column_id, "cells": deleted},
        )
        return deleted

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _insert_column(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        table_id: int,
        column: ColumnDef,
        order: int,
    ) -> int:
        check_default_value(column)
        if column.type == ColumnType.REFERENCE and column.reference_table_id is not None:
            # Raises NotFoundError for a dangling target
            read_table(conn, tenant_id, column.reference_table_id)

        cursor = conn.execute(
            """
            INSERT INTO columns (table_id, name, type, semantic_tag, description,
                                 required, is_unique, is_primary, auto_increment,
                                 default_value, custom_options, reference_table_id,
                                 sort_order, is_locked)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                table_id,
                column.name,
                column.type.value,
                column.semantic_tag.value if column.semantic_tag else None,
                column.description,
                int(column.required),
                int(column.unique),
                int(column.primary),
                int(column.auto_increment),
                column.default_value,
                json.dumps(list(column.custom_options)),
                column.reference_table_id,
                order,
                int(column.is_locked),
            ),
        )
        return cursor.lastrowid

    @staticmethod
    def _column_field_to_sql(key: str, value: Any) -> Any:
        if key in ("required", "unique", "primary"):
            return int(bool(value))
        if key == "custom_options":
            return json.dumps(list(value or ()))
        if key == "semantic_tag":
            tag = SemanticTag.from_str(value)
            return tag.value if tag else None
        if key == "name" and (not value or not str(value).strip()):
            raise ValidationError("Column name cannot be empty")
        return value
