"""
Constraint validation for unique columns.

Uniqueness is checked by reading existing cells. On its own this check is
advisory: two writers may both pass it before either commits. The row store
therefore runs it inside its write transaction, and the partial unique index
on cells(column_id, value) rejects anything that slips through.

Invariants:
    - Empty values (None, "") are always unique
    - Values are compared by literal equality of their storage text
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from ..errors import UniquenessError
from ..schema.catalog import read_column
from ..schema.conversion import to_storage_text
from ..storage import TenantDatabase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UniqueCheckResult:
    """Outcome of a uniqueness check."""

    is_valid: bool
    error: str | None = None


def value_exists(
    conn: sqlite3.Connection,
    column_id: int,
    text: str,
    exclude_row_id: int | None = None,
) -> bool:
    """Whether a non-empty value is already stored for a column."""
    if text == "":
        return False
    if exclude_row_id is None:
        row = conn.execute(
            "SELECT 1 FROM cells WHERE column_id = ? AND value = ? LIMIT 1",
            (column_id, text),
        ).fetchone()
    else:
        row = conn.execute(
            "SELECT 1 FROM cells WHERE column_id = ? AND value = ? AND row_id != ? LIMIT 1",
            (column_id, text, exclude_row_id),
        ).fetchone()
    return row is not None


class UniqueConstraintValidator:
    """Checks unique-column constraints against stored cells.

    Example:
        >>> validator = UniqueConstraintValidator(db)
        >>> result = await validator.validate_unique_constraint("tenant_1", 7, "a@b.c")
        >>> result.is_valid
        True
    """

    def __init__(self, db: TenantDatabase) -> None:
        self.db = db

    async def is_column_unique(self, tenant_id: str, column_id: int) -> bool:
        """Whether the column carries the unique constraint.

        Raises:
            NotFoundError: If the column doesn't exist
        """
        with self.db.connection(tenant_id) as conn:
            return read_column(conn, tenant_id, column_id).unique

    async def is_value_unique(
        self,
        tenant_id: str,
        column_id: int,
        value: Any,
        exclude_row_id: int | None = None,
    ) -> bool:
        """Whether no other cell of the column holds this value.

        Args:
            tenant_id: Tenant identifier
            column_id: Column to check
            value: Candidate value; None and "" are always unique
            exclude_row_id: Row to ignore, for in-place updates
        """
        text = to_storage_text(value)
        if text == "":
            return True
        with self.db.connection(tenant_id) as conn:
            return not value_exists(conn, column_id, text, exclude_row_id)

    async def validate_unique_constraint(
        self,
        tenant_id: str,
        column_id: int,
        value: Any,
        exclude_row_id: int | None = None,
    ) -> UniqueCheckResult:
        """Validate a value against the column's unique constraint, if any."""
        if not await self.is_column_unique(tenant_id, column_id):
            return UniqueCheckResult(is_valid=True)

        if await self.is_value_unique(tenant_id, column_id, value, exclude_row_id):
            return UniqueCheckResult(is_valid=True)

        error = UniquenessError.for_value(to_storage_text(value), column_id)
        logger.debug(
            "Unique constraint violated",
            extra={"tenant_id": tenant_id, "column_id": column_id},
        )
        return UniqueCheckResult(is_valid=False, error=error.message)
