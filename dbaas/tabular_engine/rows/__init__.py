"""
Rows module for the tabular engine.

This module handles:
- Materializing rows as one typed cell per column
- Cell edits, row deletion and bulk import
- Unique-column constraint checks

Invariants:
    - A row has exactly one cell per column of its table
    - A row and its cells are written in one transaction
    - Unique values are guarded by a storage-level index
"""

from .constraints import UniqueCheckResult, UniqueConstraintValidator
from .row_store import Cell, CellInput, ImportReport, Row, RowStore

__all__ = [
    "Cell",
    "CellInput",
    "ImportReport",
    "Row",
    "RowStore",
    "UniqueCheckResult",
    "UniqueConstraintValidator",
]
