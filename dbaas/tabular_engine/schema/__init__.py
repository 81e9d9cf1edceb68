"""
Schema module for the tabular engine.

This module provides runtime-defined table schemas, including:
- Type definitions (TableDef, ColumnDef, ColumnType, SemanticTag)
- The converter between structural column types
- The schema catalog persisting tables and columns per tenant
- The protected invoice tables

Invariants:
    - Structural type governs storage and conversion; semantic tag never does
    - Column names are unique within a table
    - Protected tables and locked columns resist structural edits

How to change safely:
    - Add new column types together with their converters
    - Never rename a persisted type or tag value
"""

from .catalog import ColumnTypeChangeReport, SchemaCatalog
from .coercion import coerce_cell_value
from .conversion import (
    UNSUPPORTED_CONVERSIONS,
    ConversionResult,
    attempt_conversion,
    convert_or_raise,
    get_conversion_description,
    is_conversion_safe,
    to_storage_text,
)
from .templates import initialize_invoice_tables
from .types import ColumnDef, ColumnType, SemanticTag, TableDef, column

__all__ = [
    # Types
    "ColumnDef",
    "ColumnType",
    "SemanticTag",
    "TableDef",
    "column",
    # Conversion
    "ConversionResult",
    "UNSUPPORTED_CONVERSIONS",
    "attempt_conversion",
    "convert_or_raise",
    "get_conversion_description",
    "is_conversion_safe",
    "to_storage_text",
    "coerce_cell_value",
    # Catalog
    "SchemaCatalog",
    "ColumnTypeChangeReport",
    "initialize_invoice_tables",
]
