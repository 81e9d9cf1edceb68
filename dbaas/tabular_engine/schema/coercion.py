"""
Coercion of user input into cell storage text.

Unlike conversion.py, which migrates values between two column types, this
module turns raw input for one column into the text stored in its cell.

Invariants:
    - The result is always a string; "" means empty
    - Invalid input fails only when the column is required; optional
      columns store "" instead
    - Empty input is never an error here; required-ness of empty values is
      checked by the row store once every cell is assembled
"""

from __future__ import annotations

from typing import Any

from ..errors import ValidationError
from .conversion import parse_date, parse_number, to_iso, to_storage_text
from .types import ColumnDef, ColumnType

# Exact vocabulary; no case folding or trimming
_BOOLEAN_TRUE = ("true", "1", 1)
_BOOLEAN_FALSE = ("false", "0", 0)


def is_empty(value: Any) -> bool:
    """Whether input counts as absent."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _invalid(column: ColumnDef, message: str) -> str:
    if column.required:
        raise ValidationError(message, column_name=column.name)
    return ""


def coerce_cell_value(column: ColumnDef, value: Any) -> str:
    """Coerce raw input for a column into its cell text.

    Args:
        column: Target column
        value: Raw input value

    Returns:
        Storage text ("" for empty or discarded input)

    Raises:
        ValidationError: If the value is invalid and the column is required
    """
    if is_empty(value):
        return ""

    if column.type == ColumnType.NUMBER:
        number = parse_number(value)
        if number is None:
            return _invalid(column, f"Column '{column.name}' requires a valid number")
        return to_storage_text(number)

    if column.type == ColumnType.BOOLEAN:
        if isinstance(value, bool):
            return "true" if value else "false"
        if value in _BOOLEAN_TRUE:
            return "true"
        if value in _BOOLEAN_FALSE:
            return "false"
        return _invalid(column, f"Column '{column.name}' requires a valid boolean")

    if column.type == ColumnType.DATE:
        parsed = parse_date(value)
        if parsed is None:
            return _invalid(column, f"Column '{column.name}' requires a valid date")
        return to_iso(parsed)

    if column.type == ColumnType.CUSTOM_ARRAY:
        if not column.custom_options:
            return _invalid(column, f"Column '{column.name}' has no options configured")
        option = str(value).strip()
        if option not in column.custom_options:
            return _invalid(
                column,
                f"Column '{column.name}' must be one of: {', '.join(column.custom_options)}",
            )
        return option

    return to_storage_text(value)
