"""
Type system and converter for column values.

This module converts a scalar value between structural column types:
- attempt_conversion: Convert a value, reporting loss/warnings/errors
- is_conversion_safe: Whether a type pair is lossless
- get_conversion_description: Human-readable hint for a type pair
- convert_or_raise: Raising variant used by column type changes

It also holds the parsing helpers shared with the row store
(parse_number, parse_date) and the cell text codec
(to_storage_text, from_storage_text).

Invariants:
    - attempt_conversion never raises; failures are reported in the result
    - None and "" always convert successfully to None, for every type pair
    - Identity conversions return the value unchanged
    - Converters are pure: identical input always yields identical output
    - Every ordered pair of distinct types is either registered in
      _CONVERTERS or listed in UNSUPPORTED_CONVERSIONS

How to change safely:
    - Register new converters with @_converter and give them a description
    - Remove the pair from UNSUPPORTED_CONVERSIONS when adding a converter
    - Never change an existing error or warning message; they are surfaced
      to users verbatim
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from ..errors import ConversionError
from .types import ColumnType

logger = logging.getLogger(__name__)

Converter = Callable[[Any], "ConversionResult"]

TRUE_VALUES = frozenset({"true", "1", "yes", "da", "y", "t"})
FALSE_VALUES = frozenset({"false", "0", "no", "nu", "n", "f", ""})

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Non-ISO date layouts accepted on input, tried in order
DATE_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
)

_NUMBER_NOISE = re.compile(r"[,\s]")


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of converting one value between column types.

    Attributes:
        success: Whether the conversion succeeded
        new_value: Converted value (None on failure or for empty input)
        data_loss: Whether the conversion is not fully reversible
        warning: Message to show even though the conversion succeeded
        error: Failure message
    """

    success: bool
    new_value: Any = None
    data_loss: bool = False
    warning: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "success": self.success,
            "new_value": self.new_value,
            "data_loss": self.data_loss,
        }
        if self.warning:
            result["warning"] = self.warning
        if self.error:
            result["error"] = self.error
        return result


def _ok(value: Any, data_loss: bool = False, warning: str | None = None) -> ConversionResult:
    return ConversionResult(success=True, new_value=value, data_loss=data_loss, warning=warning)


def _fail(error: str) -> ConversionResult:
    return ConversionResult(success=False, error=error)


# =============================================================================
# Parsing helpers
# =============================================================================


def format_number(value: float | int) -> str:
    """Render a number as text, without a trailing ".0" for integral values."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_number(value: Any) -> int | float | None:
    """Parse a number, ignoring whitespace and thousands separators.

    Returns:
        int for integral values, float otherwise, None if not a finite number
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None

    cleaned = _NUMBER_NOISE.sub("", str(value))
    if not cleaned or "_" in cleaned:
        return None
    try:
        return int(cleaned)
    except ValueError:
        pass
    try:
        number = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def parse_date(value: Any) -> datetime | None:
    """Parse a calendar date or timestamp into an aware UTC datetime.

    Accepts datetime/date objects, ISO-8601 text (with or without time and
    offset) and a few common calendar layouts. Naive values are taken as UTC.

    Returns:
        Aware datetime in UTC, or None if unparsable
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            for fmt in DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize a datetime as ISO-8601 UTC with milliseconds and a Z suffix."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def to_epoch_ms(moment: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    return (moment - EPOCH) // timedelta(milliseconds=1)


def to_storage_text(value: Any) -> str:
    """Render a converted value as cell text.

    Example:
        >>> to_storage_text(True)
        'true'
        >>> to_storage_text(3.0)
        '3'
        >>> to_storage_text(["red", "blue"])
        'red, blue'
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(to_storage_text(item) for item in value)
    if isinstance(value, datetime):
        return to_iso(value)
    return str(value)


def from_storage_text(text: str, column_type: ColumnType) -> Any:
    """Read cell text back into the value a converter expects for its type.

    Text that does not parse for its declared type is returned unchanged,
    so the converter reports it instead of it being silently dropped.
    """
    if text == "":
        return None
    if column_type == ColumnType.NUMBER:
        number = parse_number(text)
        return text if number is None else number
    if column_type == ColumnType.BOOLEAN:
        lowered = text.strip().lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        return text
    if column_type == ColumnType.REFERENCE:
        parts = [part.strip() for part in text.split(",") if part.strip()]
        ids = [parse_number(part) for part in parts]
        if not ids or any(ref is None for ref in ids):
            return text
        return ids if len(ids) > 1 else ids[0]
    return text


# =============================================================================
# Converter registry
# =============================================================================

_CONVERTERS: dict[tuple[ColumnType, ColumnType], Converter] = {}

_DESCRIPTIONS: dict[tuple[ColumnType, ColumnType], str] = {}

SAFE_CONVERSIONS = frozenset(
    {
        (ColumnType.NUMBER, ColumnType.STRING),
        (ColumnType.BOOLEAN, ColumnType.STRING),
        (ColumnType.BOOLEAN, ColumnType.NUMBER),
        (ColumnType.DATE, ColumnType.STRING),
    }
)

# Pairs with no converter; a type change across them is refused
UNSUPPORTED_CONVERSIONS = frozenset(
    {
        (ColumnType.BOOLEAN, ColumnType.DATE),
        (ColumnType.BOOLEAN, ColumnType.REFERENCE),
        (ColumnType.BOOLEAN, ColumnType.CUSTOM_ARRAY),
        (ColumnType.NUMBER, ColumnType.CUSTOM_ARRAY),
        (ColumnType.DATE, ColumnType.BOOLEAN),
        (ColumnType.DATE, ColumnType.REFERENCE),
        (ColumnType.DATE, ColumnType.CUSTOM_ARRAY),
        (ColumnType.REFERENCE, ColumnType.BOOLEAN),
        (ColumnType.REFERENCE, ColumnType.DATE),
        (ColumnType.REFERENCE, ColumnType.CUSTOM_ARRAY),
        (ColumnType.CUSTOM_ARRAY, ColumnType.NUMBER),
        (ColumnType.CUSTOM_ARRAY, ColumnType.BOOLEAN),
        (ColumnType.CUSTOM_ARRAY, ColumnType.DATE),
        (ColumnType.CUSTOM_ARRAY, ColumnType.REFERENCE),
    }
)


def _converter(
    from_type: ColumnType, to_type: ColumnType, description: str
) -> Callable[[Converter], Converter]:
    """Register a converter and its description for an ordered type pair."""

    def register(func: Converter) -> Converter:
        _CONVERTERS[(from_type, to_type)] = func
        _DESCRIPTIONS[(from_type, to_type)] = description
        return func

    return register


# ========== STRING CONVERSIONS ==========


@_converter(
    ColumnType.STRING,
    ColumnType.NUMBER,
    "Text will be parsed as numbers. Non-numeric text will fail.",
)
def _string_to_number(value: Any) -> ConversionResult:
    if str(value).strip() == "":
        return _ok(None)
    number = parse_number(str(value))
    if number is None:
        return _fail(f'Cannot convert "{value}" to number')
    return _ok(number)


@_converter(
    ColumnType.STRING,
    ColumnType.BOOLEAN,
    'Text like "true", "yes", "1" become true. "false", "no", "0" become false.',
)
def _string_to_boolean(value: Any) -> ConversionResult:
    lowered = str(value).strip().lower()
    if lowered in TRUE_VALUES:
        return _ok(True)
    if lowered in FALSE_VALUES:
        return _ok(False)
    return _fail(f'Cannot convert "{value}" to boolean. Use true/false, yes/no, 1/0')


@_converter(
    ColumnType.STRING,
    ColumnType.DATE,
    "Text will be parsed as dates (ISO format preferred).",
)
def _string_to_date(value: Any) -> ConversionResult:
    if str(value).strip() == "":
        return _ok(None)
    parsed = parse_date(value)
    if parsed is None:
        return _fail(f'Cannot convert "{value}" to date. Use ISO format (YYYY-MM-DD)')
    return _ok(to_iso(parsed))


@_converter(
    ColumnType.STRING,
    ColumnType.REFERENCE,
    "Numeric text will be converted to reference IDs.",
)
def _string_to_reference(value: Any) -> ConversionResult:
    number = parse_number(str(value).strip())
    if number is None:
        return _fail("Cannot convert non-numeric string to reference")
    if number <= 0 or not float(number).is_integer():
        return _fail("Reference ID must be a positive integer")
    return _ok(int(number), warning="String converted to reference ID. Verify the reference exists.")


@_converter(
    ColumnType.STRING,
    ColumnType.CUSTOM_ARRAY,
    "Text will be split by commas into array items.",
)
def _string_to_custom_array(value: Any) -> ConversionResult:
    items = [item.strip() for item in str(value).split(",") if item.strip()]
    return _ok(items or None, warning="String split by commas into array")


# ========== NUMBER CONVERSIONS ==========


@_converter(
    ColumnType.NUMBER,
    ColumnType.STRING,
    "Numbers will be converted to text. Safe conversion.",
)
def _number_to_string(value: Any) -> ConversionResult:
    return _ok(format_number(value))


@_converter(
    ColumnType.NUMBER,
    ColumnType.BOOLEAN,
    "Zero becomes false, all other numbers become true.",
)
def _number_to_boolean(value: Any) -> ConversionResult:
    result = value != 0
    if value in (0, 1):
        return _ok(result)
    return _ok(
        result,
        data_loss=True,
        warning=(
            f"Number {format_number(value)} converted to {'true' if result else 'false'}. "
            "Non 0/1 values may lose precision."
        ),
    )


@_converter(
    ColumnType.NUMBER,
    ColumnType.DATE,
    "Numbers will be interpreted as Unix timestamps.",
)
def _number_to_date(value: Any) -> ConversionResult:
    # Timestamps are milliseconds since the epoch
    try:
        moment = EPOCH + timedelta(milliseconds=value)
    except (OverflowError, TypeError, ValueError):
        return _fail(f"Cannot convert number {value} to date")
    return _ok(to_iso(moment), warning="Number interpreted as Unix timestamp")


@_converter(
    ColumnType.NUMBER,
    ColumnType.REFERENCE,
    "Numbers will be used as reference IDs.",
)
def _number_to_reference(value: Any) -> ConversionResult:
    if isinstance(value, (int, float)) and value > 0 and float(value).is_integer():
        return _ok(int(value), warning="Number converted to reference ID. Verify the reference exists.")
    return _fail("Reference ID must be a positive integer")


# ========== BOOLEAN CONVERSIONS ==========


@_converter(
    ColumnType.BOOLEAN,
    ColumnType.STRING,
    'true/false will become "true"/"false" text. Safe conversion.',
)
def _boolean_to_string(value: Any) -> ConversionResult:
    return _ok("true" if value else "false")


@_converter(
    ColumnType.BOOLEAN,
    ColumnType.NUMBER,
    "true becomes 1, false becomes 0. Safe conversion.",
)
def _boolean_to_number(value: Any) -> ConversionResult:
    return _ok(1 if value else 0)


# ========== DATE CONVERSIONS ==========


@_converter(
    ColumnType.DATE,
    ColumnType.STRING,
    "Dates will be formatted as ISO strings. Safe conversion.",
)
def _date_to_string(value: Any) -> ConversionResult:
    parsed = parse_date(value)
    if parsed is None:
        return _fail("Invalid date value")
    return _ok(to_iso(parsed))


@_converter(
    ColumnType.DATE,
    ColumnType.NUMBER,
    "Dates will be converted to Unix timestamps.",
)
def _date_to_number(value: Any) -> ConversionResult:
    parsed = parse_date(value)
    if parsed is None:
        return _fail("Invalid date value")
    return _ok(to_epoch_ms(parsed), warning="Date converted to Unix timestamp")


# ========== REFERENCE CONVERSIONS ==========


@_converter(
    ColumnType.REFERENCE,
    ColumnType.STRING,
    "Reference IDs will be converted to text.",
)
def _reference_to_string(value: Any) -> ConversionResult:
    if isinstance(value, (list, tuple)):
        return _ok(
            ", ".join(to_storage_text(v) for v in value),
            data_loss=True,
            warning="Reference IDs converted to comma-separated string",
        )
    return _ok(to_storage_text(value), data_loss=True, warning="Reference ID converted to string")


@_converter(
    ColumnType.REFERENCE,
    ColumnType.NUMBER,
    "Single reference IDs will be converted to numbers.",
)
def _reference_to_number(value: Any) -> ConversionResult:
    if isinstance(value, (list, tuple)):
        if len(value) != 1:
            return _fail("Cannot convert multiple references to single number")
        value = value[0]
    number = parse_number(value)
    if number is None:
        return _fail("Reference value is not a valid number")
    return _ok(number, data_loss=True, warning="Reference converted to numeric ID")


# ========== CUSTOM ARRAY CONVERSIONS ==========


@_converter(
    ColumnType.CUSTOM_ARRAY,
    ColumnType.STRING,
    "Arrays will be joined with commas.",
)
def _custom_array_to_string(value: Any) -> ConversionResult:
    if isinstance(value, (list, tuple)):
        return _ok(
            ", ".join(to_storage_text(v) for v in value),
            data_loss=True,
            warning="Array converted to comma-separated string",
        )
    return _ok(str(value))


# =============================================================================
# Public API
# =============================================================================


def _resolve(type_name: str | ColumnType) -> ColumnType | None:
    try:
        return ColumnType.from_str(type_name)
    except ValueError:
        return None


def _type_name(type_name: str | ColumnType) -> str:
    return type_name.value if isinstance(type_name, ColumnType) else str(type_name)


def attempt_conversion(
    value: Any,
    from_type: str | ColumnType,
    to_type: str | ColumnType,
) -> ConversionResult:
    """Convert a value from one column type to another.

    Args:
        value: Value in the representation of from_type
        from_type: Current structural type ("text" is an alias of "string")
        to_type: Target structural type

    Returns:
        ConversionResult; never raises

    Example:
        >>> attempt_conversion("da", "string", "boolean").new_value
        True
        >>> attempt_conversion("maybe", "string", "boolean").error
        'Cannot convert "maybe" to boolean. Use true/false, yes/no, 1/0'
    """
    if value is None or value == "":
        return _ok(None)

    source = _resolve(from_type)
    target = _resolve(to_type)

    if _type_name(from_type) == _type_name(to_type) or (source is not None and source == target):
        return _ok(value)

    converter = _CONVERTERS.get((source, target)) if source and target else None
    if converter is None:
        return _fail(
            f"No conversion available from {_type_name(from_type)} to {_type_name(to_type)}"
        )

    try:
        return converter(value)
    except Exception as e:
        logger.debug(
            "Converter raised",
            extra={"from_type": source.value, "to_type": target.value, "error": str(e)},
        )
        return _fail(f"Conversion failed: {e}")


def is_conversion_safe(from_type: str | ColumnType, to_type: str | ColumnType) -> bool:
    """Whether converting between two types never loses data."""
    return (_resolve(from_type), _resolve(to_type)) in SAFE_CONVERSIONS


def get_conversion_description(from_type: str | ColumnType, to_type: str | ColumnType) -> str:
    """Human-readable explanation of a type change, for UI hints."""
    key = (_resolve(from_type), _resolve(to_type))
    return _DESCRIPTIONS.get(
        key,
        f"Conversion from {_type_name(from_type)} to {_type_name(to_type)} "
        "may not preserve all data.",
    )


def convert_or_raise(
    value: Any,
    from_type: str | ColumnType,
    to_type: str | ColumnType,
) -> ConversionResult:
    """Convert a value, raising instead of reporting failure.

    Raises:
        ConversionError: If no converter exists or the value is rejected
    """
    result = attempt_conversion(value, from_type, to_type)
    if not result.success:
        raise ConversionError(
            result.error or "Conversion failed",
            from_type=_type_name(from_type),
            to_type=_type_name(to_type),
            value=value,
        )
    return result


def registered_conversions() -> frozenset[tuple[ColumnType, ColumnType]]:
    """Ordered type pairs that have a converter."""
    return frozenset(_CONVERTERS)
