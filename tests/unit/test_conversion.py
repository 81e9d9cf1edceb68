"""
Unit tests for the column type converter.

Tests cover:
- Empty and identity conversions
- Every registered type pair
- Safety and description lookups
- Registry completeness
- Cell text rendering
"""

from datetime import datetime, timezone
from itertools import product

import pytest

from dbaas.tabular_engine.errors import ConversionError
from dbaas.tabular_engine.schema.conversion import (
    UNSUPPORTED_CONVERSIONS,
    attempt_conversion,
    convert_or_raise,
    from_storage_text,
    get_conversion_description,
    is_conversion_safe,
    parse_date,
    registered_conversions,
    to_storage_text,
)
from dbaas.tabular_engine.schema.types import ColumnType

ALL_TYPES = list(ColumnType)


class TestEmptyAndIdentity:
    """Tests for conversions that never depend on the type pair."""

    @pytest.mark.parametrize("empty", [None, ""])
    def test_empty_input_always_converts_to_none(self, empty):
        """None and "" succeed with None for every pair, supported or not."""
        for from_type, to_type in product(ALL_TYPES, ALL_TYPES):
            result = attempt_conversion(empty, from_type, to_type)
            assert result.success is True
            assert result.new_value is None
            assert result.data_loss is False

    def test_identity_returns_value_unchanged(self):
        """Same type returns the value as is."""
        result = attempt_conversion([1, 2], "reference", "reference")
        assert result.success is True
        assert result.new_value == [1, 2]

    def test_text_is_alias_of_string(self):
        """'text' behaves like 'string' on either side."""
        assert attempt_conversion("hello", "text", "string").new_value == "hello"
        assert attempt_conversion("5", "text", "number").new_value == 5
        assert attempt_conversion(5, "number", "text").new_value == "5"

    def test_deterministic(self):
        """Identical input yields identical output."""
        first = attempt_conversion("12.5", "string", "number")
        second = attempt_conversion("12.5", "string", "number")
        assert first == second


class TestStringConversions:
    """Tests for conversions out of string columns."""

    def test_number_strips_separators_and_whitespace(self):
        assert attempt_conversion("1,234.5", "string", "number").new_value == 1234.5
        assert attempt_conversion(" 42 ", "string", "number").new_value == 42

    def test_number_rejects_text(self):
        result = attempt_conversion("abc", "string", "number")
        assert result.success is False
        assert result.error == 'Cannot convert "abc" to number'

    def test_number_rejects_infinity(self):
        assert attempt_conversion("inf", "string", "number").success is False

    @pytest.mark.parametrize("n", [-5, 0, 7, 1234567, 10**15])
    def test_integer_round_trip(self, n):
        """number -> string -> number returns the original integer."""
        as_text = attempt_conversion(n, "number", "string").new_value
        assert attempt_conversion(as_text, "string", "number").new_value == n

    @pytest.mark.parametrize("text", ["true", "1", "YES", "da", "y", "T"])
    def test_boolean_true_vocabulary(self, text):
        assert attempt_conversion(text, "string", "boolean").new_value is True

    @pytest.mark.parametrize("text", ["false", "0", "No", "nu", "n", "f", "  "])
    def test_boolean_false_vocabulary(self, text):
        assert attempt_conversion(text, "string", "boolean").new_value is False

    def test_boolean_rejects_unknown_word(self):
        result = attempt_conversion("maybe", "string", "boolean")
        assert result.success is False
        assert "yes/no, 1/0" in result.error
        assert result.error == 'Cannot convert "maybe" to boolean. Use true/false, yes/no, 1/0'

    def test_date_normalizes_to_iso(self):
        result = attempt_conversion("2025-01-15", "string", "date")
        assert result.success is True
        assert result.new_value == "2025-01-15T00:00:00.000Z"

    def test_date_converts_offsets_to_utc(self):
        result = attempt_conversion("2025-01-15T10:20:30+02:00", "string", "date")
        assert result.new_value == "2025-01-15T08:20:30.000Z"

    def test_date_accepts_z_suffix(self):
        result = attempt_conversion("2025-01-15T10:20:30.250Z", "string", "date")
        assert result.new_value == "2025-01-15T10:20:30.250Z"

    def test_date_accepts_day_first_dotted_layout(self):
        result = attempt_conversion("15.03.2025", "string", "date")
        assert result.new_value == "2025-03-15T00:00:00.000Z"

    def test_date_rejects_garbage(self):
        result = attempt_conversion("not a date", "string", "date")
        assert result.success is False
        assert result.error == 'Cannot convert "not a date" to date. Use ISO format (YYYY-MM-DD)'

    def test_custom_array_splits_and_trims(self):
        result = attempt_conversion("red, blue , green", "string", "customArray")
        assert result.success is True
        assert result.new_value == ["red", "blue", "green"]
        assert result.warning == "String split by commas into array"

    def test_custom_array_of_only_commas_is_none(self):
        result = attempt_conversion(" , ,", "string", "customArray")
        assert result.success is True
        assert result.new_value is None

    def test_reference_accepts_positive_integer(self):
        result = attempt_conversion("12", "string", "reference")
        assert result.success is True
        assert result.new_value == 12
        assert result.warning == "String converted to reference ID. Verify the reference exists."

    def test_reference_rejects_non_numeric(self):
        result = attempt_conversion("abc", "string", "reference")
        assert result.error == "Cannot convert non-numeric string to reference"

    @pytest.mark.parametrize("text", ["-3", "0", "1.5"])
    def test_reference_rejects_non_positive_or_fractional(self, text):
        result = attempt_conversion(text, "string", "reference")
        assert result.success is False
        assert result.error == "Reference ID must be a positive integer"


class TestNumberConversions:
    """Tests for conversions out of number columns."""

    def test_string_drops_trailing_zero_fraction(self):
        assert attempt_conversion(3.0, "number", "string").new_value == "3"
        assert attempt_conversion(2.5, "number", "string").new_value == "2.5"

    @pytest.mark.parametrize("n,expected", [(0, False), (1, True)])
    def test_boolean_zero_and_one_are_lossless(self, n, expected):
        result = attempt_conversion(n, "number", "boolean")
        assert result.new_value is expected
        assert result.data_loss is False
        assert result.warning is None

    def test_boolean_other_numbers_flag_loss(self):
        result = attempt_conversion(5, "number", "boolean")
        assert result.success is True
        assert result.new_value is True
        assert result.data_loss is True
        assert result.warning == "Number 5 converted to true. Non 0/1 values may lose precision."

    def test_date_from_millisecond_timestamp(self):
        result = attempt_conversion(1735689600000, "number", "date")
        assert result.new_value == "2025-01-01T00:00:00.000Z"
        assert result.warning == "Number interpreted as Unix timestamp"

    def test_date_from_out_of_range_timestamp_fails(self):
        result = attempt_conversion(10**20, "number", "date")
        assert result.success is False
        assert result.error == f"Cannot convert number {10**20} to date"

    def test_reference_accepts_positive_integer(self):
        result = attempt_conversion(4, "number", "reference")
        assert result.new_value == 4
        assert result.warning == "Number converted to reference ID. Verify the reference exists."

    @pytest.mark.parametrize("n", [0, -1, 2.5])
    def test_reference_rejects_invalid_ids(self, n):
        result = attempt_conversion(n, "number", "reference")
        assert result.error == "Reference ID must be a positive integer"


class TestOtherConversions:
    """Tests for boolean, date, reference and customArray sources."""

    def test_boolean_to_string_and_number(self):
        assert attempt_conversion(True, "boolean", "string").new_value == "true"
        assert attempt_conversion(False, "boolean", "number").new_value == 0
        assert attempt_conversion(True, "boolean", "number").data_loss is False

    def test_date_to_string_reserializes(self):
        result = attempt_conversion("2025-01-15", "date", "string")
        assert result.new_value == "2025-01-15T00:00:00.000Z"

    def test_date_to_string_rejects_invalid(self):
        assert attempt_conversion("soon", "date", "string").error == "Invalid date value"

    def test_date_to_number_is_epoch_milliseconds(self):
        result = attempt_conversion("2025-01-01T00:00:00.000Z", "date", "number")
        assert result.new_value == 1735689600000
        assert result.warning == "Date converted to Unix timestamp"

    def test_reference_list_to_string(self):
        result = attempt_conversion([3, 4], "reference", "string")
        assert result.new_value == "3, 4"
        assert result.data_loss is True
        assert result.warning == "Reference IDs converted to comma-separated string"

    def test_single_reference_to_string(self):
        result = attempt_conversion(7, "reference", "string")
        assert result.new_value == "7"
        assert result.warning == "Reference ID converted to string"

    def test_reference_to_number_single_only(self):
        assert attempt_conversion(9, "reference", "number").new_value == 9
        assert attempt_conversion([9], "reference", "number").new_value == 9
        result = attempt_conversion([3, 4], "reference", "number")
        assert result.error == "Cannot convert multiple references to single number"

    def test_reference_to_number_rejects_text(self):
        result = attempt_conversion("abc", "reference", "number")
        assert result.error == "Reference value is not a valid number"

    def test_custom_array_list_to_string(self):
        result = attempt_conversion(["a", "b"], "customArray", "string")
        assert result.new_value == "a, b"
        assert result.data_loss is True
        assert result.warning == "Array converted to comma-separated string"

    def test_custom_array_single_value_to_string(self):
        result = attempt_conversion("a", "customArray", "string")
        assert result.new_value == "a"
        assert result.data_loss is False


class TestUnsupportedAndFailures:
    """Tests for pairs without a converter and converter failures."""

    def test_unsupported_pair(self):
        result = attempt_conversion(True, "boolean", "date")
        assert result.success is False
        assert result.error == "No conversion available from boolean to date"

    def test_unknown_type_name(self):
        result = attempt_conversion("x", "money", "number")
        assert result.error == "No conversion available from money to number"

    def test_converter_exception_is_reported(self):
        """A converter that raises reports 'Conversion failed'."""

        class Unprintable:
            def __str__(self):
                raise RuntimeError("boom")

        result = attempt_conversion(Unprintable(), "string", "boolean")
        assert result.success is False
        assert result.error == "Conversion failed: boom"

    def test_convert_or_raise(self):
        with pytest.raises(ConversionError) as exc_info:
            convert_or_raise("abc", "string", "number")
        assert exc_info.value.message == 'Cannot convert "abc" to number'
        assert exc_info.value.from_type == "string"
        assert exc_info.value.to_type == "number"
        assert exc_info.value.code == "CONVERSION_ERROR"

    def test_every_pair_is_registered_or_documented(self):
        """Each ordered pair of distinct types has a converter or a documented gap."""
        registered = registered_conversions()
        for pair in product(ALL_TYPES, ALL_TYPES):
            if pair[0] == pair[1]:
                continue
            assert (pair in registered) != (pair in UNSUPPORTED_CONVERSIONS), pair


class TestSafetyAndDescriptions:
    """Tests for is_conversion_safe and get_conversion_description."""

    def test_safe_pairs(self):
        safe = {
            (a.value, b.value)
            for a, b in product(ALL_TYPES, ALL_TYPES)
            if is_conversion_safe(a, b)
        }
        assert safe == {
            ("number", "string"),
            ("boolean", "string"),
            ("boolean", "number"),
            ("date", "string"),
        }

    def test_unknown_types_are_not_safe(self):
        assert is_conversion_safe("money", "string") is False

    def test_description_for_registered_pair(self):
        assert (
            get_conversion_description("string", "number")
            == "Text will be parsed as numbers. Non-numeric text will fail."
        )

    def test_description_fallback(self):
        assert (
            get_conversion_description("boolean", "date")
            == "Conversion from boolean to date may not preserve all data."
        )


class TestStorageText:
    """Tests for the cell text codec."""

    def test_to_storage_text(self):
        assert to_storage_text(None) == ""
        assert to_storage_text(True) == "true"
        assert to_storage_text(3.0) == "3"
        assert to_storage_text(2.5) == "2.5"
        assert to_storage_text(["a", 1]) == "a, 1"
        moment = datetime(2025, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        assert to_storage_text(moment) == "2025-01-02T03:04:05.678Z"

    def test_from_storage_text(self):
        assert from_storage_text("", ColumnType.NUMBER) is None
        assert from_storage_text("12", ColumnType.NUMBER) == 12
        assert from_storage_text("true", ColumnType.BOOLEAN) is True
        assert from_storage_text("3, 4", ColumnType.REFERENCE) == [3, 4]
        assert from_storage_text("5", ColumnType.REFERENCE) == 5
        assert from_storage_text("abc", ColumnType.NUMBER) == "abc"

    def test_parse_date_treats_naive_as_utc(self):
        parsed = parse_date("2025-06-01T12:00:00")
        assert parsed == datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
