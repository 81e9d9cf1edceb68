"""
Error types for the tabular engine.

This module defines every exception raised by the engine:
- TabularEngineError: Base exception
- ValidationError: Row data fails required/type/option checks
- ConversionError: Value cannot be converted between column types
- UniquenessError: Value collides with an existing unique-column value
- ConcurrencyError: Lock acquisition failed during a locked write
- NotFoundError: Tenant, table, column, row or counter does not exist
- ProtectedResourceError: Edit refused on a protected table or locked column

Invariants:
    - All errors inherit from TabularEngineError
    - Errors carry a stable code for the request layer
    - Validation, conversion and uniqueness messages are user-facing and
      are surfaced verbatim
"""

from __future__ import annotations

from typing import Any


class TabularEngineError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TABULAR_ENGINE_ERROR"
        self.details = details or {}


class ValidationError(TabularEngineError):
    """Row or request data failed validation.

    Raised when:
    - A required column is missing or empty
    - A value cannot be coerced to the column's structural type
    - A customArray value is not one of the column's options
    """

    def __init__(
        self,
        message: str,
        column_name: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"column": column_name, "errors": errors or []},
        )
        self.column_name = column_name
        self.errors = errors or []


class ConversionError(TabularEngineError):
    """A value could not be converted between two column types.

    Raised when:
    - No converter is registered for the type pair
    - The converter rejects the value (unparsable number/date/boolean)
    """

    def __init__(
        self,
        message: str,
        from_type: str | None = None,
        to_type: str | None = None,
        value: Any = None,
    ) -> None:
        super().__init__(
            message,
            code="CONVERSION_ERROR",
            details={"from_type": from_type, "to_type": to_type, "value": value},
        )
        self.from_type = from_type
        self.to_type = to_type
        self.value = value


class UniquenessError(TabularEngineError):
    """Value already exists in a unique column."""

    def __init__(
        self,
        message: str,
        column_id: int | None = None,
        value: Any = None,
    ) -> None:
        super().__init__(
            message,
            code="UNIQUENESS_ERROR",
            details={"column_id": column_id, "value": value},
        )
        self.column_id = column_id
        self.value = value

    @classmethod
    def for_value(cls, value: Any, column_id: int | None = None) -> UniquenessError:
        """Build the user-facing error for a duplicate value."""
        return cls(
            f'Value "{value}" already exists. This column requires unique values.',
            column_id=column_id,
            value=value,
        )


class ConcurrencyError(TabularEngineError):
    """Lock acquisition failed or timed out.

    Issue operations are retried a bounded number of times before this
    error reaches the caller. An Issue that fails with this error may still
    have committed if the failure happened after COMMIT was sent; callers
    must not retry Issue blindly.
    """

    def __init__(
        self,
        message: str,
        series: str | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(
            message,
            code="CONCURRENCY_ERROR",
            details={"series": series, "attempts": attempts},
        )
        self.series = series
        self.attempts = attempts


class NotFoundError(TabularEngineError):
    """Resource not found.

    Raised when:
    - Tenant database doesn't exist
    - Table, column or row doesn't exist
    - Series counter doesn't exist
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: Any,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ProtectedResourceError(TabularEngineError):
    """Operation refused on a protected table or locked column."""

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: Any,
    ) -> None:
        super().__init__(
            message,
            code="PROTECTED_RESOURCE",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
