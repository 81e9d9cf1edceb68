"""
Core type definitions for the tabular engine schema catalog.

This module defines the foundational types for runtime-defined tables:
- ColumnType: Structural type governing storage and conversion
- SemanticTag: Optional domain label, orthogonal to ColumnType
- ColumnDef: Definition of a single column within a table
- TableDef: Definition of a tenant table

Invariants:
    - ColumnType values are a wire vocabulary shared with schema editors;
      adding one requires converter entries for every existing type in
      both directions, or an UNSUPPORTED_CONVERSIONS entry documenting the gap
    - Column names are unique within a table
    - Semantic tags never influence storage or conversion

How to change safely:
    - Add new ColumnType members together with their converters
    - Add new SemanticTag members freely; tags are labels only
    - Never rename an existing enum value (it is persisted as text)

Example:
    >>> from dbaas.tabular_engine.schema.types import TableDef, column
    >>> invoices = TableDef(
    ...     name="invoices",
    ...     database_id=1,
    ...     columns=(
    ...         column("invoice_number", "string", required=True, unique=True),
    ...         column("status", "customArray", custom_options=("draft", "issued")),
    ...     ),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any


class ColumnType(Enum):
    """Structural column types.

    These map to storage representations and conversion rules.
    """

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"  # ISO-8601 UTC text
    REFERENCE = "reference"  # Row id(s) in reference_table_id
    CUSTOM_ARRAY = "customArray"  # One of custom_options

    @classmethod
    def from_str(cls, value: str | ColumnType) -> ColumnType:
        """Convert string representation to ColumnType.

        "text" is accepted as an alias of "string".

        Args:
            value: String name of the column type

        Returns:
            Corresponding ColumnType enum value

        Raises:
            ValueError: If value is not a valid column type
        """
        if isinstance(value, ColumnType):
            return value
        if value == "text":
            return cls.STRING
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid column type '{value}'. Valid types: {valid}")


class SemanticTag(Enum):
    """Domain labels a column can carry.

    Used by business workflows to find columns regardless of their names.
    """

    # Invoice
    INVOICE_NUMBER = "invoice_number"
    INVOICE_SERIES = "invoice_series"
    INVOICE_DATE = "invoice_date"
    INVOICE_DUE_DATE = "invoice_due_date"
    INVOICE_CUSTOMER_ID = "invoice_customer_id"
    INVOICE_STATUS = "invoice_status"
    INVOICE_PAYMENT_TERMS = "invoice_payment_terms"
    INVOICE_PAYMENT_METHOD = "invoice_payment_method"
    INVOICE_NOTES = "invoice_notes"
    INVOICE_CURRENCY = "invoice_currency"
    INVOICE_TOTAL_AMOUNT = "invoice_total_amount"
    INVOICE_LATE_FEE = "invoice_late_fee"

    # Customer
    CUSTOMER_NAME = "customer_name"
    CUSTOMER_EMAIL = "customer_email"
    CUSTOMER_PHONE = "customer_phone"
    CUSTOMER_ADDRESS = "customer_address"
    CUSTOMER_CITY = "customer_city"
    CUSTOMER_COUNTRY = "customer_country"
    CUSTOMER_POSTAL_CODE = "customer_postal_code"
    CUSTOMER_TAX_ID = "customer_tax_id"

    # Company
    COMPANY_NAME = "company_name"
    COMPANY_TAX_ID = "company_tax_id"
    COMPANY_IBAN = "company_iban"

    # Line items
    INVOICE_ID = "invoice_id"
    PRODUCT_NAME = "product_name"
    PRODUCT_DESCRIPTION = "product_description"
    UNIT_OF_MEASURE = "unit_of_measure"
    QUANTITY = "quantity"
    UNIT_PRICE = "unit_price"
    TAX_RATE = "tax_rate"
    TOTAL_PRICE = "total_price"

    # Generic
    NAME = "name"
    DESCRIPTION = "description"
    EMAIL = "email"
    DATE = "date"
    STATUS = "status"
    AMOUNT = "amount"
    CURRENCY = "currency"
    NOTES = "notes"

    @classmethod
    def from_str(cls, value: str | SemanticTag | None) -> SemanticTag | None:
        """Convert string representation to SemanticTag (None passes through).

        Raises:
            ValueError: If value is not a known tag
        """
        if value is None or isinstance(value, SemanticTag):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid semantic tag '{value}'") from None


@dataclass(frozen=True)
class ColumnDef:
    """Definition of a single column within a table.

    Attributes:
        name: Column name, unique within its table
        type: Structural type of the column
        id: Catalog-assigned identifier (None until persisted)
        table_id: Owning table (None until persisted)
        semantic_tag: Optional domain label
        required: Cell value must be non-empty
        unique: No two cells may share a non-empty value
        primary: Column is the table's display key
        auto_increment: Number column filled from a per-column counter
        default_value: Value used when a row omits the column
        custom_options: Allowed values when type is CUSTOM_ARRAY
        reference_table_id: Target table when type is REFERENCE
        order: Display order within the table
        is_locked: Platform-managed column, structural edits refused
        description: Human-readable description

    Invariants:
        - auto_increment only on NUMBER columns
        - custom_options only meaningful for CUSTOM_ARRAY (an empty tuple
          marks the column misconfigured; rows fail only if it is required)
    """

    name: str
    type: ColumnType
    id: int | None = None
    table_id: int | None = None
    semantic_tag: SemanticTag | None = None
    required: bool = False
    unique: bool = False
    primary: bool = False
    auto_increment: bool = False
    default_value: str | None = None
    custom_options: tuple[str, ...] = ()
    reference_table_id: int | None = None
    order: int = 0
    is_locked: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        """Validate column definition."""
        if not self.name or not self.name.strip():
            raise ValueError("Column name cannot be empty")
        if self.auto_increment and self.type != ColumnType.NUMBER:
            raise ValueError(f"auto_increment requires a number column, got '{self.type.value}'")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "id": self.id,
            "table_id": self.table_id,
            "name": self.name,
            "type": self.type.value,
            "required": self.required,
            "unique": self.unique,
            "primary": self.primary,
            "auto_increment": self.auto_increment,
            "order": self.order,
            "is_locked": self.is_locked,
        }
        if self.semantic_tag is not None:
            result["semantic_tag"] = self.semantic_tag.value
        if self.default_value is not None:
            result["default_value"] = self.default_value
        if self.custom_options:
            result["custom_options"] = list(self.custom_options)
        if self.reference_table_id is not None:
            result["reference_table_id"] = self.reference_table_id
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ColumnDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            type=ColumnType.from_str(data["type"]),
            id=data.get("id"),
            table_id=data.get("table_id"),
            semantic_tag=SemanticTag.from_str(data.get("semantic_tag")),
            required=data.get("required", False),
            unique=data.get("unique", False),
            primary=data.get("primary", False),
            auto_increment=data.get("auto_increment", False),
            default_value=data.get("default_value"),
            custom_options=tuple(data.get("custom_options") or ()),
            reference_table_id=data.get("reference_table_id"),
            order=data.get("order", 0),
            is_locked=data.get("is_locked", False),
            description=data.get("description", ""),
        )


def column(
    name: str,
    type: str | ColumnType,
    *,
    semantic_tag: str | SemanticTag | None = None,
    required: bool = False,
    unique: bool = False,
    primary: bool = False,
    auto_increment: bool = False,
    default_value: str | None = None,
    custom_options: tuple[str, ...] | list[str] = (),
    reference_table_id: int | None = None,
    order: int = 0,
    is_locked: bool = False,
    description: str = "",
) -> ColumnDef:
    """Convenience function to create an unsaved ColumnDef.

    Example:
        >>> email = column("email", "string", unique=True, semantic_tag="customer_email")
        >>> status = column("status", "customArray", custom_options=("open", "closed"))
    """
    return ColumnDef(
        name=name,
        type=ColumnType.from_str(type),
        semantic_tag=SemanticTag.from_str(semantic_tag),
        required=required,
        unique=unique,
        primary=primary,
        auto_increment=auto_increment,
        default_value=default_value,
        custom_options=tuple(custom_options),
        reference_table_id=reference_table_id,
        order=order,
        is_locked=is_locked,
        description=description,
    )


@dataclass(frozen=True)
class TableDef:
    """Definition of a tenant table.

    Attributes:
        name: Table name, unique within the tenant database
        database_id: Owning tenant database (the table's owner scope)
        id: Catalog-assigned identifier (None until persisted)
        tenant_id: Owning tenant (None until persisted)
        description: Human-readable description
        is_protected: Platform-managed table, deletion refused
        protected_kind: Kind of protected table (e.g. "invoices")
        columns: Column definitions, ordered by ColumnDef.order

    Invariants:
        - Column names are unique within the table
        - A protected table keeps its locked columns
    """

    name: str
    database_id: int
    id: int | None = None
    tenant_id: str | None = None
    description: str = ""
    is_protected: bool = False
    protected_kind: str | None = None
    columns: tuple[ColumnDef, ...] = dataclass_field(default_factory=tuple)

    def __post_init__(self) -> None:
        """Validate table definition."""
        if not self.name or not self.name.strip():
            raise ValueError("Table name cannot be empty")

        names = [c.name for c in self.columns]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate column name in table '{self.name}'")

    def get_column(self, name_or_id: str | int) -> ColumnDef | None:
        """Get a column by name or ID.

        Args:
            name_or_id: Column name (str) or column id (int)

        Returns:
            ColumnDef if found, None otherwise
        """
        for c in self.columns:
            if isinstance(name_or_id, int):
                if c.id == name_or_id:
                    return c
            elif c.name == name_or_id:
                return c
        return None

    def get_required_columns(self) -> list[ColumnDef]:
        """Get list of required columns."""
        return [c for c in self.columns if c.required]

    def get_column_by_tag(self, tag: SemanticTag) -> ColumnDef | None:
        """Get the first column carrying a semantic tag."""
        for c in self.columns:
            if c.semantic_tag == tag:
                return c
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "database_id": self.database_id,
            "name": self.name,
            "columns": [c.to_dict() for c in self.columns],
        }
        if self.description:
            result["description"] = self.description
        if self.is_protected:
            result["is_protected"] = True
            result["protected_kind"] = self.protected_kind
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TableDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            database_id=data["database_id"],
            id=data.get("id"),
            tenant_id=data.get("tenant_id"),
            description=data.get("description", ""),
            is_protected=data.get("is_protected", False),
            protected_kind=data.get("protected_kind"),
            columns=tuple(ColumnDef.from_dict(c) for c in data.get("columns", [])),
        )
