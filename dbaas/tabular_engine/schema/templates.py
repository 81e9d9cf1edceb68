"""
Protected invoice tables.

Invoice workflows rely on three platform-managed tables per tenant database
(customers, invoices, invoice_items) and find their columns by semantic tag.
The columns they depend on are locked; optional columns stay editable.

Invariants:
    - initialize_invoice_tables is idempotent: existing protected tables
      are returned untouched
    - invoices.invoice_number is required and unique
"""

from __future__ import annotations

import logging

from ..errors import ValidationError
from .catalog import SchemaCatalog
from .types import ColumnDef, SemanticTag, TableDef, column

logger = logging.getLogger(__name__)

INVOICE_STATUSES = ("draft", "issued", "paid", "overdue", "cancelled")

CUSTOMERS = "customers"
INVOICES = "invoices"
INVOICE_ITEMS = "invoice_items"


def customer_columns() -> list[ColumnDef]:
    return [
        column("customer_name", "string", semantic_tag=SemanticTag.CUSTOMER_NAME,
               required=True, primary=True, is_locked=True),
        column("customer_email", "string", semantic_tag=SemanticTag.CUSTOMER_EMAIL,
               required=True, is_locked=True),
        column("customer_tax_id", "string", semantic_tag=SemanticTag.CUSTOMER_TAX_ID,
               required=True, is_locked=True),
        column("customer_address", "string", semantic_tag=SemanticTag.CUSTOMER_ADDRESS,
               is_locked=True),
        column("customer_city", "string", semantic_tag=SemanticTag.CUSTOMER_CITY,
               required=True, is_locked=True),
        column("customer_country", "string", semantic_tag=SemanticTag.CUSTOMER_COUNTRY,
               required=True, is_locked=True),
        column("customer_postal_code", "string", semantic_tag=SemanticTag.CUSTOMER_POSTAL_CODE,
               is_locked=True),
        column("customer_phone", "string", semantic_tag=SemanticTag.CUSTOMER_PHONE),
    ]


def invoice_columns(customers_table_id: int) -> list[ColumnDef]:
    return [
        column("invoice_number", "string", semantic_tag=SemanticTag.INVOICE_NUMBER,
               required=True, unique=True, primary=True, is_locked=True),
        column("invoice_series", "string", semantic_tag=SemanticTag.INVOICE_SERIES,
               required=True, is_locked=True),
        column("date", "date", semantic_tag=SemanticTag.INVOICE_DATE,
               required=True, is_locked=True),
        column("due_date", "date", semantic_tag=SemanticTag.INVOICE_DUE_DATE,
               required=True, is_locked=True),
        column("customer_id", "reference", semantic_tag=SemanticTag.INVOICE_CUSTOMER_ID,
               required=True, is_locked=True, reference_table_id=customers_table_id),
        column("status", "customArray", semantic_tag=SemanticTag.INVOICE_STATUS,
               required=True, is_locked=True, custom_options=INVOICE_STATUSES,
               default_value="draft"),
        column("payment_terms", "string", semantic_tag=SemanticTag.INVOICE_PAYMENT_TERMS),
        column("payment_method", "string", semantic_tag=SemanticTag.INVOICE_PAYMENT_METHOD),
        column("late_fee", "number", semantic_tag=SemanticTag.INVOICE_LATE_FEE),
        column("notes", "string", semantic_tag=SemanticTag.INVOICE_NOTES),
        column("base_currency", "string", semantic_tag=SemanticTag.INVOICE_CURRENCY,
               default_value="RON"),
        column("total_amount", "number", semantic_tag=SemanticTag.INVOICE_TOTAL_AMOUNT),
    ]


def invoice_item_columns(invoices_table_id: int) -> list[ColumnDef]:
    return [
        column("invoice_id", "reference", semantic_tag=SemanticTag.INVOICE_ID,
               required=True, is_locked=True, reference_table_id=invoices_table_id),
        column("product_name", "string", semantic_tag=SemanticTag.PRODUCT_NAME,
               required=True, is_locked=True),
        column("quantity", "number", semantic_tag=SemanticTag.QUANTITY,
               required=True, is_locked=True),
        column("unit_of_measure", "string", semantic_tag=SemanticTag.UNIT_OF_MEASURE,
               required=True, is_locked=True, default_value="pcs"),
        column("price", "number", semantic_tag=SemanticTag.UNIT_PRICE,
               required=True, is_locked=True),
        column("currency", "string", semantic_tag=SemanticTag.CURRENCY,
               required=True, is_locked=True, default_value="RON"),
        column("tax_rate", "number", semantic_tag=SemanticTag.TAX_RATE),
        column("product_description", "string", semantic_tag=SemanticTag.PRODUCT_DESCRIPTION),
    ]


async def initialize_invoice_tables(
    catalog: SchemaCatalog,
    tenant_id: str,
    database_id: int,
) -> dict[str, TableDef]:
    """Create the protected invoice tables for a tenant database.

    Tables that already exist are left as they are. Nothing is created when
    a user table already holds one of the protected names.

    Returns:
        Mapping of protected kind ("customers", "invoices", "invoice_items")
        to its TableDef

    Raises:
        ValidationError: If an unprotected table uses a protected name
    """
    tables: dict[str, TableDef] = {}

    for table in await catalog.list_tables(tenant_id, database_id):
        if table.name in (CUSTOMERS, INVOICES, INVOICE_ITEMS) and not table.is_protected:
            raise ValidationError(
                f"Cannot create invoice tables: table '{table.name}' already exists "
                "as a user table; rename or delete it first"
            )

    async def ensure(kind: str, description: str, columns: list[ColumnDef]) -> TableDef:
        existing = await catalog.find_protected_table(tenant_id, database_id, kind)
        if existing is not None:
            return existing
        return await catalog.create_table(
            tenant_id,
            database_id,
            kind,
            description=description,
            columns=columns,
            is_protected=True,
            protected_kind=kind,
        )

    tables[CUSTOMERS] = await ensure(
        CUSTOMERS, "Customer information for invoices", customer_columns()
    )
    tables[INVOICES] = await ensure(
        INVOICES, "Invoice headers", invoice_columns(tables[CUSTOMERS].id)
    )
    tables[INVOICE_ITEMS] = await ensure(
        INVOICE_ITEMS, "Invoice line items", invoice_item_columns(tables[INVOICES].id)
    )

    logger.info(
        "Invoice tables ready",
        extra={
            "tenant_id": tenant_id,
            "database_id": database_id,
            "table_ids": {kind: table.id for kind, table in tables.items()},
        },
    )
    return tables
