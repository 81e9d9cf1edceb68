"""
Unit tests for the schema catalog.

Tests cover:
- Table creation and lookup
- Column addition with backfill
- Column edits, type changes and deletion
- Protection of invoice tables and locked columns
"""

import pytest

from dbaas.tabular_engine.errors import (
    ConversionError,
    NotFoundError,
    ProtectedResourceError,
    UniquenessError,
    ValidationError,
)
from dbaas.tabular_engine.rows import RowStore
from dbaas.tabular_engine.schema import ColumnType, SemanticTag, column, initialize_invoice_tables

TENANT_ID = "tenant_1"
DATABASE_ID = 1


class TestTables:
    """Tests for table operations."""

    @pytest.mark.asyncio
    async def test_create_and_get_table(self, catalog):
        table = await catalog.create_table(
            TENANT_ID,
            DATABASE_ID,
            "products",
            description="Catalog items",
            columns=[
                column("name", "string", required=True),
                column("price", "number"),
                column("category", "customArray", custom_options=["food", "tools"]),
            ],
        )

        assert table.id is not None
        assert table.tenant_id == TENANT_ID
        assert [c.name for c in table.columns] == ["name", "price", "category"]
        assert [c.order for c in table.columns] == [0, 1, 2]
        assert all(c.table_id == table.id for c in table.columns)

        fetched = await catalog.get_table(TENANT_ID, table.id)
        assert fetched == table
        assert fetched.get_column("category").custom_options == ("food", "tools")

    @pytest.mark.asyncio
    async def test_duplicate_table_name_rejected(self, catalog):
        await catalog.create_table(TENANT_ID, DATABASE_ID, "products")
        with pytest.raises(ValidationError, match="already exists"):
            await catalog.create_table(TENANT_ID, DATABASE_ID, "products")

        # Same name in another database is fine
        other = await catalog.create_table(TENANT_ID, 2, "products")
        assert other.database_id == 2

    @pytest.mark.asyncio
    async def test_duplicate_column_names_rejected(self, catalog):
        with pytest.raises(ValidationError, match="Duplicate column name"):
            await catalog.create_table(
                TENANT_ID,
                DATABASE_ID,
                "bad",
                columns=[column("a", "string"), column("a", "number")],
            )
        assert await catalog.list_tables(TENANT_ID, DATABASE_ID) == []

    @pytest.mark.asyncio
    async def test_reference_to_missing_table_rejected(self, catalog):
        with pytest.raises(NotFoundError):
            await catalog.create_table(
                TENANT_ID,
                DATABASE_ID,
                "orders",
                columns=[column("customer", "reference", reference_table_id=999)],
            )

    @pytest.mark.asyncio
    async def test_get_missing_table(self, catalog):
        with pytest.raises(NotFoundError) as exc_info:
            await catalog.get_table(TENANT_ID, 42)
        assert exc_info.value.code == "NOT_FOUND"
        assert exc_info.value.resource_type == "table"

    @pytest.mark.asyncio
    async def test_list_tables(self, catalog):
        await catalog.create_table(TENANT_ID, DATABASE_ID, "a")
        await catalog.create_table(TENANT_ID, DATABASE_ID, "b")
        await catalog.create_table(TENANT_ID, 2, "c")

        tables = await catalog.list_tables(TENANT_ID, DATABASE_ID)
        assert [t.name for t in tables] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_delete_table_cascades(self, catalog, db):
        table = await catalog.create_table(
            TENANT_ID,
            DATABASE_ID,
            "notes",
            columns=[column("title", "string"), column("body", "string")],
        )
        rows = RowStore(db)
        title = table.get_column("title")
        await rows.create_row_with_cells(TENANT_ID, table.id, [(title.id, "one")])
        await rows.create_row_with_cells(TENANT_ID, table.id, [(title.id, "two")])

        counts = await catalog.delete_table(TENANT_ID, table.id)

        assert counts == {"cells": 4, "rows": 2, "columns": 2}
        with pytest.raises(NotFoundError):
            await catalog.get_table(TENANT_ID, table.id)


class TestColumns:
    """Tests for column operations."""

    @pytest.fixture
    def rows(self, db):
        return RowStore(db)

    @pytest.mark.asyncio
    async def test_add_column_backfills_existing_rows(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "tasks", columns=[column("title", "string")]
        )
        title = table.get_column("title")
        row = await rows.create_row_with_cells(TENANT_ID, table.id, [(title.id, "Write docs")])

        done = await catalog.add_column(
            TENANT_ID, table.id, column("done", "boolean", default_value="false")
        )
        notes = await catalog.add_column(TENANT_ID, table.id, column("notes", "string"))

        assert done.order == 1
        assert notes.order == 2
        fetched = await rows.get_row(TENANT_ID, row.id)
        assert fetched.get(done.id) == "false"
        assert fetched.get(notes.id) == ""
        assert len(fetched.cells) == 3

    @pytest.mark.asyncio
    async def test_add_required_column_to_non_empty_table_needs_default(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "tasks", columns=[column("title", "string")]
        )
        await rows.create_row_with_cells(
            TENANT_ID, table.id, [(table.get_column("title").id, "x")]
        )

        with pytest.raises(ValidationError, match="provide a default value"):
            await catalog.add_column(TENANT_ID, table.id, column("owner", "string", required=True))

        # Nothing was added
        assert [c.name for c in await catalog.get_columns(TENANT_ID, table.id)] == ["title"]

    @pytest.mark.asyncio
    async def test_add_duplicate_column_rejected(self, catalog):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "tasks", columns=[column("title", "string")]
        )
        with pytest.raises(ValidationError, match="already exists"):
            await catalog.add_column(TENANT_ID, table.id, column("title", "number"))

    @pytest.mark.asyncio
    async def test_update_column(self, catalog):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "tasks", columns=[column("title", "string")]
        )
        col = table.get_column("title")

        updated = await catalog.update_column(
            TENANT_ID,
            col.id,
            name="headline",
            description="Short summary",
            semantic_tag="name",
            order=5,
        )

        assert updated.name == "headline"
        assert updated.description == "Short summary"
        assert updated.semantic_tag == SemanticTag.NAME
        assert updated.order == 5

    @pytest.mark.asyncio
    async def test_update_column_rejects_type_field(self, catalog):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "tasks", columns=[column("title", "string")]
        )
        with pytest.raises(ValidationError, match="cannot be edited: type"):
            await catalog.update_column(TENANT_ID, table.get_column("title").id, type="number")

    @pytest.mark.asyncio
    async def test_update_column_rejects_invalid_default(self, catalog):
        table = await catalog.create_table(
            TENANT_ID,
            DATABASE_ID,
            "tasks",
            columns=[
                column("state", "customArray", required=True, custom_options=["open", "done"]),
                column("points", "number"),
            ],
        )
        state = table.get_column("state")

        with pytest.raises(ValidationError, match="Invalid default value for column 'state'"):
            await catalog.update_column(TENANT_ID, state.id, default_value="archived")
        with pytest.raises(ValidationError, match="requires a valid number"):
            await catalog.update_column(TENANT_ID, table.get_column("points").id, default_value="lots")

        updated = await catalog.update_column(TENANT_ID, state.id, default_value="open")
        assert updated.default_value == "open"

        # Dropping the option the default points at is rejected too
        with pytest.raises(ValidationError, match="must be one of: done"):
            await catalog.update_column(TENANT_ID, state.id, custom_options=["done"])
        assert (await catalog.get_column(TENANT_ID, state.id)).custom_options == ("open", "done")

    @pytest.mark.asyncio
    async def test_create_table_rejects_invalid_default(self, catalog):
        with pytest.raises(ValidationError, match="Invalid default value for column 'done'"):
            await catalog.create_table(
                TENANT_ID,
                DATABASE_ID,
                "tasks",
                columns=[column("done", "boolean", default_value="maybe")],
            )
        assert await catalog.list_tables(TENANT_ID, DATABASE_ID) == []

    @pytest.mark.asyncio
    async def test_make_unique_with_duplicates_fails(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "people", columns=[column("email", "string")]
        )
        email = table.get_column("email")
        await rows.create_row_with_cells(TENANT_ID, table.id, [(email.id, "a@x.io")])
        await rows.create_row_with_cells(TENANT_ID, table.id, [(email.id, "a@x.io")])

        with pytest.raises(UniquenessError) as exc_info:
            await catalog.update_column(TENANT_ID, email.id, unique=True)
        assert exc_info.value.message == (
            'Value "a@x.io" already exists. This column requires unique values.'
        )
        assert (await catalog.get_column(TENANT_ID, email.id)).unique is False

    @pytest.mark.asyncio
    async def test_make_unique_enforces_from_then_on(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "people", columns=[column("email", "string")]
        )
        email = table.get_column("email")
        await rows.create_row_with_cells(TENANT_ID, table.id, [(email.id, "a@x.io")])

        await catalog.update_column(TENANT_ID, email.id, unique=True)

        with pytest.raises(UniquenessError):
            await rows.create_row_with_cells(TENANT_ID, table.id, [(email.id, "a@x.io")])

    @pytest.mark.asyncio
    async def test_make_required_with_empty_cells_fails(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID,
            DATABASE_ID,
            "people",
            columns=[column("name", "string"), column("phone", "string")],
        )
        await rows.create_row_with_cells(
            TENANT_ID, table.id, [(table.get_column("name").id, "Ana")]
        )

        with pytest.raises(ValidationError, match="1 empty values"):
            await catalog.update_column(TENANT_ID, table.get_column("phone").id, required=True)

    @pytest.mark.asyncio
    async def test_change_column_type_converts_cells(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "readings", columns=[column("value", "string")]
        )
        col = table.get_column("value")
        first = await rows.create_row_with_cells(TENANT_ID, table.id, [(col.id, "1,200")])
        second = await rows.create_row_with_cells(TENANT_ID, table.id, [(col.id, "7")])
        empty = await rows.create_row_with_cells(TENANT_ID, table.id, [])

        report = await catalog.change_column_type(TENANT_ID, col.id, "number")

        assert report.converted == 2
        assert report.data_loss == 0
        assert report.from_type == ColumnType.STRING
        assert report.to_type == ColumnType.NUMBER
        assert (await catalog.get_column(TENANT_ID, col.id)).type == ColumnType.NUMBER
        assert (await rows.get_row(TENANT_ID, first.id)).get(col.id) == "1200"
        assert (await rows.get_row(TENANT_ID, second.id)).get(col.id) == "7"
        assert (await rows.get_row(TENANT_ID, empty.id)).get(col.id) == ""

    @pytest.mark.asyncio
    async def test_change_column_type_reports_loss(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "flags", columns=[column("level", "number")]
        )
        col = table.get_column("level")
        row = await rows.create_row_with_cells(TENANT_ID, table.id, [(col.id, 3)])
        await rows.create_row_with_cells(TENANT_ID, table.id, [(col.id, 0)])

        report = await catalog.change_column_type(TENANT_ID, col.id, ColumnType.BOOLEAN)

        assert report.converted == 2
        assert report.data_loss == 1
        assert report.warnings == ["Number 3 converted to true. Non 0/1 values may lose precision."]
        assert (await rows.get_row(TENANT_ID, row.id)).get(col.id) == "true"

    @pytest.mark.asyncio
    async def test_change_column_type_is_all_or_nothing(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "readings", columns=[column("value", "string")]
        )
        col = table.get_column("value")
        await rows.create_row_with_cells(TENANT_ID, table.id, [(col.id, "12")])
        bad = await rows.create_row_with_cells(TENANT_ID, table.id, [(col.id, "twelve")])

        with pytest.raises(ConversionError, match='Cannot convert "twelve" to number'):
            await catalog.change_column_type(TENANT_ID, col.id, "number")

        assert (await catalog.get_column(TENANT_ID, col.id)).type == ColumnType.STRING
        assert (await rows.get_row(TENANT_ID, bad.id)).get(col.id) == "twelve"

    @pytest.mark.asyncio
    async def test_change_to_custom_array_collects_options(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "tickets", columns=[column("state", "string")]
        )
        col = table.get_column("state")
        await rows.create_row_with_cells(TENANT_ID, table.id, [(col.id, "open")])
        await rows.create_row_with_cells(TENANT_ID, table.id, [(col.id, "closed")])

        report = await catalog.change_column_type(TENANT_ID, col.id, "customArray")

        assert report.warnings == ["String split by commas into array"]
        updated = await catalog.get_column(TENANT_ID, col.id)
        assert updated.custom_options == ("open", "closed")

    @pytest.mark.asyncio
    async def test_unsupported_type_change(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID, DATABASE_ID, "flags", columns=[column("on", "boolean")]
        )
        col = table.get_column("on")
        await rows.create_row_with_cells(TENANT_ID, table.id, [(col.id, True)])

        with pytest.raises(ConversionError, match="No conversion available from boolean to date"):
            await catalog.change_column_type(TENANT_ID, col.id, "date")

    @pytest.mark.asyncio
    async def test_delete_column(self, catalog, rows):
        table = await catalog.create_table(
            TENANT_ID,
            DATABASE_ID,
            "tasks",
            columns=[column("title", "string"), column("notes", "string")],
        )
        await rows.create_row_with_cells(TENANT_ID, table.id, [])
        notes = table.get_column("notes")

        deleted = await catalog.delete_column(TENANT_ID, notes.id)

        assert deleted == 1
        with pytest.raises(NotFoundError):
            await catalog.get_column(TENANT_ID, notes.id)

    @pytest.mark.asyncio
    async def test_find_column_by_semantic_tag(self, catalog):
        table = await catalog.create_table(
            TENANT_ID,
            DATABASE_ID,
            "contacts",
            columns=[
                column("full_name", "string", semantic_tag="name"),
                column("mail", "string", semantic_tag="email"),
            ],
        )
        found = await catalog.find_column_by_semantic_tag(TENANT_ID, table.id, "email")
        assert found.name == "mail"
        missing = await catalog.find_column_by_semantic_tag(TENANT_ID, table.id, SemanticTag.NOTES)
        assert missing is None


class TestProtection:
    """Tests for protected invoice tables and locked columns."""

    @pytest.mark.asyncio
    async def test_initialize_invoice_tables(self, catalog):
        tables = await initialize_invoice_tables(catalog, TENANT_ID, DATABASE_ID)

        assert set(tables) == {"customers", "invoices", "invoice_items"}
        invoices = tables["invoices"]
        assert invoices.is_protected is True
        assert invoices.protected_kind == "invoices"

        number = invoices.get_column_by_tag(SemanticTag.INVOICE_NUMBER)
        assert number.name == "invoice_number"
        assert number.required and number.unique and number.is_locked

        customer = invoices.get_column("customer_id")
        assert customer.type == ColumnType.REFERENCE
        assert customer.reference_table_id == tables["customers"].id

        items = tables["invoice_items"]
        assert items.get_column("invoice_id").reference_table_id == invoices.id

    @pytest.mark.asyncio
    async def test_initialize_invoice_tables_is_idempotent(self, catalog):
        first = await initialize_invoice_tables(catalog, TENANT_ID, DATABASE_ID)
        second = await initialize_invoice_tables(catalog, TENANT_ID, DATABASE_ID)

        assert {k: t.id for k, t in first.items()} == {k: t.id for k, t in second.items()}
        assert len(await catalog.list_tables(TENANT_ID, DATABASE_ID)) == 3

    @pytest.mark.asyncio
    async def test_initialize_invoice_tables_with_user_table_of_same_name(self, catalog):
        await catalog.create_table(
            TENANT_ID, DATABASE_ID, "invoices", columns=[column("ref", "string")]
        )

        with pytest.raises(ValidationError, match="table 'invoices' already exists as a user table"):
            await initialize_invoice_tables(catalog, TENANT_ID, DATABASE_ID)

        # Nothing is created alongside the conflicting table
        tables = await catalog.list_tables(TENANT_ID, DATABASE_ID)
        assert [t.name for t in tables] == ["invoices"]
        assert await catalog.find_protected_table(TENANT_ID, DATABASE_ID, "customers") is None

    @pytest.mark.asyncio
    async def test_protected_table_cannot_be_deleted(self, catalog):
        tables = await initialize_invoice_tables(catalog, TENANT_ID, DATABASE_ID)
        invoices = tables["invoices"]

        assert await catalog.is_table_protected(TENANT_ID, invoices.id) is True
        with pytest.raises(ProtectedResourceError) as exc_info:
            await catalog.delete_table(TENANT_ID, invoices.id)
        assert exc_info.value.code == "PROTECTED_RESOURCE"

    @pytest.mark.asyncio
    async def test_columns_of_protected_table_cannot_be_deleted(self, catalog):
        tables = await initialize_invoice_tables(catalog, TENANT_ID, DATABASE_ID)
        notes = tables["invoices"].get_column("notes")

        assert await catalog.is_column_locked(TENANT_ID, notes.id) is False
        with pytest.raises(ProtectedResourceError):
            await catalog.delete_column(TENANT_ID, notes.id)

    @pytest.mark.asyncio
    async def test_locked_column_refuses_rename_and_retype(self, catalog):
        tables = await initialize_invoice_tables(catalog, TENANT_ID, DATABASE_ID)
        number = tables["invoices"].get_column("invoice_number")

        assert await catalog.is_column_locked(TENANT_ID, number.id) is True
        with pytest.raises(ProtectedResourceError, match="cannot be renamed"):
            await catalog.update_column(TENANT_ID, number.id, name="number")
        with pytest.raises(ProtectedResourceError, match="type cannot be changed"):
            await catalog.change_column_type(TENANT_ID, number.id, "number")

        # Non-structural edits stay allowed
        updated = await catalog.update_column(TENANT_ID, number.id, description="Fiscal number")
        assert updated.description == "Fiscal number"

    @pytest.mark.asyncio
    async def test_user_can_extend_protected_table(self, catalog):
        tables = await initialize_invoice_tables(catalog, TENANT_ID, DATABASE_ID)
        added = await catalog.add_column(
            TENANT_ID, tables["invoices"].id, column("po_number", "string")
        )
        assert added.is_locked is False
