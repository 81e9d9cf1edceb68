"""
Unit tests for unique constraint validation.
"""

import pytest

from dbaas.tabular_engine.errors import NotFoundError
from dbaas.tabular_engine.rows import RowStore, UniqueConstraintValidator
from dbaas.tabular_engine.schema import column

TENANT_ID = "tenant_1"


class TestUniqueConstraintValidator:
    """Tests for UniqueConstraintValidator."""

    async def _create_people(self, catalog):
        return await catalog.create_table(
            TENANT_ID,
            1,
            "people",
            columns=[
                column("email", "string", unique=True),
                column("age", "number", unique=True),
                column("nickname", "string"),
            ],
        )

    @pytest.fixture
    def validator(self, db):
        return UniqueConstraintValidator(db)

    @pytest.mark.asyncio
    async def test_is_column_unique(self, validator, catalog):
        people = await self._create_people(catalog)
        assert await validator.is_column_unique(TENANT_ID, people.get_column("email").id) is True
        assert await validator.is_column_unique(TENANT_ID, people.get_column("nickname").id) is False

    @pytest.mark.asyncio
    async def test_is_column_unique_missing_column(self, validator, catalog):
        await self._create_people(catalog)
        with pytest.raises(NotFoundError):
            await validator.is_column_unique(TENANT_ID, 9999)

    @pytest.mark.asyncio
    async def test_is_value_unique(self, validator, catalog, db):
        people = await self._create_people(catalog)
        email = people.get_column("email")
        row = await RowStore(db).create_row_with_cells(
            TENANT_ID, people.id, [(email.id, "ana@example.com")]
        )

        assert await validator.is_value_unique(TENANT_ID, email.id, "ana@example.com") is False
        assert await validator.is_value_unique(TENANT_ID, email.id, "bob@example.com") is True
        # The row being edited doesn't collide with itself
        assert (
            await validator.is_value_unique(
                TENANT_ID, email.id, "ana@example.com", exclude_row_id=row.id
            )
            is True
        )

    @pytest.mark.asyncio
    async def test_empty_values_are_always_unique(self, validator, catalog, db):
        people = await self._create_people(catalog)
        email = people.get_column("email")
        store = RowStore(db)
        await store.create_row_with_cells(TENANT_ID, people.id, [])
        await store.create_row_with_cells(TENANT_ID, people.id, [])

        assert await validator.is_value_unique(TENANT_ID, email.id, None) is True
        assert await validator.is_value_unique(TENANT_ID, email.id, "") is True

    @pytest.mark.asyncio
    async def test_values_compare_by_storage_text(self, validator, catalog, db):
        people = await self._create_people(catalog)
        age = people.get_column("age")
        await RowStore(db).create_row_with_cells(TENANT_ID, people.id, [(age.id, 30)])

        assert await validator.is_value_unique(TENANT_ID, age.id, 30) is False
        assert await validator.is_value_unique(TENANT_ID, age.id, 30.0) is False
        assert await validator.is_value_unique(TENANT_ID, age.id, 31) is True

    @pytest.mark.asyncio
    async def test_validate_unique_constraint(self, validator, catalog, db):
        people = await self._create_people(catalog)
        email = people.get_column("email")
        nickname = people.get_column("nickname")
        await RowStore(db).create_row_with_cells(
            TENANT_ID,
            people.id,
            [(email.id, "ana@example.com"), (nickname.id, "ana")],
        )

        result = await validator.validate_unique_constraint(TENANT_ID, email.id, "ana@example.com")
        assert result.is_valid is False
        assert result.error == (
            'Value "ana@example.com" already exists. This column requires unique values.'
        )

        # Columns without the constraint accept duplicates
        result = await validator.validate_unique_constraint(TENANT_ID, nickname.id, "ana")
        assert result.is_valid is True
        assert result.error is None
