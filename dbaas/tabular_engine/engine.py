"""
Engine facade for the tabular data engine.

TabularEngine wires the components around one TenantDatabase and exposes
the operations request handlers call:
- Schema catalog: tables, columns, protected invoice tables
- Type conversion: attempt_conversion, is_conversion_safe,
  get_conversion_description
- Constraint validation: is_column_unique, is_value_unique,
  validate_unique_constraint
- Rows: create_row_with_cells and friends
- Sequences: generate_invoice_number_with_config, get_next_invoice_number,
  get_invoice_numbering_stats

Invariants:
    - All components share the same TenantDatabase
    - Configuration is validated before any component is built

How to change safely:
    - Keep the facade thin; behavior belongs in the component modules
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

import json_log_formatter

from .config import EngineConfig
from .rows import CellInput, ImportReport, Row, RowStore, UniqueCheckResult, UniqueConstraintValidator
from .schema import (
    ColumnType,
    ConversionResult,
    SchemaCatalog,
    TableDef,
    attempt_conversion,
    get_conversion_description,
    initialize_invoice_tables,
    is_conversion_safe,
)
from .sequence import InvoiceNumber, InvoiceNumberConfig, NumberingStats, SequenceGenerator
from .storage import TenantDatabase

logger = logging.getLogger(__name__)


def setup_logging(config: EngineConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Engine configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class TabularEngine:
    """Entry point bundling catalog, row store, validator and sequence generator.

    Attributes:
        config: Engine configuration
        db: Per-tenant SQLite provider
        catalog: Schema catalog
        rows: Row/cell store
        constraints: Unique constraint validator
        sequences: Sequence generator

    Example:
        >>> engine = TabularEngine(EngineConfig.from_env())
        >>> await engine.initialize_tenant("tenant_1")
        >>> tables = await engine.initialize_invoice_tables("tenant_1", 1)
        >>> issued = await engine.generate_invoice_number_with_config(
        ...     "tenant_1", 1, {"series": "INV", "includeYear": True}
        ... )
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Engine configuration (loaded from env if not provided)
            clock: Time source for sequence year/month parts
        """
        self.config = config or EngineConfig.from_env()
        self.config.validate()
        self.config.log_config()

        self.db = TenantDatabase(self.config.storage)
        self.catalog = SchemaCatalog(self.db)
        self.rows = RowStore(self.db)
        self.constraints = UniqueConstraintValidator(self.db)
        self.sequences = SequenceGenerator(self.db, self.config.sequence, clock=clock)

    async def initialize_tenant(self, tenant_id: str) -> None:
        """Create tenant storage if it doesn't exist."""
        Path(self.config.storage.data_dir).mkdir(parents=True, exist_ok=True)
        await self.catalog.initialize_tenant(tenant_id)

    async def initialize_invoice_tables(
        self, tenant_id: str, database_id: int
    ) -> dict[str, TableDef]:
        return await initialize_invoice_tables(self.catalog, tenant_id, database_id)

    # Type conversion

    @staticmethod
    def attempt_conversion(
        value: Any, from_type: str | ColumnType, to_type: str | ColumnType
    ) -> ConversionResult:
        return attempt_conversion(value, from_type, to_type)

    @staticmethod
    def is_conversion_safe(from_type: str | ColumnType, to_type: str | ColumnType) -> bool:
        return is_conversion_safe(from_type, to_type)

    @staticmethod
    def get_conversion_description(
        from_type: str | ColumnType, to_type: str | ColumnType
    ) -> str:
        return get_conversion_description(from_type, to_type)

    # Constraints

    async def is_column_unique(self, tenant_id: str, column_id: int) -> bool:
        return await self.constraints.is_column_unique(tenant_id, column_id)

    async def is_value_unique(
        self,
        tenant_id: str,
        column_id: int,
        value: Any,
        exclude_row_id: int | None = None,
    ) -> bool:
        return await self.constraints.is_value_unique(tenant_id, column_id, value, exclude_row_id)

    async def validate_unique_constraint(
        self,
        tenant_id: str,
        column_id: int,
        value: Any,
        exclude_row_id: int | None = None,
    ) -> UniqueCheckResult:
        return await self.constraints.validate_unique_constraint(
            tenant_id, column_id, value, exclude_row_id
        )

    # Rows

    async def create_row_with_cells(
        self, tenant_id: str, table_id: int, cells: Iterable[CellInput]
    ) -> Row:
        return await self.rows.create_row_with_cells(tenant_id, table_id, cells)

    async def import_rows(
        self, tenant_id: str, table_id: int, rows: Iterable[Mapping[str, Any]]
    ) -> ImportReport:
        return await self.rows.import_rows(tenant_id, table_id, rows)

    # Sequences

    async def generate_invoice_number_with_config(
        self,
        tenant_id: str,
        database_id: int,
        config: InvoiceNumberConfig | Mapping[str, Any] | None = None,
    ) -> InvoiceNumber:
        return await self.sequences.generate_invoice_number_with_config(
            tenant_id, database_id, config
        )

    async def get_next_invoice_number(
        self,
        tenant_id: str,
        database_id: int,
        config: InvoiceNumberConfig | Mapping[str, Any] | None = None,
    ) -> InvoiceNumber:
        return await self.sequences.get_next_invoice_number(tenant_id, database_id, config)

    async def get_invoice_numbering_stats(self, tenant_id: str, database_id: int) -> NumberingStats:
        return await self.sequences.get_invoice_numbering_stats(tenant_id, database_id)
