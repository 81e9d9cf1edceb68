"""
Sequence generator for human-readable, collision-free numbers.

This module issues series-scoped incrementing identifiers such as invoice
numbers ("INV-2025-000001"):
- Issue: locked read-increment-write of the series counter
- Peek: the same computation without taking a lock or writing
- Stats: aggregates over the ledger of issued numbers

Counter storage:
    series_counters holds one row per (tenant, database, series identifier).
    Issue runs inside TenantDatabase.transaction(), whose BEGIN IMMEDIATE
    takes the tenant database write lock before the counter is read, and
    releases it only after the incremented counter is committed.

Invariants:
    - current_number never decreases for a series
    - No two Issue calls for the same series ever return the same number
    - Every issued number is recorded in issued_numbers, whose
      UNIQUE(tenant_id, database_id, series, number) rejects duplicates
    - Peek never mutates the counter

How to change safely:
    - Never read the counter outside the write transaction in Issue
    - Never derive the next number by scanning existing rows
    - Retry only ConcurrencyError; an Issue that failed after COMMIT was
      sent may have consumed a number

Concurrency note:
    The SQLite write lock is per tenant database file, so Issue calls for
    different series of the same tenant briefly serialize on it. Different
    tenants never contend.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..config import SequenceConfig
from ..errors import ConcurrencyError, NotFoundError, ValidationError
from ..storage import TenantDatabase, is_lock_error

logger = logging.getLogger(__name__)

# Per-column auto-increment counters share the table; hide them from listings
INTERNAL_SERIES_PREFIX = "__column_"


def column_series(column_id: int) -> str:
    """Series name of an auto-increment column's counter."""
    return f"{INTERNAL_SERIES_PREFIX}{column_id}"


class InvoiceNumberConfig(BaseModel):
    """Numbering configuration for one Issue or Peek call.

    Accepts snake_case or camelCase keys ("start_number" or "startNumber").
    reset_yearly/reset_monthly are policy flags for callers that fold the
    year or month into the series; the generator only honors what the
    series identifier encodes.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    series: str = Field(default="INV", min_length=1, description="Base series name")
    prefix: str = Field(default="", description="Text placed before the series")
    suffix: str = Field(default="", description="Text placed after the number")
    reset_yearly: bool = False
    reset_monthly: bool = False
    start_number: int = Field(default=1, ge=1, description="First number of a new series")
    include_year: bool = False
    include_month: bool = False
    separator: str = Field(default="-", min_length=1)


def load_config(
    config: InvoiceNumberConfig | Mapping[str, Any] | None,
    default_series: str = "INV",
) -> InvoiceNumberConfig:
    """Coerce a config argument into an InvoiceNumberConfig.

    Raises:
        ValidationError: If the config is invalid
    """
    if isinstance(config, InvoiceNumberConfig):
        return config
    data = dict(config or {})
    data.setdefault("series", default_series)
    try:
        return InvoiceNumberConfig.model_validate(data)
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ValidationError(
            f"Invalid invoice number config: {'; '.join(errors)}", errors=errors
        ) from e


@dataclass(frozen=True)
class NumberBreakdown:
    """Parts a full number is assembled from."""

    prefix: str
    series: str
    number: str
    suffix: str
    separator: str
    year: int
    month: int
    next_number: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "prefix": self.prefix,
            "series": self.series,
            "number": self.number,
            "suffix": self.suffix,
            "separator": self.separator,
            "year": self.year,
            "month": self.month,
            "next_number": self.next_number,
        }


@dataclass(frozen=True)
class InvoiceNumber:
    """An issued (or previewed) number.

    Attributes:
        number: Full formatted number, e.g. "INV-2025-000001"
        series: Series identifier the number was issued under, e.g. "INV-2025"
        full_number: Same as number
        sequence: Integer position within the series
        breakdown: The parts the number was built from
    """

    number: str
    series: str
    full_number: str
    sequence: int
    breakdown: NumberBreakdown

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "series": self.series,
            "full_number": self.full_number,
            "sequence": self.sequence,
            "breakdown": self.breakdown.to_dict(),
        }


@dataclass(frozen=True)
class SeriesCounter:
    """Persisted counter state for one series."""

    tenant_id: str
    database_id: int
    series: str
    current_number: int
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "database_id": self.database_id,
            "series": self.series,
            "current_number": self.current_number,
            "updated_at": self.updated_at,
        }


@dataclass
class NumberingStats:
    """Reporting aggregates over issued numbers."""

    total_invoices: int = 0
    series_breakdown: dict[str, int] = field(default_factory=dict)
    last_invoice_number: str | None = None
    next_invoice_number: str = ""
    yearly_stats: dict[int, int] = field(default_factory=dict)
    monthly_stats: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_invoices": self.total_invoices,
            "series_breakdown": dict(self.series_breakdown),
            "last_invoice_number": self.last_invoice_number,
            "next_invoice_number": self.next_invoice_number,
            "yearly_stats": dict(self.yearly_stats),
            "monthly_stats": dict(self.monthly_stats),
        }


def build_series_identifier(config: InvoiceNumberConfig, moment: datetime) -> str:
    """Join series, year and zero-padded month (as configured) with the separator."""
    parts = [config.series]
    if config.include_year:
        parts.append(str(moment.year))
    if config.include_month:
        parts.append(f"{moment.month:02d}")
    return config.separator.join(parts)


def read_counter(
    conn: sqlite3.Connection, tenant_id: str, database_id: int, series: str
) -> int | None:
    row = conn.execute(
        """
        SELECT current_number FROM series_counters
        WHERE tenant_id = ? AND database_id = ? AND series = ?
        """,
        (tenant_id, database_id, series),
    ).fetchone()
    return row["current_number"] if row else None


def increment_counter(
    conn: sqlite3.Connection,
    tenant_id: str,
    database_id: int,
    series: str,
    start_number: int = 1,
) -> int:
    """Increment a series counter and return the new number.

    Must run inside TenantDatabase.transaction(): the caller's write lock is
    what makes the read and the write one atomic step. A missing counter
    starts at start_number.
    """
    current = read_counter(conn, tenant_id, database_id, series)
    if current is None:
        current = start_number - 1
    number = current + 1

    write_counter(conn, tenant_id, database_id, series, number)
    return number


def raise_counter(
    conn: sqlite3.Connection,
    tenant_id: str,
    database_id: int,
    series: str,
    floor: int,
) -> bool:
    """Move a series counter up to floor if it is below it.

    Used when a number is taken outside Issue (e.g. typed into an
    auto-increment column), so the next Issue never returns it again.
    Same locking contract as increment_counter.

    Returns:
        True if the counter moved
    """
    current = read_counter(conn, tenant_id, database_id, series) or 0
    if floor <= current:
        return False
    write_counter(conn, tenant_id, database_id, series, floor)
    return True


def write_counter(
    conn: sqlite3.Connection,
    tenant_id: str,
    database_id: int,
    series: str,
    current_number: int,
) -> None:
    conn.execute(
        """
        INSERT INTO series_counters (tenant_id, database_id, series, current_number, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (tenant_id, database_id, series)
        DO UPDATE SET current_number = excluded.current_number, updated_at = excluded.updated_at
        """,
        (tenant_id, database_id, series, current_number, int(time.time() * 1000)),
    )


class SequenceGenerator:
    """Issues and previews series-scoped numbers.

    Example:
        >>> generator = SequenceGenerator(db)
        >>> issued = await generator.generate_invoice_number_with_config(
        ...     "tenant_1", 1, {"series": "INV", "includeYear": True}
        ... )
        >>> issued.full_number
        'INV-2025-000001'
    """

    def __init__(
        self,
        db: TenantDatabase,
        config: SequenceConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            db: Tenant database provider
            config: Retry and formatting settings
            clock: Source of the current time for year/month parts
        """
        self.db = db
        self.config = config or SequenceConfig()
        self._clock = clock or datetime.now

    async def generate_invoice_number_with_config(
        self,
        tenant_id: str,
        database_id: int,
        config: InvoiceNumberConfig | Mapping[str, Any] | None = None,
    ) -> InvoiceNumber:
        """Issue the next number of a series.

        Lock contention is retried up to SequenceConfig.max_retries times
        with exponential backoff before ConcurrencyError reaches the caller.

        Args:
            tenant_id: Tenant identifier
            database_id: Tenant database the series belongs to
            config: Numbering configuration (defaults apply to missing keys)

        Returns:
            The issued InvoiceNumber

        Raises:
            ValidationError: If the config is invalid
            ConcurrencyError: If the lock could not be acquired after retries
            NotFoundError: If the tenant doesn't exist
        """
        cfg = load_config(config, self.config.default_series)
        moment = self._clock()
        series = build_series_identifier(cfg, moment)

        attempt = 0
        while True:
            attempt += 1
            try:
                with self.db.transaction(tenant_id) as conn:
                    number = increment_counter(
                        conn, tenant_id, database_id, series, cfg.start_number
                    )
                    issued = self._format(cfg, series, number, moment)
                    conn.execute(
                        """
                        INSERT INTO issued_numbers (tenant_id, database_id, series,
                                                    number, full_number, issued_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            tenant_id,
                            database_id,
                            series,
                            number,
                            issued.full_number,
                            int(moment.timestamp() * 1000),
                        ),
                    )
                break
            except (ConcurrencyError, sqlite3.OperationalError) as e:
                if isinstance(e, sqlite3.OperationalError) and not is_lock_error(e):
                    raise
                if attempt >= self.config.max_retries:
                    raise ConcurrencyError(
                        f"Could not issue a number for series '{series}' after {attempt} attempts",
                        series=series,
                        attempts=attempt,
                    ) from e

                delay_ms = self.config.retry_delay_ms * 2 ** (attempt - 1)
                logger.warning(
                    "Series lock contention, retrying",
                    extra={
                        "tenant_id": tenant_id,
                        "database_id": database_id,
                        "series": series,
                        "attempt": attempt,
                        "delay_ms": delay_ms,
                    },
                )
                await asyncio.sleep(delay_ms / 1000.0)

        logger.info(
            "Issued number",
            extra={
                "tenant_id": tenant_id,
                "database_id": database_id,
                "series": series,
                "number": issued.full_number,
            },
        )
        return issued

    async def get_next_invoice_number(
        self,
        tenant_id: str,
        database_id: int,
        config: InvoiceNumberConfig | Mapping[str, Any] | None = None,
    ) -> InvoiceNumber:
        """Preview the number the next Issue would return, without consuming it.

        The preview may be stale by the time it is shown if another writer
        issues first.
        """
        cfg = load_config(config, self.config.default_series)
        moment = self._clock()
        series = build_series_identifier(cfg, moment)

        with self.db.connection(tenant_id) as conn:
            current = read_counter(conn, tenant_id, database_id, series)

        if current is None:
            current = cfg.start_number - 1
        return self._format(cfg, series, current + 1, moment)

    async def get_invoice_numbering_stats(
        self, tenant_id: str, database_id: int
    ) -> NumberingStats:
        """Aggregate issued numbers by series, year and month.

        The next number is previewed for the default series with the year
        included.
        """
        stats = NumberingStats()

        with self.db.connection(tenant_id) as conn:
            cursor = conn.execute(
                """
                SELECT series, full_number, issued_at FROM issued_numbers
                WHERE tenant_id = ? AND database_id = ?
                ORDER BY issued_at DESC, id DESC
                """,
                (tenant_id, database_id),
            )
            for row in cursor.fetchall():
                if stats.last_invoice_number is None:
                    stats.last_invoice_number = row["full_number"]
                stats.total_invoices += 1
                stats.series_breakdown[row["series"]] = (
                    stats.series_breakdown.get(row["series"], 0) + 1
                )

                issued_at = datetime.fromtimestamp(row["issued_at"] / 1000.0)
                month_key = f"{issued_at.year}-{issued_at.month:02d}"
                stats.yearly_stats[issued_at.year] = stats.yearly_stats.get(issued_at.year, 0) + 1
                stats.monthly_stats[month_key] = stats.monthly_stats.get(month_key, 0) + 1

        preview = await self.get_next_invoice_number(
            tenant_id,
            database_id,
            InvoiceNumberConfig(series=self.config.default_series, include_year=True),
        )
        stats.next_invoice_number = preview.full_number
        return stats

    async def get_series_counter(
        self, tenant_id: str, database_id: int, series: str
    ) -> SeriesCounter:
        """Get a series counter.

        Raises:
            NotFoundError: If nothing has been issued for the series
        """
        with self.db.connection(tenant_id) as conn:
            row = conn.execute(
                """
                SELECT * FROM series_counters
                WHERE tenant_id = ? AND database_id = ? AND series = ?
                """,
                (tenant_id, database_id, series),
            ).fetchone()
        if not row:
            raise NotFoundError(
                f"Series counter not found: {series}",
                resource_type="series_counter",
                resource_id=series,
            )
        return self._counter_from_row(row)

    async def list_series_counters(self, tenant_id: str, database_id: int) -> list[SeriesCounter]:
        """List the tenant database's series counters, by series name."""
        with self.db.connection(tenant_id) as conn:
            cursor = conn.execute(
                """
                SELECT * FROM series_counters
                WHERE tenant_id = ? AND database_id = ? AND series NOT LIKE ? ESCAPE '\\'
                ORDER BY series
                """,
                (tenant_id, database_id, INTERNAL_SERIES_PREFIX.replace("_", "\\_") + "%"),
            )
            return [self._counter_from_row(row) for row in cursor.fetchall()]

    async def advance_series(
        self,
        tenant_id: str,
        database_id: int,
        series: str,
        start_number: int,
    ) -> SeriesCounter:
        """Move a series forward so its next issued number is start_number.

        Raises:
            ValidationError: If start_number < 1 or the counter would move
                backwards
        """
        if start_number < 1:
            raise ValidationError("start_number must be >= 1")

        with self.db.transaction(tenant_id) as conn:
            current = read_counter(conn, tenant_id, database_id, series) or 0
            target = start_number - 1
            if target < current:
                raise ValidationError(
                    f"Series '{series}' is already at {current}; "
                    f"it cannot restart at {start_number}"
                )
            write_counter(conn, tenant_id, database_id, series, target)

        logger.info(
            "Advanced series",
            extra={
                "tenant_id": tenant_id,
                "database_id": database_id,
                "series": series,
                "current_number": target,
            },
        )
        return await self.get_series_counter(tenant_id, database_id, series)

    def _format(
        self, cfg: InvoiceNumberConfig, series: str, number: int, moment: datetime
    ) -> InvoiceNumber:
        padded = str(number).zfill(self.config.number_width)
        parts = [p for p in (cfg.prefix, series, padded, cfg.suffix) if p]
        full_number = cfg.separator.join(parts)
        return InvoiceNumber(
            number=full_number,
            series=series,
            full_number=full_number,
            sequence=number,
            breakdown=NumberBreakdown(
                prefix=cfg.prefix,
                series=series,
                number=padded,
                suffix=cfg.suffix,
                separator=cfg.separator,
                year=moment.year,
                month=moment.month,
                next_number=number,
            ),
        )

    @staticmethod
    def _counter_from_row(row: sqlite3.Row) -> SeriesCounter:
        return SeriesCounter(
            tenant_id=row["tenant_id"],
            database_id=row["database_id"],
            series=row["series"],
            current_number=row["current_number"],
            updated_at=row["updated_at"],
        )
