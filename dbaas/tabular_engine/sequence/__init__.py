"""
Sequence module for the tabular engine.

Issues collision-free, series-scoped numbers (invoice numbers) from counters
updated under the tenant database write lock.

Invariants:
    - Counters never decrease
    - Peeking never consumes a number
"""

from .generator import (
    InvoiceNumber,
    InvoiceNumberConfig,
    NumberBreakdown,
    NumberingStats,
    SequenceGenerator,
    SeriesCounter,
    build_series_identifier,
)

__all__ = [
    "InvoiceNumber",
    "InvoiceNumberConfig",
    "NumberBreakdown",
    "NumberingStats",
    "SequenceGenerator",
    "SeriesCounter",
    "build_series_identifier",
]
