"""
Storage module for the tabular engine.

Provides the per-tenant SQLite substrate shared by the schema catalog, the
row/cell store and the sequence generator.

Invariants:
    - One SQLite file per tenant
    - All multi-statement writes run inside TenantDatabase.transaction()
"""

from .tenant_db import TenantDatabase, is_lock_error, is_unique_value_violation

__all__ = [
    "TenantDatabase",
    "is_lock_error",
    "is_unique_value_violation",
]
