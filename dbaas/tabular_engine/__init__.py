"""
Tabular Engine - runtime-defined tables for a multi-tenant database SaaS.

This package lets tenants declare tables without migrations and stores their
data as typed cells:
- Schema catalog of tables and columns, with protected invoice tables
- Converter between structural column types with loss reporting
- Row/cell store enforcing required and unique constraints
- Sequence generator issuing collision-free invoice numbers

Architecture:
    ┌──────────────┐     ┌──────────────┐
    │   Request    │────▶│ TabularEngine│
    │   handler    │     │   (facade)   │
    └──────────────┘     └──────┬───────┘
                                │
        ┌───────────────┬───────┴───────┬────────────────┐
        ▼               ▼               ▼                ▼
   ┌─────────┐    ┌──────────┐    ┌──────────┐     ┌──────────┐
   │ Schema  │◀───│ Row/Cell │───▶│Constraint│     │ Sequence │
   │ Catalog │    │  Store   │    │Validator │     │Generator │
   └────┬────┘    └────┬─────┘    └────┬─────┘     └────┬─────┘
        └──────────────┴───────┬───────┴────────────────┘
                               ▼
                   ┌───────────────────────┐
                   │ Per-tenant SQLite file│
                   └───────────────────────┘

Invariants:
    - Every row has exactly one cell per column of its table
    - Unique columns never hold the same non-empty value twice
    - Series counters never decrease and never issue a number twice
    - All operations require tenant_id

How to change safely:
    - Structural type names are a wire vocabulary; never rename them
    - Multi-statement writes go through TenantDatabase.transaction()
"""

from ._version import __version__
from .engine import TabularEngine, setup_logging

__all__ = ["__version__", "TabularEngine", "setup_logging"]
