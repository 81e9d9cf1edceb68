"""
Shared fixtures for the tabular engine test suite.

Every fixture works against a temporary data directory, so tests never touch
a real deployment.
"""

import tempfile
from datetime import datetime

import pytest

from dbaas.tabular_engine.config import EngineConfig, SequenceConfig, StorageConfig
from dbaas.tabular_engine.engine import TabularEngine
from dbaas.tabular_engine.schema import SchemaCatalog
from dbaas.tabular_engine.storage import TenantDatabase

TENANT_ID = "tenant_1"
DATABASE_ID = 1


def fixed_clock() -> datetime:
    """Clock pinned to 2025 for deterministic series identifiers."""
    return datetime(2025, 3, 15, 10, 30, 0)


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def storage_config(data_dir):
    """Storage configuration rooted in the temporary directory."""
    return StorageConfig(data_dir=data_dir, busy_timeout_ms=10000)


@pytest.fixture
def db(storage_config):
    """Tenant database with tenant_1 initialized."""
    database = TenantDatabase(storage_config)
    database.initialize_tenant(TENANT_ID)
    return database


@pytest.fixture
def catalog(db):
    """Schema catalog over the tenant database."""
    return SchemaCatalog(db)


@pytest.fixture
def engine(storage_config):
    """Engine with tenant_1 initialized and a clock pinned to 2025."""
    config = EngineConfig(
        storage=storage_config,
        sequence=SequenceConfig(retry_delay_ms=10),
    )
    eng = TabularEngine(config, clock=fixed_clock)
    eng.db.initialize_tenant(TENANT_ID)
    return eng
