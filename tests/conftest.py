"""
Shared test fixtures and configuration for pytest.
"""

import logging
import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sqlsnap.config.config_loader import SnapshotConfig
from sqlsnap.core.models import DatabaseGroup, DatabaseSnapshotResult, Snapshot
from sqlsnap.engine.memory_gateway import InMemoryEngineGateway
from sqlsnap.services.snapshot_service import SnapshotService
from sqlsnap.state.sqlite_store import SqliteMetadataStore


logger = logging.getLogger(__name__)


# ============================================================================
# Environment detection
# ============================================================================

def sqlserver_settings() -> dict:
    """SQL Server connection settings from the environment."""
    return {
        "host": os.environ.get("SQLSNAP_SQLSERVER_HOST", "localhost"),
        "port": int(os.environ.get("SQLSNAP_SQLSERVER_PORT", "1433")),
        "username": os.environ.get("SQLSNAP_SQLSERVER_USER", "sa"),
        "password": os.environ.get("SQLSNAP_SQLSERVER_PASSWORD")
        or os.environ.get("MSSQL_SA_PASSWORD"),
        "driver": os.environ.get("SQLSNAP_SQLSERVER_DRIVER", "ODBC Driver 18 for SQL Server"),
    }


def is_sqlserver_available() -> bool:
    """Check if SQL Server is available for testing."""
    settings = sqlserver_settings()
    if not settings["password"]:
        return False

    try:
        import pyodbc

        conn_str = (
            f"Driver={{{settings['driver']}}};"
            f"Server={settings['host']},{settings['port']};"
            f"Database=master;"
            f"UID={settings['username']};"
            f"PWD={settings['password']};"
            f"TrustServerCertificate=yes"
        )
        conn = pyodbc.connect(conn_str, timeout=5)
        conn.close()
        return True

    except Exception as e:
        logger.debug(f"SQL Server not available: {e}")
        return False


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires SQL Server)")


def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests if SQL Server is not available."""
    if not any("integration" in item.keywords for item in items):
        return
    if is_sqlserver_available():
        return

    skip_sqlserver = pytest.mark.skip(
        reason="SQL Server not available (set MSSQL_SA_PASSWORD and ensure SQL Server is running)"
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_sqlserver)


# ============================================================================
# Fixtures
# ============================================================================

class SteppingClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def clock():
    """Clock starting at a fixed instant."""
    return SteppingClock(datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def gateway():
    """In-memory engine with two databases of the billing group plus one unrelated."""
    engine = InMemoryEngineGateway()
    engine.add_database("orders", data={"rows": 1})
    engine.add_database("ledger", data={"rows": 10})
    engine.add_database("crm", data={"rows": 100})
    return engine


@pytest.fixture
def store():
    """Throwaway SQLite metadata store holding the billing and crm groups."""
    metadata = SqliteMetadataStore(":memory:")
    metadata.add_group(DatabaseGroup(id="billing", name="billing", databases=["orders", "ledger"]))
    metadata.add_group(DatabaseGroup(id="crm", name="CRM Group", databases=["crm"]))
    yield metadata
    metadata.close()


@pytest.fixture
def snapshot_factory():
    """Build Snapshot records without touching the engine."""
    def make(
        snapshot_id: str,
        group_id: str = "billing",
        databases=("orders", "ledger"),
        sequence: int = 1,
        failed=(),
    ) -> Snapshot:
        return Snapshot(
            id=snapshot_id,
            group_id=group_id,
            group_name=group_id,
            display_name=f"label {snapshot_id}",
            sequence=sequence,
            created_at=datetime(2024, 5, 1, tzinfo=timezone.utc) + timedelta(minutes=sequence),
            database_count=len(databases),
            database_snapshots=[
                DatabaseSnapshotResult(
                    database=db,
                    snapshot_name=f"{snapshot_id}_{db}",
                    success=db not in failed,
                    error="simulated failure" if db in failed else None,
                )
                for db in databases
            ],
            created_by="tester",
        )
    return make


@pytest.fixture
def config():
    return SnapshotConfig.from_dict({"snapshots": {"base_path": "/var/opt/mssql/snapshots"}})


@pytest.fixture
def service(gateway, store, config, clock):
    """SnapshotService wired to the in-memory engine and SQLite store."""
    return SnapshotService(gateway, store, config=config, clock=clock)


@pytest.fixture(scope="session")
def sqlserver_config() -> dict:
    """Session-scoped fixture providing SQL Server connection configuration."""
    return sqlserver_settings()


@pytest.fixture
def sqlserver_gateway(sqlserver_config):
    """Live SQL Server gateway."""
    if not sqlserver_config["password"]:
        pytest.skip("SQL Server password not configured")

    from sqlsnap.engine.sqlserver_gateway import SqlServerEngineGateway

    engine = SqlServerEngineGateway(**sqlserver_config)
    yield engine
    engine.close()


@pytest.fixture
def scratch_database(sqlserver_gateway):
    """
    A throwaway user database with one table, dropped (with its snapshots) afterwards.
    """
    name = f"sqlsnap_it_{uuid.uuid4().hex[:8]}"
    sqlserver_gateway._execute(f"CREATE DATABASE [{name}]")
    sqlserver_gateway._execute(f"CREATE TABLE [{name}].dbo.items (id INT PRIMARY KEY, label NVARCHAR(50))")
    sqlserver_gateway._execute(f"INSERT INTO [{name}].dbo.items VALUES (1, N'original')")

    yield name

    for obj in sqlserver_gateway.list_snapshots_of(name):
        sqlserver_gateway.drop_database(obj.name)
    sqlserver_gateway._execute(f"DROP DATABASE IF EXISTS [{name}]")
