"""
Integration tests for SqlServerEngineGateway against a live SQL Server.

These tests verify that:
1. Data files and snapshot objects are read from the catalog
2. A snapshot can be created, listed, checked for access and dropped
3. A full create and rollback cycle reverts data through SnapshotService
"""

import ntpath
import posixpath

import pytest

from sqlsnap.config.config_loader import SnapshotConfig
from sqlsnap.core.models import DatabaseGroup, RollbackStatus
from sqlsnap.services.snapshot_service import SnapshotService
from sqlsnap.state.sqlite_store import SqliteMetadataStore


def data_directory(gateway, database: str) -> str:
    """Directory of the database's primary data file, on the server's file system."""
    physical = gateway.list_data_files(database)[0].physical_name
    if "\\" in physical:
        return ntpath.dirname(physical)
    return posixpath.dirname(physical)


def read_label(gateway, database: str) -> str:
    rows = gateway._query(f"SELECT label FROM [{database}].dbo.items WHERE id = 1")
    return rows[0][0]


@pytest.mark.integration
class TestCatalog:
    """Tests for catalog reads."""

    def test_server_version(self, sqlserver_gateway):
        assert "Microsoft SQL Server" in sqlserver_gateway.server_version()

    def test_data_files_exclude_log(self, scratch_database, sqlserver_gateway):
        files = sqlserver_gateway.list_data_files(scratch_database)

        assert len(files) == 1
        assert not files[0].physical_name.lower().endswith(".ldf")

    def test_scratch_database_listed(self, scratch_database, sqlserver_gateway):
        assert scratch_database in sqlserver_gateway.list_databases()
        assert sqlserver_gateway.get_database_state(scratch_database) == "ONLINE"


@pytest.mark.integration
class TestSnapshotLifecycle:
    """Tests for snapshot commands."""

    def test_create_check_access_drop(self, scratch_database, sqlserver_gateway):
        gateway = sqlserver_gateway
        name = f"{scratch_database}_snap"
        directory = data_directory(gateway, scratch_database)
        separator = "\\" if "\\" in directory else "/"
        files = [
            (f.logical_name, f"{directory}{separator}{name}_{f.logical_name}.ss")
            for f in gateway.list_data_files(scratch_database)
        ]

        gateway.create_snapshot(name, scratch_database, files)

        assert gateway.snapshot_exists(name)
        assert gateway.is_accessible(name)
        assert [o.name for o in gateway.list_snapshots_of(scratch_database)] == [name]

        gateway.drop_database(name)
        assert not gateway.snapshot_exists(name)

    def test_service_create_and_rollback(self, scratch_database, sqlserver_gateway):
        gateway = sqlserver_gateway
        store = SqliteMetadataStore(":memory:")
        store.add_group(DatabaseGroup(id="it", name="it", databases=[scratch_database]))
        config = SnapshotConfig.from_dict({
            "snapshots": {"base_path": data_directory(gateway, scratch_database)},
        })
        service = SnapshotService(gateway, store, config=config)

        snapshot = service.create_snapshot("it", "before change").snapshot
        gateway._execute(f"UPDATE [{scratch_database}].dbo.items SET label = N'changed' WHERE id = 1")
        assert read_label(gateway, scratch_database) == "changed"

        result = service.rollback(snapshot.id)

        assert result.status == RollbackStatus.DONE
        assert read_label(gateway, scratch_database) == "original"
        assert service.verify().issues == []

        service.delete_group_snapshots("it")
        store.close()
