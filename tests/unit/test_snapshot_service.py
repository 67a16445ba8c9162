"""
Unit tests for the SnapshotService facade.
"""

import threading

import pytest

from sqlsnap.core.exceptions import (
    GroupNotFound, PartialFailure, SnapshotNotFound, ValidationError,
)
from sqlsnap.core.locks import GroupBusy, GroupLockRegistry
from sqlsnap.services.snapshot_service import SnapshotService


@pytest.mark.unit
class TestListing:
    """Tests for listing operations."""

    def test_list_snapshots_sequence_descending(self, service):
        service.create_snapshot("billing", "one")
        service.create_snapshot("billing", "two")
        service.create_snapshot("billing", "three")

        snapshots = service.list_snapshots("billing")

        assert [s.sequence for s in snapshots] == [3, 2, 1]
        assert [s.display_name for s in snapshots] == ["three", "two", "one"]

    def test_list_all_snapshots(self, service):
        service.create_snapshot("billing", "one")
        service.create_snapshot("crm", "one")

        assert {s.group_id for s in service.list_snapshots()} == {"billing", "crm"}

    def test_list_unknown_group(self, service):
        with pytest.raises(GroupNotFound):
            service.list_snapshots("nope")

    def test_list_databases(self, service):
        assert service.list_databases() == ["crm", "ledger", "orders"]

    def test_history_limit(self, service):
        service.create_snapshot("billing", "one")
        service.create_snapshot("billing", "two")

        assert len(service.get_history(limit=1)) == 1
        assert len(service.get_history()) == 2


@pytest.mark.unit
class TestDelete:
    """Tests for delete operations."""

    def test_delete_snapshot(self, service, gateway, store):
        snapshot = service.create_snapshot("billing", "EOD").snapshot

        result = service.delete_snapshot(snapshot.id)

        assert sorted(result.dropped) == sorted([f"{snapshot.id}_orders", f"{snapshot.id}_ledger"])
        assert result.deleted_snapshots == [snapshot.id]
        assert store.get_snapshot(snapshot.id) is None
        assert gateway.list_snapshot_objects() == []
        assert store.get_history()[0].operation_type == "delete_snapshot"

    def test_delete_already_gone_objects(self, service, gateway, store):
        """Test deleting tolerates engine objects that are already gone."""
        snapshot = service.create_snapshot("billing", "EOD").snapshot
        gateway.remove_snapshot_out_of_band(f"{snapshot.id}_orders")

        service.delete_snapshot(snapshot.id)

        assert store.get_snapshot(snapshot.id) is None

    def test_delete_drop_failure_keeps_record(self, service, gateway, store):
        snapshot = service.create_snapshot("billing", "EOD").snapshot
        gateway.fail("drop_database", f"{snapshot.id}_ledger", "in use")

        with pytest.raises(PartialFailure):
            service.delete_snapshot(snapshot.id)

        assert store.get_snapshot(snapshot.id) is not None

    def test_delete_unknown(self, service):
        with pytest.raises(SnapshotNotFound):
            service.delete_snapshot("billing_ffffffff")

    def test_delete_group_snapshots(self, service, store, gateway):
        service.create_snapshot("billing", "one")
        service.create_snapshot("billing", "two")
        crm = service.create_snapshot("crm", "one").snapshot

        result = service.delete_group_snapshots("billing")

        assert len(result.deleted_snapshots) == 2
        assert store.get_snapshots_for_group("billing") == []
        assert store.get_snapshot(crm.id) is not None
        assert {obj.name for obj in gateway.list_snapshot_objects()} == {f"{crm.id}_crm"}


@pytest.mark.unit
class TestCleanupInvalid:
    """Tests for cleanup_invalid."""

    def test_healthy_snapshot_refused(self, service):
        snapshot = service.create_snapshot("billing", "EOD").snapshot

        with pytest.raises(ValidationError):
            service.cleanup_invalid(snapshot.id)

    def test_partial_snapshot_removed(self, service, gateway, store):
        gateway.add_database("orders", files=[])
        snapshot = service.create_snapshot("billing", "EOD").snapshot

        result = service.cleanup_invalid(snapshot.id)

        assert result.dropped == [f"{snapshot.id}_ledger"]
        assert store.get_snapshot(snapshot.id) is None
        assert gateway.list_snapshot_objects() == []

    def test_drop_failure_keeps_record_for_retry(self, service, gateway, store):
        """Test a failed drop keeps the record so a later cleanup can finish."""
        gateway.add_database("orders", files=[])
        snapshot = service.create_snapshot("billing", "EOD").snapshot
        gateway.fail("drop_database", f"{snapshot.id}_ledger", "in use")

        with pytest.raises(PartialFailure):
            service.cleanup_invalid(snapshot.id)

        assert store.get_snapshot(snapshot.id) is not None
        assert gateway.snapshot_exists(f"{snapshot.id}_ledger")

        gateway.clear_failures()
        result = service.cleanup_invalid(snapshot.id)

        assert result.deleted_snapshots == [snapshot.id]
        assert gateway.list_snapshot_objects() == []

    def test_missing_objects_count_as_invalid(self, service, gateway, store):
        snapshot = service.create_snapshot("billing", "EOD").snapshot
        gateway.remove_snapshot_out_of_band(f"{snapshot.id}_orders")

        result = service.cleanup_invalid(snapshot.id)

        assert result.deleted_snapshots == [snapshot.id]
        assert store.get_history()[0].details["missing_objects"] == [f"{snapshot.id}_orders"]


@pytest.mark.unit
class TestMaintenance:
    """Tests for stale metadata cleanup, group sync and health."""

    def test_cleanup_stale_metadata(self, service, gateway, store):
        snapshot = service.create_snapshot("billing", "EOD").snapshot
        gateway.remove_snapshot_out_of_band(f"{snapshot.id}_orders")
        gateway.remove_snapshot_out_of_band(f"{snapshot.id}_ledger")

        result = service.cleanup_stale_metadata()

        assert result.deleted_snapshots == [snapshot.id]
        assert service.cleanup_stale_metadata().count == 0

    def test_sync_groups(self, service, store):
        added = service.sync_groups([
            {"id": "billing", "name": "billing", "databases": ["other"]},
            {"id": "hr", "name": "HR", "databases": ["people"]},
            {"name": "payroll", "databases": ["pay"]},
        ])

        assert added == ["hr", "payroll"]
        assert store.get_group("billing").databases == ["orders", "ledger"]
        assert store.get_group("payroll").name == "payroll"

    def test_sync_groups_requires_identity(self, service):
        with pytest.raises(ValidationError):
            service.sync_groups([{"databases": ["x"]}])

    def test_health(self, service):
        status = service.health()

        assert status["status"] == "ok"
        assert status["engine"]["version"] == "In-memory engine"
        assert status["metadata"]["groups"] == 2
        assert status["engine"]["inaccessible_snapshots"] == 0

    def test_health_reports_inaccessible_snapshots(self, service, gateway):
        """Test snapshot databases failing the accessibility check are counted and named."""
        snapshot = service.create_snapshot("billing", "EOD").snapshot
        gateway.mark_inaccessible(f"{snapshot.id}_ledger")

        status = service.health()

        assert status["status"] == "ok"
        assert status["engine"]["inaccessible_snapshots"] == 1
        assert status["engine"]["inaccessible_snapshot_names"] == [f"{snapshot.id}_ledger"]


@pytest.mark.unit
def test_group_lock_blocks_concurrent_create(gateway, store, config, clock):
    """Test a create waits for (and here times out on) a busy group."""
    locks = GroupLockRegistry(timeout=0.05)
    service = SnapshotService(gateway, store, config=config, clock=clock, locks=locks)
    held = threading.Event()
    release = threading.Event()

    def hold_lock():
        with locks.hold("billing"):
            held.set()
            release.wait(5)

    worker = threading.Thread(target=hold_lock)
    worker.start()
    held.wait(5)
    try:
        with pytest.raises(GroupBusy):
            service.create_snapshot("billing", "EOD")
        service.create_snapshot("crm", "EOD")
    finally:
        release.set()
        worker.join()
