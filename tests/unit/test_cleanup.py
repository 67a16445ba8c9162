"""
Unit tests for OrphanCleanupService.
"""

import pytest


@pytest.fixture
def with_orphans(service, gateway):
    """One known snapshot plus two orphans on billing databases."""
    snapshot = service.create_snapshot("billing", "EOD").snapshot
    gateway.add_external_snapshot("manual_orders", "orders")
    gateway.add_external_snapshot("manual_ledger", "ledger")
    return snapshot


@pytest.mark.unit
class TestSweep:
    """Tests for the authorized orphan sweep."""

    def test_nothing_authorized_drops_nothing(self, service, gateway, with_orphans):
        result = service.cleanup_orphaned([])

        assert result.count == 0
        assert result.skipped == ["manual_ledger", "manual_orders"]
        assert gateway.snapshot_exists("manual_orders")

    def test_only_authorized_dropped(self, service, gateway, with_orphans):
        result = service.cleanup_orphaned(["manual_orders"])

        assert result.dropped == ["manual_orders"]
        assert result.skipped == ["manual_ledger"]
        assert not gateway.snapshot_exists("manual_orders")
        assert gateway.snapshot_exists("manual_ledger")

    def test_known_snapshot_never_dropped(self, service, gateway, with_orphans):
        """Test authorizing a metadata-known name does not drop it."""
        known = f"{with_orphans.id}_orders"

        result = service.cleanup_orphaned([known])

        assert known in result.skipped
        assert gateway.snapshot_exists(known)

    def test_drop_all(self, service, gateway, store, with_orphans):
        result = service.cleanup_orphaned(drop_all=True)

        assert sorted(result.dropped) == ["manual_ledger", "manual_orders"]
        assert gateway.snapshot_exists(f"{with_orphans.id}_orders")
        assert store.get_history()[0].operation_type == "cleanup_orphaned"

    def test_drop_error_reported(self, service, gateway, with_orphans):
        gateway.fail("drop_database", "manual_orders", "in use")

        result = service.cleanup_orphaned(drop_all=True)

        assert result.errors == [("manual_orders", "in use")]
        assert result.dropped == ["manual_ledger"]

    def test_idempotent(self, service, with_orphans):
        """Test a second sweep finds nothing left to clean."""
        service.cleanup_orphaned(drop_all=True)

        result = service.cleanup_orphaned(drop_all=True)

        assert result.count == 0
        assert result.errors == []


@pytest.mark.unit
class TestStartupSweep:
    """Tests for the startup sweep of inaccessible snapshots."""

    def test_drops_inaccessible_and_heals(self, service, gateway, store, with_orphans):
        known = f"{with_orphans.id}_orders"
        gateway.mark_inaccessible(known)
        gateway.mark_inaccessible("manual_ledger")

        result = service.startup_sweep()

        assert sorted(result.dropped) == sorted([known, "manual_ledger"])
        assert gateway.snapshot_exists("manual_orders")
        healed = store.get_snapshot(with_orphans.id)
        assert [d.database for d in healed.failed] == ["orders"]
        assert store.get_history()[0].operation_type == "startup_orphan_cleanup"

    def test_fully_inaccessible_snapshot_removed(self, service, gateway, store, with_orphans):
        gateway.mark_inaccessible(f"{with_orphans.id}_orders")
        gateway.mark_inaccessible(f"{with_orphans.id}_ledger")

        result = service.startup_sweep()

        assert result.deleted_snapshots == [with_orphans.id]
        assert store.get_snapshot(with_orphans.id) is None

    def test_nothing_to_do(self, service, with_orphans):
        assert service.startup_sweep().count == 0
