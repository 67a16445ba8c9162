"""
Unit tests for the in-memory engine gateway.
"""

import pytest

from sqlsnap.core.exceptions import EngineError
from sqlsnap.engine import create_engine_gateway
from sqlsnap.engine.memory_gateway import InMemoryEngineGateway


@pytest.mark.unit
class TestInMemoryEngineGateway:
    """Tests for engine semantics the services rely on."""

    def test_snapshot_captures_data(self, gateway):
        gateway.create_snapshot("s1", "orders", [("orders", "/snap/s1.ss")])
        gateway.databases["orders"].data = {"rows": 99}

        gateway.restore_from_snapshot("orders", "s1")

        assert gateway.data_of("orders") == {"rows": 1}
        assert not gateway.snapshot_exists("s1")

    def test_restore_requires_single_snapshot(self, gateway):
        """Test restore fails while another snapshot exists on the database."""
        gateway.create_snapshot("s1", "orders", [("orders", "/snap/s1.ss")])
        gateway.create_snapshot("s2", "orders", [("orders", "/snap/s2.ss")])

        with pytest.raises(EngineError):
            gateway.restore_from_snapshot("orders", "s1")

    def test_duplicate_name_rejected(self, gateway):
        gateway.create_snapshot("s1", "orders", [("orders", "/snap/s1.ss")])

        with pytest.raises(EngineError):
            gateway.create_snapshot("s1", "ledger", [("ledger", "/snap/s1b.ss")])

    def test_snapshot_objects_listing(self, gateway):
        gateway.add_external_snapshot("b_snap", "ledger")
        gateway.add_external_snapshot("a_snap", "orders")

        objects = gateway.list_snapshot_objects()

        assert [o.name for o in objects] == ["a_snap", "b_snap"]
        assert [o.source_database for o in gateway.list_snapshots_of("orders")] == ["orders"]

    def test_failure_injection(self, gateway):
        gateway.fail("drop_database", "s1", "locked")

        with pytest.raises(EngineError, match="locked"):
            gateway.drop_database("s1")

        gateway.clear_failures()
        gateway.drop_database("s1")

    def test_destructive_calls(self, gateway):
        gateway.list_data_files("orders")
        gateway.set_single_user("orders")

        assert gateway.destructive_calls() == [("set_single_user", "orders")]

    def test_accessibility(self, gateway):
        gateway.add_external_snapshot("s1", "orders")
        assert gateway.is_accessible("s1")

        gateway.mark_inaccessible("s1")
        assert not gateway.is_accessible("s1")

    def test_factory(self):
        assert isinstance(create_engine_gateway(backend="memory"), InMemoryEngineGateway)
        with pytest.raises(ValueError):
            create_engine_gateway(backend="oracle")
