"""
Unit tests for the SQLite metadata store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from sqlsnap.core.models import DatabaseGroup, HistoryEntry
from sqlsnap.state import create_metadata_store
from sqlsnap.state.sqlite_store import SqliteMetadataStore


@pytest.mark.unit
class TestGroupsAndSnapshots:
    """Tests for group and snapshot persistence."""

    def test_group_roundtrip(self, store):
        group = store.get_group("billing")

        assert group.name == "billing"
        assert group.databases == ["orders", "ledger"]
        assert store.get_group("nope") is None
        assert [g.id for g in store.get_all_groups()] == ["crm", "billing"]

    def test_snapshot_roundtrip(self, store, snapshot_factory):
        snapshot = snapshot_factory("billing_00000001", failed=("ledger",))
        snapshot.is_automatic = True
        store.add_snapshot(snapshot)

        loaded = store.get_snapshot("billing_00000001")

        assert loaded == snapshot

    def test_snapshots_for_group_sequence_desc(self, store, snapshot_factory):
        for seq in (2, 1, 3):
            store.add_snapshot(snapshot_factory(f"billing_0000000{seq}", sequence=seq))
        store.add_snapshot(snapshot_factory("crmgroup_00000001", group_id="crm", databases=("crm",)))

        sequences = [s.sequence for s in store.get_snapshots_for_group("billing")]

        assert sequences == [3, 2, 1]
        assert len(store.get_all_snapshots()) == 4

    def test_update_snapshot(self, store, snapshot_factory):
        snapshot = snapshot_factory("billing_00000001")
        store.add_snapshot(snapshot)

        updated = snapshot.without_references(["billing_00000001_orders"], "gone")
        assert store.update_snapshot(updated) is True

        loaded = store.get_snapshot("billing_00000001")
        assert [d.database for d in loaded.failed] == ["orders"]
        assert loaded.failed[0].error == "gone"

    def test_update_missing_snapshot(self, store, snapshot_factory):
        assert store.update_snapshot(snapshot_factory("billing_00000001")) is False

    def test_delete_snapshot(self, store, snapshot_factory):
        store.add_snapshot(snapshot_factory("billing_00000001"))

        assert store.delete_snapshot("billing_00000001") is True
        assert store.delete_snapshot("billing_00000001") is False
        assert store.get_snapshot("billing_00000001") is None


@pytest.mark.unit
class TestHistory:
    """Tests for history persistence and trimming."""

    def _entry(self, minutes: int) -> HistoryEntry:
        return HistoryEntry(
            operation_type="create_snapshot",
            details={"n": minutes},
            results=[{"database": "orders", "success": True}],
            user_name="tester",
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
        )

    def test_history_newest_first(self, store):
        for minutes in (1, 3, 2):
            store.add_history_entry(self._entry(minutes))

        history = store.get_history()

        assert [e.details["n"] for e in history] == [3, 2, 1]
        assert history[0].results == [{"database": "orders", "success": True}]

    def test_history_trimmed_oldest_first(self):
        store = SqliteMetadataStore(":memory:", max_history_entries=3)
        for minutes in range(5):
            store.add_history_entry(self._entry(minutes))

        assert [e.details["n"] for e in store.get_history()] == [4, 3, 2]
        store.close()

    def test_history_limit(self, store):
        for minutes in range(4):
            store.add_history_entry(self._entry(minutes))

        assert len(store.get_history(limit=2)) == 2


@pytest.mark.unit
class TestPersistence:
    """Tests for file-backed stores."""

    def test_file_store_persists(self, tmp_path):
        path = tmp_path / "nested" / "meta.db"
        store = create_metadata_store(db_path=path)
        store.add_group(DatabaseGroup(id="g", name="g", databases=["a"]))
        store.close()

        reopened = SqliteMetadataStore(path)
        assert reopened.get_group("g").databases == ["a"]
        reopened.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_metadata_store(backend="postgres")
