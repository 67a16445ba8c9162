"""
Snapshot service facade.

Wires the snapshot components to one engine gateway and metadata store and
exposes the operations an outer layer (CLI, web handler) calls. Create,
rollback and delete for a group are serialized through a per-group lock.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config.config_loader import SnapshotConfig
from ..core.exceptions import (
    EngineError, GroupNotFound, PartialFailure, SnapshotNotFound, SqlSnapError,
    ValidationError,
)
from ..core.locks import GroupLockRegistry
from ..core.metadata_store import MetadataStore
from ..core.models import (
    CleanupResult, ConsistencyReport, CreationResult, DatabaseGroup, HistoryEntry,
    OperationType, PreCheckResult, RollbackResult, Snapshot,
)
from ..engine.gateway import EngineGateway
from .audit import record_history
from .cleanup import OrphanCleanupService
from .creator import SnapshotCreator
from .identity import SnapshotIdentity
from .reconciler import ConsistencyReconciler
from .rollback import RollbackOrchestrator


logger = logging.getLogger(__name__)


class SnapshotService:
    """Entry point for every snapshot lifecycle operation."""

    def __init__(
        self,
        gateway: EngineGateway,
        store: MetadataStore,
        config: Optional[SnapshotConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[GroupLockRegistry] = None,
    ):
        """
        Initialize the service.

        Args:
            gateway: Engine gateway
            store: Metadata store
            config: Configuration (defaults apply when omitted)
            clock: Returns the current instant (default: UTC now)
            locks: Per-group lock registry (a private one when omitted)
        """
        self.config = config or SnapshotConfig.from_dict({})
        self.gateway = gateway
        self.store = store
        self.locks = locks or GroupLockRegistry()

        self.identity = SnapshotIdentity(store, base_path=self.config.snapshot_base_path)
        self.creator = SnapshotCreator(
            gateway, store, self.identity,
            max_per_group=self.config.max_per_group,
            clock=clock,
        )
        self.reconciler = ConsistencyReconciler(gateway, store)
        self.orchestrator = RollbackOrchestrator(
            gateway, store, self.reconciler, self.creator,
            auto_create_checkpoint=self.config.auto_create_checkpoint,
            checkpoint_label=self.config.checkpoint_label,
        )
        self.cleanup = OrphanCleanupService(gateway, store, self.reconciler)

    # =========================================================================
    # Groups
    # =========================================================================

    def sync_groups(self, groups: Iterable[Dict[str, Any]]) -> List[str]:
        """
        Register groups declared in configuration that the store does not have yet.

        Existing groups are left untouched.

        Returns:
            Ids of the groups added
        """
        known = {g.id for g in self.store.get_all_groups()}
        added = []
        for entry in groups:
            group_id = str(entry.get("id") or entry.get("name") or "").strip()
            if not group_id:
                raise ValidationError(f"Group entry without id or name: {entry}")
            if group_id in known:
                continue
            self.store.add_group(DatabaseGroup(
                id=group_id,
                name=entry.get("name", group_id),
                databases=list(entry.get("databases", [])),
            ))
            known.add(group_id)
            added.append(group_id)
            logger.info(f"Registered group {group_id}")
        return added

    def list_groups(self) -> List[DatabaseGroup]:
        return self.store.get_all_groups()

    # =========================================================================
    # Snapshots
    # =========================================================================

    def create_snapshot(self, group_id: str, display_name: str) -> CreationResult:
        with self.locks.hold(group_id):
            return self.creator.create(group_id, display_name)

    def list_snapshots(self, group_id: Optional[str] = None) -> List[Snapshot]:
        """List snapshots, highest sequence first within a group."""
        if group_id is not None:
            if self.store.get_group(group_id) is None:
                raise GroupNotFound(group_id)
            return self.store.get_snapshots_for_group(group_id)
        return sorted(
            self.store.get_all_snapshots(),
            key=lambda s: (s.group_id, -s.sequence),
        )

    def get_snapshot(self, snapshot_id: str) -> Snapshot:
        snapshot = self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFound(snapshot_id)
        return snapshot

    def delete_snapshot(self, snapshot_id: str) -> CleanupResult:
        """
        Drop a snapshot's engine objects and delete its record.

        Raises:
            SnapshotNotFound: If the snapshot does not exist
            PartialFailure: If an engine object could not be dropped; the
                record is kept so the drop can be retried
        """
        snapshot = self.get_snapshot(snapshot_id)
        with self.locks.hold(snapshot.group_id):
            result = self._delete(snapshot)
        if result.errors:
            raise PartialFailure(
                f"Failed to drop {len(result.errors)} engine objects of {snapshot_id}",
                results=[{"name": n, "error": e} for n, e in result.errors],
            )
        record_history(
            self.store,
            OperationType.DELETE_SNAPSHOT,
            {
                "snapshot_id": snapshot.id,
                "group_id": snapshot.group_id,
                "display_name": snapshot.display_name,
                "dropped": result.dropped,
            },
        )
        return result

    def delete_group_snapshots(self, group_id: str) -> CleanupResult:
        """Delete every snapshot of a group, continuing past individual failures."""
        if self.store.get_group(group_id) is None:
            raise GroupNotFound(group_id)

        total = CleanupResult()
        with self.locks.hold(group_id):
            for snapshot in self.store.get_snapshots_for_group(group_id):
                result = self._delete(snapshot)
                total.dropped.extend(result.dropped)
                total.errors.extend(result.errors)
                total.deleted_snapshots.extend(result.deleted_snapshots)

        record_history(
            self.store,
            OperationType.DELETE_GROUP_SNAPSHOTS,
            {
                "group_id": group_id,
                "deleted_snapshots": total.deleted_snapshots,
                "dropped": total.dropped,
                "errors": [{"name": n, "error": e} for n, e in total.errors],
            },
        )
        return total

    def _delete(self, snapshot: Snapshot) -> CleanupResult:
        result = CleanupResult()
        for name in snapshot.engine_names():
            try:
                self.gateway.drop_database(name)
                result.dropped.append(name)
            except EngineError as e:
                logger.error(f"Failed to drop {name}: {e}")
                result.errors.append((name, str(e)))
        if not result.errors:
            self.store.delete_snapshot(snapshot.id)
            result.deleted_snapshots.append(snapshot.id)
            logger.info(f"Deleted snapshot {snapshot.id} ({len(result.dropped)} engine objects)")
        return result

    def cleanup_invalid(self, snapshot_id: str) -> CleanupResult:
        """
        Remove a snapshot that has failed entries or missing engine objects.

        Raises:
            SnapshotNotFound: If the snapshot does not exist
            ValidationError: If the snapshot is healthy (use delete instead)
            PartialFailure: If an engine object could not be dropped; the
                record is kept so the cleanup can be retried
        """
        snapshot = self.get_snapshot(snapshot_id)
        in_engine = self.reconciler.engine_snapshot_names()
        missing = [n for n in snapshot.engine_names() if n not in in_engine]
        if not snapshot.failed and not missing:
            raise ValidationError(
                f"Snapshot {snapshot_id} is valid; delete it instead of cleaning it up"
            )

        with self.locks.hold(snapshot.group_id):
            result = CleanupResult()
            for name in snapshot.engine_names():
                if name not in in_engine:
                    continue
                try:
                    self.gateway.drop_database(name)
                    result.dropped.append(name)
                except EngineError as e:
                    logger.error(f"Failed to drop {name}: {e}")
                    result.errors.append((name, str(e)))
            if not result.errors:
                self.store.delete_snapshot(snapshot.id)
                result.deleted_snapshots.append(snapshot.id)

        if result.errors:
            raise PartialFailure(
                f"Failed to drop {len(result.errors)} engine objects of {snapshot_id}",
                results=[{"name": n, "error": e} for n, e in result.errors],
            )
        record_history(
            self.store,
            OperationType.CLEANUP_INVALID,
            {
                "snapshot_id": snapshot.id,
                "group_id": snapshot.group_id,
                "failed_databases": [d.database for d in snapshot.failed],
                "missing_objects": missing,
                "dropped": result.dropped,
            },
        )
        logger.info(f"Cleaned up invalid snapshot {snapshot_id}")
        return result

    # =========================================================================
    # Rollback
    # =========================================================================

    def check_external(self, snapshot_id: str) -> PreCheckResult:
        return self.orchestrator.check_external(snapshot_id)

    def rollback(self, snapshot_id: str) -> RollbackResult:
        snapshot = self.get_snapshot(snapshot_id)
        with self.locks.hold(snapshot.group_id):
            return self.orchestrator.rollback(snapshot_id)

    # =========================================================================
    # Consistency
    # =========================================================================

    def verify(self) -> ConsistencyReport:
        return self.reconciler.verify()

    def cleanup_orphaned(
        self,
        authorized: Optional[Iterable[str]] = None,
        drop_all: bool = False,
    ) -> CleanupResult:
        return self.cleanup.sweep(authorized, drop_all=drop_all)

    def cleanup_stale_metadata(self) -> CleanupResult:
        """
        Delete or rewrite records whose engine objects no longer exist.

        Returns:
            CleanupResult whose deleted_snapshots lists every healed record id
        """
        outcome = self.reconciler.heal_missing()
        return CleanupResult(deleted_snapshots=outcome.healed)

    def startup_sweep(self) -> CleanupResult:
        return self.cleanup.startup_sweep()

    # =========================================================================
    # Engine and audit
    # =========================================================================

    def list_databases(self) -> List[str]:
        return self.gateway.list_databases()

    def get_history(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        return self.store.get_history(limit)

    def health(self) -> Dict[str, Any]:
        """
        Check engine and metadata store reachability.

        The engine section also lists snapshot databases that fail the
        accessibility probe; startup_sweep() is what removes them.
        """
        status = {"status": "ok", "engine": {}, "metadata": {}}
        try:
            version = self.gateway.server_version()
            inaccessible = [
                obj.name for obj in self.gateway.list_snapshot_objects()
                if not self.gateway.is_accessible(obj.name)
            ]
            status["engine"] = {
                "status": "ok",
                "version": version,
                "inaccessible_snapshots": len(inaccessible),
                "inaccessible_snapshot_names": inaccessible,
            }
        except SqlSnapError as e:
            status["engine"] = {"status": "error", "error": str(e)}
            status["status"] = "degraded"
        try:
            status["metadata"] = {
                "status": "ok",
                "groups": len(self.store.get_all_groups()),
                "snapshots": len(self.store.get_all_snapshots()),
            }
        except Exception as e:
            logger.error(f"Metadata store health check failed: {e}")
            status["metadata"] = {"status": "error", "error": str(e)}
            status["status"] = "degraded"
        return status

    def close(self) -> None:
        self.gateway.close()
        self.store.close()
