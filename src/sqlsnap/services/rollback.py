"""
Rollback of a database group to a prior snapshot.

The engine can only revert a database from a snapshot when that snapshot
is the only one on the database, so a rollback walks these steps:

1. PreCheck: refuse when snapshots we did not create exist on a target
   database (BLOCKED, nothing dropped)
2. EvictGroupSnapshots: drop every other snapshot on the target databases
3. PerDatabaseRestore: evict sessions and revert each database in turn
4. PostRestoreCleanup: drop leftovers that belong to the group
5. CheckpointCreate: capture a fresh automatic checkpoint
6. MetadataPurgeAndRewrite: replace the group's records with the checkpoint

There is no transaction across databases. A failed restore leaves the
group partially reverted and ends the rollback as FAILED.
"""

import logging
from typing import List, Optional

from ..core.exceptions import EngineError, SnapshotNotFound, SqlSnapError, ValidationError
from ..core.logging import CorrelationContext, log_with_context
from ..core.metadata_store import MetadataStore
from ..core.models import (
    DatabaseGroup, DatabaseRestoreResult, OperationType, PreCheckResult,
    RollbackResult, RollbackStatus, RollbackStep, Snapshot,
)
from ..engine import sql
from ..engine.gateway import EngineGateway
from .audit import record_history
from .creator import SnapshotCreator
from .identity import normalize_group_name
from .reconciler import ConsistencyReconciler


logger = logging.getLogger(__name__)


RESTORING_STATE = "RESTORING"


class RollbackOrchestrator:
    """Drives the rollback state machine for one snapshot at a time."""

    def __init__(
        self,
        gateway: EngineGateway,
        store: MetadataStore,
        reconciler: ConsistencyReconciler,
        creator: SnapshotCreator,
        auto_create_checkpoint: bool = True,
        checkpoint_label: str = "Automatic checkpoint",
    ):
        """
        Initialize the orchestrator.

        Args:
            gateway: Engine gateway
            store: Metadata store
            reconciler: Source of the metadata-known snapshot names
            creator: Used to capture the post-rollback checkpoint
            auto_create_checkpoint: Whether to capture a checkpoint after restore
            checkpoint_label: Display name of the automatic checkpoint
        """
        self.gateway = gateway
        self.store = store
        self.reconciler = reconciler
        self.creator = creator
        self.auto_create_checkpoint = auto_create_checkpoint
        self.checkpoint_label = checkpoint_label

    def _get_snapshot(self, snapshot_id: str) -> Snapshot:
        snapshot = self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFound(snapshot_id)
        return snapshot

    def check_external(self, snapshot_id: str) -> PreCheckResult:
        """
        Find engine snapshots on the target databases that metadata does not know.

        Args:
            snapshot_id: Rollback target

        Returns:
            PreCheckResult listing external snapshots and DROP commands for them

        Raises:
            SnapshotNotFound: If the snapshot does not exist
        """
        snapshot = self._get_snapshot(snapshot_id)
        return self._pre_check(snapshot)

    def _pre_check(self, snapshot: Snapshot) -> PreCheckResult:
        target_databases = {d.database for d in snapshot.database_snapshots}
        target_names = set(snapshot.engine_names())
        known = self.reconciler.known_snapshot_names()

        external = [
            obj for obj in self.gateway.list_snapshot_objects()
            if obj.source_database in target_databases
            and obj.name not in target_names
            and obj.name not in known
        ]
        return PreCheckResult(
            snapshot_id=snapshot.id,
            external_snapshots=external,
            removal_commands=[sql.removal_command(obj.name) for obj in external],
        )

    def rollback(self, snapshot_id: str) -> RollbackResult:
        """
        Roll the snapshot's group back to it.

        Args:
            snapshot_id: Rollback target

        Returns:
            RollbackResult with status DONE, BLOCKED or FAILED

        Raises:
            SnapshotNotFound: If the snapshot does not exist
            ValidationError: If any database of the snapshot was never captured
        """
        snapshot = self._get_snapshot(snapshot_id)
        if snapshot.failed:
            raise ValidationError(
                f"Snapshot {snapshot.id} is incomplete ({len(snapshot.failed)} of "
                f"{len(snapshot.database_snapshots)} databases failed); "
                "remove it with cleanup-invalid"
            )

        group = self.store.get_group(snapshot.group_id)
        group_name = snapshot.group_name or (group.name if group else snapshot.group_id)

        result = RollbackResult(
            snapshot_id=snapshot.id,
            group_id=snapshot.group_id,
            status=RollbackStatus.FAILED,
        )

        with CorrelationContext(operation="rollback", group_id=snapshot.group_id, snapshot_id=snapshot.id):
            log_with_context(logger, logging.INFO, f"Starting rollback to '{snapshot.display_name}'")

            # 1. PreCheck
            with CorrelationContext(step=RollbackStep.PRE_CHECK.value):
                result.pre_check = self._pre_check(snapshot)
            if result.pre_check.blocked:
                names = [obj.name for obj in result.pre_check.external_snapshots]
                log_with_context(
                    logger, logging.WARNING,
                    f"Rollback blocked by external snapshots: {', '.join(names)}",
                )
                result.status = RollbackStatus.BLOCKED
                return result
            result.steps_completed.append(RollbackStep.PRE_CHECK)

            # 2. EvictGroupSnapshots
            with CorrelationContext(step=RollbackStep.EVICT_GROUP_SNAPSHOTS.value):
                result.evicted = self._evict(snapshot)
            result.steps_completed.append(RollbackStep.EVICT_GROUP_SNAPSHOTS)

            # 3. PerDatabaseRestore
            with CorrelationContext(step=RollbackStep.PER_DATABASE_RESTORE.value):
                for entry in snapshot.database_snapshots:
                    result.restores.append(self._restore_database(entry.database, entry.snapshot_name))

            if result.databases_failed:
                log_with_context(
                    logger, logging.ERROR,
                    f"Rollback failed: {result.databases_restored}/{len(result.restores)} "
                    "databases restored; manual intervention required",
                )
                record_history(
                    self.store,
                    OperationType.ROLLBACK_FAILED,
                    {
                        "snapshot_id": snapshot.id,
                        "group_id": snapshot.group_id,
                        "group_name": group_name,
                        "display_name": snapshot.display_name,
                        "databases_restored": result.databases_restored,
                        "databases_failed": result.databases_failed,
                        "evicted": result.evicted,
                    },
                    results=[r.to_dict() for r in result.restores],
                )
                return result
            result.steps_completed.append(RollbackStep.PER_DATABASE_RESTORE)

            # 4. PostRestoreCleanup
            with CorrelationContext(step=RollbackStep.POST_RESTORE_CLEANUP.value):
                result.leftovers_dropped = self._drop_leftovers(snapshot, group_name)
            result.steps_completed.append(RollbackStep.POST_RESTORE_CLEANUP)

            # 5. CheckpointCreate
            if self.auto_create_checkpoint:
                with CorrelationContext(step=RollbackStep.CHECKPOINT_CREATE.value):
                    self._create_checkpoint(result, snapshot, group, group_name)
                result.steps_completed.append(RollbackStep.CHECKPOINT_CREATE)

            # 6. MetadataPurgeAndRewrite
            with CorrelationContext(step=RollbackStep.METADATA_PURGE_AND_REWRITE.value):
                self._purge_and_rewrite(result, snapshot.group_id)
            result.steps_completed.append(RollbackStep.METADATA_PURGE_AND_REWRITE)

            result.status = RollbackStatus.DONE
            record_history(
                self.store,
                OperationType.ROLLBACK,
                {
                    "snapshot_id": snapshot.id,
                    "group_id": snapshot.group_id,
                    "group_name": group_name,
                    "display_name": snapshot.display_name,
                    "databases_restored": result.databases_restored,
                    "evicted": result.evicted,
                    "purged_snapshots": result.purged_snapshots,
                    "checkpoint_id": result.checkpoint.snapshot.id if result.checkpoint_created else None,
                    "checkpoint_error": result.checkpoint_error,
                },
                results=[r.to_dict() for r in result.restores],
            )
            log_with_context(
                logger, logging.INFO,
                f"Rollback complete: {result.databases_restored} databases restored",
            )
        return result

    def _evict(self, snapshot: Snapshot) -> List[str]:
        """Drop every snapshot on the target databases except the target's own."""
        target_databases = {d.database for d in snapshot.database_snapshots}
        target_names = set(snapshot.engine_names())

        evicted = []
        for obj in self.gateway.list_snapshot_objects():
            if obj.source_database not in target_databases or obj.name in target_names:
                continue
            try:
                self.gateway.drop_database(obj.name)
                evicted.append(obj.name)
                log_with_context(
                    logger, logging.INFO, f"Evicted snapshot {obj.name}",
                    database=obj.source_database,
                )
            except EngineError as e:
                # The restore of this database will fail and report it
                log_with_context(
                    logger, logging.ERROR, f"Failed to evict {obj.name}: {e}",
                    database=obj.source_database,
                )
        return evicted

    def _restore_database(self, database: str, snapshot_name: str) -> DatabaseRestoreResult:
        """
        Revert one database from its snapshot.

        Only a vanished snapshot or a failed RESTORE fail the database.
        Session eviction and access-mode problems are kept as warnings.
        """
        restore = DatabaseRestoreResult(database=database, snapshot_name=snapshot_name, success=False)

        with CorrelationContext(database=database):
            if not self.gateway.snapshot_exists(snapshot_name):
                restore.error = f"Snapshot {snapshot_name} no longer exists in the engine"
                log_with_context(logger, logging.ERROR, restore.error)
                return restore

            try:
                killed = self.gateway.terminate_sessions(database)
                if killed:
                    log_with_context(logger, logging.INFO, f"Terminated {killed} sessions")
            except EngineError as e:
                restore.warnings.append(f"terminate sessions: {e}")
                log_with_context(logger, logging.WARNING, f"Could not terminate sessions: {e}")

            try:
                self.gateway.set_single_user(database)
            except EngineError as e:
                restore.warnings.append(f"set single user: {e}")
                log_with_context(logger, logging.WARNING, f"Could not set SINGLE_USER: {e}")

            try:
                if self.gateway.get_database_state(database) == RESTORING_STATE:
                    log_with_context(logger, logging.WARNING, "Database is RESTORING; recovering first")
                    self.gateway.restore_with_recovery(database)
            except EngineError as e:
                restore.warnings.append(f"recovery: {e}")
                log_with_context(logger, logging.WARNING, f"Could not recover database: {e}")

            try:
                self.gateway.restore_from_snapshot(database, snapshot_name)
                restore.success = True
                log_with_context(logger, logging.INFO, f"Restored from {snapshot_name}")
            except EngineError as e:
                restore.error = str(e)
                log_with_context(logger, logging.ERROR, f"Restore from {snapshot_name} failed: {e}")

            try:
                self.gateway.set_multi_user(database)
            except EngineError as e:
                restore.warnings.append(f"set multi user: {e}")
                log_with_context(logger, logging.WARNING, f"Could not set MULTI_USER: {e}")

        return restore

    def _drop_leftovers(self, snapshot: Snapshot, group_name: str) -> List[str]:
        """Drop snapshots on the target databases that still belong to the group."""
        target_databases = {d.database for d in snapshot.database_snapshots}
        group_names = set()
        for record in self.store.get_snapshots_for_group(snapshot.group_id):
            group_names.update(d.snapshot_name for d in record.database_snapshots)
        prefix = f"{normalize_group_name(group_name)}_"

        dropped = []
        for obj in self.gateway.list_snapshot_objects():
            if obj.source_database not in target_databases:
                continue
            if obj.name not in group_names and not obj.name.startswith(prefix):
                continue
            try:
                self.gateway.drop_database(obj.name)
                dropped.append(obj.name)
                log_with_context(logger, logging.INFO, f"Dropped leftover snapshot {obj.name}")
            except EngineError as e:
                log_with_context(logger, logging.WARNING, f"Failed to drop leftover {obj.name}: {e}")
        return dropped

    def _create_checkpoint(
        self,
        result: RollbackResult,
        snapshot: Snapshot,
        group: Optional[DatabaseGroup],
        group_name: str,
    ) -> None:
        """Capture the post-rollback checkpoint; failures never fail the rollback."""
        if group is None:
            group = DatabaseGroup(
                id=snapshot.group_id,
                name=group_name,
                databases=[d.database for d in snapshot.database_snapshots],
            )
        try:
            result.checkpoint = self.creator.capture(
                group, self.checkpoint_label, sequence=1, is_automatic=True
            )
        except SqlSnapError as e:
            result.checkpoint_error = str(e)
            log_with_context(logger, logging.ERROR, f"Automatic checkpoint failed: {e}")
            return

        if not result.checkpoint.snapshot.successful:
            result.checkpoint_error = "; ".join(
                f"{database}: {error}" for database, error in result.checkpoint.failures
            )
            log_with_context(
                logger, logging.ERROR,
                f"Automatic checkpoint captured no databases: {result.checkpoint_error}",
            )
        elif result.checkpoint.failures:
            log_with_context(
                logger, logging.WARNING,
                f"Automatic checkpoint partial: {len(result.checkpoint.failures)} databases failed",
            )

    def _purge_and_rewrite(self, result: RollbackResult, group_id: str) -> None:
        """Replace every record of the group with the checkpoint, if one was captured."""
        for record in self.store.get_snapshots_for_group(group_id):
            self.store.delete_snapshot(record.id)
            result.purged_snapshots.append(record.id)

        if result.checkpoint_created:
            checkpoint = result.checkpoint.snapshot
            self.store.add_snapshot(checkpoint)
            record_history(
                self.store,
                OperationType.CREATE_AUTOMATIC_CHECKPOINT,
                {
                    "snapshot_id": checkpoint.id,
                    "group_id": group_id,
                    "group_name": checkpoint.group_name,
                    "display_name": checkpoint.display_name,
                    "sequence": checkpoint.sequence,
                    "rollback_snapshot_id": result.snapshot_id,
                },
                results=[d.to_dict() for d in checkpoint.database_snapshots],
            )
        log_with_context(
            logger, logging.INFO,
            f"Purged {len(result.purged_snapshots)} snapshot records"
            + (", checkpoint recorded" if result.checkpoint_created else ""),
        )
