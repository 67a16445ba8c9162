"""
Fan-out snapshot creation across the databases of a group.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from ..core.exceptions import (
    GroupNotFound, NoDataFiles, SnapshotCreationFailed, SnapshotLimitExceeded,
    SqlSnapError, ValidationError,
)
from ..core.logging import CorrelationContext, log_with_context
from ..core.metadata_store import MetadataStore
from ..core.models import (
    CreationResult, DatabaseGroup, DatabaseSnapshotResult, OperationType, Snapshot,
)
from ..engine import sql
from ..engine.gateway import EngineGateway
from .audit import current_user, record_history
from .identity import SnapshotIdentity


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotCreator:
    """
    Creates a Snapshot of every database in a group.

    Each database is attempted independently; one failure never blocks the
    others. The Snapshot record is persisted even when every database
    failed, so the attempt stays visible until cleaned up.
    """

    def __init__(
        self,
        gateway: EngineGateway,
        store: MetadataStore,
        identity: SnapshotIdentity,
        max_per_group: int = 9,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the creator.

        Args:
            gateway: Engine gateway
            store: Metadata store
            identity: Naming and sequencing helper
            max_per_group: Live snapshot limit per group
            clock: Returns the creation instant (default: UTC now)
        """
        self.gateway = gateway
        self.store = store
        self.identity = identity
        self.max_per_group = max_per_group
        self.clock = clock or _utcnow

    def create(self, group_id: str, display_name: str) -> CreationResult:
        """
        Snapshot every database of a group and record the result.

        Args:
            group_id: Group to snapshot
            display_name: Operator label

        Returns:
            CreationResult with the persisted Snapshot and per-database failures

        Raises:
            GroupNotFound: If the group does not exist
            SnapshotLimitExceeded: If the group is already at the limit
            ValidationError: If the label is blank or the group is empty
            SnapshotCreationFailed: If no database could be snapshotted
        """
        label = self.identity.generate_display_name(display_name)
        if not label:
            raise ValidationError("Snapshot display name must not be empty")

        group = self.store.get_group(group_id)
        if group is None:
            raise GroupNotFound(group_id)
        if not group.databases:
            raise ValidationError(f"Group {group_id} has no databases")

        existing = self.store.get_snapshots_for_group(group_id)
        if len(existing) >= self.max_per_group:
            logger.warning(
                f"Group {group_id} already has {len(existing)} snapshots "
                f"(limit {self.max_per_group})"
            )
            raise SnapshotLimitExceeded(group_id, self.max_per_group)

        sequence = self.identity.next_sequence(group_id)
        result = self.capture(group, label, sequence=sequence)

        self.store.add_snapshot(result.snapshot)
        snapshot = result.snapshot
        record_history(
            self.store,
            OperationType.CREATE_SNAPSHOT,
            {
                "snapshot_id": snapshot.id,
                "group_id": group.id,
                "group_name": group.name,
                "display_name": snapshot.display_name,
                "sequence": snapshot.sequence,
                "success_count": len(snapshot.successful),
                "failure_count": len(snapshot.failed),
            },
            results=[d.to_dict() for d in snapshot.database_snapshots],
        )

        if not snapshot.successful:
            raise SnapshotCreationFailed(
                f"Failed to snapshot any database of group {group.name}",
                result=result,
            )
        return result

    def capture(
        self,
        group: DatabaseGroup,
        display_name: str,
        sequence: int,
        is_automatic: bool = False,
    ) -> CreationResult:
        """
        Issue the engine commands for a new Snapshot without persisting it.

        Used directly by the rollback checkpoint, whose record is written
        only after the group's old records are purged.
        """
        created_at = self.clock()
        snapshot_id = self.identity.generate_snapshot_id(group.name, display_name, created_at)

        results: List[DatabaseSnapshotResult] = []
        failures: List[Tuple[str, str]] = []

        with CorrelationContext(operation="create_snapshot", group_id=group.id, snapshot_id=snapshot_id):
            log_with_context(
                logger, logging.INFO,
                f"Creating snapshot '{display_name}' of {len(group.databases)} databases",
            )
            for database in group.databases:
                snapshot_name = self.identity.snapshot_object_name(snapshot_id, database)
                try:
                    self._snapshot_database(snapshot_name, database)
                    results.append(DatabaseSnapshotResult(database, snapshot_name, True))
                except SqlSnapError as e:
                    log_with_context(
                        logger, logging.ERROR,
                        f"Failed to snapshot {database}: {e}",
                        database=database,
                    )
                    results.append(DatabaseSnapshotResult(database, snapshot_name, False, str(e)))
                    failures.append((database, str(e)))

        snapshot = Snapshot(
            id=snapshot_id,
            group_id=group.id,
            group_name=group.name,
            display_name=display_name,
            sequence=sequence,
            created_at=created_at,
            database_count=len(group.databases),
            database_snapshots=results,
            created_by=current_user(),
            is_automatic=is_automatic,
        )
        logger.info(
            f"Snapshot {snapshot_id}: {len(snapshot.successful)}/{len(results)} databases captured"
        )
        return CreationResult(snapshot=snapshot, failures=failures)

    def _snapshot_database(self, snapshot_name: str, database: str) -> None:
        """Create the engine snapshot of one database."""
        # Reject names the engine would refuse before any command is issued
        sql.validate_identifier(snapshot_name)
        data_files = self.gateway.list_data_files(database)
        if not data_files:
            raise NoDataFiles(database)
        files = [
            (f.logical_name, self.identity.sparse_file_path(snapshot_name, f.logical_name))
            for f in data_files
        ]
        self.gateway.create_snapshot(snapshot_name, database, files)
        logger.debug(f"Created {snapshot_name} with {len(files)} sparse files")
