"""
Reconciliation between the metadata record and the engine catalog.

The engine catalog is ground truth and can change underneath us: an
operator may drop or create snapshot databases directly. Engine objects
are matched to metadata by name only.
"""

import logging
from typing import Iterable, List, NamedTuple, Optional, Set

from ..core.logging import CorrelationContext, log_with_context
from ..core.metadata_store import MetadataStore
from ..core.models import ConsistencyReport, OperationType
from ..engine.gateway import EngineGateway
from .audit import record_history


logger = logging.getLogger(__name__)


MISSING_REASON = "engine object no longer exists"


class HealOutcome(NamedTuple):
    """Metadata changes made while healing dangling references."""
    deleted: List[str]
    rewritten: List[str]
    issues: List[str]

    @property
    def healed(self) -> List[str]:
        return self.deleted + self.rewritten


class ConsistencyReconciler:
    """
    Compares engine snapshot objects against metadata references.

    Objects in the engine without a metadata reference are reported as
    orphans and never touched here. Metadata references without an engine
    object are healed: the Snapshot is deleted when none of its objects
    remain, otherwise the missing entries are marked failed.
    """

    def __init__(self, gateway: EngineGateway, store: MetadataStore):
        self.gateway = gateway
        self.store = store

    def engine_snapshot_names(self) -> Set[str]:
        """Names of engine databases that are snapshots of some source."""
        return {
            obj.name for obj in self.gateway.list_snapshot_objects()
            if obj.source_database is not None
        }

    def known_snapshot_names(self) -> Set[str]:
        """Engine names referenced by successful entries across all metadata."""
        names = set()
        for snapshot in self.store.get_all_snapshots():
            names.update(snapshot.engine_names())
        return names

    def verify(self) -> ConsistencyReport:
        """
        Compare both sides and heal dangling metadata references.

        Returns:
            ConsistencyReport; verified is True only when nothing was
            orphaned or missing before healing
        """
        with CorrelationContext(operation="verify"):
            in_engine = self.engine_snapshot_names()
            in_metadata = self.known_snapshot_names()

            orphaned = sorted(in_engine - in_metadata)
            missing = in_metadata - in_engine

            outcome = self.heal_missing(missing) if missing else HealOutcome([], [], [])

            for name in orphaned:
                log_with_context(logger, logging.WARNING, f"Orphaned snapshot in engine: {name}")

            report = ConsistencyReport(
                verified=not orphaned and not missing,
                orphaned_in_engine=orphaned,
                missing_in_engine=[],
                issues=list(outcome.issues),
                healed_snapshots=outcome.healed,
            )
            logger.info(
                f"Consistency check: {len(orphaned)} orphaned, {len(missing)} missing, "
                f"{len(outcome.healed)} snapshots healed"
            )
            return report

    def heal_missing(self, missing: Optional[Iterable[str]] = None) -> HealOutcome:
        """
        Remove metadata references to engine objects that no longer exist.

        Args:
            missing: Names known to be missing (computed when omitted)

        Returns:
            HealOutcome listing deleted and rewritten snapshot ids
        """
        if missing is None:
            missing = self.known_snapshot_names() - self.engine_snapshot_names()
        missing = set(missing)

        deleted: List[str] = []
        rewritten: List[str] = []
        issues: List[str] = []

        for snapshot in self.store.get_all_snapshots():
            gone = [name for name in snapshot.engine_names() if name in missing]
            if not gone:
                continue

            if len(gone) == len(snapshot.successful):
                self.store.delete_snapshot(snapshot.id)
                deleted.append(snapshot.id)
                issue = (
                    f"Snapshot {snapshot.id} removed from metadata: "
                    f"none of its {len(gone)} engine objects exist"
                )
            else:
                self.store.update_snapshot(snapshot.without_references(gone, MISSING_REASON))
                rewritten.append(snapshot.id)
                issue = (
                    f"Snapshot {snapshot.id}: {len(gone)} engine objects missing "
                    f"({', '.join(sorted(gone))}), marked failed"
                )
            issues.append(issue)
            log_with_context(logger, logging.WARNING, issue, snapshot_id=snapshot.id)

        if deleted or rewritten:
            record_history(
                self.store,
                OperationType.VERIFY_SELF_HEAL,
                {
                    "deleted_snapshots": deleted,
                    "rewritten_snapshots": rewritten,
                    "missing_objects": sorted(missing),
                },
            )
        return HealOutcome(deleted, rewritten, issues)
