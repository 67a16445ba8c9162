"""
Removal of orphaned engine snapshots.
"""

import logging
from typing import Iterable, Optional

from ..core.exceptions import EngineError
from ..core.metadata_store import MetadataStore
from ..core.models import CleanupResult, OperationType
from ..engine.gateway import EngineGateway
from .audit import record_history
from .reconciler import ConsistencyReconciler


logger = logging.getLogger(__name__)


class OrphanCleanupService:
    """
    Drops engine snapshots that no metadata record references.

    Orphans may be snapshots an operator created on purpose, so sweep()
    only drops names the caller explicitly authorized. startup_sweep() is
    the exception: it drops snapshots whose sparse files are gone, since
    those can no longer be read or restored from.
    """

    def __init__(
        self,
        gateway: EngineGateway,
        store: MetadataStore,
        reconciler: ConsistencyReconciler,
    ):
        self.gateway = gateway
        self.store = store
        self.reconciler = reconciler

    def sweep(
        self,
        authorized: Optional[Iterable[str]] = None,
        drop_all: bool = False,
    ) -> CleanupResult:
        """
        Drop authorized orphans.

        Args:
            authorized: Orphan names the caller confirmed for removal
            drop_all: Authorize every orphan found by this sweep

        Returns:
            CleanupResult; unauthorized orphans and authorized names that
            are not orphans are listed as skipped
        """
        report = self.reconciler.verify()
        orphans = report.orphaned_in_engine
        allowed = set(orphans) if drop_all else set(authorized or ())

        result = CleanupResult()
        for name in orphans:
            if name not in allowed:
                logger.info(f"Skipping unauthorized orphan {name}")
                result.skipped.append(name)
                continue
            try:
                self.gateway.drop_database(name)
                result.dropped.append(name)
                logger.info(f"Dropped orphaned snapshot {name}")
            except EngineError as e:
                logger.error(f"Failed to drop orphan {name}: {e}")
                result.errors.append((name, str(e)))

        for name in sorted(allowed - set(orphans)):
            logger.warning(f"Not an orphan, refusing to drop: {name}")
            result.skipped.append(name)

        if result.dropped or result.errors:
            record_history(
                self.store,
                OperationType.CLEANUP_ORPHANED,
                {
                    "dropped": result.dropped,
                    "skipped": result.skipped,
                    "errors": [{"name": n, "error": e} for n, e in result.errors],
                },
            )
        logger.info(f"Orphan sweep: {len(result.dropped)} dropped, {len(result.skipped)} skipped")
        return result

    def startup_sweep(self) -> CleanupResult:
        """
        Drop inaccessible snapshots, then heal the metadata that referenced them.

        Returns:
            CleanupResult with dropped engine names and deleted snapshot ids
        """
        result = CleanupResult()
        for obj in self.gateway.list_snapshot_objects():
            if obj.source_database is None or self.gateway.is_accessible(obj.name):
                continue
            try:
                self.gateway.drop_database(obj.name)
                result.dropped.append(obj.name)
                logger.warning(f"Dropped inaccessible snapshot {obj.name}")
            except EngineError as e:
                logger.error(f"Failed to drop inaccessible snapshot {obj.name}: {e}")
                result.errors.append((obj.name, str(e)))

        outcome = self.reconciler.heal_missing()
        result.deleted_snapshots.extend(outcome.deleted)

        if result.dropped:
            record_history(
                self.store,
                OperationType.STARTUP_ORPHAN_CLEANUP,
                {
                    "dropped": result.dropped,
                    "deleted_snapshots": outcome.deleted,
                    "rewritten_snapshots": outcome.rewritten,
                },
            )
        if result.count:
            logger.info(
                f"Startup sweep: {len(result.dropped)} inaccessible snapshots dropped, "
                f"{len(result.deleted_snapshots)} records removed"
            )
        return result
