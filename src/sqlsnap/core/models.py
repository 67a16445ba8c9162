"""
Core data models for snapshot management.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import uuid

from .exceptions import ConsistencyError, PartialFailure


class RollbackStatus(str, Enum):
    """Terminal outcome of a rollback attempt."""
    DONE = "done"
    BLOCKED = "blocked"
    FAILED = "failed"


class RollbackStep(str, Enum):
    """Steps of the rollback state machine, in execution order."""
    PRE_CHECK = "pre_check"
    EVICT_GROUP_SNAPSHOTS = "evict_group_snapshots"
    PER_DATABASE_RESTORE = "per_database_restore"
    POST_RESTORE_CLEANUP = "post_restore_cleanup"
    CHECKPOINT_CREATE = "checkpoint_create"
    METADATA_PURGE_AND_REWRITE = "metadata_purge_and_rewrite"


class OperationType(str, Enum):
    """History entry operation types."""
    CREATE_SNAPSHOT = "create_snapshot"
    DELETE_SNAPSHOT = "delete_snapshot"
    DELETE_GROUP_SNAPSHOTS = "delete_group_snapshots"
    ROLLBACK = "rollback"
    ROLLBACK_FAILED = "rollback_failed"
    CREATE_AUTOMATIC_CHECKPOINT = "create_automatic_checkpoint"
    CLEANUP_INVALID = "cleanup_invalid"
    CLEANUP_ORPHANED = "cleanup_orphaned"
    VERIFY_SELF_HEAL = "verify_self_heal"
    STARTUP_ORPHAN_CLEANUP = "startup_orphan_cleanup"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class DatabaseGroup:
    """
    A named set of source databases checkpointed and rolled back together.

    Attributes:
        id: Group identifier
        name: Operator-facing group name (drives the snapshot id prefix)
        databases: Ordered member database names
    """
    id: str
    name: str
    databases: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "databases": list(self.databases),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class DatabaseSnapshotResult:
    """
    Outcome of snapshotting one member database.

    Failed entries carry no usable engine object; snapshot_name is still
    recorded so the intended name stays visible.
    """
    database: str
    snapshot_name: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "database": self.database,
            "snapshot_name": self.snapshot_name,
            "success": self.success,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseSnapshotResult":
        return cls(
            database=data["database"],
            snapshot_name=data.get("snapshot_name", ""),
            success=bool(data.get("success")),
            error=data.get("error"),
        )


@dataclass
class Snapshot:
    """
    A checkpoint of every database in a group.

    Attributes:
        id: Deterministic id (normalized group name + hash)
        group_id: Owning group id
        group_name: Group name at creation time (denormalized)
        display_name: Operator label
        sequence: Per-group sequence, reset to 1 after a rollback
        created_at: Creation instant (UTC)
        database_count: Number of member databases at creation time
        database_snapshots: One result per member database, in group order
        created_by: OS user that created the snapshot
        is_automatic: True for checkpoints created after a rollback
    """
    id: str
    group_id: str
    group_name: Optional[str]
    display_name: str
    sequence: int
    created_at: datetime
    database_count: int
    database_snapshots: List[DatabaseSnapshotResult] = field(default_factory=list)
    created_by: Optional[str] = None
    is_automatic: bool = False

    @property
    def successful(self) -> List[DatabaseSnapshotResult]:
        return [d for d in self.database_snapshots if d.success]

    @property
    def failed(self) -> List[DatabaseSnapshotResult]:
        return [d for d in self.database_snapshots if not d.success]

    def engine_names(self) -> List[str]:
        """Names of the engine objects this snapshot actually owns."""
        return [d.snapshot_name for d in self.successful]

    def without_references(self, names, reason: str) -> "Snapshot":
        """Return a copy with the given engine references marked failed."""
        names = set(names)
        rewritten = [
            DatabaseSnapshotResult(d.database, d.snapshot_name, False, reason)
            if d.success and d.snapshot_name in names else d
            for d in self.database_snapshots
        ]
        return replace(self, database_snapshots=rewritten)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "group_id": self.group_id,
            "group_name": self.group_name,
            "display_name": self.display_name,
            "sequence": self.sequence,
            "created_at": self.created_at.isoformat(),
            "database_count": self.database_count,
            "database_snapshots": [d.to_dict() for d in self.database_snapshots],
            "created_by": self.created_by,
            "is_automatic": self.is_automatic,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            id=data["id"],
            group_id=data["group_id"],
            group_name=data.get("group_name"),
            display_name=data["display_name"],
            sequence=int(data["sequence"]),
            created_at=_parse_datetime(data["created_at"]),
            database_count=int(data.get("database_count", 0)),
            database_snapshots=[
                DatabaseSnapshotResult.from_dict(d)
                for d in data.get("database_snapshots", [])
            ],
            created_by=data.get("created_by"),
            is_automatic=bool(data.get("is_automatic", False)),
        )


@dataclass
class EngineSnapshotObject:
    """A snapshot database visible in the engine catalog."""
    name: str
    source_database: Optional[str]
    create_date: Optional[datetime] = None
    state_desc: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "source_database": self.source_database,
            "create_date": self.create_date.isoformat() if self.create_date else None,
            "state_desc": self.state_desc,
        }


@dataclass
class DataFile:
    """A data file (never a log file) of a source database."""
    logical_name: str
    physical_name: str


@dataclass
class HistoryEntry:
    """Audit trail entry for an operation."""
    operation_type: str
    details: Dict[str, Any] = field(default_factory=dict)
    results: Optional[List[Dict[str, Any]]] = None
    user_name: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation_type": self.operation_type,
            "timestamp": self.timestamp.isoformat(),
            "user_name": self.user_name,
            "details": self.details,
            "results": self.results,
        }


@dataclass
class CreationResult:
    """Aggregate outcome of creating a snapshot across a group."""
    snapshot: Snapshot
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def partial(self) -> bool:
        return bool(self.failures) and bool(self.snapshot.successful)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "partial": self.partial,
            "snapshot": self.snapshot.to_dict(),
            "failures": [
                {"database": database, "error": error}
                for database, error in self.failures
            ],
        }


@dataclass
class ConsistencyReport:
    """Result of comparing metadata against the engine catalog."""
    verified: bool
    orphaned_in_engine: List[str] = field(default_factory=list)
    missing_in_engine: List[str] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)
    healed_snapshots: List[str] = field(default_factory=list)
    checked_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "orphaned_in_engine": list(self.orphaned_in_engine),
            "missing_in_engine": list(self.missing_in_engine),
            "issues": list(self.issues),
            "healed_snapshots": list(self.healed_snapshots),
            "checked_at": self.checked_at.isoformat(),
        }

    def summary(self) -> str:
        """Get a human-readable summary."""
        lines = [
            f"Consistency Report ({'verified' if self.verified else 'drift detected'})",
            f"  Orphaned in engine: {len(self.orphaned_in_engine)}",
        ]
        lines.extend(f"    {name}" for name in self.orphaned_in_engine)
        lines.append(f"  Healed snapshots: {len(self.healed_snapshots)}")
        lines.extend(f"  Issue: {issue}" for issue in self.issues)
        return "\n".join(lines)


@dataclass
class PreCheckResult:
    """External snapshot check for a rollback target."""
    snapshot_id: str
    external_snapshots: List[EngineSnapshotObject] = field(default_factory=list)
    removal_commands: List[str] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return bool(self.external_snapshots)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "blocked": self.blocked,
            "external_snapshots": [s.to_dict() for s in self.external_snapshots],
            "removal_commands": list(self.removal_commands),
        }


@dataclass
class DatabaseRestoreResult:
    """Outcome of restoring one database during a rollback."""
    database: str
    snapshot_name: str
    success: bool
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "database": self.database,
            "snapshot_name": self.snapshot_name,
            "success": self.success,
            "error": self.error,
            "warnings": list(self.warnings),
        }


@dataclass
class RollbackResult:
    """Outcome of a rollback attempt."""
    snapshot_id: str
    group_id: str
    status: RollbackStatus
    steps_completed: List[RollbackStep] = field(default_factory=list)
    pre_check: Optional[PreCheckResult] = None
    evicted: List[str] = field(default_factory=list)
    restores: List[DatabaseRestoreResult] = field(default_factory=list)
    leftovers_dropped: List[str] = field(default_factory=list)
    checkpoint: Optional[CreationResult] = None
    checkpoint_error: Optional[str] = None
    purged_snapshots: List[str] = field(default_factory=list)

    @property
    def databases_restored(self) -> int:
        return sum(1 for r in self.restores if r.success)

    @property
    def databases_failed(self) -> int:
        return sum(1 for r in self.restores if not r.success)

    @property
    def checkpoint_created(self) -> bool:
        return self.checkpoint is not None and bool(self.checkpoint.snapshot.successful)

    def raise_for_status(self) -> "RollbackResult":
        """Raise the matching error for BLOCKED or FAILED outcomes."""
        if self.status == RollbackStatus.BLOCKED:
            raise ConsistencyError(
                f"Rollback of {self.snapshot_id} blocked by external snapshots",
                external_snapshots=[s.name for s in self.pre_check.external_snapshots],
                removal_commands=self.pre_check.removal_commands,
            )
        if self.status == RollbackStatus.FAILED:
            raise PartialFailure(
                f"Rollback failed: {self.databases_restored}/{len(self.restores)} "
                f"databases restored",
                results=[r.to_dict() for r in self.restores],
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "group_id": self.group_id,
            "status": self.status.value,
            "steps_completed": [s.value for s in self.steps_completed],
            "pre_check": self.pre_check.to_dict() if self.pre_check else None,
            "evicted": list(self.evicted),
            "databases_restored": self.databases_restored,
            "databases_failed": self.databases_failed,
            "restores": [r.to_dict() for r in self.restores],
            "leftovers_dropped": list(self.leftovers_dropped),
            "checkpoint_created": self.checkpoint_created,
            "checkpoint": self.checkpoint.to_dict() if self.checkpoint else None,
            "checkpoint_error": self.checkpoint_error,
            "purged_snapshots": list(self.purged_snapshots),
        }


@dataclass
class CleanupResult:
    """Outcome of a cleanup pass (orphans, stale metadata, invalid snapshot)."""
    dropped: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[Tuple[str, str]] = field(default_factory=list)
    deleted_snapshots: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.dropped) + len(self.deleted_snapshots)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "dropped": list(self.dropped),
            "skipped": list(self.skipped),
            "errors": [{"name": n, "error": e} for n, e in self.errors],
            "deleted_snapshots": list(self.deleted_snapshots),
        }
