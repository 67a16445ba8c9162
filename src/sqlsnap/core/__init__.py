"""
Core abstractions and models for sqlsnap.
"""

from .models import (
    DatabaseGroup, Snapshot, DatabaseSnapshotResult, EngineSnapshotObject,
    DataFile, HistoryEntry, CreationResult, ConsistencyReport, PreCheckResult,
    DatabaseRestoreResult, RollbackResult, RollbackStatus, RollbackStep,
    CleanupResult, OperationType,
)
from .exceptions import (
    SqlSnapError, ValidationError, GroupNotFound, SnapshotNotFound,
    SnapshotLimitExceeded, NoDataFiles, InvalidIdentifier, EngineError, SnapshotCreationFailed,
    ConsistencyError, PartialFailure, ConfigurationError,
)
from .metadata_store import MetadataStore
from .locks import GroupLockRegistry, GroupBusy

__all__ = [
    "DatabaseGroup",
    "Snapshot",
    "DatabaseSnapshotResult",
    "EngineSnapshotObject",
    "DataFile",
    "HistoryEntry",
    "CreationResult",
    "ConsistencyReport",
    "PreCheckResult",
    "DatabaseRestoreResult",
    "RollbackResult",
    "RollbackStatus",
    "RollbackStep",
    "CleanupResult",
    "OperationType",
    "SqlSnapError",
    "ValidationError",
    "GroupNotFound",
    "SnapshotNotFound",
    "SnapshotLimitExceeded",
    "NoDataFiles",
    "InvalidIdentifier",
    "EngineError",
    "SnapshotCreationFailed",
    "ConsistencyError",
    "PartialFailure",
    "ConfigurationError",
    "MetadataStore",
    "GroupLockRegistry",
    "GroupBusy",
]
