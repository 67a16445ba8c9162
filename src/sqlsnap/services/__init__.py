"""
Snapshot lifecycle services.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from ..config.config_loader import SnapshotConfig
from ..engine import create_engine_gateway
from ..state import create_metadata_store
from .cleanup import OrphanCleanupService
from .creator import SnapshotCreator
from .identity import SnapshotIdentity, generate_snapshot_id, generate_display_name
from .reconciler import ConsistencyReconciler, HealOutcome
from .rollback import RollbackOrchestrator
from .snapshot_service import SnapshotService


logger = logging.getLogger(__name__)


def create_snapshot_service(
    config: Optional[SnapshotConfig] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> SnapshotService:
    """
    Build a SnapshotService from configuration.

    Opens the engine gateway and metadata store named by the config and
    registers any groups declared under ``groups``.

    Raises:
        ConfigurationError: If engine settings are missing or invalid
    """
    config = config or SnapshotConfig()
    gateway = create_engine_gateway(
        config.get_sqlserver_config(),
        backend=config.get("engine.backend", "sqlserver"),
    )
    metadata = config.get_metadata_config()
    store = create_metadata_store(
        backend=metadata.get("backend", "sqlite"),
        db_path=metadata.get("path"),
        max_history_entries=config.history_max_entries,
    )
    service = SnapshotService(gateway, store, config=config, clock=clock)
    service.sync_groups(config.get_groups())
    return service


__all__ = [
    "ConsistencyReconciler",
    "HealOutcome",
    "OrphanCleanupService",
    "RollbackOrchestrator",
    "SnapshotCreator",
    "SnapshotIdentity",
    "SnapshotService",
    "create_snapshot_service",
    "generate_display_name",
    "generate_snapshot_id",
]
