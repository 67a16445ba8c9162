"""
In-memory engine gateway for testing and dry runs.

Simulates the parts of the SQL Server catalog that snapshot management
touches: source databases with data files, snapshot databases pointing at
their source, copy-on-write restore semantics and database access modes.
Behaves deterministically and records every command it receives.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..core.exceptions import EngineError
from ..core.models import DataFile, EngineSnapshotObject
from .gateway import EngineGateway

logger = logging.getLogger(__name__)


# Commands that change engine state
DESTRUCTIVE_COMMANDS = frozenset({
    "create_snapshot",
    "drop_database",
    "restore_from_snapshot",
    "restore_with_recovery",
    "set_single_user",
    "set_multi_user",
    "terminate_sessions",
})


@dataclass
class _SourceDatabase:
    name: str
    files: List[DataFile]
    data: Any = None
    state: str = "ONLINE"
    user_access: str = "MULTI_USER"
    sessions: int = 0


@dataclass
class _SnapshotDatabase:
    name: str
    source: str
    data: Any
    files: List[Tuple[str, str]] = field(default_factory=list)
    create_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    accessible: bool = True


class InMemoryEngineGateway(EngineGateway):
    """
    Deterministic engine double.

    Features:
    - Data payload per database, captured by snapshots and reverted by restore
    - The engine rule that a restore requires the snapshot to be the only
      one on its source database
    - Failure injection per (command, target)
    - Command history for assertions
    """

    def __init__(self):
        self.databases: Dict[str, _SourceDatabase] = {}
        self.snapshots: Dict[str, _SnapshotDatabase] = {}
        self.calls: List[Tuple[str, ...]] = []
        self._failures: Dict[Tuple[str, str], str] = {}

    # =========================================================================
    # Test setup helpers
    # =========================================================================

    def add_database(
        self,
        name: str,
        data: Any = None,
        files: Optional[List[DataFile]] = None,
        sessions: int = 0,
    ) -> None:
        """Register a source database."""
        if files is None:
            files = [DataFile(logical_name=name, physical_name=f"/var/opt/mssql/data/{name}.mdf")]
        self.databases[name] = _SourceDatabase(
            name=name, files=files, data=data, sessions=sessions
        )

    def add_external_snapshot(self, name: str, source: str) -> None:
        """Create a snapshot the way an outside actor would."""
        source_db = self.databases[source]
        self.snapshots[name] = _SnapshotDatabase(
            name=name, source=source, data=copy.deepcopy(source_db.data)
        )

    def remove_snapshot_out_of_band(self, name: str) -> None:
        """Drop a snapshot without going through the gateway command log."""
        self.snapshots.pop(name, None)

    def mark_inaccessible(self, name: str) -> None:
        """Simulate a snapshot whose sparse files have gone missing."""
        self.snapshots[name].accessible = False

    def set_state(self, database: str, state: str) -> None:
        self.databases[database].state = state

    def fail(self, command: str, target: str, message: str = "simulated failure") -> None:
        """Make the next and all later calls of command on target raise EngineError."""
        self._failures[(command, target)] = message

    def clear_failures(self) -> None:
        self._failures.clear()

    def data_of(self, database: str) -> Any:
        return self.databases[database].data

    def destructive_calls(self) -> List[Tuple[str, ...]]:
        return [c for c in self.calls if c[0] in DESTRUCTIVE_COMMANDS]

    def _record(self, command: str, target: str, *args: str) -> None:
        self.calls.append((command, target) + tuple(args))
        message = self._failures.get((command, target))
        if message is not None:
            raise EngineError(message, statement=f"{command} {target}")

    def _source(self, database: str) -> _SourceDatabase:
        source = self.databases.get(database)
        if source is None:
            raise EngineError(f"Database '{database}' does not exist")
        return source

    # =========================================================================
    # Catalog reads
    # =========================================================================

    def list_snapshot_objects(self) -> List[EngineSnapshotObject]:
        return [
            EngineSnapshotObject(
                name=snap.name,
                source_database=snap.source,
                create_date=snap.create_date,
                state_desc="ONLINE",
            )
            for snap in sorted(self.snapshots.values(), key=lambda s: s.name)
        ]

    def list_data_files(self, database: str) -> List[DataFile]:
        self._record("list_data_files", database)
        source = self.databases.get(database)
        if source is None:
            return []
        return list(source.files)

    def get_database_state(self, database: str) -> Optional[str]:
        source = self.databases.get(database)
        return source.state if source else None

    def snapshot_exists(self, name: str) -> bool:
        return name in self.snapshots

    def is_accessible(self, name: str) -> bool:
        if name in self.snapshots:
            return self.snapshots[name].accessible
        return name in self.databases

    def list_databases(self) -> List[str]:
        return sorted(self.databases)

    def server_version(self) -> str:
        return "In-memory engine"

    # =========================================================================
    # Commands
    # =========================================================================

    def create_snapshot(
        self,
        snapshot_name: str,
        source_database: str,
        files: Sequence[Tuple[str, str]],
    ) -> None:
        self._record("create_snapshot", snapshot_name, source_database)
        source = self._source(source_database)
        if snapshot_name in self.snapshots or snapshot_name in self.databases:
            raise EngineError(f"Database '{snapshot_name}' already exists")
        if not files:
            raise EngineError("A snapshot requires at least one data file")
        self.snapshots[snapshot_name] = _SnapshotDatabase(
            name=snapshot_name,
            source=source_database,
            data=copy.deepcopy(source.data),
            files=list(files),
        )

    def drop_database(self, name: str) -> None:
        self._record("drop_database", name)
        self.snapshots.pop(name, None)

    def restore_from_snapshot(self, database: str, snapshot_name: str) -> None:
        self._record("restore_from_snapshot", database, snapshot_name)
        source = self._source(database)
        snap = self.snapshots.get(snapshot_name)
        if snap is None or snap.source != database:
            raise EngineError(
                f"Database snapshot '{snapshot_name}' does not exist for '{database}'"
            )
        others = [
            s.name for s in self.snapshots.values()
            if s.source == database and s.name != snapshot_name
        ]
        if others:
            raise EngineError(
                f"RESTORE DATABASE failed: '{database}' has other snapshots: {', '.join(others)}"
            )
        source.data = copy.deepcopy(snap.data)
        source.state = "ONLINE"
        del self.snapshots[snapshot_name]

    def restore_with_recovery(self, database: str) -> None:
        self._record("restore_with_recovery", database)
        self._source(database).state = "ONLINE"

    def set_single_user(self, database: str) -> None:
        self._record("set_single_user", database)
        self._source(database).user_access = "SINGLE_USER"

    def set_multi_user(self, database: str) -> None:
        self._record("set_multi_user", database)
        self._source(database).user_access = "MULTI_USER"

    def terminate_sessions(self, database: str) -> int:
        self._record("terminate_sessions", database)
        source = self._source(database)
        killed, source.sessions = source.sessions, 0
        return killed
