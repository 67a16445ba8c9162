"""
SQLite-based metadata store for groups, snapshots and history.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from ..core.metadata_store import MetadataStore
from ..core.models import DatabaseGroup, DatabaseSnapshotResult, HistoryEntry, Snapshot


logger = logging.getLogger(__name__)


class SqliteMetadataStore(MetadataStore):
    """
    SQLite-based implementation of the metadata store.

    Snapshot database results are stored as a JSON column, one row per
    Snapshot. History is trimmed to max_history_entries on every insert.
    Pass ":memory:" as db_path for a throwaway store.
    """

    def __init__(
        self,
        db_path: Union[str, Path] = ":memory:",
        max_history_entries: int = 100,
        auto_init: bool = True,
    ):
        """
        Initialize the SQLite metadata store.

        Args:
            db_path: Path to the SQLite database file, or ":memory:"
            max_history_entries: History rows kept (oldest trimmed first)
            auto_init: Whether to create tables automatically
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.max_history_entries = max_history_entries
        self.conn = None
        self._lock = threading.Lock()
        self._connect()

        if auto_init:
            self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to SQLite metadata store: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS groups (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                databases TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS snapshots (
                id TEXT PRIMARY KEY,
                group_id TEXT NOT NULL,
                group_name TEXT,
                display_name TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                created_by TEXT,
                database_count INTEGER NOT NULL,
                database_snapshots TEXT NOT NULL,
                is_automatic INTEGER NOT NULL DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS history (
                id TEXT PRIMARY KEY,
                operation_type TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                user_name TEXT,
                details TEXT,
                results TEXT
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS ix_snapshots_group
            ON snapshots (group_id, sequence)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS ix_history_timestamp
            ON history (timestamp)
        """)

        self.conn.commit()
        logger.debug("Initialized metadata store schema")

    # =========================================================================
    # Groups
    # =========================================================================

    def get_all_groups(self) -> List[DatabaseGroup]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM groups ORDER BY name")
        return [
            DatabaseGroup(
                id=row["id"],
                name=row["name"],
                databases=json.loads(row["databases"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in cursor.fetchall()
        ]

    def get_group(self, group_id: str) -> Optional[DatabaseGroup]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM groups WHERE id = ?", (group_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return DatabaseGroup(
            id=row["id"],
            name=row["name"],
            databases=json.loads(row["databases"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def add_group(self, group: DatabaseGroup) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO groups (id, name, databases, created_at) VALUES (?, ?, ?, ?)",
                (group.id, group.name, json.dumps(group.databases), group.created_at.isoformat()),
            )
            self.conn.commit()
        logger.debug(f"Added group {group.id} ({group.name})")

    # =========================================================================
    # Snapshots
    # =========================================================================

    def get_all_snapshots(self) -> List[Snapshot]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM snapshots ORDER BY created_at DESC")
        return [self._row_to_snapshot(row) for row in cursor.fetchall()]

    def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,))
        row = cursor.fetchone()
        return self._row_to_snapshot(row) if row else None

    def get_snapshots_for_group(self, group_id: str) -> List[Snapshot]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM snapshots WHERE group_id = ? ORDER BY sequence DESC",
            (group_id,),
        )
        return [self._row_to_snapshot(row) for row in cursor.fetchall()]

    def add_snapshot(self, snapshot: Snapshot) -> None:
        try:
            with self._lock:
                self.conn.execute("""
                    INSERT INTO snapshots (
                        id, group_id, group_name, display_name, sequence, created_at,
                        created_by, database_count, database_snapshots, is_automatic
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    snapshot.id,
                    snapshot.group_id,
                    snapshot.group_name,
                    snapshot.display_name,
                    snapshot.sequence,
                    snapshot.created_at.isoformat(),
                    snapshot.created_by,
                    snapshot.database_count,
                    json.dumps([d.to_dict() for d in snapshot.database_snapshots]),
                    1 if snapshot.is_automatic else 0,
                ))
                self.conn.commit()
            logger.debug(f"Added snapshot record {snapshot.id}")
        except sqlite3.Error as e:
            logger.error(f"Failed to add snapshot to metadata: {e}")
            raise

    def update_snapshot(self, snapshot: Snapshot) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "UPDATE snapshots SET database_snapshots = ? WHERE id = ?",
                (json.dumps([d.to_dict() for d in snapshot.database_snapshots]), snapshot.id),
            )
            self.conn.commit()
        return cursor.rowcount > 0

    def delete_snapshot(self, snapshot_id: str) -> bool:
        with self._lock:
            cursor = self.conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))
            self.conn.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.debug(f"Deleted snapshot record {snapshot_id}")
        return deleted

    def _row_to_snapshot(self, row: sqlite3.Row) -> Snapshot:
        """Convert a database row to a Snapshot object."""
        results = json.loads(row["database_snapshots"]) if row["database_snapshots"] else []
        return Snapshot(
            id=row["id"],
            group_id=row["group_id"],
            group_name=row["group_name"],
            display_name=row["display_name"],
            sequence=row["sequence"],
            created_at=datetime.fromisoformat(row["created_at"]),
            database_count=row["database_count"],
            database_snapshots=[DatabaseSnapshotResult.from_dict(d) for d in results],
            created_by=row["created_by"],
            is_automatic=bool(row["is_automatic"]),
        )

    # =========================================================================
    # History
    # =========================================================================

    def add_history_entry(self, entry: HistoryEntry) -> None:
        with self._lock:
            self.conn.execute("""
                INSERT INTO history (id, operation_type, timestamp, user_name, details, results)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                entry.id,
                entry.operation_type,
                entry.timestamp.isoformat(),
                entry.user_name,
                json.dumps(entry.details, default=str),
                json.dumps(entry.results, default=str) if entry.results is not None else None,
            ))
            self.conn.commit()
        self.trim_history(self.max_history_entries)

    def get_history(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        cursor = self.conn.cursor()
        if limit:
            cursor.execute("SELECT * FROM history ORDER BY timestamp DESC, rowid DESC LIMIT ?", (int(limit),))
        else:
            cursor.execute("SELECT * FROM history ORDER BY timestamp DESC, rowid DESC")
        return [
            HistoryEntry(
                id=row["id"],
                operation_type=row["operation_type"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                user_name=row["user_name"],
                details=json.loads(row["details"]) if row["details"] else {},
                results=json.loads(row["results"]) if row["results"] else None,
            )
            for row in cursor.fetchall()
        ]

    def trim_history(self, max_entries: int) -> int:
        """
        Delete the oldest history entries beyond max_entries.

        Returns:
            Number of entries deleted
        """
        with self._lock:
            count = self.conn.execute("SELECT COUNT(*) FROM history").fetchone()[0]
            if count <= max_entries:
                return 0
            excess = count - max_entries
            self.conn.execute("""
                DELETE FROM history WHERE id IN (
                    SELECT id FROM history ORDER BY timestamp ASC, rowid ASC LIMIT ?
                )
            """, (excess,))
            self.conn.commit()
        logger.debug(f"Trimmed {excess} history entries")
        return excess

    def close(self) -> None:
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed SQLite metadata store connection")
