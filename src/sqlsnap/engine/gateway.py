"""
Engine gateway interface for catalog reads and snapshot lifecycle commands.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from ..core.models import DataFile, EngineSnapshotObject


class EngineGateway(ABC):
    """
    Abstract base class for database engine gateways.

    Every method is a blocking round-trip. Command failures raise
    EngineError; connection problems raise ConfigurationError.
    """

    @abstractmethod
    def list_snapshot_objects(self) -> List[EngineSnapshotObject]:
        """List every catalog database with a non-null source database."""
        pass

    @abstractmethod
    def list_data_files(self, database: str) -> List[DataFile]:
        """List the data files (never log files) of a database."""
        pass

    @abstractmethod
    def create_snapshot(
        self,
        snapshot_name: str,
        source_database: str,
        files: Sequence[Tuple[str, str]],
    ) -> None:
        """
        Create a copy-on-write snapshot database of a source database.

        Args:
            snapshot_name: Name of the snapshot database
            source_database: Database to snapshot
            files: (logical_name, sparse_file_path) per data file
        """
        pass

    @abstractmethod
    def drop_database(self, name: str) -> None:
        """Drop a database (snapshot) if it exists."""
        pass

    @abstractmethod
    def restore_from_snapshot(self, database: str, snapshot_name: str) -> None:
        """Revert a database to a snapshot; the engine drops the snapshot on success."""
        pass

    @abstractmethod
    def restore_with_recovery(self, database: str) -> None:
        """Bring a database left in RESTORING state back online."""
        pass

    @abstractmethod
    def set_single_user(self, database: str) -> None:
        """Force exclusive access, rolling back open transactions immediately."""
        pass

    @abstractmethod
    def set_multi_user(self, database: str) -> None:
        """Restore normal multi-access mode."""
        pass

    @abstractmethod
    def terminate_sessions(self, database: str) -> int:
        """
        Kill every session connected to a database.

        Returns:
            Number of sessions terminated
        """
        pass

    @abstractmethod
    def get_database_state(self, database: str) -> Optional[str]:
        """Get the state_desc of a database, or None if it does not exist."""
        pass

    @abstractmethod
    def is_accessible(self, name: str) -> bool:
        """True if the database can be queried (its files are present)."""
        pass

    @abstractmethod
    def list_databases(self) -> List[str]:
        """List user databases that are not snapshots."""
        pass

    @abstractmethod
    def server_version(self) -> str:
        """Get the engine version string."""
        pass

    def snapshot_exists(self, name: str) -> bool:
        """Check whether a snapshot database exists in the catalog."""
        return any(obj.name == name for obj in self.list_snapshot_objects())

    def list_snapshots_of(self, database: str) -> List[EngineSnapshotObject]:
        """List snapshot objects whose source is the given database."""
        return [
            obj for obj in self.list_snapshot_objects()
            if obj.source_database == database
        ]

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
