"""
Metadata store interface for groups, snapshots and history.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .models import DatabaseGroup, HistoryEntry, Snapshot


class MetadataStore(ABC):
    """
    Abstract base class for metadata stores.

    Metadata stores hold the local record of which snapshots this system
    created. The engine catalog is the ground truth; the reconciler keeps
    the two in agreement.
    """

    @abstractmethod
    def get_all_groups(self) -> List[DatabaseGroup]:
        """Get every group."""
        pass

    @abstractmethod
    def add_group(self, group: DatabaseGroup) -> None:
        """Insert a group record."""
        pass

    @abstractmethod
    def get_all_snapshots(self) -> List[Snapshot]:
        """Get every snapshot record, newest first."""
        pass

    @abstractmethod
    def add_snapshot(self, snapshot: Snapshot) -> None:
        """Insert a snapshot record."""
        pass

    @abstractmethod
    def update_snapshot(self, snapshot: Snapshot) -> bool:
        """
        Replace the stored database results of a snapshot.

        Returns:
            True if a record was updated
        """
        pass

    @abstractmethod
    def delete_snapshot(self, snapshot_id: str) -> bool:
        """
        Delete a snapshot record.

        Returns:
            True if a record was deleted
        """
        pass

    @abstractmethod
    def add_history_entry(self, entry: HistoryEntry) -> None:
        """Append an audit entry."""
        pass

    @abstractmethod
    def get_history(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        """Get history entries, newest first."""
        pass

    def get_group(self, group_id: str) -> Optional[DatabaseGroup]:
        """Get a group by id."""
        for group in self.get_all_groups():
            if group.id == group_id:
                return group
        return None

    def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        """Get a snapshot by id."""
        for snapshot in self.get_all_snapshots():
            if snapshot.id == snapshot_id:
                return snapshot
        return None

    def get_snapshots_for_group(self, group_id: str) -> List[Snapshot]:
        """Get the snapshots of a group, highest sequence first."""
        snapshots = [s for s in self.get_all_snapshots() if s.group_id == group_id]
        return sorted(snapshots, key=lambda s: s.sequence, reverse=True)

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
