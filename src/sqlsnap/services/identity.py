"""
Snapshot identity: ids, display names, sequences and engine object naming.

The engine object name ``{snapshot_id}_{database}`` is the only key that
ties an engine snapshot back to its metadata record. Changing it breaks
reconciliation for every snapshot created before the change.
"""

import hashlib
import logging
import re
from datetime import datetime

from ..core.metadata_store import MetadataStore


logger = logging.getLogger(__name__)


SPARSE_FILE_EXTENSION = ".ss"
DEFAULT_ID_PREFIX = "group"

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_group_name(group_name: str) -> str:
    """Lowercase the group name and strip everything outside [a-z0-9]."""
    normalized = _NON_ALNUM.sub("", (group_name or "").lower())
    return normalized or DEFAULT_ID_PREFIX


def generate_snapshot_id(group_name: str, display_name: str, when: datetime) -> str:
    """
    Build a deterministic snapshot id.

    Args:
        group_name: Group name (normalized into the id prefix)
        display_name: Operator label
        when: Creation instant

    Returns:
        ``{normalized_group_name}_{8 hex chars}``
    """
    digest = hashlib.sha256(f"{display_name}{when.isoformat()}".encode("utf-8")).hexdigest()
    return f"{normalize_group_name(group_name)}_{digest[:8]}"


def generate_display_name(raw: str) -> str:
    """Trim an operator-supplied label. Callers reject the empty result."""
    return (raw or "").strip()


def snapshot_object_name(snapshot_id: str, database: str) -> str:
    """Name of the engine snapshot database for one member database."""
    return f"{snapshot_id}_{database}"


def sparse_file_path(base_path: str, snapshot_name: str, logical_file: str) -> str:
    """
    Path of the sparse file backing one data file of a snapshot.

    The path is resolved on the database server, so the separator follows
    base_path (backslash for Windows-style paths) instead of the local OS.
    """
    separator = "\\" if "\\" in base_path and "/" not in base_path else "/"
    base = base_path.rstrip("\\/") or separator
    if base == separator:
        return f"{separator}{snapshot_name}_{logical_file}{SPARSE_FILE_EXTENSION}"
    return f"{base}{separator}{snapshot_name}_{logical_file}{SPARSE_FILE_EXTENSION}"


class SnapshotIdentity:
    """
    Naming and sequencing for snapshots of a metadata store.

    next_sequence is not guarded on its own; callers hold the group lock
    while computing and persisting a sequence.
    """

    def __init__(self, store: MetadataStore, base_path: str = "/var/opt/mssql/snapshots"):
        self.store = store
        self.base_path = base_path

    generate_snapshot_id = staticmethod(generate_snapshot_id)
    generate_display_name = staticmethod(generate_display_name)
    snapshot_object_name = staticmethod(snapshot_object_name)

    def next_sequence(self, group_id: str) -> int:
        """Number of existing snapshots for the group, plus one."""
        return len(self.store.get_snapshots_for_group(group_id)) + 1

    def sparse_file_path(self, snapshot_name: str, logical_file: str) -> str:
        return sparse_file_path(self.base_path, snapshot_name, logical_file)
