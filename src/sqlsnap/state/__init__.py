"""
Metadata store implementations.

The metadata record is a local SQLite file by default; pass ":memory:"
for a throwaway store.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from ..core.metadata_store import MetadataStore
from .sqlite_store import SqliteMetadataStore


logger = logging.getLogger(__name__)


def create_metadata_store(
    backend: str = "sqlite",
    db_path: Optional[Union[str, Path]] = None,
    max_history_entries: int = 100,
) -> MetadataStore:
    """
    Factory function to create the metadata store from configuration.

    Args:
        backend: Backend type (only 'sqlite' is supported)
        db_path: Path to the SQLite file; defaults to SQLSNAP_METADATA_PATH
            or local/state/sqlsnap.db
        max_history_entries: History rows kept

    Raises:
        ValueError: If backend is not recognized
    """
    if backend != "sqlite":
        raise ValueError(f"Unknown metadata backend: {backend}. Supported backends: 'sqlite'")

    if db_path is None:
        db_path = os.environ.get("SQLSNAP_METADATA_PATH", "local/state/sqlsnap.db")

    logger.debug(f"Opening metadata store at {db_path}")
    return SqliteMetadataStore(db_path=db_path, max_history_entries=max_history_entries)


__all__ = ["SqliteMetadataStore", "create_metadata_store"]
