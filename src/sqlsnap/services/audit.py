"""
History recording shared by the snapshot services.
"""

import getpass
import logging
from typing import Any, Dict, List, Optional

from ..core.metadata_store import MetadataStore
from ..core.models import HistoryEntry, OperationType


logger = logging.getLogger(__name__)


def current_user() -> str:
    """OS user running the process, or 'unknown' when it cannot be resolved."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def record_history(
    store: MetadataStore,
    operation: OperationType,
    details: Dict[str, Any],
    results: Optional[List[Dict[str, Any]]] = None,
) -> HistoryEntry:
    """
    Append a history entry for an operation.

    History is an audit trail only; a failed write is logged and never
    fails the operation that produced it.
    """
    entry = HistoryEntry(
        operation_type=operation.value,
        details=details,
        results=results,
        user_name=current_user(),
    )
    try:
        store.add_history_entry(entry)
    except Exception as e:
        logger.error(f"Failed to record {operation.value} history: {e}")
    return entry
