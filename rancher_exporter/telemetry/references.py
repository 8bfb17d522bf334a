"""
Reference store mapping stack ids to stack names.

The stacks step of a cycle writes into the store and the services step of the
same cycle reads from it, so service metrics can carry a stack_name label.
Entries are never evicted: a stack that is renamed or removed keeps its last
known name until the same id is written again.
"""

import logging
import threading
from typing import Dict

logger = logging.getLogger(__name__)

UNKNOWN_REFERENCE = "unknown"


class ReferenceStore:
    """Thread-safe id -> display name lookup."""

    def __init__(self, name: str = "stacks"):
        self.name = name
        self._entries: Dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, ref_id: str, name: str) -> None:
        """Insert or overwrite the name stored for ref_id."""
        with self._lock:
            self._entries[ref_id] = name

    def get(self, ref_id: str) -> str:
        """Return the stored name, or "unknown" for an empty or absent id."""
        if not ref_id:
            return UNKNOWN_REFERENCE
        with self._lock:
            name = self._entries.get(ref_id)
        if name is None:
            return UNKNOWN_REFERENCE
        logger.debug(f"{self.name} reference {ref_id} resolved to {name}")
        return name

    def snapshot(self) -> Dict[str, str]:
        """Copy of the current mapping."""
        with self._lock:
            return dict(self._entries)

    def __contains__(self, ref_id: object) -> bool:
        with self._lock:
            return ref_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
