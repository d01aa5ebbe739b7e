"""
Persistence Gateways

The narrow egress interface of the core and its reference implementation.
"""

from __future__ import annotations
from typing import Any, Dict, List, Mapping
import copy
import itertools
import threading

from ..contracts.base import PersistenceError


# =============================================================================
# GATEWAY INTERFACE (Dependency Inversion)
# =============================================================================

class PersistenceGateway:
    """
    Abstract persistence gateway.

    Implementations must raise PersistenceError on failure; the outbound
    queue treats every failure as transient and retries it.
    """

    supports_history: bool = False

    async def save(self, collection: str, record: Mapping[str, Any]) -> str:
        """Persist one record. Returns the document id."""
        raise NotImplementedError

    async def find(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        """Return records of a collection whose `field` equals `value`, oldest first."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources."""
        return None


# =============================================================================
# IN-MEMORY GATEWAY (Reference Implementation)
# =============================================================================

class InMemoryGateway(PersistenceGateway):
    """
    In-memory gateway. Append-only per collection.

    Suitable for testing and single-process deployments.
    """

    supports_history = True

    def __init__(self):
        self._collections: Dict[str, List[Dict[str, Any]]] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    async def save(self, collection: str, record: Mapping[str, Any]) -> str:
        if not collection:
            raise PersistenceError("Collection name must be non-empty", collection)
        with self._lock:
            doc_id = f"{collection}_{next(self._counter)}"
            stored = copy.deepcopy(dict(record))
            stored["id"] = doc_id
            self._collections.setdefault(collection, []).append(stored)
        return doc_id

    async def find(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(doc)
                for doc in self._collections.get(collection, [])
                if doc.get(field) == value
            ]

    def documents(self, collection: str) -> List[Dict[str, Any]]:
        """All documents of a collection in write order (copy)."""
        with self._lock:
            return copy.deepcopy(self._collections.get(collection, []))

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collections.get(collection, []))


