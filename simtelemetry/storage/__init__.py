"""
Storage Layer

RESPONSIBILITY: Buffer records and hand them to the persistence backend
ALLOWED INPUTS: Event documents and session snapshots (plain dicts)
OUTPUTS: FlushReport, document ids, persisted history for queries

WHAT THIS LAYER MUST NOT DO:
============================
- Interpret or aggregate records
- Block producers on network I/O
- Drop records silently (dead letters are logged and kept)

BOUNDARY ENFORCEMENT:
=====================
The core only sees the narrow gateway interface:
    save(collection, record) -> id     (raises PersistenceError)
The backend behind it (Firestore, a REST endpoint, SQLite) is an external
collaborator and can be swapped without touching the core.
"""

from .gateway import PersistenceGateway, InMemoryGateway
from .queue import QueueConfig, OutboundQueue
from .sqlite_gateway import SQLiteGateway
from .http_gateway import HttpGateway

__all__ = [
    'PersistenceGateway',
    'InMemoryGateway',
    'SQLiteGateway',
    'HttpGateway',
    'QueueConfig',
    'OutboundQueue',
]
