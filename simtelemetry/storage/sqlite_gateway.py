"""
SQLite Gateway

Durable single-file backend. Every collection shares one documents table;
the full record is kept as JSON, with the ids the queries filter on
promoted to indexed columns.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union
import asyncio
import json
import logging
import sqlite3
import uuid

from ..contracts.base import PersistenceError
from .gateway import PersistenceGateway

logger = logging.getLogger(__name__)

_INDEXED_FIELDS = {'userId': 'user_id', 'sessionId': 'session_id'}


class SQLiteGateway(PersistenceGateway):
    """Persistence gateway backed by a local SQLite database."""

    supports_history = True

    def __init__(self, db_path: Union[str, Path]):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info("SQLite gateway using %s", self._db_path)

    def _init_db(self):
        """Initialize database schema."""
        with self._get_conn() as conn:
            conn.executescript('''
                CREATE TABLE IF NOT EXISTS documents (
                    doc_id TEXT PRIMARY KEY,
                    collection TEXT NOT NULL,
                    user_id TEXT,
                    session_id TEXT,
                    stored_at TEXT NOT NULL,
                    body TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);
                CREATE INDEX IF NOT EXISTS idx_documents_user ON documents(collection, user_id);
                CREATE INDEX IF NOT EXISTS idx_documents_session ON documents(collection, session_id);
            ''')

    @contextmanager
    def _get_conn(self):
        """Get database connection."""
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # GATEWAY INTERFACE
    # =========================================================================

    async def save(self, collection: str, record: Mapping[str, Any]) -> str:
        return await asyncio.to_thread(self._save, collection, dict(record))

    async def find(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._find, collection, field, value)

    # =========================================================================
    # BLOCKING IMPLEMENTATION
    # =========================================================================

    def _save(self, collection: str, record: Dict[str, Any]) -> str:
        if not collection:
            raise PersistenceError("Collection name must be non-empty", collection)
        doc_id = f"{collection}_{uuid.uuid4().hex[:16]}"
        try:
            body = json.dumps(record, default=str)
            with self._get_conn() as conn:
                conn.execute('''
                    INSERT INTO documents
                    (doc_id, collection, user_id, session_id, stored_at, body)
                    VALUES (?, ?, ?, ?, ?, ?)
                ''', (
                    doc_id,
                    collection,
                    record.get('userId'),
                    record.get('sessionId'),
                    datetime.now(timezone.utc).isoformat(),
                    body
                ))
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise PersistenceError(f"SQLite save failed: {e}", collection) from e
        return doc_id

    def _find(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        column = _INDEXED_FIELDS.get(field)
        try:
            with self._get_conn() as conn:
                if column:
                    rows = conn.execute(f'''
                        SELECT doc_id, body FROM documents
                        WHERE collection = ? AND {column} = ?
                        ORDER BY rowid
                    ''', (collection, value)).fetchall()
                else:
                    rows = conn.execute('''
                        SELECT doc_id, body FROM documents
                        WHERE collection = ?
                        ORDER BY rowid
                    ''', (collection,)).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite query failed: {e}", collection) from e

        documents = []
        for row in rows:
            document = json.loads(row['body'])
            document['id'] = row['doc_id']
            if column or document.get(field) == value:
                documents.append(document)
        return documents

    def get_stats(self) -> dict:
        """Document counts per collection."""
        with self._get_conn() as conn:
            rows = conn.execute('''
                SELECT collection, COUNT(*) AS n FROM documents GROUP BY collection
            ''').fetchall()
            return {row['collection']: row['n'] for row in rows}
