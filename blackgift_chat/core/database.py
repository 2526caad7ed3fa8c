# blackgift_chat/core/database.py
"""
Key-document store on top of SQLite.

Each document is a JSON object addressed by (collection, doc_id). Writes go
through `transaction()`, which runs the read-modify-write under
`BEGIN IMMEDIATE`, so concurrent writers (other requests, other processes)
are serialised by SQLite's write lock instead of overwriting each other.
"""
import json
import logging
import sqlite3
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional

import aiosqlite
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from .errors import BackendUnavailable

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class DocumentStore:
    def __init__(
        self,
        path: str,
        collection: str,
        busy_timeout: float = 30,
        max_retries: int = 5,
        retry_delay: float = 1,
    ):
        self.path = path
        self.collection = collection
        self.busy_timeout = busy_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @asynccontextmanager
    async def get_db_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Async context manager for a database connection (autocommit, explicit transactions)."""
        try:
            conn = await aiosqlite.connect(self.path, timeout=self.busy_timeout, isolation_level=None)
        except (sqlite3.Error, OSError) as e:
            raise BackendUnavailable(f"Cannot open document store {self.path}: {e}") from e
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        except sqlite3.Error as e:
            raise BackendUnavailable(f"Document store error: {e}") from e
        finally:
            await conn.close()

    async def init(self):
        """Creates the documents table, retrying while the file system/database is not ready."""
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_delay, max=10),
            reraise=True,
        ):
            with attempt:
                async with self.get_db_connection() as conn:
                    await conn.execute("""
                        CREATE TABLE IF NOT EXISTS documents (
                            collection TEXT NOT NULL,
                            doc_id TEXT NOT NULL,
                            data TEXT NOT NULL,
                            version INTEGER NOT NULL DEFAULT 1,
                            updated_at INTEGER NOT NULL,
                            PRIMARY KEY (collection, doc_id)
                        )
                    """)
        logger.info(f"Document store ready: {self.path} ({self.collection})")

    async def health_check(self) -> bool:
        try:
            async with self.get_db_connection() as conn:
                await conn.execute("SELECT 1")
            return True
        except BackendUnavailable as e:
            logger.error(f"Document store health check failed: {e}")
            return False

    async def close(self):
        # Connections are opened per operation; nothing is held between requests.
        return None

    # --- Document operations ---

    async def _read(self, conn: aiosqlite.Connection, doc_id: str) -> Optional[Document]:
        async with conn.execute(
            "SELECT data FROM documents WHERE collection=? AND doc_id=?",
            (self.collection, doc_id),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["data"])
        except ValueError as e:
            raise BackendUnavailable(f"Corrupt document {self.collection}/{doc_id}: {e}") from e

    async def _write(self, conn: aiosqlite.Connection, doc_id: str, data: Document):
        await conn.execute(
            """
            INSERT INTO documents (collection, doc_id, data, version, updated_at)
            VALUES (?, ?, ?, 1, ?)
            ON CONFLICT(collection, doc_id) DO UPDATE SET
                data = excluded.data,
                version = documents.version + 1,
                updated_at = excluded.updated_at
            """,
            (self.collection, doc_id, json.dumps(data, ensure_ascii=False), int(time.time() * 1000)),
        )

    async def get(self, doc_id: str) -> Optional[Document]:
        async with self.get_db_connection() as conn:
            return await self._read(conn, doc_id)

    async def transaction(
        self,
        doc_id: str,
        update: Callable[[Optional[Document]], Document],
    ) -> Document:
        """
        Atomic read-modify-write of a single document.

        `update` receives the current document (None if it does not exist yet)
        and returns the document to store.
        """
        async with self.get_db_connection() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                current = await self._read(conn, doc_id)
                updated = update(current)
                await self._write(conn, doc_id, updated)
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise
            return updated

    async def set(self, doc_id: str, data: Document, merge: bool = False) -> Document:
        """Writes a document. With merge=True only the given top-level fields are replaced."""
        def apply(current: Optional[Document]) -> Document:
            if merge and current:
                return {**current, **data}
            return dict(data)

        return await self.transaction(doc_id, apply)
