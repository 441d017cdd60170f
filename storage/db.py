"""SQLite blob store via aiosqlite."""
import aiosqlite
import logging
import os
from typing import Optional

from shared.time_utils import now_utc, to_iso
from storage.blob_store import content_type_for, validate_key
from storage.models import CREATE_BLOBS_TABLE

logger = logging.getLogger(__name__)


class SQLiteBlobStore:
    """Async SQLite table of key -> content blobs."""

    def __init__(self, db_path: str = "data/blobs.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def init(self):
        """Open the database and create the blobs table."""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute(CREATE_BLOBS_TABLE)
        await self._db.commit()
        logger.info("Blob database initialized", extra={"path": self.db_path})

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Blob database not initialized")
        return self._db

    async def get(self, key: str) -> Optional[bytes]:
        cursor = await self._conn().execute(
            "SELECT content FROM blobs WHERE key=?", (validate_key(key),)
        )
        row = await cursor.fetchone()
        return bytes(row[0]) if row else None

    async def put(self, key: str, data: bytes) -> None:
        db = self._conn()
        await db.execute(
            """INSERT INTO blobs (key, content, content_type, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                 content=excluded.content,
                 content_type=excluded.content_type,
                 updated_at=excluded.updated_at""",
            (validate_key(key), data, content_type_for(key), to_iso(now_utc())),
        )
        await db.commit()
