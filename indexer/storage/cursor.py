import time
from typing import Optional

import aiosqlite

TIMESTAMP_SUFFIX = ":timestamp"


class CursorRepo:
    """Last fully processed block per stream, stored as a decimal string.

    Alongside the block the repo keeps that block's chain timestamp, the
    point in time through which the ledger is known to be complete.
    """

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def get(self, key: str) -> Optional[int]:
        async with self._db.execute(
            "SELECT value FROM indexer_state WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else None

    async def ingested_through(self, key: str) -> Optional[int]:
        """Timestamp of the last fully processed block, or None before the first range."""
        return await self.get(key + TIMESTAMP_SUFFIX)

    async def set(self, key: str, block: int, timestamp: Optional[int] = None):
        await self._put(key, block)
        if timestamp is not None:
            await self._put(key + TIMESTAMP_SUFFIX, timestamp)

    async def _put(self, key: str, value: int):
        await self._db.execute(
            "INSERT INTO indexer_state (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (key, str(value), time.time()),
        )
