import time
from typing import List, Optional, Set

import aiosqlite

PENDING = "pending"
SUCCEEDED = "succeeded"
FAILED = "failed"

_COLUMNS = (
    "id, pool_date, recipient_address, amount, rank, payment_reference, "
    "outcome, error, created_at, updated_at"
)


def _row_to_dict(row) -> dict:
    return {
        "id": row[0],
        "pool_date": row[1],
        "recipient_address": row[2],
        "amount": int(row[3]),
        "rank": row[4],
        "payment_reference": row[5],
        "outcome": row[6],
        "error": row[7],
        "created_at": row[8],
        "updated_at": row[9],
    }


class DistributionRepo:
    """Payout attempts. A record moves pending -> succeeded|failed exactly once."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def create_pending(self, pool_date: str, recipient: str, amount: int, rank: int) -> int:
        now = time.time()
        cursor = await self._db.execute(
            "INSERT INTO distribution_records "
            "(pool_date, recipient_address, amount, rank, outcome, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, 'pending', ?, ?)",
            (pool_date, recipient.lower(), str(amount), rank, now, now),
        )
        return cursor.lastrowid

    async def mark_succeeded(self, record_id: int, payment_reference: str) -> bool:
        cursor = await self._db.execute(
            "UPDATE distribution_records SET outcome = 'succeeded', payment_reference = ?, "
            "updated_at = ? WHERE id = ? AND outcome = 'pending'",
            (payment_reference, time.time(), record_id),
        )
        return cursor.rowcount > 0

    async def mark_failed(self, record_id: int, error: str) -> bool:
        cursor = await self._db.execute(
            "UPDATE distribution_records SET outcome = 'failed', error = ?, "
            "updated_at = ? WHERE id = ? AND outcome = 'pending'",
            (error, time.time(), record_id),
        )
        return cursor.rowcount > 0

    async def get(self, record_id: int) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM distribution_records WHERE id = ?", (record_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_dict(row)

    async def attempted_addresses(self, pool_date: str) -> Set[str]:
        async with self._db.execute(
            "SELECT recipient_address FROM distribution_records WHERE pool_date = ?",
            (pool_date,),
        ) as cursor:
            rows = await cursor.fetchall()
        return {row[0] for row in rows}

    async def list_for_pool(self, pool_date: str) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM distribution_records WHERE pool_date = ? ORDER BY rank, id",
            (pool_date,),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def list_unreconciled(self) -> List[dict]:
        """Failed and pending records, oldest first."""
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM distribution_records WHERE outcome != 'succeeded' "
            "ORDER BY pool_date, rank, id"
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def count_by_outcome(self, pool_date: Optional[str] = None) -> dict:
        query = "SELECT outcome, COUNT(*) FROM distribution_records"
        params: tuple = ()
        if pool_date is not None:
            query += " WHERE pool_date = ?"
            params = (pool_date,)
        query += " GROUP BY outcome"
        counts = {PENDING: 0, SUCCEEDED: 0, FAILED: 0}
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                counts[row[0]] = row[1]
        return counts
