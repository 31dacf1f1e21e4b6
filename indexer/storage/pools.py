import time
from typing import List, Optional

import aiosqlite

_COLUMNS = "date, total_user_fees, total_treasury_fees, distributed, distributed_at, created_at"


def _row_to_dict(row) -> dict:
    return {
        "date": row[0],
        "total_user_fees": int(row[1]),
        "total_treasury_fees": int(row[2]),
        "distributed": bool(row[3]),
        "distributed_at": row[4],
        "created_at": row[5],
    }


class DailyPoolRepo:
    """One reward pool per UTC date."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def get(self, date: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM daily_pools WHERE date = ?", (date,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_dict(row)

    async def apply_contribution(self, date: str, user_share: int, treasury_share: int) -> bool:
        """Credit both shares to the pool for ``date``. Returns False if the pool is already closed."""
        pool = await self.get(date)
        if pool is None:
            await self._db.execute(
                "INSERT INTO daily_pools (date, total_user_fees, total_treasury_fees, created_at) "
                "VALUES (?, ?, ?, ?)",
                (date, str(user_share), str(treasury_share), time.time()),
            )
            return True
        if pool["distributed"]:
            return False
        await self._db.execute(
            "UPDATE daily_pools SET total_user_fees = ?, total_treasury_fees = ? WHERE date = ?",
            (
                str(pool["total_user_fees"] + user_share),
                str(pool["total_treasury_fees"] + treasury_share),
                date,
            ),
        )
        return True

    async def mark_distributed(self, date: str) -> bool:
        cursor = await self._db.execute(
            "UPDATE daily_pools SET distributed = 1, distributed_at = ? "
            "WHERE date = ? AND distributed = 0",
            (time.time(), date),
        )
        return cursor.rowcount > 0

    async def list_undistributed(self, before: Optional[str] = None) -> List[dict]:
        """Open pools in date order, optionally only those strictly before ``before``."""
        query = f"SELECT {_COLUMNS} FROM daily_pools WHERE distributed = 0"
        params: tuple = ()
        if before is not None:
            query += " AND date < ?"
            params = (before,)
        query += " ORDER BY date"
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def list_all(self, limit: Optional[int] = None) -> List[dict]:
        query = f"SELECT {_COLUMNS} FROM daily_pools ORDER BY date DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results
