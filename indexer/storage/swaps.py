from typing import List, Optional

import aiosqlite

_COLUMNS = (
    "tx_id, block_number, log_index, timestamp, token_address, trader_address, side, "
    "amount_in, amount_out, fee_total, user_fee, treasury_fee, referrer_address, referral_fee"
)


def _row_to_dict(row) -> dict:
    return {
        "tx_id": row[0],
        "block_number": row[1],
        "log_index": row[2],
        "timestamp": row[3],
        "token_address": row[4],
        "trader_address": row[5],
        "side": row[6],
        "amount_in": int(row[7]),
        "amount_out": int(row[8]),
        "fee_total": int(row[9]),
        "user_fee": int(row[10]),
        "treasury_fee": int(row[11]),
        "referrer_address": row[12],
        "referral_fee": int(row[13]),
    }


class SwapRepo:
    """Applied trades keyed by transaction id. The insert is the replay dedup point."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def exists(self, tx_id: str) -> bool:
        async with self._db.execute("SELECT 1 FROM swaps WHERE tx_id = ?", (tx_id,)) as cursor:
            return await cursor.fetchone() is not None

    async def insert(
        self,
        tx_id: str,
        block_number: int,
        log_index: int,
        timestamp: int,
        token: str,
        trader: str,
        side: str,
        amount_in: int,
        amount_out: int,
        fee_total: int,
        user_fee: int,
        treasury_fee: int,
        referrer: Optional[str] = None,
        referral_fee: int = 0,
    ) -> bool:
        cursor = await self._db.execute(
            f"INSERT OR IGNORE INTO swaps ({_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                tx_id, block_number, log_index, timestamp, token.lower(), trader.lower(), side,
                str(amount_in), str(amount_out), str(fee_total), str(user_fee),
                str(treasury_fee), referrer.lower() if referrer else None, str(referral_fee),
            ),
        )
        return cursor.rowcount > 0

    async def get(self, tx_id: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM swaps WHERE tx_id = ?", (tx_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_dict(row)

    async def list_for_token(self, token: str) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM swaps WHERE token_address = ? ORDER BY block_number, log_index",
            (token.lower(),),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def list_for_trader(self, trader: str, limit: Optional[int] = None) -> List[dict]:
        query = (f"SELECT {_COLUMNS} FROM swaps WHERE trader_address = ? "
                 "ORDER BY block_number DESC, log_index DESC")
        params: tuple = (trader.lower(),)
        if limit is not None:
            query += " LIMIT ?"
            params = (trader.lower(), limit)
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM swaps") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def list_all(self) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM swaps ORDER BY block_number, log_index"
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results
