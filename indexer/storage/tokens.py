from typing import List, Optional

import aiosqlite

_COLUMNS = (
    "token_address, creator, name, symbol, launch_block, launched_at, graduated, "
    "liquidity_amount, treasury_fee, graduated_at, delisted, delist_reason"
)


def _row_to_dict(row) -> dict:
    return {
        "token_address": row[0],
        "creator": row[1],
        "name": row[2],
        "symbol": row[3],
        "launch_block": row[4],
        "launched_at": row[5],
        "graduated": bool(row[6]),
        "liquidity_amount": int(row[7]) if row[7] is not None else None,
        "treasury_fee": int(row[8]) if row[8] is not None else None,
        "graduated_at": row[9],
        "delisted": bool(row[10]),
        "delist_reason": row[11],
    }


class TokenRepo:
    """Launched tokens and their lifecycle flags."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def create(
        self, token: str, creator: str, name: str, symbol: str, launch_block: int, launched_at: int
    ) -> bool:
        cursor = await self._db.execute(
            "INSERT OR IGNORE INTO tokens (token_address, creator, name, symbol, launch_block, launched_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (token.lower(), creator.lower(), name, symbol, launch_block, launched_at),
        )
        return cursor.rowcount > 0

    async def get(self, token: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM tokens WHERE token_address = ?", (token.lower(),)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_dict(row)

    async def mark_graduated(
        self, token: str, liquidity_amount: int, treasury_fee: int, graduated_at: int
    ) -> bool:
        cursor = await self._db.execute(
            "UPDATE tokens SET graduated = 1, liquidity_amount = ?, treasury_fee = ?, graduated_at = ? "
            "WHERE token_address = ? AND graduated = 0",
            (str(liquidity_amount), str(treasury_fee), graduated_at, token.lower()),
        )
        return cursor.rowcount > 0

    async def mark_delisted(self, token: str, reason: str = "") -> bool:
        cursor = await self._db.execute(
            "UPDATE tokens SET delisted = 1, delist_reason = ? WHERE token_address = ? AND delisted = 0",
            (reason, token.lower()),
        )
        return cursor.rowcount > 0

    async def list_active(self) -> List[str]:
        """Tokens still trading on the bonding curve."""
        async with self._db.execute(
            "SELECT token_address FROM tokens WHERE graduated = 0 AND delisted = 0 "
            "ORDER BY launch_block, token_address"
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def list_by_creator(self, creator: str) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM tokens WHERE creator = ? ORDER BY launch_block, token_address",
            (creator.lower(),),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM tokens") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
