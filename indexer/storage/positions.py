import time
from typing import List, Optional

import aiosqlite

_COLUMNS = "user_address, token_address, total_bought, total_sold, cost_basis, realized_pnl, updated_at"


def _row_to_dict(row) -> dict:
    return {
        "user_address": row[0],
        "token_address": row[1],
        "total_bought": int(row[2]),
        "total_sold": int(row[3]),
        "cost_basis": int(row[4]),
        "realized_pnl": int(row[5]),
        "updated_at": row[6],
    }


class PositionRepo:
    """Per (user, token) cost-basis ledger."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def get(self, user: str, token: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM token_positions WHERE user_address = ? AND token_address = ?",
            (user.lower(), token.lower()),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_dict(row)

    async def apply_delta(self, user: str, token: str, side: str, amount_in: int, amount_out: int):
        """Buy: tokens received and currency spent. Sell: tokens given up and currency received."""
        user, token = user.lower(), token.lower()
        existing = await self.get(user, token)
        now = time.time()
        if existing is None:
            await self._db.execute(
                "INSERT INTO token_positions (user_address, token_address, updated_at) VALUES (?, ?, ?)",
                (user, token, now),
            )
            existing = {"total_bought": 0, "total_sold": 0, "cost_basis": 0, "realized_pnl": 0}

        if side == "buy":
            await self._db.execute(
                "UPDATE token_positions SET total_bought = ?, cost_basis = ?, updated_at = ? "
                "WHERE user_address = ? AND token_address = ?",
                (
                    str(existing["total_bought"] + amount_out),
                    str(existing["cost_basis"] + amount_in),
                    now, user, token,
                ),
            )
        else:
            await self._db.execute(
                "UPDATE token_positions SET total_sold = ?, realized_pnl = ?, updated_at = ? "
                "WHERE user_address = ? AND token_address = ?",
                (
                    str(existing["total_sold"] + amount_in),
                    str(existing["realized_pnl"] + amount_out),
                    now, user, token,
                ),
            )

    async def list_for_user(self, user: str) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM token_positions WHERE user_address = ? ORDER BY token_address",
            (user.lower(),),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def list_all(self) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM token_positions ORDER BY user_address, token_address"
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results
