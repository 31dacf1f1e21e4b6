import hashlib
import logging
import sqlite3
import time
from typing import List, Optional

import aiosqlite

from indexer.errors import DuplicateCodeError

logger = logging.getLogger("storage")

CODE_ATTEMPTS = 5

_COLUMNS = (
    "address, total_buys, total_sells, total_fees_paid, user_pool_contribution, "
    "swap_count, last_swap_time, total_airdrops_received, referral_code, "
    "referred_by, referral_count, referral_earnings, created_at, updated_at"
)


def referral_code_for(address: str, attempt: int = 0) -> str:
    """8 hex chars after the 0x prefix, upper-cased; salted on retries."""
    if attempt == 0:
        return address[2:10].upper()
    digest = hashlib.sha256(f"{address}:{attempt}".encode()).hexdigest()
    return digest[:8].upper()


def _row_to_dict(row) -> dict:
    return {
        "address": row[0],
        "total_buys": int(row[1]),
        "total_sells": int(row[2]),
        "total_fees_paid": int(row[3]),
        "user_pool_contribution": int(row[4]),
        "swap_count": row[5],
        "last_swap_time": row[6],
        "total_airdrops_received": int(row[7]),
        "referral_code": row[8],
        "referred_by": row[9],
        "referral_count": row[10],
        "referral_earnings": int(row[11]),
        "created_at": row[12],
        "updated_at": row[13],
    }


class UserStatsRepo:
    """Per-user aggregates. Mutators never commit; run them inside LedgerStore.transaction()."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def get(self, address: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM user_stats WHERE address = ?",
            (address.lower(),),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_dict(row)

    async def exists(self, address: str) -> bool:
        async with self._db.execute(
            "SELECT 1 FROM user_stats WHERE address = ?", (address.lower(),)
        ) as cursor:
            return await cursor.fetchone() is not None

    async def _insert(self, address: str, code: str):
        now = time.time()
        try:
            await self._db.execute(
                "INSERT INTO user_stats (address, referral_code, created_at, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (address, code, now, now),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateCodeError(f"referral code {code} already taken") from e

    async def upsert_on_first_seen(self, address: str) -> str:
        """Create the user row if absent and return its referral code."""
        address = address.lower()
        async with self._db.execute(
            "SELECT referral_code FROM user_stats WHERE address = ?", (address,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is not None:
            return row[0]

        for attempt in range(CODE_ATTEMPTS):
            code = referral_code_for(address, attempt)
            try:
                await self._insert(address, code)
            except DuplicateCodeError:
                logger.warning("Referral code %s collides, salting (attempt %d)", code, attempt + 1)
                continue
            logger.debug("New user %s (code %s)", address, code)
            return code
        raise DuplicateCodeError(f"could not allocate a referral code for {address}")

    async def apply_trade_delta(
        self, address: str, side: str, total_fee: int, user_share: int, timestamp: int
    ):
        """Add one trade's fees to the trader's running totals."""
        address = address.lower()
        async with self._db.execute(
            "SELECT total_buys, total_sells, total_fees_paid, user_pool_contribution "
            "FROM user_stats WHERE address = ?",
            (address,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise KeyError(f"unknown user {address}")
        total_buys, total_sells = int(row[0]), int(row[1])
        if side == "buy":
            total_buys += total_fee
        else:
            total_sells += total_fee
        await self._db.execute(
            "UPDATE user_stats SET total_buys = ?, total_sells = ?, total_fees_paid = ?, "
            "user_pool_contribution = ?, swap_count = swap_count + 1, last_swap_time = ?, "
            "updated_at = ? WHERE address = ?",
            (
                str(total_buys),
                str(total_sells),
                str(int(row[2]) + total_fee),
                str(int(row[3]) + user_share),
                timestamp,
                time.time(),
                address,
            ),
        )

    async def _add_to(self, address: str, column: str, amount: int):
        async with self._db.execute(
            f"SELECT {column} FROM user_stats WHERE address = ?", (address,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise KeyError(f"unknown user {address}")
        await self._db.execute(
            f"UPDATE user_stats SET {column} = ?, updated_at = ? WHERE address = ?",
            (str(int(row[0]) + amount), time.time(), address),
        )

    async def apply_referral_earning(self, referrer: str, amount: int):
        await self._add_to(referrer.lower(), "referral_earnings", amount)

    async def apply_airdrop(self, address: str, amount: int):
        await self._add_to(address.lower(), "total_airdrops_received", amount)

    async def get_referrer(self, address: str) -> Optional[str]:
        async with self._db.execute(
            "SELECT referred_by FROM user_stats WHERE address = ?", (address.lower(),)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def find_by_referral_code(self, code: str) -> Optional[str]:
        if not code:
            return None
        async with self._db.execute(
            "SELECT address FROM user_stats WHERE referral_code = ? COLLATE NOCASE",
            (code.strip(),),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def list_all(self) -> List[dict]:
        results = []
        async with self._db.execute(f"SELECT {_COLUMNS} FROM user_stats ORDER BY address") as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def ranked_pool_contributors(self, limit: Optional[int] = None) -> List[dict]:
        """Users with a positive contribution, largest first, ties by ascending address."""
        ranked = [u for u in await self.list_all() if u["user_pool_contribution"] > 0]
        ranked.sort(key=lambda u: (-u["user_pool_contribution"], u["address"]))
        if limit is not None:
            ranked = ranked[:limit]
        return ranked

    async def total_pool_contribution(self) -> int:
        total = 0
        async with self._db.execute("SELECT user_pool_contribution FROM user_stats") as cursor:
            async for row in cursor:
                total += int(row[0])
        return total

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM user_stats") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
