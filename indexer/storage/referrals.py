import logging
import sqlite3
from typing import List, Optional

import aiosqlite

logger = logging.getLogger("storage")


class ReferralRepo:
    """Referral relationships. A referred address appears at most once."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def record(self, referrer: str, referred: str, timestamp: int) -> bool:
        """Insert the relationship; False on self-referral or if already referred.

        Both users must already exist in user_stats. On success the referred
        user's referred_by is set and the referrer's referral_count bumped.
        """
        referrer, referred = referrer.lower(), referred.lower()
        if referrer == referred:
            return False
        try:
            await self._db.execute(
                "INSERT INTO referrals (referrer_address, referred_address, timestamp) VALUES (?, ?, ?)",
                (referrer, referred, timestamp),
            )
        except sqlite3.IntegrityError:
            return False
        await self._db.execute(
            "UPDATE user_stats SET referred_by = ? WHERE address = ? AND referred_by IS NULL",
            (referrer, referred),
        )
        await self._db.execute(
            "UPDATE user_stats SET referral_count = referral_count + 1 WHERE address = ?",
            (referrer,),
        )
        logger.info("Referral recorded: %s -> %s", referrer, referred)
        return True

    async def get_referrer(self, referred: str) -> Optional[str]:
        async with self._db.execute(
            "SELECT referrer_address FROM referrals WHERE referred_address = ?",
            (referred.lower(),),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def list_referred(self, referrer: str) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT referrer_address, referred_address, timestamp FROM referrals "
            "WHERE referrer_address = ? ORDER BY timestamp, id",
            (referrer.lower(),),
        ) as cursor:
            async for row in cursor:
                results.append({"referrer": row[0], "referred": row[1], "timestamp": row[2]})
        return results

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM referrals") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def list_all(self) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT referrer_address, referred_address, timestamp FROM referrals ORDER BY id"
        ) as cursor:
            async for row in cursor:
                results.append({"referrer": row[0], "referred": row[1], "timestamp": row[2]})
        return results
