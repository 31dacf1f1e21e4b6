import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

try:
    import aiosqlite
except ImportError:
    raise ImportError(
        "aiosqlite is required for the ledger store. "
        "Install with: pip install aiosqlite"
    )

from ._migrate import run_migrations
from .cursor import CursorRepo
from .distributions import DistributionRepo
from .pools import DailyPoolRepo
from .positions import PositionRepo
from .referrals import ReferralRepo
from .swaps import SwapRepo
from .tokens import TokenRepo
from .users import UserStatsRepo

logger = logging.getLogger("storage")


class LedgerStore:
    """Opens the database, runs migrations, exposes the ledger repositories.

    The connection runs in autocommit mode; every multi-row mutation goes
    through ``transaction()``, which serialises writers on one lock and
    wraps them in ``BEGIN IMMEDIATE`` / ``COMMIT``.
    """

    def __init__(self, db_path: str = "indexer.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self.users: Optional[UserStatsRepo] = None
        self.positions: Optional[PositionRepo] = None
        self.pools: Optional[DailyPoolRepo] = None
        self.distributions: Optional[DistributionRepo] = None
        self.referrals: Optional[ReferralRepo] = None
        self.swaps: Optional[SwapRepo] = None
        self.tokens: Optional[TokenRepo] = None
        self.cursor: Optional[CursorRepo] = None

    async def initialize(self):
        self._db = await aiosqlite.connect(self.db_path, isolation_level=None)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await run_migrations(self._db, logger)

        self.users = UserStatsRepo(self._db)
        self.positions = PositionRepo(self._db)
        self.pools = DailyPoolRepo(self._db)
        self.distributions = DistributionRepo(self._db)
        self.referrals = ReferralRepo(self._db)
        self.swaps = SwapRepo(self._db)
        self.tokens = TokenRepo(self._db)
        self.cursor = CursorRepo(self._db)

        logger.info("Ledger store initialized: %s", self.db_path)

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Ledger store closed")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Atomic unit of work. Rolls back everything on any exception."""
        if self._db is None:
            raise RuntimeError("LedgerStore is not initialized")
        async with self._lock:
            await self._db.execute("BEGIN IMMEDIATE")
            try:
                yield self._db
                await self._db.execute("COMMIT")
            except BaseException:
                # A failed COMMIT can leave the transaction open.
                if self._db.in_transaction:
                    await self._db.execute("ROLLBACK")
                raise

    @asynccontextmanager
    async def read(self) -> AsyncIterator[aiosqlite.Connection]:
        """Read outside any open write transaction.

        Writers share this connection, so a read issued while another
        coroutine holds ``transaction()`` would see its uncommitted rows.
        Waiting on the same lock keeps readers on committed state.
        """
        if self._db is None:
            raise RuntimeError("LedgerStore is not initialized")
        async with self._lock:
            yield self._db

    async def snapshot(self) -> dict:
        """Full ledger contents as plain data, for audits and equality checks."""
        async with self.transaction():
            return {
                "users": [
                    {k: v for k, v in u.items() if k not in ("created_at", "updated_at")}
                    for u in await self.users.list_all()
                ],
                "positions": [
                    {k: v for k, v in p.items() if k != "updated_at"}
                    for p in await self.positions.list_all()
                ],
                "pools": [
                    {k: v for k, v in p.items() if k not in ("created_at", "distributed_at")}
                    for p in await self.pools.list_all()
                ],
                "swaps": await self.swaps.list_all(),
                "referrals": await self.referrals.list_all(),
            }
