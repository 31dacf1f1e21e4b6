"""
distribution.py - Daily reward pool payouts.

DistributionPlanner turns a pool into a ranked, dust-filtered list of
shares. DistributionExecutor pays that list out one recipient at a time,
recording every attempt, and closes the pool once all recipients have been
tried. DistributionScheduler runs the executor for closed days at the
configured UTC hour.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, List, Optional, Protocol

from indexer.config import CURSOR_KEY, DistributionSettings
from indexer.replay import pool_date as utc_date

if TYPE_CHECKING:
    from indexer.storage import LedgerStore

logger = logging.getLogger("distribution")


class PaymentSender(Protocol):
    async def send(self, recipient: str, amount: int) -> str: ...


@dataclass(frozen=True)
class PlannedPayout:
    address: str
    amount: int
    rank: int


@dataclass
class DistributionPlan:
    pool_date: str
    pool_amount: int
    total_contribution: int
    payouts: List[PlannedPayout] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(p.amount for p in self.payouts)

    @property
    def remainder(self) -> int:
        """Truncation leftover. Not redistributed."""
        return self.pool_amount - self.total

    def as_dict(self) -> dict:
        return {
            "pool_date": self.pool_date,
            "pool_amount": str(self.pool_amount),
            "total_contribution": str(self.total_contribution),
            "total": str(self.total),
            "remainder": str(self.remainder),
            "payouts": [
                {"rank": p.rank, "address": p.address, "amount": str(p.amount)}
                for p in self.payouts
            ],
        }


@dataclass
class ExecutionSummary:
    pool_date: str
    status: str  # skipped | empty | completed | interrupted
    succeeded: int = 0
    failed: int = 0
    already_attempted: int = 0
    total_paid: int = 0


def split_pool(
    pool_date: str,
    pool_amount: int,
    contributors: List[dict],
    total_contribution: int,
    min_payout: int,
) -> DistributionPlan:
    """Proportional floor split over ranked contributors, dropping shares below min_payout."""
    plan = DistributionPlan(pool_date, pool_amount, total_contribution)
    if total_contribution <= 0 or pool_amount <= 0:
        return plan
    for index, user in enumerate(contributors):
        share = user["user_pool_contribution"] * pool_amount // total_contribution
        if share < min_payout:
            continue
        plan.payouts.append(PlannedPayout(user["address"], share, index + 1))
    return plan


class DistributionPlanner:
    def __init__(self, store: "LedgerStore", settings: Optional[DistributionSettings] = None):
        self.store = store
        self.settings = settings or DistributionSettings()

    async def plan(
        self, pool_date: str, top_n: Optional[int] = None, min_payout: Optional[int] = None
    ) -> DistributionPlan:
        top_n = self.settings.top_n if top_n is None else top_n
        min_payout = self.settings.min_payout if min_payout is None else min_payout
        # One read transaction so the ranking and the total agree.
        async with self.store.transaction():
            pool = await self.store.pools.get(pool_date)
            contributors = await self.store.users.ranked_pool_contributors(top_n)
            total = await self.store.users.total_pool_contribution()
        pool_amount = pool["total_user_fees"] if pool else 0
        return split_pool(pool_date, pool_amount, contributors, total, min_payout)


class DistributionExecutor:
    """Pays out a pool exactly once. Stoppable between recipients, never mid-payment."""

    def __init__(
        self,
        store: "LedgerStore",
        planner: DistributionPlanner,
        sender: PaymentSender,
    ):
        self.store = store
        self.planner = planner
        self.sender = sender
        self._stop = asyncio.Event()

    def request_stop(self):
        self._stop.set()

    def reset(self):
        self._stop.clear()

    async def preview(self, pool_date: str) -> DistributionPlan:
        """The plan execute() would pay, without sending or recording anything."""
        return await self.planner.plan(pool_date)

    async def _close_pool(self, pool_date: str):
        async with self.store.transaction():
            await self.store.pools.mark_distributed(pool_date)

    async def execute(self, pool_date: str) -> ExecutionSummary:
        async with self.store.read():
            pool = await self.store.pools.get(pool_date)
        if pool is None or pool["distributed"]:
            logger.debug("Pool %s absent or already distributed", pool_date)
            return ExecutionSummary(pool_date, "skipped")

        if pool["total_user_fees"] == 0:
            await self._close_pool(pool_date)
            logger.info("Pool %s has no user fees; closed", pool_date)
            return ExecutionSummary(pool_date, "empty")

        plan = await self.planner.plan(pool_date)
        if not plan.payouts:
            await self._close_pool(pool_date)
            logger.info("Pool %s has no eligible recipients; closed", pool_date)
            return ExecutionSummary(pool_date, "empty")

        async with self.store.read():
            attempted = await self.store.distributions.attempted_addresses(pool_date)
        summary = ExecutionSummary(pool_date, "completed")
        logger.info(
            "Distributing pool %s: %d recipients, %d total, %d remainder",
            pool_date, len(plan.payouts), plan.total, plan.remainder,
        )

        for payout in plan.payouts:
            if payout.address in attempted:
                summary.already_attempted += 1
                continue
            if self._stop.is_set():
                summary.status = "interrupted"
                logger.warning(
                    "Distribution of %s interrupted: succeeded=%d failed=%d",
                    pool_date, summary.succeeded, summary.failed,
                )
                return summary
            if await self._pay(pool_date, payout):
                summary.succeeded += 1
                summary.total_paid += payout.amount
            else:
                summary.failed += 1

        await self._close_pool(pool_date)
        logger.info(
            "Pool %s distributed: succeeded=%d failed=%d paid=%d",
            pool_date, summary.succeeded, summary.failed, summary.total_paid,
        )
        return summary

    async def _pay(self, pool_date: str, payout: PlannedPayout) -> bool:
        async with self.store.transaction():
            record_id = await self.store.distributions.create_pending(
                pool_date, payout.address, payout.amount, payout.rank,
            )
        try:
            reference = await self.sender.send(payout.address, payout.amount)
        except Exception as e:
            logger.error(
                "Payout to %s (rank %d, %d) failed: %s",
                payout.address, payout.rank, payout.amount, e,
            )
            async with self.store.transaction():
                await self.store.distributions.mark_failed(record_id, str(e) or type(e).__name__)
            return False
        async with self.store.transaction():
            await self.store.distributions.mark_succeeded(record_id, reference)
            await self.store.users.apply_airdrop(payout.address, payout.amount)
        logger.debug("Paid %s %d (ref %s)", payout.address, payout.amount, reference)
        return True


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def closed_pools(
    store: "LedgerStore", today: str, cursor_key: str = CURSOR_KEY
) -> List[str]:
    """Open pool dates that are over both by the wall clock and by ingestion.

    A day counts as ingested once a fully processed block carries a
    timestamp on a later UTC day. Before the first range nothing is closed.
    """
    async with store.read():
        through = await store.cursor.ingested_through(cursor_key)
        if through is None:
            return []
        pools = await store.pools.list_undistributed(before=min(today, utc_date(through)))
    return [p["date"] for p in pools]


class DistributionScheduler:
    """Runs the executor for every closed pool once the airdrop hour has passed.

    A pool is closed when its day is over on the wall clock and the indexer
    has processed a block from a later day, so no trade of that day is
    still waiting to be ingested.
    """

    def __init__(
        self,
        executor: DistributionExecutor,
        settings: Optional[DistributionSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        cursor_key: str = CURSOR_KEY,
    ):
        self.executor = executor
        self.settings = settings or DistributionSettings()
        self.clock = clock
        self.cursor_key = cursor_key
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def run_due(self) -> List[ExecutionSummary]:
        now = self.clock()
        if now.hour < self.settings.airdrop_hour:
            return []
        dates = await closed_pools(
            self.executor.store, now.strftime("%Y-%m-%d"), self.cursor_key,
        )
        summaries = []
        for date in dates:
            if self._stop.is_set():
                break
            summaries.append(await self.executor.execute(date))
        return summaries

    async def start(self):
        self._stop.clear()
        self.executor.reset()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Distribution scheduler started (airdrop hour %02d:00 UTC)", self.settings.airdrop_hour,
        )

    async def stop(self):
        self._stop.set()
        self.executor.request_stop()
        if self._task:
            await self._task
            self._task = None
            logger.info("Distribution scheduler stopped")

    async def _run(self):
        while not self._stop.is_set():
            try:
                await self.run_due()
            except Exception:
                logger.exception("Scheduled distribution failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.settings.check_interval_sec)
            except asyncio.TimeoutError:
                pass
