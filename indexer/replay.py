"""
replay.py - Deterministic fold of domain events into the ledgers.

Each event is applied as one atomic group inside LedgerStore.transaction().
Trades are deduplicated on their transaction id: the swap row insert and
every ledger delta it implies commit together, so redelivery is a no-op.
"""

import asyncio
import enum
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, List

from indexer.config import EVENT_RETRY_LIMIT
from indexer.fees import FeeCalculator
from indexer.models import Event, TokenDelisted, TokenGraduated, TokenLaunched, Trade

if TYPE_CHECKING:
    from indexer.storage import LedgerStore

logger = logging.getLogger("replay")

RETRY_DELAY_SEC = 0.05


class ApplyOutcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass
class ReplayResult:
    applied: int = 0
    duplicates: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0


def pool_date(timestamp: int) -> str:
    """UTC calendar date (YYYY-MM-DD) of an event timestamp."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")


class ReplayEngine:
    """Applies exactly one mutation recipe per event."""

    def __init__(
        self,
        store: "LedgerStore",
        fees: FeeCalculator,
        retry_limit: int = EVENT_RETRY_LIMIT,
        retry_delay: float = RETRY_DELAY_SEC,
    ):
        self.store = store
        self.fees = fees
        self.retry_limit = retry_limit
        self.retry_delay = retry_delay

    async def replay(self, events: Iterable[Event]) -> ReplayResult:
        """Apply events in the given order. A failed event does not stop the rest."""
        result = ReplayResult()
        for event in events:
            outcome = await self.apply(event)
            if outcome == ApplyOutcome.APPLIED:
                result.applied += 1
            elif outcome == ApplyOutcome.DUPLICATE:
                result.duplicates += 1
            else:
                result.failed += 1
                result.failures.append(event.transaction_id)
        return result

    async def apply(self, event: Event) -> ApplyOutcome:
        """Apply one event atomically, retrying write conflicts a bounded number of times."""
        for attempt in range(1, self.retry_limit + 1):
            try:
                async with self.store.transaction():
                    return await self._apply_recipe(event)
            except sqlite3.OperationalError as e:
                logger.warning(
                    "Write conflict on %s (block %d, log %d), attempt %d/%d: %s",
                    type(event).__name__, event.block_number, event.log_index,
                    attempt, self.retry_limit, e,
                )
                if attempt < self.retry_limit:
                    await asyncio.sleep(self.retry_delay * attempt)
            except Exception:
                logger.exception(
                    "Failed to apply %s tx=%s (block %d, log %d)",
                    type(event).__name__, event.transaction_id,
                    event.block_number, event.log_index,
                )
                return ApplyOutcome.FAILED
        logger.error(
            "Giving up on tx=%s (block %d, log %d) after %d attempts",
            event.transaction_id, event.block_number, event.log_index, self.retry_limit,
        )
        return ApplyOutcome.FAILED

    async def _apply_recipe(self, event: Event) -> ApplyOutcome:
        if isinstance(event, Trade):
            return await self._apply_trade(event)
        if isinstance(event, TokenLaunched):
            return await self._apply_launch(event)
        if isinstance(event, TokenGraduated):
            return await self._apply_graduation(event)
        if isinstance(event, TokenDelisted):
            return await self._apply_delist(event)
        raise TypeError(f"no recipe for {type(event).__name__}")

    # ── Token lifecycle ───────────────────────────────────────────

    async def _apply_launch(self, event: TokenLaunched) -> ApplyOutcome:
        store = self.store
        created = await store.tokens.create(
            event.token, event.creator, event.name, event.symbol,
            event.block_number, event.timestamp,
        )
        if not created:
            return ApplyOutcome.DUPLICATE
        if event.referrer and event.referrer != event.creator:
            await store.users.upsert_on_first_seen(event.creator)
            await store.users.upsert_on_first_seen(event.referrer)
            await store.referrals.record(event.referrer, event.creator, event.timestamp)
        logger.info("Token launched: %s (%s) by %s", event.symbol, event.token, event.creator)
        return ApplyOutcome.APPLIED

    async def _apply_graduation(self, event: TokenGraduated) -> ApplyOutcome:
        treasury_fee = event.treasury_fee
        if treasury_fee is None:
            treasury_fee = self.fees.compute_graduation_fee(event.liquidity_amount)
        graduated = await self.store.tokens.mark_graduated(
            event.token, event.liquidity_amount, treasury_fee, event.timestamp,
        )
        if not graduated:
            return ApplyOutcome.DUPLICATE
        logger.info("Token graduated: %s (liquidity %d)", event.token, event.liquidity_amount)
        return ApplyOutcome.APPLIED

    async def _apply_delist(self, event: TokenDelisted) -> ApplyOutcome:
        if not await self.store.tokens.mark_delisted(event.token, event.reason):
            return ApplyOutcome.DUPLICATE
        logger.info("Token delisted: %s %s", event.token, event.reason)
        return ApplyOutcome.APPLIED

    # ── Trades ────────────────────────────────────────────────────

    async def _resolve_referrer(self, event: Trade):
        store = self.store
        if event.referrer and event.referrer != event.trader:
            await store.users.upsert_on_first_seen(event.referrer)
            await store.referrals.record(event.referrer, event.trader, event.timestamp)
            return event.referrer
        return await store.users.get_referrer(event.trader)

    async def _apply_trade(self, event: Trade) -> ApplyOutcome:
        store = self.store
        if await store.swaps.exists(event.transaction_id):
            logger.debug("Duplicate tx %s skipped", event.transaction_id)
            return ApplyOutcome.DUPLICATE

        side = event.side.value
        split = self.fees.compute_trade_fees(event.currency_amount, event.side)

        await store.users.upsert_on_first_seen(event.trader)
        referrer = await self._resolve_referrer(event)
        treasury_share = split.treasury_share
        referral_fee = 0
        if referrer:
            referral_fee = self.fees.compute_referral_fee(treasury_share, event.side)
            treasury_share -= referral_fee
            await store.users.apply_referral_earning(referrer, referral_fee)

        await store.swaps.insert(
            event.transaction_id, event.block_number, event.log_index, event.timestamp,
            event.token, event.trader, side, event.amount_in, event.amount_out,
            split.total, split.user_share, treasury_share, referrer, referral_fee,
        )
        await store.users.apply_trade_delta(
            event.trader, side, split.total, split.user_share, event.timestamp,
        )
        date = pool_date(event.timestamp)
        if not await store.pools.apply_contribution(date, split.user_share, treasury_share):
            logger.warning(
                "Pool %s already distributed; tx %s not credited to it",
                date, event.transaction_id,
            )
        await store.positions.apply_delta(
            event.trader, event.token, side, event.amount_in, event.amount_out,
        )
        return ApplyOutcome.APPLIED
