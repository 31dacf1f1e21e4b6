"""
test_replay.py - Unit tests for ReplayEngine.

Covers the per-event mutation recipes, referrer resolution, dedup on
transaction id, atomicity of a failed event, bounded retries on write
conflicts, and determinism of a full replay.
"""

import sqlite3

import pytest

from indexer.fees import TradeSide
from indexer.models import TokenDelisted, TokenGraduated, TokenLaunched
from indexer.replay import ApplyOutcome, ReplayEngine, pool_date
from indexer.storage import LedgerStore

from sample_data import ALICE, BOB, CAROL, DAY, T0, TOKEN, UNIT

pytestmark = pytest.mark.asyncio


def _launch(token=TOKEN, creator=ALICE, referrer=None, block=1):
    return TokenLaunched(
        block_number=block, log_index=0, transaction_id=f"0xlaunch{block}",
        timestamp=T0, token=token, creator=creator, name="Pepe", symbol="PEPE",
        referrer=referrer,
    )


# ── Trades ────────────────────────────────────────────────────────────────

class TestTradeRecipe:

    async def test_buy_without_referrer(self, store, engine, make_trade):
        outcome = await engine.apply(make_trade(amount_in=1000 * UNIT))
        assert outcome == ApplyOutcome.APPLIED

        user = await store.users.get(ALICE)
        assert user["total_fees_paid"] == 10 * UNIT
        assert user["user_pool_contribution"] == 5 * UNIT
        assert user["swap_count"] == 1

        pool = await store.pools.get("2025-01-01")
        assert pool["total_user_fees"] == 5 * UNIT
        assert pool["total_treasury_fees"] == 5 * UNIT

        pos = await store.positions.get(ALICE, TOKEN)
        assert pos["cost_basis"] == 1000 * UNIT
        assert pos["total_bought"] == 1_000_000 * UNIT

    async def test_buy_with_recorded_referrer(self, store, engine, make_trade):
        async with store.transaction():
            await store.users.upsert_on_first_seen(ALICE)
            await store.users.upsert_on_first_seen(BOB)
            await store.referrals.record(BOB, ALICE, T0)

        await engine.apply(make_trade(amount_in=1000 * UNIT))

        assert (await store.users.get(BOB))["referral_earnings"] == 5 * UNIT
        pool = await store.pools.get("2025-01-01")
        assert pool["total_user_fees"] == 5 * UNIT
        assert pool["total_treasury_fees"] == 0
        swap = (await store.swaps.list_all())[0]
        assert swap["referrer_address"] == BOB
        assert swap["referral_fee"] == 5 * UNIT

    async def test_event_referrer_recorded_and_credited(self, store, engine, make_trade):
        await engine.apply(make_trade(referrer=BOB))
        assert (await store.users.get(ALICE))["referred_by"] == BOB
        assert (await store.users.get(BOB))["referral_count"] == 1
        assert (await store.users.get(BOB))["referral_earnings"] == 5 * UNIT

    async def test_event_referrer_takes_precedence(self, store, engine, make_trade):
        await engine.apply(make_trade(referrer=BOB))
        await engine.apply(make_trade(referrer=CAROL))
        # CAROL is credited for the trade she referred, but ALICE stays BOB's
        assert (await store.users.get(ALICE))["referred_by"] == BOB
        assert (await store.users.get(CAROL))["referral_earnings"] == 5 * UNIT
        assert (await store.users.get(CAROL))["referral_count"] == 0

    async def test_self_referral_ignored(self, store, engine, make_trade):
        await engine.apply(make_trade(referrer=ALICE))
        user = await store.users.get(ALICE)
        assert user["referred_by"] is None
        assert user["referral_earnings"] == 0
        assert (await store.pools.get("2025-01-01"))["total_treasury_fees"] == 5 * UNIT

    async def test_sell_uses_currency_received(self, store, engine, make_trade):
        await engine.apply(make_trade(
            side=TradeSide.SELL, amount_in=1_000_000 * UNIT, amount_out=1000 * UNIT,
        ))
        user = await store.users.get(ALICE)
        assert user["total_sells"] == 11 * UNIT
        assert user["total_buys"] == 0
        pos = await store.positions.get(ALICE, TOKEN)
        assert pos["total_sold"] == 1_000_000 * UNIT
        assert pos["realized_pnl"] == 1000 * UNIT
        assert (await store.pools.get("2025-01-01"))["total_treasury_fees"] == 6 * UNIT

    async def test_pool_bucketed_by_event_day(self, store, engine, make_trade):
        await engine.apply(make_trade(timestamp=T0 + 100))
        await engine.apply(make_trade(timestamp=T0 + DAY + 100))
        assert (await store.pools.get("2025-01-01"))["total_user_fees"] == 5 * UNIT
        assert (await store.pools.get("2025-01-02"))["total_user_fees"] == 5 * UNIT

    async def test_late_trade_on_distributed_pool(self, store, engine, make_trade):
        await engine.apply(make_trade())
        async with store.transaction():
            await store.pools.mark_distributed("2025-01-01")
        assert await engine.apply(make_trade()) == ApplyOutcome.APPLIED
        assert (await store.pools.get("2025-01-01"))["total_user_fees"] == 5 * UNIT
        assert (await store.users.get(ALICE))["swap_count"] == 2


# ── Dedup and failures ────────────────────────────────────────────────────

class TestIdempotence:

    async def test_same_tx_applied_once(self, store, engine, make_trade):
        trade = make_trade(tx_id="0xdup")
        assert await engine.apply(trade) == ApplyOutcome.APPLIED
        assert await engine.apply(trade) == ApplyOutcome.DUPLICATE
        assert (await store.users.get(ALICE))["swap_count"] == 1
        assert (await store.pools.get("2025-01-01"))["total_user_fees"] == 5 * UNIT

    async def test_replaying_range_adds_nothing(self, store, engine, make_trade):
        events = [make_trade(trader=t, referrer=r) for t, r in
                  [(ALICE, None), (BOB, ALICE), (CAROL, ALICE), (ALICE, None)]]
        first = await engine.replay(events)
        before = await store.snapshot()
        second = await engine.replay(events)
        assert (first.applied, first.duplicates) == (4, 0)
        assert (second.applied, second.duplicates) == (0, 4)
        assert await store.snapshot() == before

    async def test_failed_event_leaves_no_partial_writes(self, store, engine, make_trade, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("position write failed")

        monkeypatch.setattr(store.positions, "apply_delta", boom)
        result = await engine.replay([make_trade(tx_id="0xbad")])
        assert result.failed == 1
        assert not result.ok
        assert await store.users.get(ALICE) is None
        assert await store.swaps.exists("0xbad") is False
        assert await store.pools.get("2025-01-01") is None

    async def test_failure_does_not_stop_later_events(self, store, engine, make_trade, monkeypatch):
        original = store.positions.apply_delta

        async def fail_for_bob(user, *args):
            if user == BOB:
                raise RuntimeError("nope")
            return await original(user, *args)

        monkeypatch.setattr(store.positions, "apply_delta", fail_for_bob)
        result = await engine.replay([make_trade(trader=BOB), make_trade(trader=ALICE)])
        assert (result.applied, result.failed) == (1, 1)
        assert (await store.users.get(ALICE))["swap_count"] == 1

    async def test_write_conflict_retried(self, store, fees, make_trade, monkeypatch):
        engine = ReplayEngine(store, fees, retry_limit=3, retry_delay=0)
        original = store.swaps.insert
        calls = {"n": 0}

        async def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] < 3:
                raise sqlite3.OperationalError("database is locked")
            return await original(*args, **kwargs)

        monkeypatch.setattr(store.swaps, "insert", flaky)
        assert await engine.apply(make_trade()) == ApplyOutcome.APPLIED
        assert calls["n"] == 3
        assert (await store.users.get(ALICE))["swap_count"] == 1

    async def test_write_conflict_retries_exhausted(self, store, fees, make_trade, monkeypatch):
        engine = ReplayEngine(store, fees, retry_limit=2, retry_delay=0)

        async def locked(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(store.swaps, "insert", locked)
        assert await engine.apply(make_trade()) == ApplyOutcome.FAILED
        assert await store.users.get(ALICE) is None


# ── Token lifecycle ───────────────────────────────────────────────────────

class TestTokenLifecycle:

    async def test_launch_then_duplicate(self, store, engine):
        assert await engine.apply(_launch()) == ApplyOutcome.APPLIED
        assert await engine.apply(_launch()) == ApplyOutcome.DUPLICATE
        token = await store.tokens.get(TOKEN)
        assert token["creator"] == ALICE
        assert token["symbol"] == "PEPE"
        assert await store.tokens.list_active() == [TOKEN]

    async def test_launch_records_creator_referral(self, store, engine):
        await engine.apply(_launch(referrer=BOB))
        assert (await store.users.get(ALICE))["referred_by"] == BOB
        assert (await store.users.get(BOB))["referral_count"] == 1

    async def test_graduation_computes_fee_when_absent(self, store, engine):
        await engine.apply(_launch())
        ev = TokenGraduated(
            block_number=2, log_index=0, transaction_id="0xgrad", timestamp=T0 + 10,
            token=TOKEN, liquidity_amount=500 * UNIT,
        )
        assert await engine.apply(ev) == ApplyOutcome.APPLIED
        token = await store.tokens.get(TOKEN)
        assert token["graduated"] is True
        assert token["treasury_fee"] == 50 * UNIT
        assert await store.tokens.list_active() == []
        assert await engine.apply(ev) == ApplyOutcome.DUPLICATE

    async def test_delist(self, store, engine):
        await engine.apply(_launch())
        ev = TokenDelisted(
            block_number=3, log_index=0, transaction_id="0xdel", timestamp=T0 + 20,
            token=TOKEN, reason="spam",
        )
        assert await engine.apply(ev) == ApplyOutcome.APPLIED
        assert (await store.tokens.get(TOKEN))["delisted"] is True
        assert await store.tokens.list_active() == []


# ── Determinism ───────────────────────────────────────────────────────────

class TestDeterminism:

    async def test_two_clean_replays_identical(self, fees, make_trade):
        events = [_launch(referrer=CAROL)]
        for i in range(12):
            trader = (ALICE, BOB, CAROL)[i % 3]
            side = TradeSide.BUY if i % 4 else TradeSide.SELL
            events.append(make_trade(
                trader=trader, side=side, amount_in=(i + 1) * 37 * UNIT + i,
                referrer=BOB if i == 4 else None, timestamp=T0 + i * 7200,
            ))

        snapshots = []
        for _ in range(2):
            store = LedgerStore(":memory:")
            await store.initialize()
            try:
                await ReplayEngine(store, fees, retry_delay=0).replay(events)
                snapshots.append(await store.snapshot())
            finally:
                await store.close()
        assert snapshots[0] == snapshots[1]
        assert snapshots[0]["swaps"]


def test_pool_date_is_utc():
    assert pool_date(T0) == "2025-01-01"
    assert pool_date(T0 + DAY - 1) == "2025-01-01"
    assert pool_date(T0 + DAY) == "2025-01-02"
