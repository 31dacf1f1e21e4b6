"""
test_indexing_flow.py - End-to-end ingestion, replay and payout.

Flow under test:
  1. Launchpad activity is produced on the chain simulator
  2. IndexerService pulls it over HTTP and folds it into the ledger
  3. Ledger totals agree with each other and with the swap log
  4. The closed day's pool is paid out over HTTP and reconciles with the
     simulator's balances
"""

from datetime import datetime, timezone

import pytest

from indexer.chain_simulator import seed_demo
from indexer.config import DistributionSettings, IndexerSettings
from indexer.distribution import DistributionExecutor, DistributionPlanner, DistributionScheduler
from indexer.queries import QueryFacade
from indexer.service import IndexerService
from indexer.storage import LedgerStore

from flow_data import CREATOR, TRADER_A, TRADER_B, TRADER_C, UNIT

pytestmark = pytest.mark.asyncio

DAY = 86_400


def _service(store, provider, fees, chain, **overrides):
    settings = IndexerSettings(**{
        "factory_address": chain.factory_address,
        "batch_size": 10,
        "confirmations": 0,
        **overrides,
    })
    return IndexerService(store, provider, fees, settings)


async def _ledger_totals(store):
    users = await store.users.list_all()
    pools = await store.pools.list_all()
    swaps = await store.swaps.list_all()
    return {
        "user_contribution": sum(u["user_pool_contribution"] for u in users),
        "fees_paid": sum(u["total_fees_paid"] for u in users),
        "referral_earnings": sum(u["referral_earnings"] for u in users),
        "swap_count": sum(u["swap_count"] for u in users),
        "pool_user_fees": sum(p["total_user_fees"] for p in pools),
        "pool_treasury_fees": sum(p["total_treasury_fees"] for p in pools),
        "swap_fees": sum(s["fee_total"] for s in swaps),
        "swap_user_fees": sum(s["user_fee"] for s in swaps),
        "swap_treasury_fees": sum(s["treasury_fee"] for s in swaps),
        "swap_referral_fees": sum(s["referral_fee"] for s in swaps),
        "swaps": len(swaps),
    }


# ── Ingestion ─────────────────────────────────────────────────────────────

class TestIngestion:

    async def test_trading_day_indexed(self, store, chain, provider, fees):
        token = chain.launch_token(CREATOR, "Pepe", "PEPE", initial_buy=10 * UNIT)
        chain.buy(token, TRADER_A, 1000 * UNIT, referrer=TRADER_C)
        chain.buy(token, TRADER_B, 500 * UNIT)
        chain.sell(token, TRADER_A, 200_000 * UNIT)

        service = _service(store, provider, fees, chain)
        await service.tick()

        assert await service.last_processed_block() == chain.head
        assert service.stats.events_applied == 5
        a = await store.users.get(TRADER_A)
        assert a["swap_count"] == 2
        assert a["referred_by"] == TRADER_C
        # buy: 10 fee / 5 user / 5 referral; sell of 200 units: 2.2 fee / 1 user / 1.2 referral
        assert a["total_fees_paid"] == 10 * UNIT + 22 * UNIT // 10
        assert (await store.users.get(TRADER_C))["referral_earnings"] == 5 * UNIT + 12 * UNIT // 10
        pos = await store.positions.get(TRADER_A, token)
        assert pos["cost_basis"] == 1000 * UNIT
        assert pos["realized_pnl"] == 200 * UNIT
        assert await store.tokens.list_active() == [token]

    async def test_totals_reconcile(self, store, chain, provider, fees):
        seed_demo(chain, traders=6, trades=40, seed=11)
        await _service(store, provider, fees, chain).tick()

        t = await _ledger_totals(store)
        assert t["swaps"] == t["swap_count"] > 0
        assert t["fees_paid"] == t["swap_fees"]
        assert t["user_contribution"] == t["pool_user_fees"] == t["swap_user_fees"]
        assert t["pool_treasury_fees"] == t["swap_treasury_fees"]
        assert t["referral_earnings"] == t["swap_referral_fees"]
        assert t["swap_user_fees"] + t["swap_treasury_fees"] + t["swap_referral_fees"] <= t["swap_fees"]

    async def test_redelivered_log_is_ignored(self, store, chain, provider, fees):
        token = chain.launch_token(CREATOR)
        raw = chain.buy(token, TRADER_A, 100 * UNIT)
        service = _service(store, provider, fees, chain)
        await service.tick()
        before = await store.snapshot()

        chain.replay_log(raw)
        await service.tick()
        assert service.stats.duplicates_skipped == 1
        assert await store.snapshot() == before
        assert await service.last_processed_block() == chain.head

    async def test_graduated_token_stops_being_polled(self, store, chain, provider, fees):
        token = chain.launch_token(CREATOR)
        chain.buy(token, TRADER_A, UNIT)
        chain.graduate(token, 500 * UNIT)
        service = _service(store, provider, fees, chain)
        await service.tick()
        assert (await store.tokens.get(token))["treasury_fee"] == 50 * UNIT

        chain.buy(token, TRADER_B, UNIT)
        await service.tick()
        assert await store.users.get(TRADER_B) is None

    async def test_http_and_in_process_replays_agree(self, store, chain, provider, fees):
        seed_demo(chain, traders=5, trades=30, seed=3)
        await _service(store, provider, fees, chain, batch_size=7).tick()

        direct = LedgerStore(":memory:")
        await direct.initialize()
        try:
            await _service(direct, chain, fees, chain, batch_size=1000).tick()
            assert await direct.snapshot() == await store.snapshot()
        finally:
            await direct.close()


# ── Payout ────────────────────────────────────────────────────────────────

class TestDistributionFlow:

    async def _trade_two_days(self, store, chain, provider, fees):
        token = chain.launch_token(CREATOR)
        chain.buy(token, TRADER_A, 600 * UNIT)
        chain.buy(token, TRADER_B, 300 * UNIT)
        chain.buy(token, TRADER_C, 100 * UNIT)
        chain.advance_time(DAY)
        chain.buy(token, TRADER_A, 50 * UNIT)
        await _service(store, provider, fees, chain).tick()

    async def test_closed_day_paid_over_http(self, store, chain, provider, sender, fees):
        await self._trade_two_days(store, chain, provider, fees)
        planner = DistributionPlanner(store, DistributionSettings(min_payout=1))
        executor = DistributionExecutor(store, planner, sender)

        plan = await executor.preview("2025-01-01")
        assert plan.pool_amount == 5 * UNIT
        summary = await executor.execute("2025-01-01")
        assert summary.status == "completed"
        assert summary.succeeded == 3

        for address in (TRADER_A, TRADER_B, TRADER_C):
            user = await store.users.get(address)
            assert chain.get_balance(address) == user["total_airdrops_received"] > 0
        assert sum(p["amount"] for p in chain.payments) == plan.total <= plan.pool_amount
        assert (await store.pools.get("2025-01-01"))["distributed"] is True
        assert (await store.pools.get("2025-01-02"))["distributed"] is False

    async def test_failed_recipient_needs_reconciliation(self, store, chain, provider, sender, fees):
        await self._trade_two_days(store, chain, provider, fees)
        chain.failing_recipients.add(TRADER_B)
        executor = DistributionExecutor(
            store, DistributionPlanner(store, DistributionSettings(min_payout=1)), sender,
        )
        await executor.execute("2025-01-01")
        await executor.execute("2025-01-01")

        assert chain.get_balance(TRADER_B) == 0
        assert (await store.users.get(TRADER_B))["total_airdrops_received"] == 0
        pending = await QueryFacade(store).unreconciled_payouts()
        assert [(r["recipient_address"], r["outcome"]) for r in pending] == [(TRADER_B, "failed")]
        assert len(chain.payments) == 2

    async def test_scheduler_pays_yesterday(self, store, chain, provider, sender, fees):
        await self._trade_two_days(store, chain, provider, fees)
        settings = DistributionSettings(min_payout=1, airdrop_hour=0)
        executor = DistributionExecutor(store, DistributionPlanner(store, settings), sender)
        scheduler = DistributionScheduler(
            executor, settings, clock=lambda: datetime(2025, 1, 2, 0, 5, tzinfo=timezone.utc),
        )
        [summary] = await scheduler.run_due()
        assert summary.pool_date == "2025-01-01"
        assert await scheduler.run_due() == []
        assert len(chain.payments) == 3

    async def test_scheduler_waits_for_late_trades_of_the_day(
        self, store, chain, provider, sender, fees,
    ):
        token = chain.launch_token(CREATOR)
        chain.buy(token, TRADER_A, 100 * UNIT)
        chain.buy(token, TRADER_B, 100 * UNIT)
        chain.advance_time(DAY)
        # Two confirmations hold back TRADER_B's buy and the first block of day two.
        service = _service(store, provider, fees, chain, confirmations=2)
        await service.tick()
        assert await store.users.get(TRADER_B) is None

        settings = DistributionSettings(min_payout=1, airdrop_hour=0)
        executor = DistributionExecutor(store, DistributionPlanner(store, settings), sender)
        scheduler = DistributionScheduler(
            executor, settings, clock=lambda: datetime(2025, 1, 2, 0, 0, 5, tzinfo=timezone.utc),
        )
        assert await scheduler.run_due() == []
        assert (await store.pools.get("2025-01-01"))["distributed"] is False

        chain.mine(2)
        await service.tick()
        [summary] = await scheduler.run_due()
        assert summary.succeeded == 2

        pool = await store.pools.get("2025-01-01")
        assert pool["total_user_fees"] == UNIT
        assert pool["total_user_fees"] == sum(
            u["user_pool_contribution"] for u in await store.users.list_all()
        )
        assert chain.get_balance(TRADER_A) == chain.get_balance(TRADER_B) == UNIT // 2
