"""Unit tests for IndexerService: batching, confirmations, cursor handling, stop/backoff."""

import asyncio

import pytest

from indexer.config import IndexerSettings
from indexer.errors import ProviderError, RangeFailedError
from indexer.service import IndexerService

from sample_data import ALICE, BOB, UNIT

pytestmark = pytest.mark.asyncio


def _service(store, chain, fees, **overrides):
    settings = IndexerSettings(**{
        "factory_address": chain.factory_address,
        "batch_size": 3,
        "confirmations": 0,
        "poll_interval_sec": 0.01,
        **overrides,
    })
    return IndexerService(store, chain, fees, settings)


class TestTick:

    async def test_catches_up_in_batches(self, store, chain, fees):
        token = chain.launch_token(ALICE)
        for _ in range(6):
            chain.buy(token, BOB, UNIT)
        service = _service(store, chain, fees)

        assert await service.tick() == 3  # blocks 0-2, 3-5, 6-7
        assert await service.last_processed_block() == chain.head
        assert service.stats.events_applied == 7
        assert (await store.users.get(BOB))["swap_count"] == 6

    async def test_nothing_new_is_a_no_op(self, store, chain, fees):
        chain.launch_token(ALICE)
        service = _service(store, chain, fees)
        await service.tick()
        assert await service.tick() == 0

    async def test_confirmations_hold_back_head(self, store, chain, fees):
        token = chain.launch_token(ALICE)
        chain.buy(token, BOB, UNIT)
        chain.buy(token, BOB, UNIT)
        service = _service(store, chain, fees, confirmations=2, batch_size=100)
        await service.tick()
        assert await service.last_processed_block() == chain.head - 2
        assert await store.users.get(BOB) is None

    async def test_records_timestamp_of_last_processed_block(self, store, chain, fees):
        token = chain.launch_token(ALICE)
        chain.buy(token, BOB, UNIT)
        chain.advance_time(3600)
        service = _service(store, chain, fees, confirmations=1, batch_size=100)
        assert await store.cursor.ingested_through(service.settings.cursor_key) is None

        await service.tick()
        through = await store.cursor.ingested_through(service.settings.cursor_key)
        assert through == await chain.get_block_timestamp(chain.head - 1)
        assert through < chain.head_timestamp

    async def test_start_block_honoured(self, store, chain, fees):
        chain.mine(10)
        service = _service(store, chain, fees, start_block=8)
        assert await service.last_processed_block() == 7
        await service.tick()
        assert await service.last_processed_block() == 10

    async def test_resume_from_cursor(self, store, chain, fees):
        token = chain.launch_token(ALICE)
        chain.buy(token, BOB, UNIT)
        await _service(store, chain, fees).tick()

        chain.buy(token, BOB, UNIT)
        restarted = _service(store, chain, fees)
        await restarted.tick()
        assert restarted.stats.duplicates_skipped == 0
        assert (await store.users.get(BOB))["swap_count"] == 2


class TestFailures:

    async def test_failed_event_holds_cursor(self, store, chain, fees, monkeypatch):
        token = chain.launch_token(ALICE)
        chain.buy(token, BOB, UNIT)
        service = _service(store, chain, fees, batch_size=100)
        service.replay.retry_delay = 0
        original = store.positions.apply_delta

        async def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store.positions, "apply_delta", broken)
        with pytest.raises(RangeFailedError) as exc:
            await service.tick()
        assert exc.value.failed_events == 1
        assert await store.cursor.get(service.settings.cursor_key) is None
        assert service.stats.failed_ranges == 1

        # Once the fault clears, the same range is replayed and the launch dedups
        monkeypatch.setattr(store.positions, "apply_delta", original)
        await service.tick()
        assert await service.last_processed_block() == chain.head
        assert (await store.users.get(BOB))["swap_count"] == 1
        assert service.stats.duplicates_skipped == 1

    async def test_provider_error_leaves_cursor(self, store, chain, fees):
        chain.launch_token(ALICE)
        chain.fail_next_get_logs = 1
        service = _service(store, chain, fees)
        with pytest.raises(ProviderError):
            await service.tick()
        assert await store.cursor.get(service.settings.cursor_key) is None


class TestLoop:

    async def test_loop_recovers_from_provider_outage(self, store, chain, fees):
        token = chain.launch_token(ALICE)
        chain.buy(token, BOB, UNIT)
        chain.fail_next_get_logs = 2
        service = _service(store, chain, fees)

        await service.start()
        for _ in range(100):
            if service.stats.last_block == chain.head:
                break
            await asyncio.sleep(0.01)
        await service.stop()

        assert service.stats.provider_errors >= 1
        assert service.stats.last_block == chain.head
        assert (await store.users.get(BOB))["swap_count"] == 1

    async def test_stop_is_prompt(self, store, chain, fees):
        service = _service(store, chain, fees, poll_interval_sec=60)
        await service.start()
        await asyncio.sleep(0)
        await asyncio.wait_for(service.stop(), timeout=2)
        assert service.stopping
