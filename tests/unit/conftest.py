"""Shared fixtures for the indexer unit tests."""

import itertools

import pytest
import pytest_asyncio

from indexer.chain_simulator import DEFAULT_FACTORY, ChainSimulator
from indexer.fees import FeeCalculator, TradeSide
from indexer.models import Trade
from indexer.replay import ReplayEngine
from indexer.storage import LedgerStore

from sample_data import ALICE, T0, TOKEN, UNIT


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def store():
    s = LedgerStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def fees():
    return FeeCalculator()


@pytest.fixture
def engine(store, fees):
    return ReplayEngine(store, fees, retry_delay=0)


@pytest.fixture
def make_trade():
    """Factory for Trade events with unique, increasing chain positions."""
    counter = itertools.count(1)

    def _make(
        trader=ALICE,
        amount_in=1000 * UNIT,
        amount_out=None,
        side=TradeSide.BUY,
        token=TOKEN,
        referrer=None,
        timestamp=T0 + 3600,
        tx_id=None,
    ):
        n = next(counter)
        if amount_out is None:
            amount_out = amount_in * 1000 if side == TradeSide.BUY else amount_in // 1000
        return Trade(
            block_number=n,
            log_index=0,
            transaction_id=tx_id or f"0xtx{n:04d}",
            timestamp=timestamp,
            side=side,
            token=token,
            trader=trader,
            amount_in=amount_in,
            amount_out=amount_out,
            referrer=referrer,
        )

    return _make


@pytest.fixture
def chain():
    return ChainSimulator(factory_address=DEFAULT_FACTORY)
