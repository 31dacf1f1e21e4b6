"""
Shared fixtures for the indexer integration tests.

Provides:
 - A ChainSimulator served through FastAPI and reached over httpx's ASGI
   transport, so HttpChainProvider/HttpPaymentSender run their real code
   paths without opening sockets
 - An in-memory LedgerStore
"""

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from indexer.chain_simulator import DEFAULT_FACTORY, ChainSimulator
from indexer.fees import FeeCalculator
from indexer.rpc import HttpChainProvider, HttpPaymentSender
from indexer.storage import LedgerStore

from flow_data import BASE_URL


# ── Fixtures ──────────────────────────────────────────────────────────────

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
def chain():
    return ChainSimulator(factory_address=DEFAULT_FACTORY)


@pytest.fixture
def chain_app(chain):
    app = FastAPI()
    chain.register_routes(app)
    return app


@pytest_asyncio.fixture
async def http_client(chain_app):
    transport = httpx.ASGITransport(app=chain_app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as client:
        yield client


@pytest.fixture
def provider(http_client):
    return HttpChainProvider(BASE_URL, client=http_client)


@pytest.fixture
def sender(http_client):
    return HttpPaymentSender(BASE_URL, client=http_client)
