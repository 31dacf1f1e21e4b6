"""
server.py - Indexer entry point.

Single process combining:
 - SQLite ledger via LedgerStore
 - Ingestion loop (IndexerService) against an HTTP provider or an
   embedded chain simulator
 - Daily distribution scheduler paying out through the payment sender

Usage:
    python -m indexer run [--db-path data/indexer.db] [--rpc-url http://localhost:8545]
    python -m indexer run --demo
    python -m indexer preview [--date 2025-01-01]
    python -m indexer distribute [--date 2025-01-01 [--force]]
    python -m indexer simulate [--port 8545] [--demo]
    python -m indexer status
"""

import argparse
import asyncio
import json
import logging
import os
import signal
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from indexer import chain_simulator
from indexer.config import AppConfig, IndexerSettings
from indexer.distribution import (
    DistributionExecutor,
    DistributionPlanner,
    DistributionScheduler,
    PaymentSender,
    closed_pools,
)
from indexer.fees import FeeCalculator
from indexer.ingestor import ChainProvider
from indexer.queries import QueryFacade
from indexer.rpc import HttpChainProvider, HttpPaymentSender
from indexer.service import IndexerService
from indexer.storage import LedgerStore

logger = logging.getLogger("indexer")


def _configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )


def yesterday_utc() -> str:
    return (datetime.now(timezone.utc) - timedelta(days=1)).strftime("%Y-%m-%d")


def today_utc() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class IndexerApp:
    """Wires storage, collaborators and services together."""

    def __init__(
        self,
        config: AppConfig,
        provider: Optional[ChainProvider] = None,
        sender: Optional[PaymentSender] = None,
    ):
        self.config = config
        self.provider = provider
        self.sender = sender
        self._http_clients = []
        self.store: Optional[LedgerStore] = None
        self.fees = FeeCalculator(config.fees)
        self.indexer: Optional[IndexerService] = None
        self.planner: Optional[DistributionPlanner] = None
        self.executor: Optional[DistributionExecutor] = None
        self.scheduler: Optional[DistributionScheduler] = None
        self.queries: Optional[QueryFacade] = None

    async def init(self):
        if self.config.db_path != ":memory:":
            os.makedirs(os.path.dirname(self.config.db_path) or ".", exist_ok=True)
        self.store = LedgerStore(self.config.db_path)
        await self.store.initialize()

        if self.provider is None:
            self.provider = HttpChainProvider(self.config.rpc_url)
            self._http_clients.append(self.provider)
        if self.sender is None:
            self.sender = HttpPaymentSender(self.config.rpc_url)
            self._http_clients.append(self.sender)

        self.indexer = IndexerService(self.store, self.provider, self.fees, self.config.indexer)
        self.planner = DistributionPlanner(self.store, self.config.distribution)
        self.executor = DistributionExecutor(self.store, self.planner, self.sender)
        self.scheduler = DistributionScheduler(
            self.executor, self.config.distribution, cursor_key=self.config.indexer.cursor_key,
        )
        self.queries = QueryFacade(self.store, self.fees)

    async def close(self):
        for client in self._http_clients:
            await client.close()
        self._http_clients = []
        if self.store:
            await self.store.close()

    async def run_forever(self):
        """Run ingestion and scheduled distribution until SIGINT/SIGTERM."""
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass  # Windows: rely on KeyboardInterrupt

        await self.indexer.start()
        await self.scheduler.start()
        try:
            await stop.wait()
        finally:
            logger.info("Shutting down...")
            await self.scheduler.stop()
            await self.indexer.stop()
            logger.info("Final stats: %s", self.indexer.stats.as_dict())

    async def status(self) -> dict:
        store = self.store
        key = self.config.indexer.cursor_key
        async with store.read():
            status = {
                "db_path": self.config.db_path,
                "last_processed_block": await store.cursor.get(key),
                "ingested_through": await store.cursor.ingested_through(key),
                "users": await store.users.count(),
                "tokens": await store.tokens.count(),
                "active_tokens": len(await store.tokens.list_active()),
                "swaps": await store.swaps.count(),
                "referrals": await store.referrals.count(),
                "open_pools": [p["date"] for p in await store.pools.list_undistributed()],
                "payouts": await store.distributions.count_by_outcome(),
            }
        status["today_pool"] = await self.queries.today_pool()
        status["fees"] = self.fees.describe()
        return status


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _load_config(args: argparse.Namespace) -> AppConfig:
    config = AppConfig.from_env()
    if getattr(args, "db_path", None):
        config.db_path = args.db_path
    if getattr(args, "rpc_url", None):
        config.rpc_url = args.rpc_url
    overrides = {}
    for arg, key in [
        ("factory", "factory_address"),
        ("start_block", "start_block"),
        ("batch_size", "batch_size"),
        ("poll_interval", "poll_interval_sec"),
        ("confirmations", "confirmations"),
    ]:
        value = getattr(args, arg, None)
        if value is not None:
            overrides[key] = value
    if overrides:
        config.indexer = IndexerSettings(**{**config.indexer.model_dump(), **overrides})
    return config


async def _cmd_run(args, config: AppConfig):
    provider = sender = None
    if args.demo:
        chain = chain_simulator.ChainSimulator(
            factory_address=config.indexer.factory_address or chain_simulator.DEFAULT_FACTORY,
        )
        chain_simulator.seed_demo(chain)
        chain.mine(config.indexer.confirmations)
        config.indexer = IndexerSettings(
            **{**config.indexer.model_dump(), "factory_address": chain.factory_address}
        )
        provider = sender = chain
    app = IndexerApp(config, provider, sender)
    await app.init()
    try:
        await app.run_forever()
    finally:
        await app.close()


async def _cmd_preview(args, config: AppConfig):
    app = IndexerApp(config)
    await app.init()
    try:
        plan = await app.executor.preview(args.date or yesterday_utc())
        _print_json(plan.as_dict())
    finally:
        await app.close()


async def _cmd_distribute(args, config: AppConfig):
    app = IndexerApp(config)
    await app.init()
    try:
        dates = await closed_pools(app.store, today_utc(), config.indexer.cursor_key)
        if args.date:
            if args.date in dates or args.force:
                dates = [args.date]
            else:
                logger.warning(
                    "Pool %s is not open or its day is not fully ingested; use --force to pay it anyway",
                    args.date,
                )
                dates = []
        if not dates:
            logger.info("No pools awaiting distribution")
        for date in dates:
            summary = await app.executor.execute(date)
            _print_json(asdict(summary))
    finally:
        await app.close()


async def _cmd_status(args, config: AppConfig):
    app = IndexerApp(config)
    await app.init()
    try:
        _print_json(await app.status())
    finally:
        await app.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="indexer", description="Launchpad event indexer")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p):
        p.add_argument("--db-path", help="SQLite database path (default: data/indexer.db)")
        p.add_argument("--rpc-url", help="Chain RPC base URL (default: http://localhost:8545)")

    run = sub.add_parser("run", help="Ingest events and run scheduled distributions")
    add_common(run)
    run.add_argument("--factory", help="Factory contract address")
    run.add_argument("--start-block", type=int, help="First block to index when no cursor exists")
    run.add_argument("--batch-size", type=int, help="Blocks per range (default: 1000)")
    run.add_argument("--poll-interval", type=float, help="Seconds between head polls (default: 10)")
    run.add_argument("--confirmations", type=int, help="Blocks to stay behind head (default: 2)")
    run.add_argument("--demo", action="store_true", help="Use an embedded, pre-seeded chain simulator")

    preview = sub.add_parser("preview", help="Show the payout plan for a pool without paying")
    add_common(preview)
    preview.add_argument("--date", help="Pool date YYYY-MM-DD (default: yesterday UTC)")

    distribute = sub.add_parser("distribute", help="Pay out a pool (default: every closed open pool)")
    add_common(distribute)
    distribute.add_argument("--date", help="Pool date YYYY-MM-DD")
    distribute.add_argument(
        "--force", action="store_true", help="Pay --date even if ingestion has not passed that day",
    )

    status = sub.add_parser("status", help="Print ledger and cursor status")
    add_common(status)

    simulate = sub.add_parser("simulate", help="Run the standalone chain simulator")
    chain_simulator.build_parser(simulate)
    return parser


COMMANDS = {
    "run": _cmd_run,
    "preview": _cmd_preview,
    "distribute": _cmd_distribute,
    "status": _cmd_status,
}


def main(argv=None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "simulate":
        chain_simulator.serve(args)
        return

    config = _load_config(args)
    logger.info("=" * 60)
    logger.info("  Launchpad Indexer (%s)", args.command)
    logger.info("  Database: %s", config.db_path)
    logger.info("  RPC:      %s", config.rpc_url)
    logger.info("=" * 60)
    try:
        asyncio.run(COMMANDS[args.command](args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
