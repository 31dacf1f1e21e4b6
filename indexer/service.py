"""Indexer service - sequential block-range ingestion with a persisted cursor."""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from indexer.config import IndexerSettings
from indexer.errors import ProviderError, RangeFailedError
from indexer.fees import FeeCalculator
from indexer.ingestor import ChainProvider, EventIngestor
from indexer.replay import ReplayEngine, ReplayResult

if TYPE_CHECKING:
    from indexer.storage import LedgerStore

logger = logging.getLogger("indexer")

MAX_BACKOFF_SEC = 300.0


@dataclass
class IndexerStats:
    ranges_processed: int = 0
    events_applied: int = 0
    duplicates_skipped: int = 0
    decode_failures: int = 0
    failed_events: int = 0
    failed_ranges: int = 0
    provider_errors: int = 0
    last_block: int | None = None

    def as_dict(self) -> dict:
        return asdict(self)


class IndexerService:
    """Catches the ledger up to the confirmed chain head, one range at a time.

    Ranges are never processed concurrently. The cursor is written only
    after a range has been fully applied, so a crash replays at most one
    range (harmless thanks to the per-transaction dedup in ReplayEngine).
    """

    def __init__(
        self,
        store: "LedgerStore",
        provider: ChainProvider,
        fees: FeeCalculator,
        settings: IndexerSettings | None = None,
    ):
        self.store = store
        self.provider = provider
        self.settings = settings or IndexerSettings()
        self.ingestor = EventIngestor(provider, store, self.settings.factory_address)
        self.replay = ReplayEngine(store, fees, retry_limit=self.settings.event_retry_limit)
        self.stats = IndexerStats()
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._backoff = self.settings.poll_interval_sec

    async def start(self):
        """Start the background ingestion loop."""
        self._stop.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Indexer started (factory %s, batch %d, poll %.1fs)",
            self.settings.factory_address, self.settings.batch_size,
            self.settings.poll_interval_sec,
        )

    async def stop(self):
        """Ask the loop to exit after the current range and wait for it."""
        self._stop.set()
        if self._task:
            await self._task
            self._task = None
            logger.info("Indexer stopped at block %s", self.stats.last_block)

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def last_processed_block(self) -> int:
        block = await self.store.cursor.get(self.settings.cursor_key)
        if block is None:
            return self.settings.start_block - 1
        return block

    async def process_range(self, from_block: int, to_block: int) -> ReplayResult:
        batch = await self.ingestor.fetch_range(from_block, to_block)
        self.stats.decode_failures += batch.decode_failures
        through = await self.provider.get_block_timestamp(to_block)

        result = await self.replay.replay(batch.events)
        self.stats.events_applied += result.applied
        self.stats.duplicates_skipped += result.duplicates
        self.stats.failed_events += result.failed
        if not result.ok:
            self.stats.failed_ranges += 1
            raise RangeFailedError(from_block, to_block, result.failed)

        async with self.store.transaction():
            await self.store.cursor.set(self.settings.cursor_key, to_block, through)
        self.stats.ranges_processed += 1
        self.stats.last_block = to_block
        logger.info(
            "Blocks %d-%d: %d applied, %d duplicate, %d undecodable",
            from_block, to_block, result.applied, result.duplicates, batch.decode_failures,
        )
        return result

    async def tick(self) -> int:
        """Process every ready range up to head - confirmations. Returns ranges processed."""
        head = await self.provider.get_block_number()
        safe_head = head - self.settings.confirmations
        start = await self.last_processed_block() + 1
        processed = 0
        while start <= safe_head and not self._stop.is_set():
            end = min(start + self.settings.batch_size - 1, safe_head)
            await self.process_range(start, end)
            processed += 1
            start = end + 1
        return processed

    async def _wait(self, delay: float):
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _run(self):
        while not self._stop.is_set():
            try:
                await self.tick()
                self._backoff = self.settings.poll_interval_sec
                delay = self.settings.poll_interval_sec
            except ProviderError as e:
                self.stats.provider_errors += 1
                logger.warning("Provider error, retrying in %.1fs: %s", self._backoff, e)
                delay = self._backoff
                self._backoff = min(self._backoff * 2, MAX_BACKOFF_SEC)
            except RangeFailedError as e:
                logger.error("%s; cursor held at %s", e, await self.last_processed_block())
                delay = self.settings.poll_interval_sec
            except Exception:
                logger.exception("Indexer cycle failed")
                delay = self.settings.poll_interval_sec
            await self._wait(delay)
