"""
ingestor.py - Pulls one block range of raw events and decodes it.

Factory events are fetched first so tokens launched inside the range are
polled for trades in the same pass. Per-token trade logs are fetched
concurrently; the merged result is ordered by (block number, log index)
before decoding. A record that fails to decode is logged, counted and
skipped.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Protocol, Set

from indexer.errors import EventDecodeError
from indexer.models import FACTORY_EVENTS, TOKEN_EVENTS, Event, RawEvent, decode_event

if TYPE_CHECKING:
    from indexer.storage import LedgerStore

logger = logging.getLogger("ingest")


class ChainProvider(Protocol):
    async def get_logs(
        self, contract_address: str, event_signature: str, from_block: int, to_block: int
    ) -> List[RawEvent]: ...

    async def get_block_number(self) -> int: ...

    async def get_block_timestamp(self, block_number: int) -> int: ...


@dataclass
class IngestBatch:
    from_block: int
    to_block: int
    events: List[Event] = field(default_factory=list)
    raw_count: int = 0
    decode_failures: int = 0


class EventIngestor:
    def __init__(self, provider: ChainProvider, store: "LedgerStore", factory_address: str):
        self.provider = provider
        self.store = store
        self.factory_address = factory_address.lower()

    async def _fetch_many(self, targets, from_block: int, to_block: int) -> List[RawEvent]:
        results = await asyncio.gather(*(
            self.provider.get_logs(address, signature, from_block, to_block)
            for address, signature in targets
        ))
        merged: List[RawEvent] = []
        for logs in results:
            merged.extend(logs)
        return merged

    async def _tokens_to_poll(self, factory_logs: List[RawEvent]) -> Set[str]:
        tokens = set(await self.store.tokens.list_active())
        for raw in factory_logs:
            if raw.event == "TokenCreated" and isinstance(raw.args.get("token"), str):
                tokens.add(raw.args["token"].lower())
        return tokens

    async def fetch_raw(self, from_block: int, to_block: int) -> List[RawEvent]:
        """All raw records in [from_block, to_block], ordered by chain position."""
        factory_logs = await self._fetch_many(
            [(self.factory_address, sig) for sig in FACTORY_EVENTS.values()],
            from_block, to_block,
        )
        tokens = await self._tokens_to_poll(factory_logs)
        trade_logs = await self._fetch_many(
            [(token, sig) for token in sorted(tokens) for sig in TOKEN_EVENTS.values()],
            from_block, to_block,
        )
        return sorted(factory_logs + trade_logs, key=lambda r: r.position)

    async def fetch_range(self, from_block: int, to_block: int) -> IngestBatch:
        raws = await self.fetch_raw(from_block, to_block)
        batch = IngestBatch(from_block=from_block, to_block=to_block, raw_count=len(raws))
        for raw in raws:
            try:
                batch.events.append(decode_event(raw))
            except EventDecodeError as e:
                batch.decode_failures += 1
                logger.warning(
                    "Skipping undecodable event at block %d log %d tx=%s: %s",
                    e.block_number, e.log_index, e.transaction_id or "?", e,
                )
        logger.debug(
            "Fetched blocks %d-%d: %d raw, %d decoded, %d skipped",
            from_block, to_block, batch.raw_count, len(batch.events), batch.decode_failures,
        )
        return batch
