"""
chain_simulator.py - In-memory launchpad chain for offline runs and tests.

Implements both collaborators the indexer consumes:
 - provider:        get_logs(contract, signature, from_block, to_block), get_block_number(),
                    get_block_timestamp(block)
 - payment sender:  send(recipient, amount) -> payment reference

and exposes them over HTTP:
 - GET  /chain/head                -> current block height
 - GET  /chain/blocks/{n}          -> timestamp of block n
 - GET  /chain/logs                -> logs for one contract/event in a block range
 - POST /chain/send                -> transfer payout currency, returns a reference
 - GET  /chain/balance/{address}   -> payout-currency balance received
 - GET  /chain/stats               -> counters

All amounts cross the wire as decimal strings.

Usage (standalone):
    python -m indexer simulate --port 8545 --demo

Usage (embedded):
    from indexer.chain_simulator import ChainSimulator
    chain = ChainSimulator(factory_address=FACTORY)
    chain.register_routes(fastapi_app)
"""

import argparse
import hashlib
import logging
import random
from typing import Dict, List, Optional, Set

from indexer.config import WEI_PER_UNIT
from indexer.errors import PaymentError, ProviderError
from indexer.models import SIGNATURE_TO_NAME, PaymentRequest, RawEvent

logger = logging.getLogger("chain")

DEFAULT_FACTORY = "0x" + "fa" * 20
GENESIS_TIMESTAMP = 1_735_689_600  # 2025-01-01T00:00:00Z
BLOCK_TIME_SEC = 10
TOKENS_PER_UNIT = 1000  # mock bonding-curve price


def _derive_address(label: str) -> str:
    return "0x" + hashlib.sha256(label.encode()).hexdigest()[:40]


def raw_event_to_dict(raw: RawEvent) -> dict:
    return {
        "block_number": raw.block_number,
        "log_index": raw.log_index,
        "transaction_id": raw.transaction_id,
        "address": raw.address,
        "event": raw.event,
        "timestamp": raw.timestamp,
        "args": {k: str(v) if isinstance(v, int) else v for k, v in raw.args.items()},
    }


class ChainSimulator:
    """Append-only mock chain: blocks, logs and a payout ledger."""

    def __init__(
        self,
        factory_address: str = DEFAULT_FACTORY,
        genesis_timestamp: int = GENESIS_TIMESTAMP,
        block_time_sec: int = BLOCK_TIME_SEC,
    ):
        self.factory_address = factory_address.lower()
        self._block_time = block_time_sec
        self._head = 0
        self._timestamps: Dict[int, int] = {0: genesis_timestamp}
        self._log_counts: Dict[int, int] = {}
        self._logs: List[RawEvent] = []
        self._next_tx = 1
        self._next_token = 1
        self._balances: Dict[str, int] = {}
        self._payments: List[dict] = []

        # Failure injection
        self.fail_next_get_logs = 0
        self.fail_next_sends = 0
        self.failing_recipients: Set[str] = set()

        logger.info("Chain simulator initialized (factory=%s)", self.factory_address)

    # -------------------------------------------------------------------
    # Block production
    # -------------------------------------------------------------------

    @property
    def head(self) -> int:
        return self._head

    @property
    def head_timestamp(self) -> int:
        return self._timestamps[self._head]

    def mine(self, count: int = 1, gap_sec: Optional[int] = None) -> int:
        """Append ``count`` empty blocks. ``gap_sec`` overrides the spacing of the first one."""
        for i in range(count):
            step = gap_sec if (gap_sec is not None and i == 0) else self._block_time
            self._timestamps[self._head + 1] = self._timestamps[self._head] + step
            self._head += 1
        return self._head

    def advance_time(self, seconds: int) -> int:
        """Mine one block ``seconds`` after the current head (e.g. to cross a UTC day)."""
        return self.mine(1, gap_sec=seconds)

    def emit(
        self,
        address: str,
        event: str,
        args: dict,
        tx_id: Optional[str] = None,
        new_block: bool = True,
    ) -> RawEvent:
        """Append one log, by default in a freshly mined block."""
        if new_block or self._head == 0:
            self.mine()
        block = self._head
        log_index = self._log_counts.get(block, 0)
        self._log_counts[block] = log_index + 1
        if tx_id is None:
            tx_id = "0x" + hashlib.sha256(f"tx:{self._next_tx}".encode()).hexdigest()
            self._next_tx += 1
        raw = RawEvent(
            block_number=block,
            log_index=log_index,
            transaction_id=tx_id,
            address=address.lower(),
            event=event,
            args=dict(args),
            timestamp=self._timestamps[block],
        )
        self._logs.append(raw)
        return raw

    def replay_log(self, raw: RawEvent) -> RawEvent:
        """Re-emit an existing log verbatim (same tx id) in a new block."""
        return self.emit(raw.address, raw.event, raw.args, tx_id=raw.transaction_id)

    # -------------------------------------------------------------------
    # Launchpad helpers
    # -------------------------------------------------------------------

    def launch_token(
        self,
        creator: str,
        name: str = "Meme",
        symbol: str = "MEME",
        referrer: Optional[str] = None,
        initial_buy: int = 0,
    ) -> str:
        token = _derive_address(f"token:{self._next_token}")
        self._next_token += 1
        self.emit(self.factory_address, "TokenCreated", {
            "token": token,
            "creator": creator.lower(),
            "name": name,
            "symbol": symbol,
            "referrer": (referrer or "0x" + "0" * 40).lower(),
        })
        if initial_buy:
            self.emit(self.factory_address, "InitialBuy", {
                "token": token,
                "buyer": creator.lower(),
                "plsSpent": initial_buy,
                "tokensReceived": initial_buy * TOKENS_PER_UNIT,
            }, new_block=False)
        return token

    def buy(
        self,
        token: str,
        buyer: str,
        pls_spent: int,
        tokens_bought: Optional[int] = None,
        referrer: Optional[str] = None,
        tx_id: Optional[str] = None,
        new_block: bool = True,
    ) -> RawEvent:
        return self.emit(token, "TokenBought", {
            "buyer": buyer.lower(),
            "plsSpent": pls_spent,
            "tokensBought": pls_spent * TOKENS_PER_UNIT if tokens_bought is None else tokens_bought,
            "referrer": (referrer or "0x" + "0" * 40).lower(),
        }, tx_id=tx_id, new_block=new_block)

    def sell(
        self,
        token: str,
        seller: str,
        tokens_sold: int,
        pls_received: Optional[int] = None,
        tx_id: Optional[str] = None,
        new_block: bool = True,
    ) -> RawEvent:
        return self.emit(token, "TokenSold", {
            "seller": seller.lower(),
            "tokensSold": tokens_sold,
            "plsReceived": tokens_sold // TOKENS_PER_UNIT if pls_received is None else pls_received,
        }, tx_id=tx_id, new_block=new_block)

    def graduate(self, token: str, liquidity: int, treasury_fee: Optional[int] = None) -> RawEvent:
        args = {"token": token.lower(), "liquidityAmount": liquidity}
        if treasury_fee is not None:
            args["treasuryFee"] = treasury_fee
        return self.emit(self.factory_address, "TokenGraduated", args)

    def delist(self, token: str, reason: str = "") -> RawEvent:
        return self.emit(self.factory_address, "TokenDelisted", {"token": token.lower(), "reason": reason})

    # -------------------------------------------------------------------
    # Provider interface
    # -------------------------------------------------------------------

    async def get_block_number(self) -> int:
        return self._head

    async def get_block_timestamp(self, block_number: int) -> int:
        if block_number not in self._timestamps:
            raise ProviderError(f"block {block_number} not mined yet")
        return self._timestamps[block_number]

    async def get_logs(
        self, contract_address: str, event_signature: str, from_block: int, to_block: int
    ) -> List[RawEvent]:
        if self.fail_next_get_logs > 0:
            self.fail_next_get_logs -= 1
            raise ProviderError("simulated provider outage")
        event = SIGNATURE_TO_NAME.get(event_signature)
        if event is None:
            raise ProviderError(f"unknown event signature {event_signature!r}")
        address = contract_address.lower()
        return [
            raw for raw in self._logs
            if raw.address == address and raw.event == event
            and from_block <= raw.block_number <= to_block
        ]

    # -------------------------------------------------------------------
    # Payment sender interface
    # -------------------------------------------------------------------

    async def send(self, recipient: str, amount: int) -> str:
        recipient = recipient.lower()
        if self.fail_next_sends > 0:
            self.fail_next_sends -= 1
            raise PaymentError(f"simulated transfer failure to {recipient}")
        if recipient in self.failing_recipients:
            raise PaymentError(f"transfer to {recipient} reverted")
        if amount <= 0:
            raise PaymentError("transfer amount must be positive")
        reference = "0x" + hashlib.sha256(
            f"pay:{len(self._payments)}:{recipient}:{amount}".encode()
        ).hexdigest()
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        self._payments.append({"recipient": recipient, "amount": amount, "reference": reference})
        logger.info("Payout %s -> %s (ref %s..)", amount, recipient, reference[:10])
        return reference

    def get_balance(self, address: str) -> int:
        return self._balances.get(address.lower(), 0)

    @property
    def payments(self) -> List[dict]:
        return list(self._payments)

    def get_stats(self) -> dict:
        return {
            "head": self._head,
            "head_timestamp": self.head_timestamp,
            "total_logs": len(self._logs),
            "tokens_launched": sum(1 for r in self._logs if r.event == "TokenCreated"),
            "payments": len(self._payments),
            "total_paid": str(sum(p["amount"] for p in self._payments)),
        }

    # -------------------------------------------------------------------
    # FastAPI route registration
    # -------------------------------------------------------------------

    def register_routes(self, app):
        """Register the provider/sender endpoints on an existing FastAPI app."""
        from fastapi import HTTPException

        @app.get("/chain/head")
        async def chain_head():
            return {"block_number": self._head, "timestamp": self.head_timestamp}

        @app.get("/chain/blocks/{block_number}")
        async def chain_block(block_number: int):
            try:
                timestamp = await self.get_block_timestamp(block_number)
            except ProviderError as e:
                raise HTTPException(status_code=404, detail=str(e))
            return {"block_number": block_number, "timestamp": timestamp}

        @app.get("/chain/logs")
        async def chain_logs(address: str, signature: str, from_block: int, to_block: int):
            try:
                logs = await self.get_logs(address, signature, from_block, to_block)
            except ProviderError as e:
                raise HTTPException(status_code=503, detail=str(e))
            return [raw_event_to_dict(raw) for raw in logs]

        @app.post("/chain/send")
        async def chain_send(req: PaymentRequest):
            if not req.amount.isdigit():
                raise HTTPException(status_code=400, detail="amount must be a decimal string")
            try:
                reference = await self.send(req.recipient, int(req.amount))
            except PaymentError as e:
                raise HTTPException(status_code=502, detail=str(e))
            return {"reference": reference}

        @app.get("/chain/balance/{address}")
        async def chain_balance(address: str):
            return {"address": address.lower(), "balance": str(self.get_balance(address))}

        @app.get("/chain/stats")
        async def chain_stats():
            return self.get_stats()

        logger.info("Chain simulator routes registered on FastAPI app")


def seed_demo(chain: ChainSimulator, traders: int = 8, trades: int = 60, seed: int = 7):
    """Populate the chain with a reproducible day or two of launchpad activity."""
    rng = random.Random(seed)
    wallets = [_derive_address(f"wallet:{i}") for i in range(traders)]
    creator = wallets[0]
    tokens = [
        chain.launch_token(creator, "Pepe Classic", "PEPEC", initial_buy=WEI_PER_UNIT),
        chain.launch_token(wallets[1], "Doge Reborn", "DOGER", referrer=creator),
    ]
    for i in range(trades):
        if i == trades // 2:
            chain.advance_time(86_400)
        token = rng.choice(tokens)
        trader = rng.choice(wallets)
        if rng.random() < 0.7:
            referrer = creator if trader != creator and rng.random() < 0.3 else None
            chain.buy(token, trader, rng.randint(1, 50) * WEI_PER_UNIT, referrer=referrer)
        else:
            chain.sell(token, trader, rng.randint(1, 20) * WEI_PER_UNIT * TOKENS_PER_UNIT)
    chain.graduate(tokens[0], 500 * WEI_PER_UNIT)
    logger.info("Seeded demo chain: %d wallets, %d trades, head %d", traders, trades, chain.head)
    return wallets, tokens


# ---------------------------------------------------------------------------
# Standalone mode
# ---------------------------------------------------------------------------

def build_parser(parser: Optional[argparse.ArgumentParser] = None) -> argparse.ArgumentParser:
    parser = parser or argparse.ArgumentParser(description="Launchpad chain simulator (standalone)")
    parser.add_argument("--port", type=int, default=8545, help="HTTP port (default: 8545)")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--factory", default=DEFAULT_FACTORY, help="Factory contract address")
    parser.add_argument("--demo", action="store_true", help="Seed the chain with demo activity")
    return parser


def serve(args: argparse.Namespace):
    from fastapi import FastAPI
    import uvicorn

    app = FastAPI(title="Launchpad Chain Simulator", version="0.1.0")
    chain = ChainSimulator(factory_address=args.factory)
    if args.demo:
        seed_demo(chain)
    chain.register_routes(app)

    @app.get("/")
    async def root():
        stats = chain.get_stats()
        stats["service"] = "Launchpad Chain Simulator"
        stats["factory"] = chain.factory_address
        return stats

    logger.info("=" * 50)
    logger.info("  Launchpad Chain Simulator")
    logger.info("  Port: %d", args.port)
    logger.info("  Factory: %s", chain.factory_address)
    logger.info("=" * 50)

    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )
    serve(build_parser().parse_args())


if __name__ == "__main__":
    main()
