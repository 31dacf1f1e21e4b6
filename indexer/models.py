"""
models.py - Raw provider records and typed domain events.

A RawEvent is what the provider hands back: block position, transaction id,
emitting contract, event name and an args mapping. decode_event() turns it
into one of the pydantic domain events below or raises EventDecodeError.
"""

import re
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainValidator, ValidationError

from indexer.errors import EventDecodeError
from indexer.fees import TradeSide

ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")

# Event signatures the provider is queried with, keyed by event name.
FACTORY_EVENTS = {
    "TokenCreated": "TokenCreated(address,address,string,string,address)",
    "TokenGraduated": "TokenGraduated(address,uint256,uint256)",
    "TokenDelisted": "TokenDelisted(address,string)",
    "InitialBuy": "InitialBuy(address,address,uint256,uint256)",
}
TOKEN_EVENTS = {
    "TokenBought": "TokenBought(address,uint256,uint256,address)",
    "TokenSold": "TokenSold(address,uint256,uint256)",
}
EVENT_SIGNATURES = {**FACTORY_EVENTS, **TOKEN_EVENTS}
SIGNATURE_TO_NAME = {sig: name for name, sig in EVENT_SIGNATURES.items()}


def canonical_address(value: Any) -> str:
    """Lower-case an address and check its shape."""
    if not isinstance(value, str):
        raise ValueError(f"address must be a string, got {type(value).__name__}")
    addr = value.strip().lower()
    if not _ADDRESS_RE.match(addr):
        raise ValueError(f"malformed address: {value!r}")
    return addr


def _parse_amount(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("amount must be an integer")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and value.strip().isdigit():
        amount = int(value.strip())
    elif isinstance(value, str) and value.strip().lower().startswith("0x"):
        amount = int(value.strip(), 16)
    else:
        raise ValueError(f"amount must be an unsigned integer, got {value!r}")
    if amount < 0:
        raise ValueError("amount must be non-negative")
    return amount


def _optional_address(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    addr = canonical_address(value)
    return None if addr == ZERO_ADDRESS else addr


Address = Annotated[str, BeforeValidator(canonical_address)]
OptionalAddress = Annotated[Optional[str], BeforeValidator(_optional_address)]
Amount = Annotated[int, PlainValidator(_parse_amount)]


@dataclass(frozen=True)
class RawEvent:
    block_number: int
    log_index: int
    transaction_id: str
    address: str
    event: str
    args: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0

    @property
    def position(self) -> tuple:
        return (self.block_number, self.log_index)


class DomainEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    block_number: int
    log_index: int
    transaction_id: str
    timestamp: int


class TokenLaunched(DomainEvent):
    token: Address
    creator: Address
    name: str
    symbol: str
    referrer: OptionalAddress = None


class TokenGraduated(DomainEvent):
    token: Address
    liquidity_amount: Amount
    treasury_fee: Optional[Amount] = None


class TokenDelisted(DomainEvent):
    token: Address
    reason: str = ""


class Trade(DomainEvent):
    side: TradeSide
    token: Address
    trader: Address
    amount_in: Amount
    amount_out: Amount
    referrer: OptionalAddress = None

    @property
    def currency_amount(self) -> int:
        """Payout-currency leg of the trade: spent on buys, received on sells."""
        return self.amount_in if self.side == TradeSide.BUY else self.amount_out


Event = Union[TokenLaunched, TokenGraduated, TokenDelisted, Trade]


def _meta(raw: RawEvent) -> dict:
    return {
        "block_number": raw.block_number,
        "log_index": raw.log_index,
        "transaction_id": raw.transaction_id,
        "timestamp": raw.timestamp,
    }


def _decode_token_created(raw: RawEvent) -> TokenLaunched:
    a = raw.args
    return TokenLaunched(
        token=a["token"], creator=a["creator"], name=a["name"], symbol=a["symbol"],
        referrer=a.get("referrer"), **_meta(raw),
    )


def _decode_graduated(raw: RawEvent) -> TokenGraduated:
    a = raw.args
    return TokenGraduated(
        token=a["token"], liquidity_amount=a["liquidityAmount"],
        treasury_fee=a.get("treasuryFee"), **_meta(raw),
    )


def _decode_delisted(raw: RawEvent) -> TokenDelisted:
    a = raw.args
    return TokenDelisted(token=a["token"], reason=a.get("reason", ""), **_meta(raw))


def _decode_initial_buy(raw: RawEvent) -> Trade:
    a = raw.args
    return Trade(
        side=TradeSide.BUY, token=a["token"], trader=a["buyer"],
        amount_in=a["plsSpent"], amount_out=a["tokensReceived"], **_meta(raw),
    )


def _decode_bought(raw: RawEvent) -> Trade:
    a = raw.args
    return Trade(
        side=TradeSide.BUY, token=raw.address, trader=a["buyer"],
        amount_in=a["plsSpent"], amount_out=a["tokensBought"],
        referrer=a.get("referrer"), **_meta(raw),
    )


def _decode_sold(raw: RawEvent) -> Trade:
    a = raw.args
    return Trade(
        side=TradeSide.SELL, token=raw.address, trader=a["seller"],
        amount_in=a["tokensSold"], amount_out=a["plsReceived"], **_meta(raw),
    )


DECODERS: Dict[str, Callable[[RawEvent], Event]] = {
    "TokenCreated": _decode_token_created,
    "TokenGraduated": _decode_graduated,
    "TokenDelisted": _decode_delisted,
    "InitialBuy": _decode_initial_buy,
    "TokenBought": _decode_bought,
    "TokenSold": _decode_sold,
}


def decode_event(raw: RawEvent) -> Event:
    """Decode one raw record. Raises EventDecodeError, never anything else."""
    decoder = DECODERS.get(raw.event)
    if decoder is None:
        raise EventDecodeError(
            f"unknown event {raw.event!r}",
            raw.block_number, raw.log_index, raw.transaction_id,
        )
    if not raw.transaction_id:
        raise EventDecodeError(
            "missing transaction id", raw.block_number, raw.log_index, raw.transaction_id,
        )
    try:
        return decoder(raw)
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise EventDecodeError(
            f"{raw.event}: {e}", raw.block_number, raw.log_index, raw.transaction_id,
        ) from e


# ── HTTP request bodies (chain simulator surface) ───────────────


class PaymentRequest(BaseModel):
    recipient: str
    amount: str
