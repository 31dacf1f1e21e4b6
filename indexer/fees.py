"""
fees.py - Trade fee calculator.

Pure integer arithmetic over the configured basis points. Every share is
floor(amount * bps / 10000); remainders are never rounded up or banked.
The referral fee is carved out of the treasury share and is capped at it.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from indexer.config import BPS_DENOMINATOR, FeeSchedule


class TradeSide(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class FeeSplit:
    total: int
    user_share: int
    treasury_share: int


class FeeCalculator:
    """Converts gross trade amounts into fee splits."""

    def __init__(self, schedule: Optional[FeeSchedule] = None):
        self.schedule = schedule or FeeSchedule()

    def _side_bps(self, side: TradeSide) -> tuple:
        s = self.schedule
        if side == TradeSide.BUY:
            return s.buy_total_bps, s.buy_user_bps, s.buy_treasury_bps
        return s.sell_total_bps, s.sell_user_bps, s.sell_treasury_bps

    def compute_trade_fees(self, amount: int, side: TradeSide) -> FeeSplit:
        if amount < 0:
            raise ValueError("trade amount must be non-negative")
        total_bps, user_bps, treasury_bps = self._side_bps(TradeSide(side))
        return FeeSplit(
            total=amount * total_bps // BPS_DENOMINATOR,
            user_share=amount * user_bps // BPS_DENOMINATOR,
            treasury_share=amount * treasury_bps // BPS_DENOMINATOR,
        )

    def compute_referral_fee(self, treasury_share: int, side: TradeSide = TradeSide.BUY) -> int:
        """floor(treasury_share * referral_bps * 2 / normalizer[side]), capped at treasury_share."""
        if treasury_share <= 0:
            return 0
        divisor = self.schedule.referral_normalizer_bps[TradeSide(side).value]
        fee = treasury_share * self.schedule.referral_bps * 2 // divisor
        return min(fee, treasury_share)

    def compute_graduation_fee(self, liquidity_amount: int) -> int:
        if liquidity_amount <= 0:
            return 0
        return liquidity_amount * self.schedule.graduation_fee_bps // BPS_DENOMINATOR

    def describe(self) -> dict:
        """Fee structure as plain data (for status output and queries)."""
        s = self.schedule
        return {
            "buy": {
                "total_bps": s.buy_total_bps,
                "user_pool_bps": s.buy_user_bps,
                "treasury_bps": s.buy_treasury_bps,
            },
            "sell": {
                "total_bps": s.sell_total_bps,
                "user_pool_bps": s.sell_user_bps,
                "treasury_bps": s.sell_treasury_bps,
            },
            "referral_bps": s.referral_bps,
            "referral_normalizer_bps": dict(s.referral_normalizer_bps),
            "graduation_fee_bps": s.graduation_fee_bps,
        }
