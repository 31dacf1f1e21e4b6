"""
config.py - Static, process-wide configuration.

Defaults mirror the production launchpad deployment. Values are validated
with pydantic and loaded once at startup (environment first, CLI flags on
top).
"""

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

BPS_DENOMINATOR = 10_000
WEI_PER_UNIT = 10 ** 18

# Fee schedule (basis points)
BUY_TOTAL_BPS = 100       # 1.0%
BUY_USER_BPS = 50         # 0.5% to the daily user pool
BUY_TREASURY_BPS = 50     # 0.5% to treasury
SELL_TOTAL_BPS = 110      # 1.1%
SELL_USER_BPS = 50
SELL_TREASURY_BPS = 60
REFERRAL_BPS = 25         # carved out of the treasury share
GRADUATION_FEE_BPS = 1000 # 10% of graduating liquidity

# Distribution
TOP_RECIPIENTS = 100
MIN_PAYOUT = WEI_PER_UNIT // 100  # 0.01 in 18-decimal units
AIRDROP_HOUR = 0                  # UTC

# Ingestion
BATCH_SIZE = 1000
POLL_INTERVAL_SEC = 10.0
CONFIRMATIONS = 2
EVENT_RETRY_LIMIT = 3
CURSOR_KEY = "lastProcessedBlock"

DEFAULT_DB_PATH = "data/indexer.db"
DEFAULT_RPC_URL = "http://localhost:8545"


class FeeSchedule(BaseModel):
    """Basis-point configuration consumed by the fee calculator."""

    buy_total_bps: int = BUY_TOTAL_BPS
    buy_user_bps: int = BUY_USER_BPS
    buy_treasury_bps: int = BUY_TREASURY_BPS
    sell_total_bps: int = SELL_TOTAL_BPS
    sell_user_bps: int = SELL_USER_BPS
    sell_treasury_bps: int = SELL_TREASURY_BPS
    referral_bps: int = REFERRAL_BPS
    graduation_fee_bps: int = GRADUATION_FEE_BPS
    # Divisor used when carving the referral fee, keyed by trade side.
    # None means "use buy_treasury_bps for every side".
    referral_normalizer_bps: Optional[Dict[str, int]] = None

    @field_validator(
        "buy_total_bps", "buy_user_bps", "buy_treasury_bps",
        "sell_total_bps", "sell_user_bps", "sell_treasury_bps",
        "referral_bps", "graduation_fee_bps",
    )
    @classmethod
    def _check_bps(cls, v: int) -> int:
        if v < 0 or v > BPS_DENOMINATOR:
            raise ValueError(f"basis points must be within 0..{BPS_DENOMINATOR}, got {v}")
        return v

    @model_validator(mode="after")
    def _check_splits(self) -> "FeeSchedule":
        if self.buy_user_bps + self.buy_treasury_bps > self.buy_total_bps:
            raise ValueError("buy user + treasury bps exceed buy total bps")
        if self.sell_user_bps + self.sell_treasury_bps > self.sell_total_bps:
            raise ValueError("sell user + treasury bps exceed sell total bps")
        if self.referral_normalizer_bps is None:
            self.referral_normalizer_bps = {
                "buy": self.buy_treasury_bps,
                "sell": self.buy_treasury_bps,
            }
        for side, divisor in self.referral_normalizer_bps.items():
            if side not in ("buy", "sell"):
                raise ValueError(f"unknown trade side in referral normalizer: {side}")
            if divisor <= 0:
                raise ValueError("referral normalizer must be positive")
        return self


class DistributionSettings(BaseModel):
    top_n: int = Field(default=TOP_RECIPIENTS, ge=1)
    min_payout: int = Field(default=MIN_PAYOUT, ge=0)
    airdrop_hour: int = Field(default=AIRDROP_HOUR, ge=0, le=23)
    check_interval_sec: float = Field(default=60.0, gt=0)


class IndexerSettings(BaseModel):
    factory_address: str = ""
    start_block: int = Field(default=0, ge=0)
    batch_size: int = Field(default=BATCH_SIZE, ge=1)
    poll_interval_sec: float = Field(default=POLL_INTERVAL_SEC, gt=0)
    confirmations: int = Field(default=CONFIRMATIONS, ge=0)
    event_retry_limit: int = Field(default=EVENT_RETRY_LIMIT, ge=1)
    cursor_key: str = CURSOR_KEY

    @field_validator("factory_address")
    @classmethod
    def _lower_address(cls, v: str) -> str:
        return v.lower()


class AppConfig(BaseModel):
    db_path: str = DEFAULT_DB_PATH
    rpc_url: str = DEFAULT_RPC_URL
    fees: FeeSchedule = Field(default_factory=FeeSchedule)
    distribution: DistributionSettings = Field(default_factory=DistributionSettings)
    indexer: IndexerSettings = Field(default_factory=IndexerSettings)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "AppConfig":
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ

        indexer = {}
        for name, key in [
            ("INDEXER_FACTORY_ADDRESS", "factory_address"),
            ("INDEXER_START_BLOCK", "start_block"),
            ("INDEXER_BATCH_SIZE", "batch_size"),
            ("INDEXER_POLL_INTERVAL", "poll_interval_sec"),
            ("INDEXER_CONFIRMATIONS", "confirmations"),
        ]:
            if env.get(name):
                indexer[key] = env[name]

        distribution = {}
        for name, key in [
            ("DISTRIBUTION_TOP_N", "top_n"),
            ("DISTRIBUTION_MIN_PAYOUT", "min_payout"),
            ("AIRDROP_HOUR", "airdrop_hour"),
        ]:
            if env.get(name):
                distribution[key] = env[name]

        return cls(
            db_path=env.get("INDEXER_DB_PATH", DEFAULT_DB_PATH),
            rpc_url=env.get("INDEXER_RPC_URL", DEFAULT_RPC_URL),
            indexer=IndexerSettings(**indexer),
            distribution=DistributionSettings(**distribution),
        )
