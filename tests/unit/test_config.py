"""Unit tests for configuration validation and environment loading."""

import pytest
from pydantic import ValidationError

from indexer.config import (
    AppConfig,
    DistributionSettings,
    FeeSchedule,
    IndexerSettings,
    MIN_PAYOUT,
    TOP_RECIPIENTS,
)


class TestFeeSchedule:

    def test_defaults(self):
        s = FeeSchedule()
        assert (s.buy_total_bps, s.buy_user_bps, s.buy_treasury_bps) == (100, 50, 50)
        assert (s.sell_total_bps, s.sell_user_bps, s.sell_treasury_bps) == (110, 50, 60)
        assert s.referral_normalizer_bps == {"buy": 50, "sell": 50}

    def test_bps_out_of_range(self):
        with pytest.raises(ValidationError):
            FeeSchedule(buy_total_bps=10_001)

    def test_shares_exceed_total(self):
        with pytest.raises(ValidationError):
            FeeSchedule(buy_user_bps=80, buy_treasury_bps=30)

    def test_unknown_normalizer_side(self):
        with pytest.raises(ValidationError):
            FeeSchedule(referral_normalizer_bps={"swap": 50})

    def test_zero_normalizer(self):
        with pytest.raises(ValidationError):
            FeeSchedule(referral_normalizer_bps={"buy": 0})


class TestSettings:

    def test_distribution_defaults(self):
        s = DistributionSettings()
        assert s.top_n == TOP_RECIPIENTS == 100
        assert s.min_payout == MIN_PAYOUT == 10 ** 16
        assert s.airdrop_hour == 0

    def test_airdrop_hour_range(self):
        with pytest.raises(ValidationError):
            DistributionSettings(airdrop_hour=24)

    def test_factory_address_lowercased(self):
        s = IndexerSettings(factory_address="0xABCDEF")
        assert s.factory_address == "0xabcdef"

    def test_batch_size_positive(self):
        with pytest.raises(ValidationError):
            IndexerSettings(batch_size=0)


class TestFromEnv:

    def test_empty_environment(self):
        config = AppConfig.from_env({})
        assert config.db_path == "data/indexer.db"
        assert config.indexer.batch_size == 1000
        assert config.indexer.confirmations == 2

    def test_overrides(self):
        config = AppConfig.from_env({
            "INDEXER_DB_PATH": "/tmp/x.db",
            "INDEXER_RPC_URL": "http://rpc:9000",
            "INDEXER_FACTORY_ADDRESS": "0xFACE",
            "INDEXER_START_BLOCK": "1200",
            "INDEXER_BATCH_SIZE": "50",
            "INDEXER_CONFIRMATIONS": "5",
            "DISTRIBUTION_TOP_N": "10",
            "DISTRIBUTION_MIN_PAYOUT": "1",
            "AIRDROP_HOUR": "3",
        })
        assert config.db_path == "/tmp/x.db"
        assert config.rpc_url == "http://rpc:9000"
        assert config.indexer.factory_address == "0xface"
        assert config.indexer.start_block == 1200
        assert config.indexer.batch_size == 50
        assert config.indexer.confirmations == 5
        assert config.distribution.top_n == 10
        assert config.distribution.min_payout == 1
        assert config.distribution.airdrop_hour == 3

    def test_invalid_value_rejected(self):
        with pytest.raises(ValidationError):
            AppConfig.from_env({"INDEXER_BATCH_SIZE": "zero"})
