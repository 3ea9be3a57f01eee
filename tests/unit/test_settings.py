"""Tests unitaires pour config/settings.py - validation Pydantic et variables d'environnement."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from config.settings import (
    ContractsConfig,
    LoggingConfig,
    RefreshConfig,
    RpcConfig,
    Settings,
)
from config.ttl_config import CACHE_CONFIGS, CacheTTL


class TestDefaults:
    def test_defaults(self):
        settings = Settings()
        assert settings.environment == "development"
        assert settings.refresh.interval_sec == 15.0
        assert settings.aggregator.debounce_sec == 0.05
        assert settings.route.use_bonus_discount is True
        assert settings.route.accept_fractional_redemption is False

    def test_threshold_slots(self):
        contracts = ContractsConfig(pool_storage_base_slot=100)
        assert contracts.mint_threshold_slot == 112
        assert contracts.redeem_threshold_slot == 113

    def test_cors_origins_split(self):
        settings = Settings(cors_origins="http://a.test, http://b.test,")
        assert settings.get_cors_origins() == ["http://a.test", "http://b.test"]


class TestValidation:
    def test_rpc_url_scheme(self):
        with pytest.raises(ValidationError):
            RpcConfig(url="ws://node")

    def test_invalid_address(self):
        with pytest.raises(ValidationError):
            ContractsConfig(diamond="0x1234")

    def test_refresh_interval_bounds(self):
        with pytest.raises(ValidationError):
            RefreshConfig(interval_sec=0.5)

    def test_log_level_normalized(self):
        assert LoggingConfig(log_level="warning").log_level == "WARNING"
        with pytest.raises(ValidationError):
            LoggingConfig(log_level="loud")

    def test_debug_forbidden_in_production(self):
        with pytest.raises(ValueError):
            Settings(environment="production", debug=True)

    def test_unknown_environment(self):
        with pytest.raises(ValidationError):
            Settings(environment="qa")


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("RPC_URL", "https://eth.example.org")
        monkeypatch.setenv("REFRESH_INTERVAL_SEC", "30")
        monkeypatch.setenv("CACHE_PERSIST_PATH", "/tmp/router-cache.json")
        settings = Settings()
        assert settings.rpc.url == "https://eth.example.org"
        assert settings.refresh.interval_sec == 30.0
        assert settings.cache.persist_path == Path("/tmp/router-cache.json")


class TestCachePolicies:
    def test_quotes_and_balances_never_stale(self):
        assert CACHE_CONFIGS["AMM_QUOTE"].allow_stale_fallback is False
        assert CACHE_CONFIGS["USER_BALANCES"].allow_stale_fallback is False

    def test_oracle_prices_fall_back(self):
        oracle = CACHE_CONFIGS["ORACLE_PRICE"]
        assert oracle.ttl == CacheTTL.ORACLE_PRICE
        assert oracle.allow_stale_fallback is True
        assert oracle.persist is True
