"""
Settings tests: environment parsing, URL assembly and fail-fast lookups.
"""

import pytest
from pydantic import ValidationError

from staking_indexer.app.config import DEFAULT_CONTRACTS_FILE, Settings
from staking_indexer.app.domain.errors import ConfigurationMissing


@pytest.fixture
def base_env(monkeypatch):
    monkeypatch.setenv("POSTGRES_USER", "indexer")
    monkeypatch.setenv("POSTGRES_PASSWORD", "p@ss word")
    monkeypatch.setenv("POSTGRES_SERVER", "db")
    monkeypatch.setenv("POSTGRES_PORT", "5432")
    monkeypatch.setenv("POSTGRES_DB", "staking")
    return monkeypatch


class TestSettings:
    def test_database_urls_are_assembled_and_escaped(self, base_env):
        settings = Settings(_env_file=None)
        assert settings.database_url == "postgresql+asyncpg://indexer:p%40ss+word@db:5432/staking"
        assert settings.sync_database_url == "postgresql://indexer:p%40ss+word@db:5432/staking"

    def test_defaults(self, base_env):
        settings = Settings(_env_file=None)
        assert settings.missing_entity_policy == "strict"
        assert settings.contracts_file == DEFAULT_CONTRACTS_FILE
        assert settings.balance_read_attempts == 3
        assert settings.load_contracts()

    def test_rpc_urls_from_json(self, base_env):
        base_env.setenv("RPC_URLS", '{"1": "https://eth.example", "42161": ""}')
        settings = Settings(_env_file=None)

        assert settings.rpc_url(1) == "https://eth.example"
        with pytest.raises(ConfigurationMissing):
            settings.rpc_url(42161)
        with pytest.raises(ConfigurationMissing):
            settings.rpc_url(8453)

    def test_policy_is_normalized(self, base_env):
        base_env.setenv("MISSING_ENTITY_POLICY", " Synthesize ")
        assert Settings(_env_file=None).missing_entity_policy == "synthesize"

    def test_unknown_policy_rejected(self, base_env):
        base_env.setenv("MISSING_ENTITY_POLICY", "ignore")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_database_is_required(self, monkeypatch):
        for name in ("POSTGRES_USER", "POSTGRES_PASSWORD", "POSTGRES_SERVER", "POSTGRES_PORT", "POSTGRES_DB"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)
