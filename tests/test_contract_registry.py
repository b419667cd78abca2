"""
Contract registry tests: validation happens once, at construction.
"""

import json

import pytest

from helpers import ARBITRUM, BUILDERS, CONTRACTS, DEPOSIT_POOL, MAINNET, MOR_TOKEN
from staking_indexer.app.application.services.contract_registry import ContractRegistry
from staking_indexer.app.config import DEFAULT_CONTRACTS_FILE
from staking_indexer.app.domain.errors import ConfigurationMissing, UnknownEvent
from staking_indexer.app.domain.events import ContractFamily
from staking_indexer.app.domain.keys import as_address


class TestRegistryLoading:
    def test_lookup_by_chain_and_name(self, registry):
        spec = registry.get(chain_id=ARBITRUM, name="Builders")
        assert spec.family is ContractFamily.BUILDERS
        assert spec.address == as_address(BUILDERS)

    def test_unknown_contract(self, registry):
        with pytest.raises(UnknownEvent):
            registry.get(chain_id=MAINNET, name="Builders")

    def test_chain_ids(self, registry):
        assert registry.chain_ids == [1, 42161, 84532]
        assert len(registry) == len(CONTRACTS)

    def test_staking_addresses_exclude_token_and_factories(self, registry):
        assert registry.staking_addresses(ARBITRUM) == frozenset({as_address(BUILDERS)})
        assert registry.staking_addresses(MAINNET) == frozenset({as_address(DEPOSIT_POOL)})

    def test_bundled_contracts_file_is_valid(self):
        entries = json.loads(DEFAULT_CONTRACTS_FILE.read_text())
        registry = ContractRegistry.from_config(entries)
        assert {1, 42161, 8453} <= set(registry.chain_ids)


class TestRegistryValidation:
    """Misconfiguration is refused at startup."""

    def test_zero_address_rejected(self):
        entries = [{"name": "Builders", "family": "builders", "chain_id": 1, "address": "0x" + "00" * 20}]
        with pytest.raises(ConfigurationMissing):
            ContractRegistry.from_config(entries)

    def test_missing_address_rejected(self):
        with pytest.raises(ConfigurationMissing):
            ContractRegistry.from_config([{"name": "Builders", "family": "builders", "chain_id": 1}])

    def test_token_without_staking_contract_rejected(self):
        entries = [{"name": "MorToken", "family": "token", "chain_id": 10, "address": MOR_TOKEN}]
        with pytest.raises(ConfigurationMissing):
            ContractRegistry.from_config(entries)

    def test_duplicate_rejected(self):
        entry = {"name": "Builders", "family": "builders", "chain_id": 1, "address": BUILDERS}
        with pytest.raises(ValueError):
            ContractRegistry.from_config([entry, dict(entry)])

    def test_unknown_family_rejected(self):
        entries = [{"name": "X", "family": "vault", "chain_id": 1, "address": BUILDERS}]
        with pytest.raises(ValueError):
            ContractRegistry.from_config(entries)
