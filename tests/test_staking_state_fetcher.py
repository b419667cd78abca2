"""
Web3 staking state fetcher tests, against a scripted stand-in for AsyncWeb3.
"""

from types import SimpleNamespace

import pytest
from eth_utils import to_checksum_address
from tenacity import wait_none
from web3.exceptions import ContractLogicError

from helpers import ALICE, BOB, BUILDER_POOL, BUILDERS, BUILDERS_V4, DEPOSIT_POOL, SUBNET
from staking_indexer.app.domain.errors import BalanceReadFailure, ConfigurationMissing
from staking_indexer.app.domain.events import ContractFamily
from staking_indexer.app.domain.keys import as_address, as_bytes32, pool_id_from_index
from staking_indexer.app.infrastructure.fetchers.staking_state_fetcher import Web3StakingStateFetcher
from staking_indexer.app.infrastructure.fetchers.ttl_cache import TTLCache


class ScriptedFunction:
    """Contract function whose successive .call() outcomes are scripted."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[tuple[tuple, int]] = []

    def __call__(self, *args):
        fn = self

        class _Bound:
            async def call(self, block_identifier):
                fn.calls.append((args, block_identifier))
                outcome = fn.outcomes.pop(0) if len(fn.outcomes) > 1 else fn.outcomes[0]
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome

        return _Bound()


class FakeWeb3:
    def __init__(self, **functions):
        self.functions = functions
        self.contract_addresses: list[str] = []
        self.eth = SimpleNamespace(contract=self._contract)

    @staticmethod
    def to_checksum_address(value):
        return to_checksum_address(value)

    def _contract(self, *, address, abi):
        self.contract_addresses.append(address)
        return SimpleNamespace(functions=SimpleNamespace(**self.functions))


def _fetcher(w3, *, chain_id=1, cache=None, attempts=3):
    return Web3StakingStateFetcher(providers={chain_id: w3}, cache=cache, attempts=attempts, wait=wait_none())


async def _read(fetcher, family, contract, pool_id, *, chain_id=1, block=100):
    return await fetcher.read_user_state(
        family=family,
        chain_id=chain_id,
        contract_address=as_address(contract),
        pool_id=pool_id,
        user=as_address(ALICE),
        block_number=block,
    )


class TestUserStateDecoding:
    @pytest.mark.asyncio
    async def test_deposit_pool_layout(self):
        users_data = ScriptedFunction((11, 500, 0, 0, 22, 33, 650, 0, BOB))
        w3 = FakeWeb3(usersData=users_data)

        state = await _read(_fetcher(w3), ContractFamily.DEPOSIT_POOL, DEPOSIT_POOL, pool_id_from_index(2))

        assert (state.deposited, state.virtual_deposited, state.claim_lock_start) == (500, 650, 22)
        (args, block), = users_data.calls
        assert args == (to_checksum_address(ALICE), 2)
        assert block == 100
        assert w3.contract_addresses == [to_checksum_address(DEPOSIT_POOL)]

    @pytest.mark.asyncio
    async def test_builders_layout(self):
        w3 = FakeWeb3(usersData=ScriptedFunction((5, 6, 70, 80)))
        state = await _read(_fetcher(w3, chain_id=42161), ContractFamily.BUILDERS, BUILDERS,
                            as_bytes32(BUILDER_POOL), chain_id=42161)
        assert (state.deposited, state.virtual_deposited, state.claim_lock_start) == (70, 80, 6)

    @pytest.mark.asyncio
    async def test_v4_has_no_virtual_stake(self):
        w3 = FakeWeb3(usersData=ScriptedFunction((5, 0, 90, 0)))
        state = await _read(_fetcher(w3), ContractFamily.BUILDERS_V4, BUILDERS_V4, as_bytes32(SUBNET))
        assert state.deposited == 90
        assert state.virtual_deposited is None
        assert state.claim_lock_start is None


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self):
        users_data = ScriptedFunction(ConnectionError("reset"), (0, 1, 0, 0))
        state = await _read(_fetcher(FakeWeb3(usersData=users_data)), ContractFamily.BUILDERS, BUILDERS,
                            as_bytes32(BUILDER_POOL))
        assert state.deposited == 1
        assert len(users_data.calls) == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_balance_read_failure(self):
        users_data = ScriptedFunction(TimeoutError("slow node"))
        with pytest.raises(BalanceReadFailure):
            await _read(_fetcher(FakeWeb3(usersData=users_data), attempts=3), ContractFamily.BUILDERS,
                        BUILDERS, as_bytes32(BUILDER_POOL))
        assert len(users_data.calls) == 3

    @pytest.mark.asyncio
    async def test_revert_is_not_retried(self):
        users_data = ScriptedFunction(ContractLogicError("execution reverted"))
        with pytest.raises(BalanceReadFailure):
            await _read(_fetcher(FakeWeb3(usersData=users_data)), ContractFamily.BUILDERS, BUILDERS,
                        as_bytes32(BUILDER_POOL))
        assert len(users_data.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_provider(self):
        fetcher = _fetcher(FakeWeb3(usersData=ScriptedFunction((0, 0, 0, 0))), chain_id=1)
        with pytest.raises(ConfigurationMissing):
            await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, as_bytes32(BUILDER_POOL), chain_id=8453)

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            Web3StakingStateFetcher(providers={}, attempts=0)


class TestCaching:
    @pytest.mark.asyncio
    async def test_same_block_read_is_served_from_cache(self):
        users_data = ScriptedFunction((0, 0, 42, 0))
        fetcher = _fetcher(FakeWeb3(usersData=users_data), cache=TTLCache(ttl_seconds=60, max_size=10))

        first = await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, as_bytes32(BUILDER_POOL))
        second = await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, as_bytes32(BUILDER_POOL))
        await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, as_bytes32(BUILDER_POOL), block=101)

        assert first == second
        assert len(users_data.calls) == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self):
        users_data = ScriptedFunction(ContractLogicError("reverted"), (0, 0, 42, 0))
        fetcher = _fetcher(FakeWeb3(usersData=users_data), cache=TTLCache(ttl_seconds=60, max_size=10))

        with pytest.raises(BalanceReadFailure):
            await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, as_bytes32(BUILDER_POOL))
        state = await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, as_bytes32(BUILDER_POOL))
        assert state.deposited == 42

    @pytest.mark.asyncio
    async def test_invalidate_drops_reads_above_ancestor(self):
        users_data = ScriptedFunction((0, 0, 7, 0), (0, 0, 100, 0), (0, 0, 40, 0))
        fetcher = _fetcher(FakeWeb3(usersData=users_data), cache=TTLCache(ttl_seconds=60, max_size=10))
        pool = as_bytes32(BUILDER_POOL)

        assert (await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, pool, block=99)).deposited == 7
        assert (await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, pool, block=100)).deposited == 100

        fetcher.invalidate(chain_id=1, above_block=99)

        assert (await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, pool, block=99)).deposited == 7
        assert (await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, pool, block=100)).deposited == 40
        assert [block for _, block in users_data.calls] == [99, 100, 100]

    @pytest.mark.asyncio
    async def test_invalidate_leaves_other_chains_cached(self):
        users_data = ScriptedFunction((0, 0, 5, 0), (0, 0, 6, 0))
        fetcher = _fetcher(FakeWeb3(usersData=users_data), cache=TTLCache(ttl_seconds=60, max_size=10))
        pool = as_bytes32(BUILDER_POOL)

        await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, pool, block=100)
        fetcher.invalidate(chain_id=42161, above_block=0)
        state = await _read(fetcher, ContractFamily.BUILDERS, BUILDERS, pool, block=100)

        assert state.deposited == 5
        assert len(users_data.calls) == 1

    def test_invalidate_without_cache_is_a_no_op(self):
        _fetcher(FakeWeb3()).invalidate(chain_id=1, above_block=0)


class TestPoolConfig:
    @pytest.mark.asyncio
    async def test_builders_pool_config(self):
        pools = ScriptedFunction(("Builder One", BOB, 1000, 3600, 5000, 10))
        fetcher = _fetcher(FakeWeb3(builderPools=pools))

        config = await fetcher.read_pool_config(
            family=ContractFamily.BUILDERS, chain_id=1, contract_address=as_address(BUILDERS),
            pool_id=as_bytes32(BUILDER_POOL), block_number=7,
        )

        assert config == {
            "name": "Builder One",
            "admin": as_address(BOB),
            "starts_at": 1000,
            "withdraw_lock_period_after_deposit": 3600,
            "claim_lock_end": 5000,
            "minimal_deposit": 10,
        }

    @pytest.mark.asyncio
    async def test_v4_pool_config_drops_blank_metadata(self):
        subnets = ScriptedFunction(("Alpha", BOB, 0, 60, 0, 3, BOB))
        metadata = ScriptedFunction(("alpha", "", "https://alpha.xyz", " "))
        fetcher = _fetcher(FakeWeb3(subnets=subnets, subnetsMetadata=metadata))

        config = await fetcher.read_pool_config(
            family=ContractFamily.BUILDERS_V4, chain_id=1, contract_address=as_address(BUILDERS_V4),
            pool_id=as_bytes32(SUBNET), block_number=7,
        )

        assert config["slug"] == "alpha"
        assert config["website"] == "https://alpha.xyz"
        assert "description" not in config
        assert "image" not in config
        assert config["minimal_deposit"] == 3

    @pytest.mark.asyncio
    async def test_deposit_pool_has_no_config_reads(self):
        w3 = FakeWeb3()
        config = await _fetcher(w3).read_pool_config(
            family=ContractFamily.DEPOSIT_POOL, chain_id=1, contract_address=as_address(DEPOSIT_POOL),
            pool_id=pool_id_from_index(0), block_number=7,
        )
        assert config == {}
        assert w3.contract_addresses == []
