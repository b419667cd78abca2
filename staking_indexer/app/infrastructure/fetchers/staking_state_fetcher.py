from __future__ import annotations

import logging
from typing import Any, Mapping

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base
from web3 import AsyncWeb3
from web3.contract.async_contract import AsyncContract
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from staking_indexer.app.domain.entities import UserStakeState
from staking_indexer.app.domain.errors import BalanceReadFailure, ConfigurationMissing
from staking_indexer.app.domain.events import ContractFamily
from staking_indexer.app.domain.keys import as_address
from staking_indexer.app.infrastructure.fetchers.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

# Minimal ABI fragments, one set per contract family
_DEPOSIT_POOL_ABI = [
    {
        "name": "usersData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "rewardPoolIndex", "type": "uint256"},
        ],
        "outputs": [
            {"name": "lastStake", "type": "uint128"},
            {"name": "deposited", "type": "uint256"},
            {"name": "rate", "type": "uint256"},
            {"name": "pendingRewards", "type": "uint256"},
            {"name": "claimLockStart", "type": "uint128"},
            {"name": "claimLockEnd", "type": "uint128"},
            {"name": "virtualDeposited", "type": "uint256"},
            {"name": "lastClaim", "type": "uint128"},
            {"name": "referrer", "type": "address"},
        ],
    },
]

_BUILDERS_ABI = [
    {
        "name": "usersData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "builderPoolId", "type": "bytes32"},
        ],
        "outputs": [
            {"name": "lastDeposit", "type": "uint128"},
            {"name": "claimLockStart", "type": "uint128"},
            {"name": "deposited", "type": "uint256"},
            {"name": "virtualDeposited", "type": "uint256"},
        ],
    },
    {
        "name": "builderPools",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "builderPoolId", "type": "bytes32"}],
        "outputs": [
            {"name": "name", "type": "string"},
            {"name": "admin", "type": "address"},
            {"name": "poolStart", "type": "uint128"},
            {"name": "withdrawLockPeriodAfterDeposit", "type": "uint128"},
            {"name": "claimLockEnd", "type": "uint128"},
            {"name": "minimalDeposit", "type": "uint256"},
        ],
    },
]

_BUILDERS_V4_ABI = [
    {
        "name": "usersData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "subnetId", "type": "bytes32"},
        ],
        "outputs": [
            {"name": "lastDeposit", "type": "uint128"},
            {"name": "unusedStorage1_V4Update", "type": "uint128"},
            {"name": "deposited", "type": "uint256"},
            {"name": "unusedStorage2_V4Update", "type": "uint256"},
        ],
    },
    {
        "name": "subnets",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "subnetId", "type": "bytes32"}],
        "outputs": [
            {"name": "name", "type": "string"},
            {"name": "admin", "type": "address"},
            {"name": "unusedStorage1_V4Update", "type": "uint128"},
            {"name": "withdrawLockPeriodAfterDeposit", "type": "uint128"},
            {"name": "unusedStorage2_V4Update", "type": "uint128"},
            {"name": "minimalDeposit", "type": "uint256"},
            {"name": "claimAdmin", "type": "address"},
        ],
    },
    {
        "name": "subnetsMetadata",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "subnetId", "type": "bytes32"}],
        "outputs": [
            {"name": "slug", "type": "string"},
            {"name": "description", "type": "string"},
            {"name": "website", "type": "string"},
            {"name": "image", "type": "string"},
        ],
    },
]

_ABIS: dict[ContractFamily, list[dict[str, Any]]] = {
    ContractFamily.DEPOSIT_POOL: _DEPOSIT_POOL_ABI,
    ContractFamily.BUILDERS: _BUILDERS_ABI,
    ContractFamily.BUILDERS_V4: _BUILDERS_V4_ABI,
}

# Deterministic failures: retrying the same call at the same block cannot help.
_NON_RETRYABLE = (ContractLogicError, BadFunctionCallOutput)


def _text(val: Any) -> str | None:
    if val is None:
        return None
    return str(val).strip() or None


class Web3StakingStateFetcher:
    """
    StakingStateReader using AsyncWeb3 eth_call pinned to the event's block.

    - One AsyncWeb3 per chain id.
    - Transient failures are retried with bounded exponential backoff
      (tenacity); exhausted retries and reverts raise BalanceReadFailure.
    - Successful reads are memoized in a TTLCache keyed by
      (call, chain, contract, pool, user, block).
      Entries of orphaned blocks are dropped by invalidate() on rollback.

    Addresses and pool ids are raw bytes; web3 receives checksum hex.
    """

    def __init__(
        self,
        *,
        providers: Mapping[int, AsyncWeb3],
        cache: TTLCache | None = None,
        attempts: int = 3,
        max_wait_seconds: float = 10.0,
        wait: wait_base | None = None,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self._providers = dict(providers)
        self._cache = cache
        self._attempts = attempts
        self._wait = wait or wait_exponential(multiplier=0.5, max=max_wait_seconds)

    async def read_user_state(
        self,
        *,
        family: ContractFamily,
        chain_id: int,
        contract_address: bytes,
        pool_id: bytes,
        user: bytes,
        block_number: int,
    ) -> UserStakeState:
        cache_key = ("usersData", chain_id, contract_address, pool_id, user, block_number)
        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        contract = self._contract(family, chain_id, contract_address)
        w3 = self._w3(chain_id)
        user_cs = w3.to_checksum_address("0x" + user.hex())

        if family is ContractFamily.DEPOSIT_POOL:
            raw = await self._call(
                contract, "usersData", user_cs, int.from_bytes(pool_id, "big"), block_number=block_number
            )
            state = UserStakeState(
                deposited=int(raw[1]),
                virtual_deposited=int(raw[6]),
                claim_lock_start=int(raw[4]),
            )
        elif family is ContractFamily.BUILDERS:
            raw = await self._call(contract, "usersData", user_cs, pool_id, block_number=block_number)
            state = UserStakeState(
                deposited=int(raw[2]),
                virtual_deposited=int(raw[3]),
                claim_lock_start=int(raw[1]),
            )
        else:
            # v4 dropped claimLockStart / virtualDeposited from storage
            raw = await self._call(contract, "usersData", user_cs, pool_id, block_number=block_number)
            state = UserStakeState(deposited=int(raw[2]))

        self._store(cache_key, state)
        return state

    async def read_pool_config(
        self,
        *,
        family: ContractFamily,
        chain_id: int,
        contract_address: bytes,
        pool_id: bytes,
        block_number: int,
    ) -> dict[str, Any]:
        if family is ContractFamily.DEPOSIT_POOL:
            # Reward pools carry no per-pool config worth back-filling.
            return {}

        cache_key = ("poolConfig", chain_id, contract_address, pool_id, None, block_number)
        cached = self._cached(cache_key)
        if cached is not None:
            return dict(cached)

        contract = self._contract(family, chain_id, contract_address)

        if family is ContractFamily.BUILDERS:
            raw = await self._call(contract, "builderPools", pool_id, block_number=block_number)
            config = {
                "name": _text(raw[0]),
                "admin": as_address(raw[1]),
                "starts_at": int(raw[2]),
                "withdraw_lock_period_after_deposit": int(raw[3]),
                "claim_lock_end": int(raw[4]),
                "minimal_deposit": int(raw[5]),
            }
        else:
            raw = await self._call(contract, "subnets", pool_id, block_number=block_number)
            meta = await self._call(contract, "subnetsMetadata", pool_id, block_number=block_number)
            config = {
                "name": _text(raw[0]),
                "admin": as_address(raw[1]),
                "withdraw_lock_period_after_deposit": int(raw[3]),
                "minimal_deposit": int(raw[5]),
                "slug": _text(meta[0]),
                "description": _text(meta[1]),
                "website": _text(meta[2]),
                "image": _text(meta[3]),
            }

        config = {k: v for k, v in config.items() if v is not None}
        self._store(cache_key, config)
        return dict(config)

    def invalidate(self, *, chain_id: int, above_block: int) -> None:
        if self._cache is None:
            return
        # key: (call, chain_id, contract, pool_id, user, block_number)
        dropped = self._cache.discard_where(lambda k: k[1] == chain_id and k[5] > above_block)
        if dropped:
            logger.debug(
                "Dropped cached reads above rollback ancestor",
                extra={"chain_id": chain_id, "above_block": above_block, "dropped": dropped},
            )

    def _w3(self, chain_id: int) -> AsyncWeb3:
        try:
            return self._providers[chain_id]
        except KeyError:
            raise ConfigurationMissing(f"No web3 provider configured for chain_id={chain_id}")

    def _contract(self, family: ContractFamily, chain_id: int, address: bytes) -> AsyncContract:
        try:
            abi = _ABIS[family]
        except KeyError:
            raise ValueError(f"Contract family {family.value!r} has no staking state to read")
        w3 = self._w3(chain_id)
        return w3.eth.contract(address=w3.to_checksum_address("0x" + address.hex()), abi=abi)

    async def _call(self, contract: AsyncContract, fn_name: str, *args: Any, block_number: int) -> Any:
        fn = getattr(contract.functions, fn_name)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._attempts),
                wait=self._wait,
                retry=retry_if_not_exception_type(_NON_RETRYABLE),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    return await fn(*args).call(block_identifier=block_number)
        except _NON_RETRYABLE as exc:
            raise BalanceReadFailure(f"{fn_name} reverted or returned no data: {exc}") from exc
        except Exception as exc:
            # Network / timeout / provider error after the last attempt
            raise BalanceReadFailure(
                f"{fn_name} failed after {self._attempts} attempts: {exc}"
            ) from exc

    def _cached(self, key: tuple) -> Any | None:
        return None if self._cache is None else self._cache.get(key)

    def _store(self, key: tuple, value: Any) -> None:
        if self._cache is not None:
            self._cache.set(key, value)
