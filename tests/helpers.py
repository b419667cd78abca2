from __future__ import annotations

from typing import Any

from staking_indexer.app.application.services.contract_registry import ContractRegistry
from staking_indexer.app.application.services.counters import CounterAggregator
from staking_indexer.app.application.services.event_translator import EventTranslator
from staking_indexer.app.application.services.pipeline import (
    BlockInfo,
    EventPipeline,
    LogInfo,
    ProcessedEvent,
)
from staking_indexer.app.application.services.projector import EventProjector, MissingEntityPolicy
from staking_indexer.app.application.services.reorg import ReorgHandler
from staking_indexer.app.domain.entities import (
    EntityKind,
    GlobalCounters,
    RecordKind,
    UserStakeState,
)
from staking_indexer.app.domain.errors import BalanceReadFailure
from staking_indexer.app.domain.events import ContractFamily
from staking_indexer.app.domain.keys import as_address, as_bytes32, pool_id_from_index, pool_key, user_key
from staking_indexer.app.infrastructure.adapters.memory_store import MemoryAggregateStore

MAINNET = 1
ARBITRUM = 42161
BASE_SEPOLIA = 84532

DEPOSIT_POOL = "0x47176B2Af9885dC6C4575d4eFd63895f7Aaa4790"
BUILDERS = "0xC0eD68f163d44B6e9985F0041fDf6f67c6BCFF3f"
BUILDERS_V4 = "0x6C3401D71CEd4b4fEFD1033EA5F83e9B3E7e4381"
MOR_TOKEN = "0x092bAaDB7DEf4C3981454dD9c0A0D7FF07bCFc86"
L2_FACTORY = "0x890bfa255e6ee8db5c67ab32dc600b14ebc4546c"
SUBNET_FACTORY = "0x37b94bd80b6012fb214bb6790b31a5c40d6eb7a5"
TREASURY = "0x" + "d4" * 20

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20

BUILDER_POOL = "0x" + "11" * 32
SUBNET = "0x" + "22" * 32
REWARD_POOL = 0

CONTRACTS: list[dict[str, Any]] = [
    {"name": "DepositPoolStETH", "family": "deposit_pool", "chain_id": MAINNET, "address": DEPOSIT_POOL},
    {"name": "Builders", "family": "builders", "chain_id": ARBITRUM, "address": BUILDERS},
    {"name": "MorToken", "family": "token", "chain_id": ARBITRUM, "address": MOR_TOKEN},
    {"name": "L2Factory", "family": "l2_factory", "chain_id": ARBITRUM, "address": L2_FACTORY},
    {"name": "SubnetFactory", "family": "subnet_factory", "chain_id": ARBITRUM, "address": SUBNET_FACTORY},
    {"name": "BuildersV4", "family": "builders_v4", "chain_id": BASE_SEPOLIA, "address": BUILDERS_V4},
    {"name": "BuildersTreasuryV2", "family": "builders_treasury", "chain_id": BASE_SEPOLIA, "address": TREASURY},
]

_CHAIN_OF = {c["name"]: c["chain_id"] for c in CONTRACTS}
_ADDRESS_OF = {c["name"]: c["address"] for c in CONTRACTS}


def ts_of(block: int) -> int:
    return 1_700_000_000 + block * 12


def tx_of(block: int, salt: int = 0) -> str:
    return "0x" + f"{block:056x}{salt:08x}"


class FakeStateReader:
    """
    Scripted contract state.

    set_balance() records the deposited amount a user has from a block on;
    reads return the latest value at or below the requested block.
    """

    def __init__(self) -> None:
        self._balances: dict[tuple[bytes, bytes, bytes], list[tuple[int, UserStakeState]]] = {}
        self.pool_configs: dict[tuple[bytes, bytes], dict[str, Any]] = {}
        self.fail = False
        self.user_reads = 0
        self.config_reads = 0
        self.invalidations: list[tuple[int, int]] = []

    def set_balance(
        self,
        contract: str,
        pool_id: Any,
        user: str,
        *,
        block: int,
        deposited: int,
        virtual_deposited: int | None = None,
        claim_lock_start: int | None = None,
    ) -> None:
        k = (as_address(contract), as_bytes32(pool_id), as_address(user))
        self._balances.setdefault(k, []).append(
            (
                block,
                UserStakeState(
                    deposited=deposited,
                    virtual_deposited=virtual_deposited,
                    claim_lock_start=claim_lock_start,
                ),
            )
        )
        self._balances[k].sort(key=lambda item: item[0])

    def set_pool_config(self, contract: str, pool_id: Any, **fields: Any) -> None:
        self.pool_configs[(as_address(contract), as_bytes32(pool_id))] = fields

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
        self.user_reads += 1
        if self.fail:
            raise BalanceReadFailure("rpc unavailable")
        state = UserStakeState(deposited=0)
        for block, s in self._balances.get((contract_address, pool_id, user), []):
            if block <= block_number:
                state = s
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
        self.config_reads += 1
        if self.fail:
            raise BalanceReadFailure("rpc unavailable")
        return dict(self.pool_configs.get((contract_address, pool_id), {}))

    def invalidate(self, *, chain_id: int, above_block: int) -> None:
        self.invalidations.append((chain_id, above_block))


class World:
    """One in-memory pipeline plus shortcuts for delivering events and reading state."""

    def __init__(
        self,
        *,
        reader: FakeStateReader | None = None,
        policy: MissingEntityPolicy = MissingEntityPolicy.STRICT,
    ) -> None:
        self.registry = ContractRegistry.from_config(CONTRACTS)
        self.reader = reader
        self.store = MemoryAggregateStore()
        counters = CounterAggregator()
        self.pipeline = EventPipeline(
            store=self.store,
            translator=EventTranslator(self.registry),
            projector=EventProjector(
                registry=self.registry,
                counters=counters,
                state_reader=reader,
                missing_entity_policy=policy,
            ),
            reorg=ReorgHandler(store=self.store, counters=counters),
        )
        self.sent: list[dict[str, Any]] = []

    async def send(
        self,
        contract: str,
        event: str,
        args: dict[str, Any],
        *,
        block: int,
        log_index: int = 0,
        tx: str | None = None,
        address: str | None = None,
    ) -> ProcessedEvent:
        delivery = {
            "contract": contract,
            "event": event,
            "args": args,
            "block": block,
            "log_index": log_index,
            "tx": tx or tx_of(block),
            "address": address,
        }
        self.sent.append(delivery)
        return await self.deliver(delivery)

    async def deliver(self, d: dict[str, Any]) -> ProcessedEvent:
        return await self.pipeline.on_event(
            chain_id=_CHAIN_OF[d["contract"]],
            contract_name=d["contract"],
            event_name=d["event"],
            args=d["args"],
            block=BlockInfo(number=d["block"], timestamp=ts_of(d["block"])),
            tx_hash=d["tx"],
            log=LogInfo(address=d["address"], index=d["log_index"]),
        )

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------
    @staticmethod
    def pool_key(contract: str, pool_id: Any) -> bytes:
        if isinstance(pool_id, int):
            pool_id = pool_id_from_index(pool_id)
        return pool_key(_CHAIN_OF[contract], _ADDRESS_OF[contract], pool_id)

    def user_key(self, contract: str, pool_id: Any, user: str) -> bytes:
        return user_key(self.pool_key(contract, pool_id), user)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    async def find(self, kind: EntityKind, key: bytes) -> Any:
        async with self.store.transaction() as s:
            return await s.find(kind, key)

    async def pool(self, contract: str, pool_id: Any) -> Any:
        return await self.find(EntityKind.POOL, self.pool_key(contract, pool_id))

    async def user(self, contract: str, pool_id: Any, user: str) -> Any:
        return await self.find(EntityKind.USER, self.user_key(contract, pool_id, user))

    async def entities(self, kind: EntityKind) -> list[Any]:
        async with self.store.transaction() as s:
            return await s.list_entities(kind)

    async def records(self, kind: RecordKind = RecordKind.INTERACTION) -> list[Any]:
        async with self.store.transaction() as s:
            return await s.list_records(kind)

    async def counters(self) -> GlobalCounters:
        async with self.store.transaction() as s:
            return await s.get_counters()


def staked(contract: str, pool_id: Any, user: str, amount: int) -> tuple[str, dict[str, Any]]:
    """(event name, args) for a deposit in the given contract's family."""
    if contract == "DepositPoolStETH":
        return "UserStaked", {"rewardPoolIndex": pool_id, "user": user, "amount": amount}
    if contract == "Builders":
        return "Deposited", {"user": user, "builderPoolId": pool_id, "amount": amount}
    return "UserDeposited", {"subnetId": pool_id, "user": user, "amount": amount}


def withdrawn(contract: str, pool_id: Any, user: str, amount: int) -> tuple[str, dict[str, Any]]:
    if contract == "DepositPoolStETH":
        return "UserWithdrawn", {"rewardPoolIndex": pool_id, "user": user, "amount": amount}
    if contract == "Builders":
        return "Withdrawn", {"user": user, "builderPoolId": pool_id, "amount": amount}
    return "UserWithdrawn", {"subnetId": pool_id, "user": user, "amount": amount}


def chain_of(contract: str) -> int:
    return _CHAIN_OF[contract]
