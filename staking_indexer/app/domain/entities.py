from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

GLOBAL_COUNTERS_ID = "global"


class EntityKind(str, Enum):
    """Mutable aggregates owned by the store, all keyed by codec-derived bytes."""

    POOL = "pool"
    USER = "user"
    REFERRER = "referrer"
    REFERRAL = "referral"


class RecordKind(str, Enum):
    """Append-only journals. Every record is keyed by its event key."""

    INTERACTION = "interaction"
    POOL_CONFIG = "pool_config"
    ADMIN_EVENT = "admin_event"
    TOKEN_TRANSFER = "token_transfer"
    SUBNET_DEPLOYMENT = "subnet_deployment"
    REWARD_DISTRIBUTION = "reward_distribution"


class InteractionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    CLAIM = "CLAIM"
    REFERRAL = "REFERRAL"
    REFERRER_CLAIM = "REFERRER_CLAIM"

    @property
    def creates_user(self) -> bool:
        return self in (
            InteractionType.DEPOSIT,
            InteractionType.WITHDRAW,
            InteractionType.CLAIM,
        )


class ChainState(str, Enum):
    FOLLOWING = "FOLLOWING"
    ROLLING_BACK = "ROLLING_BACK"
    CAUGHT_UP = "CAUGHT_UP"


# Sources of pool config journal entries. A subnet creation event also counts
# towards GlobalCounters.total_subnets when it creates the pool.
CONFIG_SOURCE_LAZY = "lazy"
CONFIG_SOURCE_CREATED = "created"
CONFIG_SOURCE_SUBNET_CREATED = "subnet_created"
CONFIG_SOURCE_METADATA = "metadata"

# Pool configuration fields that can be patched by creation / metadata events.
POOL_CONFIG_FIELDS: tuple[str, ...] = (
    "name",
    "admin",
    "minimal_deposit",
    "withdraw_lock_period_after_deposit",
    "claim_lock_end",
    "starts_at",
    "slug",
    "description",
    "website",
    "image",
)


# -----------------------------------------------------------------------------
# Aggregates
# -----------------------------------------------------------------------------
@dataclass
class Pool:
    key: bytes
    chain_id: int
    contract_address: bytes
    pool_id: bytes

    total_staked: int = 0
    total_users: int = 0
    total_claimed: int = 0

    name: str | None = None
    admin: bytes | None = None
    minimal_deposit: int | None = None
    withdraw_lock_period_after_deposit: int | None = None
    claim_lock_end: int | None = None
    starts_at: int | None = None

    slug: str | None = None
    description: str | None = None
    website: str | None = None
    image: str | None = None

    created_at_block: int = 0
    created_at_timestamp: int = 0


@dataclass
class User:
    key: bytes
    pool_key: bytes
    chain_id: int
    address: bytes

    staked: int = 0
    claimed: int = 0
    last_stake_timestamp: int = 0
    last_deposit_amount: int = 0
    virtual_deposited: int = 0
    claim_lock_start: int = 0


@dataclass
class Referrer:
    key: bytes
    pool_key: bytes
    chain_id: int
    address: bytes
    claimed: int = 0


@dataclass
class Referral:
    key: bytes
    pool_key: bytes
    chain_id: int
    referral_address: bytes
    referrer_address: bytes
    amount: int = 0


Entity = Pool | User | Referrer | Referral

ENTITY_TYPES: dict[EntityKind, type] = {
    EntityKind.POOL: Pool,
    EntityKind.USER: User,
    EntityKind.REFERRER: Referrer,
    EntityKind.REFERRAL: Referral,
}


@dataclass
class GlobalCounters:
    id: str = GLOBAL_COUNTERS_ID
    total_pools: int = 0
    total_users: int = 0
    total_users_across_pools: int = 0
    total_staked: int = 0
    total_subnets: int = 0
    last_updated: int = 0


@dataclass(frozen=True)
class CounterDelta:
    """Exact counter adjustment produced by one projected event."""

    pools: int = 0
    users: int = 0
    users_across_pools: int = 0
    staked: int = 0
    subnets: int = 0
    timestamp: int = 0

    def __add__(self, other: CounterDelta) -> CounterDelta:
        return CounterDelta(
            pools=self.pools + other.pools,
            users=self.users + other.users,
            users_across_pools=self.users_across_pools + other.users_across_pools,
            staked=self.staked + other.staked,
            subnets=self.subnets + other.subnets,
            timestamp=max(self.timestamp, other.timestamp),
        )


# -----------------------------------------------------------------------------
# Journal records (immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class JournalRecord:
    key: bytes
    chain_id: int
    block_number: int
    log_index: int
    block_timestamp: int
    transaction_hash: bytes

    @property
    def position(self) -> tuple[int, int, int]:
        return self.chain_id, self.block_number, self.log_index


@dataclass(frozen=True)
class InteractionRecord(JournalRecord):
    """
    One staking interaction.

    balance_after / virtual_deposited_after / claim_lock_start_after hold the
    user snapshot written by the projector, so a user can be rebuilt from its
    records alone. low_fidelity marks snapshots computed from the event amount
    because the on-chain read was unavailable.

    For REFERRAL records user_key is the referred user and counterparty the
    referrer; for REFERRER_CLAIM user_key is the referrer.
    """

    type: InteractionType
    amount: int
    pool_key: bytes
    user_key: bytes
    user_address: bytes
    counterparty: bytes | None = None
    balance_after: int | None = None
    virtual_deposited_after: int | None = None
    claim_lock_start_after: int | None = None
    low_fidelity: bool = False


@dataclass(frozen=True)
class PoolConfigChange(JournalRecord):
    """Merge-patch applied to a pool's configuration (non-null fields only)."""

    pool_key: bytes
    contract_address: bytes
    pool_id: bytes
    source: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AdminEventRecord(JournalRecord):
    contract_address: bytes
    event_name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenTransferRecord(JournalRecord):
    contract_address: bytes
    sender: bytes
    recipient: bytes
    value: int
    is_staking_deposit: bool = False
    is_staking_withdraw: bool = False


@dataclass(frozen=True)
class SubnetDeployment(JournalRecord):
    subnet: bytes
    factory_address: bytes
    creator: bytes
    name: str | None = None
    salt: bytes | None = None


@dataclass(frozen=True)
class RewardDistribution(JournalRecord):
    """Reward paid out by a builders treasury to one receiver."""

    treasury_address: bytes
    receiver: bytes
    amount: int


RECORD_TYPES: dict[RecordKind, type] = {
    RecordKind.INTERACTION: InteractionRecord,
    RecordKind.POOL_CONFIG: PoolConfigChange,
    RecordKind.ADMIN_EVENT: AdminEventRecord,
    RecordKind.TOKEN_TRANSFER: TokenTransferRecord,
    RecordKind.SUBNET_DEPLOYMENT: SubnetDeployment,
    RecordKind.REWARD_DISTRIBUTION: RewardDistribution,
}


# -----------------------------------------------------------------------------
# Chain progress / external reads
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class ChainCheckpoint:
    chain_id: int
    block_number: int
    log_index: int | None = None


@dataclass(frozen=True)
class UserStakeState:
    """Authoritative per-user staking state read from the pool contract."""

    deposited: int
    virtual_deposited: int | None = None
    claim_lock_start: int | None = None
