from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ContractFamily(str, Enum):
    """
    Protocol family of an indexed contract.

    Several deployed contracts share one family (e.g. one deposit pool per
    token); handlers are written once per family and parameterized by the
    contract identity carried in EventMeta.
    """

    DEPOSIT_POOL = "deposit_pool"
    BUILDERS = "builders"
    BUILDERS_V4 = "builders_v4"
    TOKEN = "token"
    SUBNET_FACTORY = "subnet_factory"
    L2_FACTORY = "l2_factory"
    BUILDERS_TREASURY = "builders_treasury"

    @property
    def is_staking(self) -> bool:
        return self in (
            ContractFamily.DEPOSIT_POOL,
            ContractFamily.BUILDERS,
            ContractFamily.BUILDERS_V4,
        )


@dataclass(frozen=True)
class EventMeta:
    """
    Delivery context shared by every decoded event.

    Binary identifiers are raw bytes: contract_address is 20 bytes,
    transaction_hash is 32 bytes.
    """

    chain_id: int
    contract_name: str
    family: ContractFamily
    contract_address: bytes
    block_number: int
    block_timestamp: int
    transaction_hash: bytes
    log_index: int

    @property
    def position(self) -> tuple[int, int]:
        return self.block_number, self.log_index


# -----------------------------------------------------------------------------
# Staking pool lifecycle
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class PoolCreated:
    meta: EventMeta
    pool_id: bytes
    name: str | None = None
    admin: bytes | None = None
    minimal_deposit: int | None = None
    withdraw_lock_period_after_deposit: int | None = None
    claim_lock_end: int | None = None


@dataclass(frozen=True)
class PoolMetadataEdited:
    meta: EventMeta
    pool_id: bytes
    slug: str | None = None
    description: str | None = None
    website: str | None = None
    image: str | None = None


# -----------------------------------------------------------------------------
# Staking balances
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Deposited:
    meta: EventMeta
    pool_id: bytes
    user: bytes
    amount: int


@dataclass(frozen=True)
class Withdrawn:
    meta: EventMeta
    pool_id: bytes
    user: bytes
    amount: int


@dataclass(frozen=True)
class Claimed:
    meta: EventMeta
    pool_id: bytes
    user: bytes
    amount: int
    receiver: bytes | None = None


# -----------------------------------------------------------------------------
# Referrals (deposit pools only)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class UserReferred:
    meta: EventMeta
    pool_id: bytes
    user: bytes
    referrer: bytes
    amount: int


@dataclass(frozen=True)
class ReferrerClaimed:
    meta: EventMeta
    pool_id: bytes
    referrer: bytes
    amount: int
    receiver: bytes | None = None


# -----------------------------------------------------------------------------
# Records without aggregate effect
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class AdminEvent:
    """Proxy/ownership administration event, stored verbatim."""

    meta: EventMeta
    event_name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenTransfer:
    meta: EventMeta
    sender: bytes
    recipient: bytes
    value: int


@dataclass(frozen=True)
class SubnetDeployed:
    meta: EventMeta
    subnet: bytes
    creator: bytes
    name: str | None = None
    salt: bytes | None = None


@dataclass(frozen=True)
class RewardSent:
    meta: EventMeta
    receiver: bytes
    amount: int


StakingEvent = Deposited | Withdrawn | Claimed | UserReferred | ReferrerClaimed
PoolEvent = PoolCreated | PoolMetadataEdited
IndexedEvent = (
    StakingEvent | PoolEvent | AdminEvent | TokenTransfer | SubnetDeployed | RewardSent
)
