from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence

from staking_indexer.app.application.services.contract_registry import ContractRegistry
from staking_indexer.app.domain.errors import UnknownEvent
from staking_indexer.app.domain.events import (
    AdminEvent,
    Claimed,
    ContractFamily,
    Deposited,
    EventMeta,
    IndexedEvent,
    PoolCreated,
    PoolMetadataEdited,
    ReferrerClaimed,
    RewardSent,
    SubnetDeployed,
    TokenTransfer,
    UserReferred,
    Withdrawn,
)
from staking_indexer.app.domain.keys import as_address, as_bytes32, pool_id_from_index

EventBuilder = Callable[[EventMeta, Mapping[str, Any]], IndexedEvent]

_ADMIN_EVENTS = (
    "AdminChanged",
    "BeaconUpgraded",
    "Initialized",
    "Upgraded",
    "OwnershipTransferred",
)

# Positional layout of BuildersV4 tuples when the decoder yields sequences.
_V4_SUBNET_FIELDS = (
    "name",
    "admin",
    "unusedStorage1_V4Update",
    "withdrawLockPeriodAfterDeposit",
    "unusedStorage2_V4Update",
    "minimalDeposit",
    "claimAdmin",
)
_V4_METADATA_FIELDS = ("slug", "description", "website", "image")


def _arg(args: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in args:
            return args[name]
    raise ValueError(f"Missing event argument, expected one of {list(names)}; got {sorted(args)}")


def _opt_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _opt_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_struct(value: Any, names: Sequence[str]) -> dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (list, tuple)):
        return dict(zip(names, value))
    raise ValueError(f"Unsupported struct value: {value!r}")


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


# -----------------------------------------------------------------------------
# deposit_pool
# -----------------------------------------------------------------------------
def _deposit_pool_id(args: Mapping[str, Any]) -> bytes:
    return pool_id_from_index(int(_arg(args, "rewardPoolIndex", "poolId")))


def _dp_staked(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    return Deposited(
        meta=meta,
        pool_id=_deposit_pool_id(args),
        user=as_address(_arg(args, "user")),
        amount=int(_arg(args, "amount")),
    )


def _dp_withdrawn(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    return Withdrawn(
        meta=meta,
        pool_id=_deposit_pool_id(args),
        user=as_address(_arg(args, "user")),
        amount=int(_arg(args, "amount")),
    )


def _dp_claimed(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    receiver = args.get("receiver")
    return Claimed(
        meta=meta,
        pool_id=_deposit_pool_id(args),
        user=as_address(_arg(args, "user")),
        amount=int(_arg(args, "amount")),
        receiver=None if receiver is None else as_address(receiver),
    )


def _dp_referred(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    return UserReferred(
        meta=meta,
        pool_id=_deposit_pool_id(args),
        user=as_address(_arg(args, "user")),
        referrer=as_address(_arg(args, "referrer")),
        amount=int(_arg(args, "amount")),
    )


def _dp_referrer_claimed(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    receiver = args.get("receiver")
    return ReferrerClaimed(
        meta=meta,
        pool_id=_deposit_pool_id(args),
        referrer=as_address(_arg(args, "referrer")),
        amount=int(_arg(args, "amount")),
        receiver=None if receiver is None else as_address(receiver),
    )


# -----------------------------------------------------------------------------
# builders (v1)
# -----------------------------------------------------------------------------
def _b_pool_created(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    admin = args.get("admin")
    return PoolCreated(
        meta=meta,
        pool_id=as_bytes32(_arg(args, "poolId", "builderPoolId")),
        name=_opt_text(args.get("name")),
        admin=None if admin is None else as_address(admin),
    )


def _b_deposited(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    return Deposited(
        meta=meta,
        pool_id=as_bytes32(_arg(args, "builderPoolId", "poolId")),
        user=as_address(_arg(args, "user")),
        amount=int(_arg(args, "amount")),
    )


def _b_withdrawn(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    return Withdrawn(
        meta=meta,
        pool_id=as_bytes32(_arg(args, "builderPoolId", "poolId")),
        user=as_address(_arg(args, "user")),
        amount=int(_arg(args, "amount")),
    )


def _b_claimed(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    receiver = args.get("receiver")
    return Claimed(
        meta=meta,
        pool_id=as_bytes32(_arg(args, "builderPoolId", "poolId")),
        user=as_address(_arg(args, "user")),
        amount=int(_arg(args, "amount")),
        receiver=None if receiver is None else as_address(receiver),
    )


# -----------------------------------------------------------------------------
# builders_v4
# -----------------------------------------------------------------------------
def _v4_subnet_created(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    subnet = _as_struct(_arg(args, "subnet"), _V4_SUBNET_FIELDS)
    admin = subnet.get("admin")
    return PoolCreated(
        meta=meta,
        pool_id=as_bytes32(_arg(args, "subnetId", "subnetId_")),
        name=_opt_text(subnet.get("name")),
        admin=None if admin is None else as_address(admin),
        minimal_deposit=_opt_int(subnet.get("minimalDeposit")),
        withdraw_lock_period_after_deposit=_opt_int(subnet.get("withdrawLockPeriodAfterDeposit")),
    )


def _v4_deposited(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    return Deposited(
        meta=meta,
        pool_id=as_bytes32(_arg(args, "subnetId", "subnetId_")),
        user=as_address(_arg(args, "user")),
        amount=int(_arg(args, "amount")),
    )


def _v4_withdrawn(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    return Withdrawn(
        meta=meta,
        pool_id=as_bytes32(_arg(args, "subnetId", "subnetId_")),
        user=as_address(_arg(args, "user")),
        amount=int(_arg(args, "amount")),
    )


def _v4_metadata_edited(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    metadata = _as_struct(_arg(args, "metadata_", "metadata"), _V4_METADATA_FIELDS)
    return PoolMetadataEdited(
        meta=meta,
        pool_id=as_bytes32(_arg(args, "subnetId_", "subnetId")),
        slug=_opt_text(metadata.get("slug")),
        description=_opt_text(metadata.get("description")),
        website=_opt_text(metadata.get("website")),
        image=_opt_text(metadata.get("image")),
    )


# -----------------------------------------------------------------------------
# token / factories / treasury
# -----------------------------------------------------------------------------
def _token_transfer(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    return TokenTransfer(
        meta=meta,
        sender=as_address(_arg(args, "from", "from_")),
        recipient=as_address(_arg(args, "to")),
        value=int(_arg(args, "value")),
    )


def _subnet_factory_created(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    return SubnetDeployed(
        meta=meta,
        subnet=as_address(_arg(args, "subnet")),
        creator=as_address(_arg(args, "owner", "creator")),
        name=_opt_text(args.get("name")),
    )


def _l2_factory_created(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    salt = args.get("salt")
    return SubnetDeployed(
        meta=meta,
        subnet=as_address(_arg(args, "subnet")),
        creator=as_address(_arg(args, "creator", "owner")),
        salt=None if salt is None else as_bytes32(salt),
    )


def _treasury_reward_sent(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
    return RewardSent(
        meta=meta,
        receiver=as_address(_arg(args, "receiver")),
        amount=int(_arg(args, "amount")),
    )


def _admin(event_name: str) -> EventBuilder:
    def build(meta: EventMeta, args: Mapping[str, Any]) -> IndexedEvent:
        return AdminEvent(meta=meta, event_name=event_name, args=_jsonable(dict(args)))

    return build


_ADMIN_BUILDERS: dict[str, EventBuilder] = {name: _admin(name) for name in _ADMIN_EVENTS}

_BUILDERS: dict[ContractFamily, dict[str, EventBuilder]] = {
    ContractFamily.DEPOSIT_POOL: {
        "UserStaked": _dp_staked,
        "UserWithdrawn": _dp_withdrawn,
        "UserClaimed": _dp_claimed,
        "UserReferred": _dp_referred,
        "ReferrerClaimed": _dp_referrer_claimed,
        **_ADMIN_BUILDERS,
    },
    ContractFamily.BUILDERS: {
        "BuilderPoolCreated": _b_pool_created,
        "Deposited": _b_deposited,
        "Withdrawn": _b_withdrawn,
        "Claimed": _b_claimed,
        **_ADMIN_BUILDERS,
    },
    ContractFamily.BUILDERS_V4: {
        "SubnetCreated": _v4_subnet_created,
        "UserDeposited": _v4_deposited,
        "UserWithdrawn": _v4_withdrawn,
        "SubnetMetadataEdited": _v4_metadata_edited,
        **_ADMIN_BUILDERS,
    },
    ContractFamily.TOKEN: {
        "Transfer": _token_transfer,
    },
    ContractFamily.SUBNET_FACTORY: {
        "SubnetCreated": _subnet_factory_created,
    },
    ContractFamily.L2_FACTORY: {
        "SubnetCreated": _l2_factory_created,
    },
    ContractFamily.BUILDERS_TREASURY: {
        "RewardSent": _treasury_reward_sent,
    },
}


class EventTranslator:
    """
    Turns a delivered (contract, event, args) triple into a typed event.

    Argument names follow the contract ABIs; the contract's family comes from
    the registry, so every deployment of a family shares one mapping.
    """

    def __init__(self, registry: ContractRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> ContractRegistry:
        return self._registry

    def translate(
        self,
        *,
        chain_id: int,
        contract_name: str,
        event_name: str,
        args: Mapping[str, Any],
        block_number: int,
        block_timestamp: int,
        transaction_hash: Any,
        log_address: Any | None,
        log_index: int,
    ) -> IndexedEvent:
        spec = self._registry.get(chain_id=chain_id, name=contract_name)
        try:
            builder = _BUILDERS[spec.family][event_name]
        except KeyError:
            raise UnknownEvent(
                f"Event {event_name!r} is not handled for contract {contract_name!r} "
                f"(family={spec.family.value})"
            )

        meta = EventMeta(
            chain_id=chain_id,
            contract_name=contract_name,
            family=spec.family,
            # Factory-spawned contracts emit from their own address.
            contract_address=spec.address if log_address is None else as_address(log_address),
            block_number=int(block_number),
            block_timestamp=int(block_timestamp),
            transaction_hash=as_bytes32(transaction_hash),
            log_index=int(log_index),
        )
        return builder(meta, args)
