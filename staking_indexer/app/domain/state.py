"""
Pure rebuild functions: aggregate state as a fold over journal records.

The projector maintains the same values incrementally; these folds are the
reference the reorg handler uses to restore aggregates after discarding
records.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable, TypeVar

from staking_indexer.app.domain.entities import (
    POOL_CONFIG_FIELDS,
    InteractionRecord,
    InteractionType,
    JournalRecord,
    Pool,
    PoolConfigChange,
    Referral,
    Referrer,
    User,
)

R = TypeVar("R", bound=JournalRecord)


def in_delivery_order(records: Iterable[R]) -> list[R]:
    return sorted(records, key=lambda r: r.position)


def merge_patch(current: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Only non-null incoming fields overwrite existing ones."""
    merged = dict(current)
    for name, value in patch.items():
        if name in POOL_CONFIG_FIELDS and value is not None:
            merged[name] = value
    return merged


def fold_pool_config(changes: Iterable[PoolConfigChange]) -> dict[str, Any]:
    config: dict[str, Any] = {name: None for name in POOL_CONFIG_FIELDS}
    for change in in_delivery_order(changes):
        config = merge_patch(config, change.fields)
    return config


def rebuild_user(user: User, records: Iterable[InteractionRecord]) -> User:
    """Replay the user's DEPOSIT/WITHDRAW/CLAIM records on a zeroed copy."""
    out = replace(
        user,
        staked=0,
        claimed=0,
        last_stake_timestamp=0,
        last_deposit_amount=0,
        virtual_deposited=0,
        claim_lock_start=0,
    )
    for r in in_delivery_order(records):
        if r.user_key != user.key or not r.type.creates_user:
            continue
        if r.type is InteractionType.CLAIM:
            out.claimed += r.amount
            continue

        if r.balance_after is not None:
            out.staked = r.balance_after
        if r.virtual_deposited_after is not None:
            out.virtual_deposited = r.virtual_deposited_after
        if r.claim_lock_start_after is not None:
            out.claim_lock_start = r.claim_lock_start_after
        if r.type is InteractionType.DEPOSIT:
            out.last_stake_timestamp = r.block_timestamp
            out.last_deposit_amount = r.amount
    return out


def rebuild_pool(
    pool: Pool,
    changes: Iterable[PoolConfigChange],
    users: Iterable[User],
) -> Pool:
    """
    Pool = fold of its config journal + sums over its users.

    The first config change marks creation: every creation path (creation
    event, lazy creation on deposit or metadata edit) journals one.
    """
    ordered = in_delivery_order(changes)
    if not ordered:
        raise ValueError(f"pool 0x{pool.key.hex()} has no config journal")

    members = list(users)
    first = ordered[0]
    return replace(
        pool,
        **fold_pool_config(ordered),
        total_staked=sum(u.staked for u in members),
        total_users=len(members),
        total_claimed=sum(u.claimed for u in members),
        created_at_block=first.block_number,
        created_at_timestamp=first.block_timestamp,
    )


def rebuild_referrer(referrer: Referrer, records: Iterable[InteractionRecord]) -> Referrer:
    claimed = sum(
        r.amount
        for r in records
        if r.type is InteractionType.REFERRER_CLAIM and r.user_key == referrer.key
    )
    return replace(referrer, claimed=claimed)


def rebuild_referral(referral: Referral, records: Iterable[InteractionRecord]) -> Referral:
    amount = sum(
        r.amount
        for r in records
        if r.type is InteractionType.REFERRAL
        and r.pool_key == referral.pool_key
        and r.user_address == referral.referral_address
        and r.counterparty == referral.referrer_address
    )
    return replace(referral, amount=amount)
