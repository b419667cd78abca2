from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from staking_indexer.app.application.services.counters import CounterAggregator
from staking_indexer.app.domain.entities import (
    ChainCheckpoint,
    ChainState,
    EntityKind,
    InteractionRecord,
    InteractionType,
    JournalRecord,
    PoolConfigChange,
    RecordKind,
)
from staking_indexer.app.domain.errors import RollbackInconsistency
from staking_indexer.app.domain.keys import referral_key, referrer_key
from staking_indexer.app.domain.ports.out import AggregateSession, AggregateStore
from staking_indexer.app.domain.state import (
    rebuild_pool,
    rebuild_referral,
    rebuild_referrer,
    rebuild_user,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RollbackResult:
    chain_id: int
    common_ancestor_block: int
    deleted_records: int
    pools_rebuilt: int = 0
    pools_removed: int = 0
    users_rebuilt: int = 0
    users_removed: int = 0


@dataclass
class _Touched:
    pools: set[bytes] = field(default_factory=set)
    users: dict[bytes, bytes] = field(default_factory=dict)  # user key -> pool key
    referrers: dict[bytes, bytes] = field(default_factory=dict)
    referrals: dict[bytes, bytes] = field(default_factory=dict)

    def collect(self, record: JournalRecord) -> None:
        if isinstance(record, PoolConfigChange):
            self.pools.add(record.pool_key)
            return
        if not isinstance(record, InteractionRecord):
            return

        pk = record.pool_key
        self.pools.add(pk)
        if record.type.creates_user:
            self.users[record.user_key] = pk
        elif record.type is InteractionType.REFERRER_CLAIM:
            self.referrers[record.user_key] = pk
        elif record.type is InteractionType.REFERRAL and record.counterparty is not None:
            self.referrers[referrer_key(pk, record.counterparty)] = pk
            self.referrals[referral_key(pk, record.user_address, record.counterparty)] = pk


class ReorgHandler:
    """
    Per-chain state machine {FOLLOWING, ROLLING_BACK, CAUGHT_UP} plus the
    rollback procedure itself.

    Rollback never reverses deltas. It deletes the orphaned journal records and
    rebuilds every touched aggregate from the records that remain, so running
    it twice (or to an earlier ancestor afterwards) converges on the same state
    a fresh replay would produce.
    """

    def __init__(self, *, store: AggregateStore, counters: CounterAggregator) -> None:
        self._store = store
        self._counters = counters
        self._states: dict[int, ChainState] = {}

    def state(self, chain_id: int) -> ChainState:
        return self._states.get(chain_id, ChainState.FOLLOWING)

    def mark_caught_up(self, chain_id: int) -> None:
        if self.state(chain_id) is ChainState.ROLLING_BACK:
            raise RuntimeError(f"chain_id={chain_id} is rolling back")
        self._states[chain_id] = ChainState.CAUGHT_UP

    async def rollback(self, *, chain_id: int, common_ancestor_block: int) -> RollbackResult:
        if common_ancestor_block < 0:
            raise ValueError("common_ancestor_block must be non-negative")

        previous = self.state(chain_id)
        self._states[chain_id] = ChainState.ROLLING_BACK
        logger.info(
            "Rolling back chain",
            extra={"chain_id": chain_id, "common_ancestor_block": common_ancestor_block},
        )
        try:
            async with self._store.transaction() as session:
                result = await self._rollback(session, chain_id, common_ancestor_block)
        except Exception:
            # Leave the chain flagged; the store transaction was discarded.
            logger.exception(
                "Rollback failed",
                extra={"chain_id": chain_id, "common_ancestor_block": common_ancestor_block},
            )
            raise

        # A retry after a failed rollback returns the chain to normal following.
        self._states[chain_id] = ChainState.FOLLOWING if previous is ChainState.ROLLING_BACK else previous
        logger.info(
            "Rollback complete",
            extra={
                "chain_id": chain_id,
                "common_ancestor_block": common_ancestor_block,
                "deleted_records": result.deleted_records,
                "pools_rebuilt": result.pools_rebuilt,
                "pools_removed": result.pools_removed,
                "users_rebuilt": result.users_rebuilt,
                "users_removed": result.users_removed,
            },
        )
        return result

    async def _rollback(
        self, session: AggregateSession, chain_id: int, ancestor: int
    ) -> RollbackResult:
        touched = _Touched()
        deleted = 0
        for kind in RecordKind:
            removed = await session.delete_records_above(kind, chain_id=chain_id, block_number=ancestor)
            deleted += len(removed)
            for record in removed:
                touched.collect(record)

        # Retained interactions per touched pool, loaded once.
        retained: dict[bytes, list[InteractionRecord]] = {}
        for pk in touched.pools:
            retained[pk] = await session.list_records(RecordKind.INTERACTION, pool_key=pk)

        users_rebuilt = users_removed = 0
        for uk, pk in touched.users.items():
            own = [r for r in retained[pk] if r.user_key == uk and r.type.creates_user]
            user = await session.find(EntityKind.USER, uk)
            if not own:
                if user is not None:
                    await session.delete(EntityKind.USER, uk)
                    users_removed += 1
                continue
            if user is None:
                raise RollbackInconsistency(f"retained records reference missing user 0x{uk.hex()}")
            await session.save(EntityKind.USER, rebuild_user(user, own))
            users_rebuilt += 1

        for rk, pk in touched.referrers.items():
            own = [
                r
                for r in retained[pk]
                if (r.type is InteractionType.REFERRER_CLAIM and r.user_key == rk)
                or (
                    r.type is InteractionType.REFERRAL
                    and r.counterparty is not None
                    and referrer_key(pk, r.counterparty) == rk
                )
            ]
            await self._rebuild_or_drop(session, EntityKind.REFERRER, rk, own, rebuild_referrer)

        for ref_key, pk in touched.referrals.items():
            own = [
                r
                for r in retained[pk]
                if r.type is InteractionType.REFERRAL
                and r.counterparty is not None
                and referral_key(pk, r.user_address, r.counterparty) == ref_key
            ]
            await self._rebuild_or_drop(session, EntityKind.REFERRAL, ref_key, own, rebuild_referral)

        pools_rebuilt = pools_removed = 0
        for pk in touched.pools:
            changes = await session.list_records(RecordKind.POOL_CONFIG, pool_key=pk)
            pool = await session.find(EntityKind.POOL, pk)
            members = await session.list_entities(EntityKind.USER, pool_key=pk)

            if not changes:
                if retained[pk] or members:
                    raise RollbackInconsistency(
                        f"pool 0x{pk.hex()} has retained records but no creation record"
                    )
                if pool is not None:
                    await session.delete(EntityKind.POOL, pk)
                    pools_removed += 1
                continue
            if pool is None:
                raise RollbackInconsistency(f"retained records reference missing pool 0x{pk.hex()}")
            await session.save(EntityKind.POOL, rebuild_pool(pool, changes, members))
            pools_rebuilt += 1

        await self._counters.recompute(session)

        checkpoint = await session.get_checkpoint(chain_id)
        if checkpoint is not None and checkpoint.block_number > ancestor:
            await session.set_checkpoint(ChainCheckpoint(chain_id=chain_id, block_number=ancestor))

        return RollbackResult(
            chain_id=chain_id,
            common_ancestor_block=ancestor,
            deleted_records=deleted,
            pools_rebuilt=pools_rebuilt,
            pools_removed=pools_removed,
            users_rebuilt=users_rebuilt,
            users_removed=users_removed,
        )

    @staticmethod
    async def _rebuild_or_drop(
        session: AggregateSession,
        kind: EntityKind,
        key: bytes,
        records: list[InteractionRecord],
        rebuild: Callable[[Any, list[InteractionRecord]], Any],
    ) -> None:
        entity = await session.find(kind, key)
        if not records:
            if entity is not None:
                await session.delete(kind, key)
            return
        if entity is None:
            raise RollbackInconsistency(f"retained records reference missing {kind.value} 0x{key.hex()}")
        await session.save(kind, rebuild(entity, records))
