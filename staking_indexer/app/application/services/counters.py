from __future__ import annotations

import logging

from staking_indexer.app.domain.entities import (
    CONFIG_SOURCE_SUBNET_CREATED,
    CounterDelta,
    EntityKind,
    GlobalCounters,
    RecordKind,
)
from staking_indexer.app.domain.ports.out import AggregateSession

logger = logging.getLogger(__name__)


class CounterAggregator:
    """
    Maintains the singleton GlobalCounters row.

    apply() is the hot path: purely additive, called inside the projector's
    transaction with the exact delta that projector produced. recompute() is a
    full rebuild from the Pool/User tables and the journals, used after
    rollbacks.
    """

    async def apply(self, session: AggregateSession, delta: CounterDelta) -> GlobalCounters:
        return await session.apply_counter_delta(delta)

    async def recompute(self, session: AggregateSession) -> GlobalCounters:
        # Lock the row first so concurrent additive updates from other chains
        # serialize behind the rebuild.
        current = await session.get_counters(for_update=True)

        pools = await session.list_entities(EntityKind.POOL)
        users = await session.list_entities(EntityKind.USER)
        subnets = await session.list_records(RecordKind.SUBNET_DEPLOYMENT)
        # A v4 subnet counts once, when its creation event also created the pool.
        first_source: dict[bytes, str] = {}
        for change in await session.list_records(RecordKind.POOL_CONFIG):
            first_source.setdefault(change.pool_key, change.source)
        created_subnets = sum(1 for s in first_source.values() if s == CONFIG_SOURCE_SUBNET_CREATED)

        rebuilt = GlobalCounters(
            id=current.id,
            total_pools=len(pools),
            total_users=len({(u.chain_id, u.address) for u in users}),
            total_users_across_pools=len(users),
            total_staked=sum(p.total_staked for p in pools),
            total_subnets=len(subnets) + created_subnets,
            last_updated=await session.latest_record_timestamp(),
        )
        await session.save_counters(rebuilt)

        if rebuilt != current:
            logger.info(
                "Global counters recomputed",
                extra={
                    "total_pools": rebuilt.total_pools,
                    "total_users": rebuilt.total_users,
                    "total_staked": str(rebuilt.total_staked),
                },
            )
        return rebuilt
