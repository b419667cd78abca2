from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from staking_indexer.app.application.services.contract_registry import ContractRegistry
from staking_indexer.app.application.services.counters import CounterAggregator
from staking_indexer.app.domain.entities import (
    CONFIG_SOURCE_CREATED,
    CONFIG_SOURCE_LAZY,
    CONFIG_SOURCE_METADATA,
    CONFIG_SOURCE_SUBNET_CREATED,
    CounterDelta,
    EntityKind,
    InteractionRecord,
    InteractionType,
    Pool,
    PoolConfigChange,
    RecordKind,
    Referral,
    Referrer,
    RewardDistribution,
    User,
    AdminEventRecord,
    SubnetDeployment,
    TokenTransferRecord,
    UserStakeState,
)
from staking_indexer.app.domain.errors import (
    BalanceReadFailure,
    DuplicateInteraction,
    EntityNotFound,
    UnknownEvent,
)
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
from staking_indexer.app.domain.keys import (
    event_key,
    pool_key,
    referral_key,
    referrer_key,
    user_key,
)
from staking_indexer.app.domain.ports.out import (
    AggregateSession,
    AggregateStore,
    StakingStateReader,
)
from staking_indexer.app.domain.state import merge_patch

logger = logging.getLogger(__name__)


class MissingEntityPolicy(str, Enum):
    """What to do when a withdraw/claim references an unknown user or pool."""

    STRICT = "strict"
    SYNTHESIZE = "synthesize"


@dataclass(frozen=True)
class ChainReads:
    """
    Contract state fetched for one event before its store transaction opens.

    user_state is None when there is nothing to read or the read failed; the
    projector then falls back to the event amount.
    """

    user_state: UserStakeState | None = None
    pool_config: dict[str, Any] = field(default_factory=dict)


_RECORD_KIND: dict[type, RecordKind] = {
    Deposited: RecordKind.INTERACTION,
    Withdrawn: RecordKind.INTERACTION,
    Claimed: RecordKind.INTERACTION,
    UserReferred: RecordKind.INTERACTION,
    ReferrerClaimed: RecordKind.INTERACTION,
    PoolCreated: RecordKind.POOL_CONFIG,
    PoolMetadataEdited: RecordKind.POOL_CONFIG,
    AdminEvent: RecordKind.ADMIN_EVENT,
    TokenTransfer: RecordKind.TOKEN_TRANSFER,
    SubnetDeployed: RecordKind.SUBNET_DEPLOYMENT,
    RewardSent: RecordKind.REWARD_DISTRIBUTION,
}

# Events addressed to one pool of a staking contract.
_POOL_EVENTS = (
    PoolCreated,
    PoolMetadataEdited,
    Deposited,
    Withdrawn,
    Claimed,
    UserReferred,
    ReferrerClaimed,
)

Handler = Callable[[AggregateSession, Any, bytes, ChainReads], Awaitable["CounterDelta | None"]]


def _non_null(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None}


class EventProjector:
    """
    Projects one typed event into aggregate mutations + one journal record.

    Work per event is split in two steps:

    read_ahead() performs the contract reads (user balance at the event's
    block, pool config for pools about to be created) without holding a store
    transaction, so a slow or retrying RPC only delays its own chain.

    project() then runs inside the caller's session:
    - derive keys with the identity codec,
    - refuse redelivered events up front (DuplicateInteraction) so a replay
      never applies a second delta,
    - read current aggregates, compute the delta, write aggregates,
    - append exactly one journal record keyed by the event key,
    - hand the resulting CounterDelta to the CounterAggregator.

    The projector keeps no state between events. When the balance read fails
    it falls back to previous +/- amount and marks the record low_fidelity.
    """

    def __init__(
        self,
        *,
        registry: ContractRegistry,
        counters: CounterAggregator,
        state_reader: StakingStateReader | None = None,
        missing_entity_policy: MissingEntityPolicy = MissingEntityPolicy.STRICT,
    ) -> None:
        self._registry = registry
        self._counters = counters
        self._reader = state_reader
        self._policy = missing_entity_policy

        self._handlers: dict[type, Handler] = {
            PoolCreated: self._on_pool_created,
            PoolMetadataEdited: self._on_metadata_edited,
            Deposited: self._on_deposited,
            Withdrawn: self._on_withdrawn,
            Claimed: self._on_claimed,
            UserReferred: self._on_user_referred,
            ReferrerClaimed: self._on_referrer_claimed,
            AdminEvent: self._on_admin_event,
            TokenTransfer: self._on_token_transfer,
            SubnetDeployed: self._on_subnet_deployed,
            RewardSent: self._on_reward_sent,
        }

    async def read_ahead(self, store: AggregateStore, event: IndexedEvent) -> ChainReads:
        """
        Fetch the contract state `event` needs, outside any store transaction.

        Callers hold the chain's lock; pools are keyed by chain, so whether
        the pool exists cannot change before the event is projected.
        """
        if self._reader is None or not isinstance(event, _POOL_EVENTS):
            return ChainReads()

        meta = event.meta
        ek = event_key(meta.chain_id, meta.transaction_hash, meta.log_index)
        pk = pool_key(meta.chain_id, meta.contract_address, event.pool_id)
        async with store.transaction() as session:
            if await session.record_exists(_RECORD_KIND[type(event)], ek):
                return ChainReads()
            pool_known = await session.find(EntityKind.POOL, pk) is not None

        config: dict[str, Any] = {}
        if self._needs_pool_config(event, pool_known):
            config = await self._chain_pool_config(meta, event.pool_id)

        user_state = None
        if isinstance(event, (Deposited, Withdrawn)):
            user_state = await self._chain_user_state(meta, event.pool_id, event.user)

        return ChainReads(user_state=user_state, pool_config=config)

    async def project(
        self, session: AggregateSession, event: IndexedEvent, reads: ChainReads
    ) -> CounterDelta | None:
        try:
            handler = self._handlers[type(event)]
        except KeyError:
            raise UnknownEvent(f"No projector for event type {type(event).__name__}")

        meta = event.meta
        ek = event_key(meta.chain_id, meta.transaction_hash, meta.log_index)
        if await session.record_exists(_RECORD_KIND[type(event)], ek):
            raise DuplicateInteraction(ek)

        delta = await handler(session, event, ek, reads)
        if delta is not None:
            await self._counters.apply(session, delta)
        return delta

    def forget_reads_above(self, chain_id: int, block_number: int) -> None:
        """Drop memoized contract reads of orphaned blocks after a reorg."""
        if self._reader is not None:
            self._reader.invalidate(chain_id=chain_id, above_block=block_number)

    # -------------------------------------------------------------------------
    # Pool lifecycle
    # -------------------------------------------------------------------------
    async def _on_pool_created(
        self, session: AggregateSession, e: PoolCreated, ek: bytes, reads: ChainReads
    ) -> CounterDelta:
        ts = e.meta.block_timestamp
        wl = e.withdraw_lock_period_after_deposit
        # Subnet metadata is set at creation but not emitted; it arrives via
        # the contract read, and event fields win over it.
        fields = _non_null(
            merge_patch(
                reads.pool_config,
                {
                    "name": e.name,
                    "admin": e.admin,
                    "minimal_deposit": e.minimal_deposit,
                    "withdraw_lock_period_after_deposit": wl,
                    "claim_lock_end": e.claim_lock_end
                    if e.claim_lock_end is not None
                    else (ts + wl if wl is not None else None),
                    "starts_at": ts,
                },
            )
        )
        is_subnet = e.meta.family is ContractFamily.BUILDERS_V4

        pk = pool_key(e.meta.chain_id, e.meta.contract_address, e.pool_id)
        existing = await session.find(EntityKind.POOL, pk)
        if existing is None:
            await session.upsert(EntityKind.POOL, pk, self._new_pool(e.meta, e.pool_id, pk, fields))
        else:
            # Lazily created by an earlier deposit/metadata event: back-fill only.
            await session.set_fields(EntityKind.POOL, pk, fields)

        source = CONFIG_SOURCE_SUBNET_CREATED if is_subnet else CONFIG_SOURCE_CREATED
        await session.append(
            RecordKind.POOL_CONFIG,
            self._config_change(e.meta, ek, pk, e.pool_id, source, fields),
        )
        created = int(existing is None)
        return CounterDelta(pools=created, subnets=created if is_subnet else 0, timestamp=ts)

    async def _on_metadata_edited(
        self, session: AggregateSession, e: PoolMetadataEdited, ek: bytes, reads: ChainReads
    ) -> CounterDelta:
        fields = _non_null(
            {
                "slug": e.slug,
                "description": e.description,
                "website": e.website,
                "image": e.image,
            }
        )
        pk = pool_key(e.meta.chain_id, e.meta.contract_address, e.pool_id)
        existing = await session.find(EntityKind.POOL, pk)
        if existing is None:
            _, created = await self._ensure_pool(session, e.meta, e.pool_id, ek, reads, patch=fields)
            return CounterDelta(pools=int(created), timestamp=e.meta.block_timestamp)

        if fields:
            await session.set_fields(EntityKind.POOL, pk, fields)
        await session.append(
            RecordKind.POOL_CONFIG,
            self._config_change(e.meta, ek, pk, e.pool_id, CONFIG_SOURCE_METADATA, fields),
        )
        return CounterDelta(timestamp=e.meta.block_timestamp)

    # -------------------------------------------------------------------------
    # Stake movements
    # -------------------------------------------------------------------------
    async def _on_deposited(
        self, session: AggregateSession, e: Deposited, ek: bytes, reads: ChainReads
    ) -> CounterDelta:
        pool, pool_created = await self._ensure_pool(session, e.meta, e.pool_id, ek, reads)
        user, user_delta = await self._ensure_user(session, pool, e.user)

        previous = user.staked
        state, low_fidelity = self._ground_truth(reads, previous + e.amount)

        user = await session.set_fields(
            EntityKind.USER,
            user.key,
            self._balance_fields(user, state)
            | {
                "last_stake_timestamp": e.meta.block_timestamp,
                "last_deposit_amount": e.amount,
            },
        )
        stake_delta = user.staked - previous
        await self._apply_pool_delta(
            session,
            pool.key,
            total_staked=stake_delta,
            total_users=user_delta.users_across_pools,
        )

        await session.append(
            RecordKind.INTERACTION,
            self._interaction(e.meta, ek, InteractionType.DEPOSIT, e.amount, user, low_fidelity=low_fidelity),
        )
        return user_delta + CounterDelta(
            pools=int(pool_created),
            staked=stake_delta,
            timestamp=e.meta.block_timestamp,
        )

    async def _on_withdrawn(
        self, session: AggregateSession, e: Withdrawn, ek: bytes, reads: ChainReads
    ) -> CounterDelta:
        pool, pool_created = await self._require_pool(session, e.meta, e.pool_id, ek, reads)
        user, user_delta = await self._require_user(session, pool, e.user)

        previous = user.staked
        fallback = previous - e.amount
        if fallback < 0:
            logger.warning(
                "Withdraw exceeds locally known stake; clamping fallback balance to zero",
                extra={"user_key": user.key.hex(), "staked": str(previous), "amount": str(e.amount)},
            )
            fallback = 0
        state, low_fidelity = self._ground_truth(reads, fallback)

        user = await session.set_fields(EntityKind.USER, user.key, self._balance_fields(user, state))
        stake_delta = user.staked - previous
        await self._apply_pool_delta(
            session,
            pool.key,
            total_staked=stake_delta,
            total_users=user_delta.users_across_pools,
        )

        await session.append(
            RecordKind.INTERACTION,
            self._interaction(e.meta, ek, InteractionType.WITHDRAW, e.amount, user, low_fidelity=low_fidelity),
        )
        return user_delta + CounterDelta(
            pools=int(pool_created),
            staked=stake_delta,
            timestamp=e.meta.block_timestamp,
        )

    async def _on_claimed(
        self, session: AggregateSession, e: Claimed, ek: bytes, reads: ChainReads
    ) -> CounterDelta:
        pool, pool_created = await self._require_pool(session, e.meta, e.pool_id, ek, reads)
        user, user_delta = await self._require_user(session, pool, e.user)

        user = await session.apply_delta(EntityKind.USER, user.key, {"claimed": e.amount})
        await self._apply_pool_delta(
            session,
            pool.key,
            total_claimed=e.amount,
            total_users=user_delta.users_across_pools,
        )

        await session.append(
            RecordKind.INTERACTION,
            self._interaction(
                e.meta, ek, InteractionType.CLAIM, e.amount, user, counterparty=e.receiver, snapshot=False
            ),
        )
        return user_delta + CounterDelta(pools=int(pool_created), timestamp=e.meta.block_timestamp)

    # -------------------------------------------------------------------------
    # Referrals
    # -------------------------------------------------------------------------
    async def _on_user_referred(
        self, session: AggregateSession, e: UserReferred, ek: bytes, reads: ChainReads
    ) -> CounterDelta:
        pool, pool_created = await self._ensure_pool(session, e.meta, e.pool_id, ek, reads)

        rk = referrer_key(pool.key, e.referrer)
        await session.upsert(
            EntityKind.REFERRER,
            rk,
            Referrer(key=rk, pool_key=pool.key, chain_id=pool.chain_id, address=e.referrer),
        )
        ref_key = referral_key(pool.key, e.user, e.referrer)
        await session.upsert(
            EntityKind.REFERRAL,
            ref_key,
            Referral(
                key=ref_key,
                pool_key=pool.key,
                chain_id=pool.chain_id,
                referral_address=e.user,
                referrer_address=e.referrer,
            ),
        )
        await session.apply_delta(EntityKind.REFERRAL, ref_key, {"amount": e.amount})

        await session.append(
            RecordKind.INTERACTION,
            InteractionRecord(
                **self._record_meta(e.meta, ek),
                type=InteractionType.REFERRAL,
                amount=e.amount,
                pool_key=pool.key,
                user_key=user_key(pool.key, e.user),
                user_address=e.user,
                counterparty=e.referrer,
            ),
        )
        return CounterDelta(pools=int(pool_created), timestamp=e.meta.block_timestamp)

    async def _on_referrer_claimed(
        self, session: AggregateSession, e: ReferrerClaimed, ek: bytes, reads: ChainReads
    ) -> CounterDelta:
        pool, pool_created = await self._require_pool(session, e.meta, e.pool_id, ek, reads)

        rk = referrer_key(pool.key, e.referrer)
        if await session.find(EntityKind.REFERRER, rk) is None:
            if self._policy is MissingEntityPolicy.STRICT:
                raise EntityNotFound(EntityKind.REFERRER.value, rk)
            logger.warning(
                "Synthesizing missing referrer",
                extra={"referrer_key": rk.hex(), "chain_id": e.meta.chain_id},
            )
            await session.upsert(
                EntityKind.REFERRER,
                rk,
                Referrer(key=rk, pool_key=pool.key, chain_id=pool.chain_id, address=e.referrer),
            )
        await session.apply_delta(EntityKind.REFERRER, rk, {"claimed": e.amount})

        await session.append(
            RecordKind.INTERACTION,
            InteractionRecord(
                **self._record_meta(e.meta, ek),
                type=InteractionType.REFERRER_CLAIM,
                amount=e.amount,
                pool_key=pool.key,
                user_key=rk,
                user_address=e.referrer,
                counterparty=e.receiver,
            ),
        )
        return CounterDelta(pools=int(pool_created), timestamp=e.meta.block_timestamp)

    # -------------------------------------------------------------------------
    # Records without aggregate effect
    # -------------------------------------------------------------------------
    async def _on_admin_event(
        self, session: AggregateSession, e: AdminEvent, ek: bytes, reads: ChainReads
    ) -> None:
        await session.append(
            RecordKind.ADMIN_EVENT,
            AdminEventRecord(
                **self._record_meta(e.meta, ek),
                contract_address=e.meta.contract_address,
                event_name=e.event_name,
                args=dict(e.args),
            ),
        )
        return None

    async def _on_token_transfer(
        self, session: AggregateSession, e: TokenTransfer, ek: bytes, reads: ChainReads
    ) -> None:
        staking = self._registry.staking_addresses(e.meta.chain_id)
        await session.append(
            RecordKind.TOKEN_TRANSFER,
            TokenTransferRecord(
                **self._record_meta(e.meta, ek),
                contract_address=e.meta.contract_address,
                sender=e.sender,
                recipient=e.recipient,
                value=e.value,
                is_staking_deposit=e.recipient in staking,
                is_staking_withdraw=e.sender in staking,
            ),
        )
        return None

    async def _on_subnet_deployed(
        self, session: AggregateSession, e: SubnetDeployed, ek: bytes, reads: ChainReads
    ) -> CounterDelta:
        await session.append(
            RecordKind.SUBNET_DEPLOYMENT,
            SubnetDeployment(
                **self._record_meta(e.meta, ek),
                subnet=e.subnet,
                factory_address=e.meta.contract_address,
                creator=e.creator,
                name=e.name,
                salt=e.salt,
            ),
        )
        return CounterDelta(subnets=1, timestamp=e.meta.block_timestamp)

    async def _on_reward_sent(
        self, session: AggregateSession, e: RewardSent, ek: bytes, reads: ChainReads
    ) -> None:
        await session.append(
            RecordKind.REWARD_DISTRIBUTION,
            RewardDistribution(
                **self._record_meta(e.meta, ek),
                treasury_address=e.meta.contract_address,
                receiver=e.receiver,
                amount=e.amount,
            ),
        )
        return None

    # -------------------------------------------------------------------------
    # Find-or-create helpers
    # -------------------------------------------------------------------------
    async def _ensure_pool(
        self,
        session: AggregateSession,
        meta: EventMeta,
        pool_id: bytes,
        ek: bytes,
        reads: ChainReads,
        *,
        patch: dict[str, Any] | None = None,
    ) -> tuple[Pool, bool]:
        """
        Find the pool or create it lazily.

        Lazy creation back-fills configuration from the contract and journals
        it as a "lazy" config change, so a later creation event only patches.
        """
        pk = pool_key(meta.chain_id, meta.contract_address, pool_id)
        existing = await session.find(EntityKind.POOL, pk)
        if existing is not None:
            return existing, False

        fields = _non_null(merge_patch(reads.pool_config, patch or {}))
        pool, created = await session.upsert(EntityKind.POOL, pk, self._new_pool(meta, pool_id, pk, fields))
        await session.append(
            RecordKind.POOL_CONFIG,
            self._config_change(meta, ek, pk, pool_id, CONFIG_SOURCE_LAZY, fields),
        )
        logger.info(
            "Pool created lazily before its creation event",
            extra={"pool_key": pk.hex(), "chain_id": meta.chain_id, "block_number": meta.block_number},
        )
        return pool, created

    async def _require_pool(
        self,
        session: AggregateSession,
        meta: EventMeta,
        pool_id: bytes,
        ek: bytes,
        reads: ChainReads,
    ) -> tuple[Pool, bool]:
        pk = pool_key(meta.chain_id, meta.contract_address, pool_id)
        existing = await session.find(EntityKind.POOL, pk)
        if existing is not None:
            return existing, False
        if self._policy is MissingEntityPolicy.STRICT:
            raise EntityNotFound(EntityKind.POOL.value, pk)
        logger.warning(
            "Synthesizing missing pool",
            extra={"pool_key": pk.hex(), "chain_id": meta.chain_id},
        )
        return await self._ensure_pool(session, meta, pool_id, ek, reads)

    async def _ensure_user(
        self, session: AggregateSession, pool: Pool, address: bytes
    ) -> tuple[User, CounterDelta]:
        uk = user_key(pool.key, address)
        existing = await session.find(EntityKind.USER, uk)
        if existing is not None:
            return existing, CounterDelta()

        first_on_chain = await session.count_users_with_address(
            chain_id=pool.chain_id, address=address
        ) == 0
        user, _ = await session.upsert(
            EntityKind.USER,
            uk,
            User(key=uk, pool_key=pool.key, chain_id=pool.chain_id, address=address),
        )
        return user, CounterDelta(users=int(first_on_chain), users_across_pools=1)

    async def _require_user(
        self, session: AggregateSession, pool: Pool, address: bytes
    ) -> tuple[User, CounterDelta]:
        uk = user_key(pool.key, address)
        existing = await session.find(EntityKind.USER, uk)
        if existing is not None:
            return existing, CounterDelta()
        if self._policy is MissingEntityPolicy.STRICT:
            raise EntityNotFound(EntityKind.USER.value, uk)
        logger.warning(
            "Synthesizing zero-state user for withdraw/claim",
            extra={"user_key": uk.hex(), "chain_id": pool.chain_id},
        )
        return await self._ensure_user(session, pool, address)

    # -------------------------------------------------------------------------
    # External reads
    # -------------------------------------------------------------------------
    def _needs_pool_config(self, event: IndexedEvent, pool_known: bool) -> bool:
        if isinstance(event, PoolCreated):
            return event.meta.family is ContractFamily.BUILDERS_V4
        if pool_known:
            return False
        if isinstance(event, (Deposited, UserReferred, PoolMetadataEdited)):
            return True
        # Withdraw/claim on an unknown pool only creates it when synthesizing.
        return self._policy is MissingEntityPolicy.SYNTHESIZE

    @staticmethod
    def _ground_truth(reads: ChainReads, fallback_balance: int) -> tuple[UserStakeState, bool]:
        """Return (state, low_fidelity)."""
        if reads.user_state is not None:
            return reads.user_state, False
        return UserStakeState(deposited=fallback_balance), True

    async def _chain_user_state(
        self, meta: EventMeta, pool_id: bytes, user: bytes
    ) -> UserStakeState | None:
        try:
            return await self._reader.read_user_state(
                family=meta.family,
                chain_id=meta.chain_id,
                contract_address=meta.contract_address,
                pool_id=pool_id,
                user=user,
                block_number=meta.block_number,
            )
        except BalanceReadFailure as exc:
            logger.warning(
                "Balance read failed, falling back to event amount: %s",
                exc,
                extra={"chain_id": meta.chain_id, "block_number": meta.block_number},
            )
            return None

    async def _chain_pool_config(self, meta: EventMeta, pool_id: bytes) -> dict[str, Any]:
        try:
            return await self._reader.read_pool_config(
                family=meta.family,
                chain_id=meta.chain_id,
                contract_address=meta.contract_address,
                pool_id=pool_id,
                block_number=meta.block_number,
            )
        except BalanceReadFailure as exc:
            logger.warning(
                "Pool config read failed, creating pool with placeholder config: %s",
                exc,
                extra={"chain_id": meta.chain_id, "pool_id": pool_id.hex()},
            )
            return {}

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------
    @staticmethod
    async def _apply_pool_delta(session: AggregateSession, pk: bytes, **deltas: int) -> None:
        nonzero = {k: v for k, v in deltas.items() if v}
        if nonzero:
            await session.apply_delta(EntityKind.POOL, pk, nonzero)

    @staticmethod
    def _balance_fields(user: User, state: UserStakeState) -> dict[str, Any]:
        return {
            "staked": state.deposited,
            "virtual_deposited": user.virtual_deposited
            if state.virtual_deposited is None
            else state.virtual_deposited,
            "claim_lock_start": user.claim_lock_start
            if state.claim_lock_start is None
            else state.claim_lock_start,
        }

    @staticmethod
    def _new_pool(meta: EventMeta, pool_id: bytes, pk: bytes, fields: dict[str, Any]) -> Pool:
        return Pool(
            key=pk,
            chain_id=meta.chain_id,
            contract_address=meta.contract_address,
            pool_id=pool_id,
            created_at_block=meta.block_number,
            created_at_timestamp=meta.block_timestamp,
            **fields,
        )

    @staticmethod
    def _record_meta(meta: EventMeta, ek: bytes) -> dict[str, Any]:
        return {
            "key": ek,
            "chain_id": meta.chain_id,
            "block_number": meta.block_number,
            "log_index": meta.log_index,
            "block_timestamp": meta.block_timestamp,
            "transaction_hash": meta.transaction_hash,
        }

    def _config_change(
        self,
        meta: EventMeta,
        ek: bytes,
        pk: bytes,
        pool_id: bytes,
        source: str,
        fields: dict[str, Any],
    ) -> PoolConfigChange:
        return PoolConfigChange(
            **self._record_meta(meta, ek),
            pool_key=pk,
            contract_address=meta.contract_address,
            pool_id=pool_id,
            source=source,
            fields=dict(fields),
        )

    def _interaction(
        self,
        meta: EventMeta,
        ek: bytes,
        type_: InteractionType,
        amount: int,
        user: User,
        *,
        counterparty: bytes | None = None,
        low_fidelity: bool = False,
        snapshot: bool = True,
    ) -> InteractionRecord:
        return InteractionRecord(
            **self._record_meta(meta, ek),
            type=type_,
            amount=amount,
            pool_key=user.pool_key,
            user_key=user.key,
            user_address=user.address,
            counterparty=counterparty,
            balance_after=user.staked if snapshot else None,
            virtual_deposited_after=user.virtual_deposited if snapshot else None,
            claim_lock_start_after=user.claim_lock_start if snapshot else None,
            low_fidelity=low_fidelity,
        )
