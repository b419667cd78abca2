from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import fields as dc_fields
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Mapping

from sqlalchemy import Table, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from staking_indexer.app.domain.entities import (
    ENTITY_TYPES,
    GLOBAL_COUNTERS_ID,
    RECORD_TYPES,
    ChainCheckpoint,
    CounterDelta,
    Entity,
    EntityKind,
    GlobalCounters,
    InteractionRecord,
    InteractionType,
    JournalRecord,
    PoolConfigChange,
    RecordKind,
)
from staking_indexer.app.domain.errors import DuplicateInteraction, EntityNotFound
from staking_indexer.app.infrastructure.db.models.domain.counters import (
    ChainCheckpointsDB,
    GlobalCountersDB,
)
from staking_indexer.app.infrastructure.db.models.domain.pools import PoolsDB
from staking_indexer.app.infrastructure.db.models.domain.referrals import ReferralsDB, ReferrersDB
from staking_indexer.app.infrastructure.db.models.domain.users import UsersDB
from staking_indexer.app.infrastructure.db.models.journal.admin_events import AdminEventsDB
from staking_indexer.app.infrastructure.db.models.journal.interactions import InteractionsDB
from staking_indexer.app.infrastructure.db.models.journal.pool_config_changes import (
    PoolConfigChangesDB,
)
from staking_indexer.app.infrastructure.db.models.journal.reward_distributions import (
    RewardDistributionsDB,
)
from staking_indexer.app.infrastructure.db.models.journal.subnet_deployments import (
    SubnetDeploymentsDB,
)
from staking_indexer.app.infrastructure.db.models.journal.token_transfers import TokenTransfersDB

logger = logging.getLogger(__name__)

ENTITY_TABLES: dict[EntityKind, Table] = {
    EntityKind.POOL: PoolsDB.__table__,
    EntityKind.USER: UsersDB.__table__,
    EntityKind.REFERRER: ReferrersDB.__table__,
    EntityKind.REFERRAL: ReferralsDB.__table__,
}

RECORD_TABLES: dict[RecordKind, Table] = {
    RecordKind.INTERACTION: InteractionsDB.__table__,
    RecordKind.POOL_CONFIG: PoolConfigChangesDB.__table__,
    RecordKind.ADMIN_EVENT: AdminEventsDB.__table__,
    RecordKind.TOKEN_TRANSFER: TokenTransfersDB.__table__,
    RecordKind.SUBNET_DEPLOYMENT: SubnetDeploymentsDB.__table__,
    RecordKind.REWARD_DISTRIBUTION: RewardDistributionsDB.__table__,
}

_COUNTERS: Table = GlobalCountersDB.__table__
_CHECKPOINTS: Table = ChainCheckpointsDB.__table__

_TIMESTAMPED = (RecordKind.INTERACTION, RecordKind.POOL_CONFIG, RecordKind.SUBNET_DEPLOYMENT)

# Config patch values stored as bytes on the dataclass, hex in JSONB.
_BYTES_CONFIG_FIELDS = ("admin",)


# -----------------------------------------------------------------------------
# Row <-> dataclass conversion
# -----------------------------------------------------------------------------
def _encode_config(values: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, value in values.items():
        if isinstance(value, (bytes, bytearray)):
            value = "0x" + bytes(value).hex()
        out[name] = value
    return out


def _decode_config(values: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(values)
    for name in _BYTES_CONFIG_FIELDS:
        v = out.get(name)
        if isinstance(v, str) and v.startswith("0x"):
            out[name] = bytes.fromhex(v[2:])
    return out


def _to_row(obj: Any) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for f in dc_fields(obj):
        value = getattr(obj, f.name)
        if isinstance(value, Enum):
            value = value.value
        row[f.name] = value
    if isinstance(obj, PoolConfigChange):
        row["fields"] = _encode_config(obj.fields)
    return row


def _normalize(value: Any) -> Any:
    # asyncpg returns Numeric as Decimal and BYTEA possibly as memoryview
    if isinstance(value, Decimal):
        return int(value)
    if isinstance(value, memoryview):
        return value.tobytes()
    return value


def _from_row(cls: type, row: Mapping[str, Any]) -> Any:
    values = {f.name: _normalize(row[f.name]) for f in dc_fields(cls)}
    if cls is InteractionRecord:
        values["type"] = InteractionType(values["type"])
    elif cls is PoolConfigChange:
        values["fields"] = _decode_config(values["fields"])
    return cls(**values)


class SqlAlchemySession:
    """
    AggregateSession over one AsyncConnection inside engine.begin().

    Incremental updates are single UPDATE ... SET col = col + :delta statements
    so the row lock is taken by the write itself; counters are never
    read-modified-written in Python on the hot path.
    """

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    # -------------------------------------------------------------------------
    # Mutable aggregates
    # -------------------------------------------------------------------------
    async def find(self, kind: EntityKind, key: bytes) -> Entity | None:
        table = ENTITY_TABLES[kind]
        result = await self._conn.execute(select(table).where(table.c.key == key))
        row = result.mappings().one_or_none()
        return None if row is None else _from_row(ENTITY_TYPES[kind], row)

    async def upsert(self, kind: EntityKind, key: bytes, initial: Entity) -> tuple[Entity, bool]:
        if initial.key != key:
            raise ValueError(f"{kind.value} key mismatch")
        table = ENTITY_TABLES[kind]
        stmt = (
            pg_insert(table)
            .values(_to_row(initial))
            .on_conflict_do_nothing(index_elements=[table.c.key])
            .returning(*table.c)
        )
        result = await self._conn.execute(stmt)
        row = result.mappings().one_or_none()
        if row is not None:
            return _from_row(ENTITY_TYPES[kind], row), True

        existing = await self.find(kind, key)
        if existing is None:
            raise EntityNotFound(kind.value, key)
        return existing, False

    async def apply_delta(self, kind: EntityKind, key: bytes, deltas: Mapping[str, int]) -> Entity:
        table = ENTITY_TABLES[kind]
        stmt = (
            update(table)
            .where(table.c.key == key)
            .values({name: table.c[name] + delta for name, delta in deltas.items()})
            .returning(*table.c)
        )
        return await self._returning_entity(kind, key, stmt)

    async def set_fields(self, kind: EntityKind, key: bytes, fields: Mapping[str, Any]) -> Entity:
        table = ENTITY_TABLES[kind]
        stmt = update(table).where(table.c.key == key).values(dict(fields)).returning(*table.c)
        return await self._returning_entity(kind, key, stmt)

    async def save(self, kind: EntityKind, entity: Entity) -> None:
        table = ENTITY_TABLES[kind]
        row = _to_row(entity)
        stmt = pg_insert(table).values(row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.key],
            set_={name: stmt.excluded[name] for name in row if name != "key"},
        )
        await self._conn.execute(stmt)

    async def delete(self, kind: EntityKind, key: bytes) -> None:
        table = ENTITY_TABLES[kind]
        await self._conn.execute(delete(table).where(table.c.key == key))

    async def list_entities(
        self,
        kind: EntityKind,
        *,
        chain_id: int | None = None,
        pool_key: bytes | None = None,
    ) -> list[Entity]:
        table = ENTITY_TABLES[kind]
        stmt = select(table)
        if chain_id is not None:
            stmt = stmt.where(table.c.chain_id == chain_id)
        if pool_key is not None:
            col = table.c.key if kind is EntityKind.POOL else table.c.pool_key
            stmt = stmt.where(col == pool_key)
        result = await self._conn.execute(stmt.order_by(table.c.key))
        return [_from_row(ENTITY_TYPES[kind], row) for row in result.mappings().all()]

    async def count_users_with_address(self, *, chain_id: int, address: bytes) -> int:
        table = ENTITY_TABLES[EntityKind.USER]
        result = await self._conn.execute(
            select(func.count())
            .select_from(table)
            .where(table.c.chain_id == chain_id, table.c.address == address)
        )
        return int(result.scalar_one())

    # -------------------------------------------------------------------------
    # Global counters
    # -------------------------------------------------------------------------
    async def get_counters(self, *, for_update: bool = False) -> GlobalCounters:
        await self._ensure_counters_row()
        stmt = select(_COUNTERS).where(_COUNTERS.c.id == GLOBAL_COUNTERS_ID)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._conn.execute(stmt)
        return _from_row(GlobalCounters, result.mappings().one())

    async def apply_counter_delta(self, delta: CounterDelta) -> GlobalCounters:
        await self._ensure_counters_row()
        c = _COUNTERS.c
        stmt = (
            update(_COUNTERS)
            .where(c.id == GLOBAL_COUNTERS_ID)
            .values(
                total_pools=c.total_pools + delta.pools,
                total_users=c.total_users + delta.users,
                total_users_across_pools=c.total_users_across_pools + delta.users_across_pools,
                total_staked=c.total_staked + delta.staked,
                total_subnets=c.total_subnets + delta.subnets,
                last_updated=func.greatest(c.last_updated, delta.timestamp),
            )
            .returning(*_COUNTERS.c)
        )
        result = await self._conn.execute(stmt)
        return _from_row(GlobalCounters, result.mappings().one())

    async def save_counters(self, counters: GlobalCounters) -> None:
        row = _to_row(counters)
        stmt = pg_insert(_COUNTERS).values(row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[_COUNTERS.c.id],
            set_={name: stmt.excluded[name] for name in row if name != "id"},
        )
        await self._conn.execute(stmt)

    # -------------------------------------------------------------------------
    # Journals
    # -------------------------------------------------------------------------
    async def record_exists(self, kind: RecordKind, key: bytes) -> bool:
        table = RECORD_TABLES[kind]
        result = await self._conn.execute(select(table.c.key).where(table.c.key == key))
        return result.first() is not None

    async def append(self, kind: RecordKind, record: JournalRecord) -> None:
        table = RECORD_TABLES[kind]
        stmt = (
            pg_insert(table)
            .values(_to_row(record))
            .on_conflict_do_nothing(index_elements=[table.c.key])
            .returning(table.c.key)
        )
        result = await self._conn.execute(stmt)
        if result.first() is None:
            raise DuplicateInteraction(record.key)

    async def list_records(
        self,
        kind: RecordKind,
        *,
        chain_id: int | None = None,
        pool_key: bytes | None = None,
    ) -> list[JournalRecord]:
        table = RECORD_TABLES[kind]
        stmt = select(table)
        if chain_id is not None:
            stmt = stmt.where(table.c.chain_id == chain_id)
        if pool_key is not None:
            stmt = stmt.where(table.c.pool_key == pool_key)
        stmt = stmt.order_by(table.c.chain_id, table.c.block_number, table.c.log_index)
        result = await self._conn.execute(stmt)
        return [_from_row(RECORD_TYPES[kind], row) for row in result.mappings().all()]

    async def delete_records_above(
        self, kind: RecordKind, *, chain_id: int, block_number: int
    ) -> list[JournalRecord]:
        table = RECORD_TABLES[kind]
        stmt = (
            delete(table)
            .where(table.c.chain_id == chain_id, table.c.block_number > block_number)
            .returning(*table.c)
        )
        result = await self._conn.execute(stmt)
        return [_from_row(RECORD_TYPES[kind], row) for row in result.mappings().all()]

    async def latest_record_timestamp(self) -> int:
        latest = 0
        for kind in _TIMESTAMPED:
            table = RECORD_TABLES[kind]
            result = await self._conn.execute(select(func.max(table.c.block_timestamp)))
            value = result.scalar_one()
            if value is not None:
                latest = max(latest, int(value))
        return latest

    # -------------------------------------------------------------------------
    # Chain progress
    # -------------------------------------------------------------------------
    async def get_checkpoint(self, chain_id: int) -> ChainCheckpoint | None:
        result = await self._conn.execute(
            select(_CHECKPOINTS).where(_CHECKPOINTS.c.chain_id == chain_id)
        )
        row = result.mappings().one_or_none()
        return None if row is None else _from_row(ChainCheckpoint, row)

    async def set_checkpoint(self, checkpoint: ChainCheckpoint) -> None:
        row = _to_row(checkpoint)
        stmt = pg_insert(_CHECKPOINTS).values(row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[_CHECKPOINTS.c.chain_id],
            set_={"block_number": stmt.excluded.block_number, "log_index": stmt.excluded.log_index},
        )
        await self._conn.execute(stmt)

    async def list_checkpoints(self) -> list[ChainCheckpoint]:
        result = await self._conn.execute(select(_CHECKPOINTS).order_by(_CHECKPOINTS.c.chain_id))
        return [_from_row(ChainCheckpoint, row) for row in result.mappings().all()]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    async def _returning_entity(self, kind: EntityKind, key: bytes, stmt: Any) -> Entity:
        result = await self._conn.execute(stmt)
        row = result.mappings().one_or_none()
        if row is None:
            raise EntityNotFound(kind.value, key)
        return _from_row(ENTITY_TYPES[kind], row)

    async def _ensure_counters_row(self) -> None:
        await self._conn.execute(
            pg_insert(_COUNTERS)
            .values(_to_row(GlobalCounters()))
            .on_conflict_do_nothing(index_elements=[_COUNTERS.c.id])
        )


class SqlAlchemyAggregateStore:
    """
    AggregateStore backed by Postgres.

    Strategy:
    - One engine.begin() block per unit of work: projection, counters and the
      checkpoint commit together or not at all.
    - Journal inserts use ON CONFLICT DO NOTHING; an empty RETURNING means the
      event was already recorded and surfaces as DuplicateInteraction, which
      rolls the whole unit back.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlAlchemySession]:
        async with self._engine.begin() as conn:
            yield SqlAlchemySession(conn)
