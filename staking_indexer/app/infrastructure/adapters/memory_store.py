from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Mapping

from staking_indexer.app.domain.entities import (
    ChainCheckpoint,
    CounterDelta,
    Entity,
    EntityKind,
    GlobalCounters,
    JournalRecord,
    RecordKind,
)
from staking_indexer.app.domain.errors import DuplicateInteraction, EntityNotFound

logger = logging.getLogger(__name__)

_TIMESTAMPED = (RecordKind.INTERACTION, RecordKind.POOL_CONFIG, RecordKind.SUBNET_DEPLOYMENT)

_DELETED = object()


@dataclass
class _State:
    entities: dict[EntityKind, dict[bytes, Entity]] = field(
        default_factory=lambda: {kind: {} for kind in EntityKind}
    )
    records: dict[RecordKind, dict[bytes, JournalRecord]] = field(
        default_factory=lambda: {kind: {} for kind in RecordKind}
    )
    counters: GlobalCounters = field(default_factory=GlobalCounters)
    checkpoints: dict[int, ChainCheckpoint] = field(default_factory=dict)


def _matches(obj: Any, chain_id: int | None, pool_key: bytes | None) -> bool:
    if chain_id is not None and obj.chain_id != chain_id:
        return False
    if pool_key is not None and getattr(obj, "pool_key", getattr(obj, "key", None)) != pool_key:
        return False
    return True


class MemorySession:
    """
    Write-overlay over the committed state.

    Reads see committed rows patched by this session's own writes; nothing is
    visible to other sessions until the store merges the overlay on commit.
    """

    def __init__(self, state: _State) -> None:
        self._base = state
        self._entities: dict[EntityKind, dict[bytes, Any]] = {kind: {} for kind in EntityKind}
        self._added: dict[RecordKind, dict[bytes, JournalRecord]] = {kind: {} for kind in RecordKind}
        self._removed: dict[RecordKind, set[bytes]] = {kind: set() for kind in RecordKind}
        self._counters: GlobalCounters | None = None
        self._checkpoints: dict[int, ChainCheckpoint] = {}

    # -------------------------------------------------------------------------
    # Mutable aggregates
    # -------------------------------------------------------------------------
    async def find(self, kind: EntityKind, key: bytes) -> Entity | None:
        entity = self._current(kind, key)
        return None if entity is None else replace(entity)

    async def upsert(self, kind: EntityKind, key: bytes, initial: Entity) -> tuple[Entity, bool]:
        existing = self._current(kind, key)
        if existing is not None:
            return replace(existing), False
        if initial.key != key:
            raise ValueError(f"{kind.value} key mismatch")
        self._entities[kind][key] = replace(initial)
        return replace(initial), True

    async def apply_delta(self, kind: EntityKind, key: bytes, deltas: Mapping[str, int]) -> Entity:
        entity = self._writable(kind, key)
        for name, delta in deltas.items():
            setattr(entity, name, getattr(entity, name) + delta)
        return replace(entity)

    async def set_fields(self, kind: EntityKind, key: bytes, fields: Mapping[str, Any]) -> Entity:
        entity = self._writable(kind, key)
        for name, value in fields.items():
            if not hasattr(entity, name) or name == "key":
                raise ValueError(f"Unknown {kind.value} field: {name!r}")
            setattr(entity, name, value)
        return replace(entity)

    async def save(self, kind: EntityKind, entity: Entity) -> None:
        self._entities[kind][entity.key] = replace(entity)

    async def delete(self, kind: EntityKind, key: bytes) -> None:
        self._entities[kind][key] = _DELETED

    async def list_entities(
        self,
        kind: EntityKind,
        *,
        chain_id: int | None = None,
        pool_key: bytes | None = None,
    ) -> list[Entity]:
        merged = dict(self._base.entities[kind])
        for key, value in self._entities[kind].items():
            if value is _DELETED:
                merged.pop(key, None)
            else:
                merged[key] = value
        return [
            replace(e)
            for _, e in sorted(merged.items())
            if _matches(e, chain_id, pool_key)
        ]

    async def count_users_with_address(self, *, chain_id: int, address: bytes) -> int:
        users = await self.list_entities(EntityKind.USER, chain_id=chain_id)
        return sum(1 for u in users if u.address == address)

    # -------------------------------------------------------------------------
    # Global counters
    # -------------------------------------------------------------------------
    async def get_counters(self, *, for_update: bool = False) -> GlobalCounters:
        # The store lock already serializes sessions; for_update is a no-op here.
        return replace(self._counters or self._base.counters)

    async def apply_counter_delta(self, delta: CounterDelta) -> GlobalCounters:
        c = replace(self._counters or self._base.counters)
        c.total_pools += delta.pools
        c.total_users += delta.users
        c.total_users_across_pools += delta.users_across_pools
        c.total_staked += delta.staked
        c.total_subnets += delta.subnets
        c.last_updated = max(c.last_updated, delta.timestamp)
        self._counters = c
        return replace(c)

    async def save_counters(self, counters: GlobalCounters) -> None:
        self._counters = replace(counters)

    # -------------------------------------------------------------------------
    # Journals
    # -------------------------------------------------------------------------
    async def record_exists(self, kind: RecordKind, key: bytes) -> bool:
        if key in self._added[kind]:
            return True
        return key in self._base.records[kind] and key not in self._removed[kind]

    async def append(self, kind: RecordKind, record: JournalRecord) -> None:
        if await self.record_exists(kind, record.key):
            raise DuplicateInteraction(record.key)
        self._added[kind][record.key] = record

    async def list_records(
        self,
        kind: RecordKind,
        *,
        chain_id: int | None = None,
        pool_key: bytes | None = None,
    ) -> list[JournalRecord]:
        records = [
            r
            for key, r in self._base.records[kind].items()
            if key not in self._removed[kind]
        ]
        records.extend(self._added[kind].values())
        return sorted(
            (r for r in records if _matches(r, chain_id, pool_key)),
            key=lambda r: r.position,
        )

    async def delete_records_above(
        self, kind: RecordKind, *, chain_id: int, block_number: int
    ) -> list[JournalRecord]:
        doomed = [
            r
            for r in await self.list_records(kind, chain_id=chain_id)
            if r.block_number > block_number
        ]
        for r in doomed:
            if self._added[kind].pop(r.key, None) is None:
                self._removed[kind].add(r.key)
        return doomed

    async def latest_record_timestamp(self) -> int:
        latest = 0
        for kind in _TIMESTAMPED:
            for r in await self.list_records(kind):
                latest = max(latest, r.block_timestamp)
        return latest

    # -------------------------------------------------------------------------
    # Chain progress
    # -------------------------------------------------------------------------
    async def get_checkpoint(self, chain_id: int) -> ChainCheckpoint | None:
        if chain_id in self._checkpoints:
            return self._checkpoints[chain_id]
        return self._base.checkpoints.get(chain_id)

    async def set_checkpoint(self, checkpoint: ChainCheckpoint) -> None:
        self._checkpoints[checkpoint.chain_id] = checkpoint

    async def list_checkpoints(self) -> list[ChainCheckpoint]:
        merged = {**self._base.checkpoints, **self._checkpoints}
        return [merged[c] for c in sorted(merged)]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    def _current(self, kind: EntityKind, key: bytes) -> Entity | None:
        if key in self._entities[kind]:
            value = self._entities[kind][key]
            return None if value is _DELETED else value
        return self._base.entities[kind].get(key)

    def _writable(self, kind: EntityKind, key: bytes) -> Entity:
        current = self._current(kind, key)
        if current is None:
            raise EntityNotFound(kind.value, key)
        if self._entities[kind].get(key) is not current:
            current = replace(current)
            self._entities[kind][key] = current
        return current

    def commit_into(self, state: _State) -> None:
        for kind, overlay in self._entities.items():
            rows = state.entities[kind]
            for key, value in overlay.items():
                if value is _DELETED:
                    rows.pop(key, None)
                else:
                    rows[key] = value
        for kind in RecordKind:
            for key in self._removed[kind]:
                state.records[kind].pop(key, None)
            state.records[kind].update(self._added[kind])
        if self._counters is not None:
            state.counters = self._counters
        state.checkpoints.update(self._checkpoints)


class MemoryAggregateStore:
    """
    In-process AggregateStore.

    A single asyncio.Lock serializes transactions; a session's writes are
    merged into the committed state only when its block exits without error.
    Sessions hold the lock for store work only: contract reads happen before
    the transaction opens, so one chain's slow RPC never blocks another.
    Used by tests and by file replays that do not need Postgres.
    """

    def __init__(self) -> None:
        self._state = _State()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemorySession]:
        async with self._lock:
            session = MemorySession(self._state)
            yield session
            session.commit_into(self._state)

    def snapshot(self) -> dict[str, Any]:
        """Committed state as plain data, for comparing two stores."""
        return {
            "entities": {
                kind.value: dict(sorted(rows.items()))
                for kind, rows in self._state.entities.items()
            },
            "records": {
                kind.value: dict(sorted(rows.items()))
                for kind, rows in self._state.records.items()
            },
            "counters": self._state.counters,
        }
