from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, Mapping, Protocol

from staking_indexer.app.domain.entities import (
    ChainCheckpoint,
    CounterDelta,
    Entity,
    EntityKind,
    GlobalCounters,
    JournalRecord,
    RecordKind,
    UserStakeState,
)
from staking_indexer.app.domain.events import ContractFamily


class AggregateSession(Protocol):
    """
    One atomic unit of work against the aggregate store.

    Everything written through a session commits together when the owning
    transaction block exits normally, and is discarded if it raises.
    """

    # -------------------------------------------------------------------------
    # Mutable aggregates
    # -------------------------------------------------------------------------
    async def find(self, kind: EntityKind, key: bytes) -> Entity | None: ...

    async def upsert(self, kind: EntityKind, key: bytes, initial: Entity) -> tuple[Entity, bool]:
        """Create from `initial` if absent. Returns (row, created)."""
        ...

    async def apply_delta(
        self, kind: EntityKind, key: bytes, deltas: Mapping[str, int]
    ) -> Entity:
        """Add integer deltas to existing fields. Raises EntityNotFound if absent."""
        ...

    async def set_fields(
        self, kind: EntityKind, key: bytes, fields: Mapping[str, Any]
    ) -> Entity:
        """Overwrite fields of an existing row. Raises EntityNotFound if absent."""
        ...

    async def save(self, kind: EntityKind, entity: Entity) -> None:
        """Insert or fully overwrite a row (used by recomputation only)."""
        ...

    async def delete(self, kind: EntityKind, key: bytes) -> None: ...

    async def list_entities(
        self,
        kind: EntityKind,
        *,
        chain_id: int | None = None,
        pool_key: bytes | None = None,
    ) -> list[Entity]: ...

    async def count_users_with_address(self, *, chain_id: int, address: bytes) -> int: ...

    # -------------------------------------------------------------------------
    # Global counters (singleton)
    # -------------------------------------------------------------------------
    async def get_counters(self, *, for_update: bool = False) -> GlobalCounters: ...

    async def apply_counter_delta(self, delta: CounterDelta) -> GlobalCounters: ...

    async def save_counters(self, counters: GlobalCounters) -> None: ...

    # -------------------------------------------------------------------------
    # Append-only journals
    # -------------------------------------------------------------------------
    async def record_exists(self, kind: RecordKind, key: bytes) -> bool: ...

    async def append(self, kind: RecordKind, record: JournalRecord) -> None:
        """Insert a record. Raises DuplicateInteraction if the key exists."""
        ...

    async def list_records(
        self,
        kind: RecordKind,
        *,
        chain_id: int | None = None,
        pool_key: bytes | None = None,
    ) -> list[JournalRecord]:
        """Records ordered by (chain_id, block_number, log_index)."""
        ...

    async def delete_records_above(
        self, kind: RecordKind, *, chain_id: int, block_number: int
    ) -> list[JournalRecord]:
        """Delete and return records of one chain with block_number > block_number."""
        ...

    async def latest_record_timestamp(self) -> int: ...

    # -------------------------------------------------------------------------
    # Chain progress
    # -------------------------------------------------------------------------
    async def get_checkpoint(self, chain_id: int) -> ChainCheckpoint | None: ...

    async def set_checkpoint(self, checkpoint: ChainCheckpoint) -> None: ...

    async def list_checkpoints(self) -> list[ChainCheckpoint]: ...


class AggregateStore(Protocol):
    """
    Port for the durable store of aggregates and journals.

    transaction() must serialize read-modify-write cycles on the same keys and
    make the whole unit durable before returning.
    """

    def transaction(self) -> AbstractAsyncContextManager[AggregateSession]: ...


class StakingStateReader(Protocol):
    """
    Port for synchronous reads of current contract state.

    Implementations retry transient failures and raise BalanceReadFailure once
    retries are exhausted. Addresses and pool ids are raw bytes.
    """

    async def read_user_state(
        self,
        *,
        family: ContractFamily,
        chain_id: int,
        contract_address: bytes,
        pool_id: bytes,
        user: bytes,
        block_number: int,
    ) -> UserStakeState: ...

    async def read_pool_config(
        self,
        *,
        family: ContractFamily,
        chain_id: int,
        contract_address: bytes,
        pool_id: bytes,
        block_number: int,
    ) -> dict[str, Any]:
        """Pool configuration fields (see POOL_CONFIG_FIELDS); unknown ones omitted."""
        ...

    def invalidate(self, *, chain_id: int, above_block: int) -> None:
        """Drop memoized reads of chain_id above above_block (after a rollback)."""
        ...


class Clock(Protocol):
    def __call__(self) -> float: ...
