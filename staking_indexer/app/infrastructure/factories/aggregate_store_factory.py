from __future__ import annotations

from typing import Callable, Dict

from sqlalchemy.ext.asyncio import AsyncEngine

from staking_indexer.app.domain.ports.out import AggregateStore
from staking_indexer.app.infrastructure.adapters.memory_store import MemoryAggregateStore
from staking_indexer.app.infrastructure.adapters.sqlalchemy_store import SqlAlchemyAggregateStore

AggregateStoreFactory = Callable[[AsyncEngine | None], AggregateStore]

_AGGREGATE_STORE_REGISTRY: Dict[str, AggregateStoreFactory] = {}


def _make_sqlalchemy_store(engine: AsyncEngine | None) -> AggregateStore:
    if engine is None:
        raise ValueError("sqlalchemy aggregate store backend requires an engine")
    return SqlAlchemyAggregateStore(engine)


# Register backends
_AGGREGATE_STORE_REGISTRY["sqlalchemy"] = _make_sqlalchemy_store
_AGGREGATE_STORE_REGISTRY["memory"] = lambda engine: MemoryAggregateStore()


def aggregate_store_factory(
    *,
    backend: str,
    engine: AsyncEngine | None = None,
) -> AggregateStore:
    """
    Create the aggregate store for the given backend.

    - "sqlalchemy": Postgres via the shared AsyncEngine (domain.* / journal.*),
    - "memory": in-process store for tests and dry-run replays.
    """
    try:
        factory = _AGGREGATE_STORE_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported aggregate store backend: {backend!r}")

    return factory(engine)
