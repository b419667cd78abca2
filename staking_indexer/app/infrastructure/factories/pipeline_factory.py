from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from staking_indexer.app.application.services.contract_registry import ContractRegistry
from staking_indexer.app.application.services.counters import CounterAggregator
from staking_indexer.app.application.services.event_translator import EventTranslator
from staking_indexer.app.application.services.pipeline import EventPipeline
from staking_indexer.app.application.services.projector import EventProjector, MissingEntityPolicy
from staking_indexer.app.application.services.reorg import ReorgHandler
from staking_indexer.app.config import Settings
from staking_indexer.app.domain.ports.out import AggregateStore
from staking_indexer.app.infrastructure.factories.aggregate_store_factory import (
    aggregate_store_factory,
)
from staking_indexer.app.infrastructure.factories.staking_state_reader_factory import (
    staking_state_reader_factory,
)


@dataclass(frozen=True)
class PipelineBundle:
    pipeline: EventPipeline
    store: AggregateStore
    registry: ContractRegistry


def pipeline_factory(
    *,
    settings: Settings,
    engine: AsyncEngine | None,
    store_backend: str = "sqlalchemy",
    reader_backend: str = "web3",
) -> PipelineBundle:
    """
    Wire the whole materialization pipeline:
    - contract registry from CONTRACTS_FILE (validated, fails fast),
    - aggregate store backend,
    - staking state reader (per-chain web3 + TTL cache),
    - translator / projector / reorg handler around one counter aggregator.
    """
    registry = ContractRegistry.from_config(settings.load_contracts())
    store = aggregate_store_factory(backend=store_backend, engine=engine)
    reader = staking_state_reader_factory(
        backend=reader_backend,
        settings=settings,
        chain_ids=registry.chain_ids,
    )

    counters = CounterAggregator()
    projector = EventProjector(
        registry=registry,
        counters=counters,
        state_reader=reader,
        missing_entity_policy=MissingEntityPolicy(settings.missing_entity_policy),
    )
    pipeline = EventPipeline(
        store=store,
        translator=EventTranslator(registry),
        projector=projector,
        reorg=ReorgHandler(store=store, counters=counters),
    )
    return PipelineBundle(pipeline=pipeline, store=store, registry=registry)
