from __future__ import annotations

from staking_indexer.app.application.services.reorg import RollbackResult
from staking_indexer.app.config import get_settings
from staking_indexer.app.infrastructure.db.engine import create_app_async_engine
from staking_indexer.app.infrastructure.factories.pipeline_factory import pipeline_factory


async def rollback_task(
    *,
    chain_id: int,
    common_ancestor_block: int,
) -> RollbackResult:
    """
    Task: discard everything a chain recorded above common_ancestor_block and
    rebuild the affected aggregates and global counters.
    """
    engine = create_app_async_engine()
    try:
        bundle = pipeline_factory(
            settings=get_settings(),
            engine=engine,
            reader_backend="none",
        )
        return await bundle.pipeline.on_rollback(chain_id, common_ancestor_block)
    finally:
        await engine.dispose()
