from __future__ import annotations

import logging
from typing import Any

from staking_indexer.app.infrastructure.adapters.sqlalchemy_queries import SqlAlchemyStakingQueries
from staking_indexer.app.infrastructure.db.engine import create_app_async_engine

logger = logging.getLogger(__name__)


async def status_task() -> dict[str, Any]:
    """Task: global counters plus the last processed block of every chain."""
    engine = create_app_async_engine()
    try:
        queries = SqlAlchemyStakingQueries(engine)
        stats = await queries.stats()
        checkpoints = await queries.checkpoints()
    finally:
        await engine.dispose()

    for cp in checkpoints:
        logger.info(
            "Chain checkpoint",
            extra={"chain_id": cp["chain_id"], "block_number": cp["block_number"]},
        )
    return {"stats": stats, "checkpoints": checkpoints}
