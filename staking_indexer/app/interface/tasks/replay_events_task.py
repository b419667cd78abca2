from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterator

from staking_indexer.app.application.services.replay import ReplaySummary, replay_deliveries
from staking_indexer.app.config import get_settings
from staking_indexer.app.infrastructure.db.engine import create_app_async_engine
from staking_indexer.app.infrastructure.factories.pipeline_factory import pipeline_factory


def _read_jsonl(path: Path) -> Iterator[dict[str, Any]]:
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{path}:{line_no}: invalid JSON ({exc.msg})") from exc


async def replay_events_task(
    *,
    path: str,
    store_backend: str = "sqlalchemy",
    reader_backend: str = "web3",
) -> ReplaySummary:
    """
    Task: replay a JSON-lines delivery log (events, rollbacks, caught-up
    markers) through the pipeline into the configured store.
    """
    settings = get_settings()
    engine = create_app_async_engine() if store_backend == "sqlalchemy" else None
    try:
        bundle = pipeline_factory(
            settings=settings,
            engine=engine,
            store_backend=store_backend,
            reader_backend=reader_backend,
        )
        return await replay_deliveries(
            pipeline=bundle.pipeline,
            deliveries=_read_jsonl(Path(path)),
        )
    finally:
        if engine is not None:
            await engine.dispose()
