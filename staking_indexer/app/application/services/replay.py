from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from staking_indexer.app.application.services.pipeline import BlockInfo, EventPipeline, LogInfo

logger = logging.getLogger(__name__)


@dataclass
class ReplaySummary:
    events: int = 0
    duplicates: int = 0
    rollbacks: int = 0
    caught_up: int = 0


async def replay_deliveries(
    *,
    pipeline: EventPipeline,
    deliveries: Iterable[Mapping[str, Any]],
) -> ReplaySummary:
    """
    Feed a recorded delivery log into the pipeline, in order.

    Each delivery is one of:
      {"type": "event", "chain_id", "contract_name", "event_name", "args",
       "block": {"number", "timestamp"}, "tx_hash", "log": {"address", "index"}}
      {"type": "rollback", "chain_id", "common_ancestor_block"}
      {"type": "caught_up", "chain_id"}

    Errors propagate: a failed event halts the replay.
    """
    summary = ReplaySummary()
    for n, d in enumerate(deliveries, start=1):
        kind = d.get("type", "event")
        if kind == "event":
            block = d["block"]
            log = d.get("log") or {}
            result = await pipeline.on_event(
                chain_id=int(d["chain_id"]),
                contract_name=d["contract_name"],
                event_name=d["event_name"],
                args=d.get("args") or {},
                block=BlockInfo(number=int(block["number"]), timestamp=int(block["timestamp"])),
                tx_hash=d["tx_hash"],
                log=LogInfo(address=log.get("address"), index=int(log.get("index", 0))),
            )
            summary.events += 1
            summary.duplicates += int(result.duplicate)
        elif kind == "rollback":
            await pipeline.on_rollback(int(d["chain_id"]), int(d["common_ancestor_block"]))
            summary.rollbacks += 1
        elif kind == "caught_up":
            pipeline.mark_caught_up(int(d["chain_id"]))
            summary.caught_up += 1
        else:
            raise ValueError(f"Unsupported delivery type at entry {n}: {kind!r}")

        if n % 1000 == 0:
            logger.info("Replayed %s deliveries", n)

    logger.info(
        "Replay finished",
        extra={
            "events": summary.events,
            "duplicates": summary.duplicates,
            "rollbacks": summary.rollbacks,
        },
    )
    return summary
