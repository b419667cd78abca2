from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Mapping

from staking_indexer.app.application.services.event_translator import EventTranslator
from staking_indexer.app.application.services.projector import EventProjector
from staking_indexer.app.application.services.reorg import ReorgHandler, RollbackResult
from staking_indexer.app.domain.entities import ChainCheckpoint, ChainState, CounterDelta
from staking_indexer.app.domain.errors import DuplicateInteraction
from staking_indexer.app.domain.ports.out import AggregateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockInfo:
    number: int
    timestamp: int


@dataclass(frozen=True)
class LogInfo:
    address: Any
    index: int


@dataclass(frozen=True)
class ProcessedEvent:
    """Outcome of one on_event call."""

    chain_id: int
    block_number: int
    log_index: int
    duplicate: bool
    delta: CounterDelta | None = None


class EventPipeline:
    """
    Inbound entry point for the chain-following collaborator.

    - on_event: translate -> contract reads -> project -> checkpoint. The reads
      run before the store transaction; project and checkpoint share it.
      Refused while the chain is rolling back.
    - on_rollback: drop memoized reads of orphaned blocks, then delegate to
      the ReorgHandler under the same per-chain lock, so a rollback waits for
      the chain's in-flight event to commit.

    One asyncio.Lock per chain id: events of one chain are processed strictly
    one at a time, different chains proceed concurrently.
    """

    def __init__(
        self,
        *,
        store: AggregateStore,
        translator: EventTranslator,
        projector: EventProjector,
        reorg: ReorgHandler,
    ) -> None:
        self._store = store
        self._translator = translator
        self._projector = projector
        self._reorg = reorg
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def on_event(
        self,
        *,
        chain_id: int,
        contract_name: str,
        event_name: str,
        args: Mapping[str, Any],
        block: BlockInfo,
        tx_hash: Any,
        log: LogInfo,
    ) -> ProcessedEvent:
        event = self._translator.translate(
            chain_id=chain_id,
            contract_name=contract_name,
            event_name=event_name,
            args=args,
            block_number=block.number,
            block_timestamp=block.timestamp,
            transaction_hash=tx_hash,
            log_address=log.address,
            log_index=log.index,
        )

        async with self._locks[chain_id]:
            if self._reorg.state(chain_id) is ChainState.ROLLING_BACK:
                raise RuntimeError(f"chain_id={chain_id} is rolling back; retry on_rollback first")
            reads = await self._projector.read_ahead(self._store, event)
            try:
                async with self._store.transaction() as session:
                    delta = await self._projector.project(session, event, reads)
                    await self._advance_checkpoint(session, chain_id, block.number, log.index)
            except DuplicateInteraction as exc:
                logger.debug(
                    "Duplicate delivery ignored: %s",
                    exc,
                    extra={"chain_id": chain_id, "block_number": block.number, "log_index": log.index},
                )
                return ProcessedEvent(
                    chain_id=chain_id,
                    block_number=block.number,
                    log_index=log.index,
                    duplicate=True,
                )

        return ProcessedEvent(
            chain_id=chain_id,
            block_number=block.number,
            log_index=log.index,
            duplicate=False,
            delta=delta,
        )

    async def on_rollback(self, chain_id: int, common_ancestor_block: int) -> RollbackResult:
        async with self._locks[chain_id]:
            self._projector.forget_reads_above(chain_id, common_ancestor_block)
            return await self._reorg.rollback(
                chain_id=chain_id,
                common_ancestor_block=common_ancestor_block,
            )

    def mark_caught_up(self, chain_id: int) -> None:
        self._reorg.mark_caught_up(chain_id)

    def state(self, chain_id: int) -> ChainState:
        return self._reorg.state(chain_id)

    async def last_processed_block(self, chain_id: int) -> int | None:
        async with self._store.transaction() as session:
            checkpoint = await session.get_checkpoint(chain_id)
        return None if checkpoint is None else checkpoint.block_number

    async def checkpoints(self) -> list[ChainCheckpoint]:
        async with self._store.transaction() as session:
            return await session.list_checkpoints()

    @staticmethod
    async def _advance_checkpoint(session, chain_id: int, block_number: int, log_index: int) -> None:
        current = await session.get_checkpoint(chain_id)
        position = (block_number, log_index)
        if current is not None and (
            current.block_number,
            -1 if current.log_index is None else current.log_index,
        ) >= position:
            return
        await session.set_checkpoint(
            ChainCheckpoint(chain_id=chain_id, block_number=block_number, log_index=log_index)
        )
