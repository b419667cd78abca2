from __future__ import annotations

from typing import Callable, Dict, Iterable

from web3 import AsyncHTTPProvider, AsyncWeb3

from staking_indexer.app.config import Settings
from staking_indexer.app.domain.ports.out import StakingStateReader
from staking_indexer.app.infrastructure.fetchers.staking_state_fetcher import (
    Web3StakingStateFetcher,
)
from staking_indexer.app.infrastructure.fetchers.ttl_cache import TTLCache

StakingStateReaderFactory = Callable[[Settings, Iterable[int]], StakingStateReader | None]

_STATE_READER_REGISTRY: Dict[str, StakingStateReaderFactory] = {}


def _make_web3_reader(settings: Settings, chain_ids: Iterable[int]) -> StakingStateReader:
    """
    Wire dependencies for the web3 backend:
    - AsyncWeb3 provider per chain (RPC_URLS),
    - TTL cache sized from settings,
    - fetcher with bounded retry.
    """
    providers = {
        chain_id: AsyncWeb3(
            AsyncHTTPProvider(
                settings.rpc_url(chain_id),
                request_kwargs={"timeout": 30},
            )
        )
        for chain_id in chain_ids
    }
    cache: TTLCache = TTLCache(
        ttl_seconds=settings.balance_cache_ttl_seconds,
        max_size=settings.balance_cache_max_size,
    )
    return Web3StakingStateFetcher(
        providers=providers,
        cache=cache,
        attempts=settings.balance_read_attempts,
        max_wait_seconds=settings.balance_read_max_wait_seconds,
    )


# Register backends
_STATE_READER_REGISTRY["web3"] = _make_web3_reader
# No reader: every balance comes from the event amount (records flagged low_fidelity).
_STATE_READER_REGISTRY["none"] = lambda settings, chain_ids: None


def staking_state_reader_factory(
    *,
    backend: str,
    settings: Settings,
    chain_ids: Iterable[int],
) -> StakingStateReader | None:
    try:
        factory = _STATE_READER_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported staking state reader backend: {backend!r}")

    return factory(settings, chain_ids)
