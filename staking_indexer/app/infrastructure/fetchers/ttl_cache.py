from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, TypeVar

from staking_indexer.app.domain.ports.out import Clock

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    Size- and time-bounded memo for contract reads.

    Entries expire ttl_seconds after insertion; when full, the least recently
    used entry is evicted. The clock is injectable so tests control expiry.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_size: int,
        clock: Clock | Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._data: OrderedDict[K, tuple[float, V]] = OrderedDict()

    def get(self, key: K) -> V | None:
        item = self._data.get(key)
        if item is None:
            return None
        expires_at, value = item
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return value

    def set(self, key: K, value: V) -> None:
        if key in self._data:
            del self._data[key]
        self._data[key] = (self._clock() + self._ttl, value)
        while len(self._data) > self._max_size:
            self._data.popitem(last=False)

    def purge_expired(self) -> int:
        now = self._clock()
        stale = [k for k, (expires_at, _) in self._data.items() if now >= expires_at]
        for k in stale:
            del self._data[k]
        return len(stale)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def discard_where(self, predicate: Callable[[K], bool]) -> int:
        doomed = [k for k in self._data if predicate(k)]
        for k in doomed:
            del self._data[k]
        return len(doomed)

    def __contains__(self, key: object) -> bool:
        # Read-only: neither refreshes recency nor evicts.
        item = self._data.get(key)  # type: ignore[call-overload]
        return item is not None and self._clock() < item[0]
