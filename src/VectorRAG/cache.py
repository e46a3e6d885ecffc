"""Bounded query-result cache keyed by quantised query vector and options."""

from __future__ import annotations

import hashlib
import json
import threading
from collections import OrderedDict
from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from .ranking import MetadataFilter
from .types import SearchOptions, SearchResult

__all__ = ("QueryCache", "make_cache_key")

_QUANTIZE_DECIMALS = 6


def make_cache_key(query: NDArray[np.floating], options: SearchOptions) -> Optional[str]:
    """Return a stable key for ``(query, options)``.

    The vector is rounded to six decimals so float noise in an otherwise
    identical query still hits. Returns ``None`` when the options carry a
    filter that cannot be described deterministically (an arbitrary callable).
    """
    if options.filter is None:
        filter_token = None
    elif isinstance(options.filter, MetadataFilter):
        filter_token = options.filter.cache_token
    else:
        return None
    quantized = np.round(np.asarray(query, dtype=np.float64), _QUANTIZE_DECIMALS)
    digest = hashlib.sha256(quantized.astype("<f8").tobytes())
    digest.update(
        json.dumps(
            {
                "top_k": options.top_k,
                "use_hybrid": options.use_hybrid,
                "text_query": options.text_query if options.use_hybrid else None,
                "alpha": options.alpha,
                "filter": filter_token,
                "group": options.group_by_parent_document,
            },
            sort_keys=True,
        ).encode("utf-8")
    )
    return digest.hexdigest()


class QueryCache:
    """Insertion-ordered FIFO cache with its own lock.

    ``capacity == 0`` disables caching entirely. Re-putting an existing key
    refreshes its value without moving it in eviction order.

    Examples:
        >>> cache = QueryCache(1)
        >>> cache.put("a", [])
        >>> cache.put("b", [])
        >>> cache.get("a") is None, cache.get("b")
        (True, ())
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError("capacity must be non-negative")
        self.capacity = int(capacity)
        self._entries: "OrderedDict[str, Tuple[SearchResult, ...]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def enabled(self) -> bool:
        return self.capacity > 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[Tuple[SearchResult, ...]]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
            return entry

    def put(self, key: str, results: Sequence[SearchResult]) -> None:
        if not self.enabled:
            return
        frozen = tuple(results)
        with self._lock:
            if key in self._entries:
                self._entries[key] = frozen
                return
            self._entries[key] = frozen
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "capacity": self.capacity,
                "hits": self._hits,
                "misses": self._misses,
            }
