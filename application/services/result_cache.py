"""TTL + LRU cache for ranked search results."""
from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Mapping, TypeVar

V = TypeVar("V")


def make_cache_key(query: str, fields: Mapping[str, Any], generation: int | None = None) -> str:
    """Deterministic key covering the query and every ranking input."""
    return json.dumps(
        {"query": query, "options": fields, "generation": generation},
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    )


@dataclass(slots=True)
class _Entry(Generic[V]):
    value: V
    expires_at: float


class ResultCache(Generic[V]):
    """Bounded cache where entries expire after ``ttl_seconds``.

    ``get`` drops expired entries and marks hits as most recently used;
    ``set`` evicts the least recently used entries beyond ``max_entries``.
    All operations hold one lock.
    """

    def __init__(
        self,
        max_entries: int = 200,
        ttl_seconds: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, _Entry[V]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + self.ttl_seconds)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, float]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
            }


__all__ = ["ResultCache", "make_cache_key"]
