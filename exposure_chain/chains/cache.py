"""Bounded LRU caches scoped to one report-processing invocation.

Nothing here is module-level: a fresh cache is built for each invocation
and dropped with it, so entries can never outlive the run that read them.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Generic, Iterable, TypeVar

from exposure_chain.domain.models import UserRecord
from exposure_chain.infra.logging import get_logger

V = TypeVar("V")

DEFAULT_MAX_ENTRIES = 1000

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class LruCache(Generic[V]):
    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, V] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def has(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str, default: Any = None) -> V | Any:
        if key not in self._entries:
            self._misses += 1
            return default
        self._hits += 1
        self._entries.move_to_end(key)
        return self._entries[key]

    def set(self, key: str, value: V) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = value
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))

    def log_stats(self, label: str) -> None:
        s = self.stats()
        logger.info(
            "cache_stats",
            cache=label,
            hits=s.hits,
            misses=s.misses,
            size=s.size,
            hit_rate=round(s.hit_rate, 3),
        )


class QueryCache(LruCache[V]):
    @staticmethod
    def key(kind: str, *parts: Any) -> str:
        return ":".join([kind, *(str(p) for p in parts)])


class UserLookupCache(LruCache[UserRecord | None]):
    """Keyed by contact id; a cached ``None`` means the user is known missing."""

    def uncached_ids(self, ids: Iterable[str]) -> list[str]:
        seen: set[str] = set()
        out: list[str] = []
        for user_id in ids:
            if user_id in seen or self.has(user_id):
                continue
            seen.add(user_id)
            out.append(user_id)
        return out

    def populate_from_batch(self, records: Iterable[UserRecord]) -> int:
        count = 0
        for record in records:
            self.set(record.contact_id, record)
            count += 1
        return count

    def set_not_found(self, ids: Iterable[str]) -> None:
        for user_id in ids:
            self.set(user_id, None)
