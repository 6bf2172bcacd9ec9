"""In-process LRU cache for expensive grouping/filtering/aggregation results.

Keys are content-derived: `namespace:sha256(data):sha256(params)`, so the
same inputs always land on the same entry. The cache is bounded both by
entry count and by an estimate of the memory its values occupy.

Every public method is fault tolerant: an internal error is logged and
turns into a miss (reads) or a no-op (writes).
"""
from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from pydantic import BaseModel

from survey_benchmarks.models import AggregatedRecord, AnalyticsFilters

log = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 50
DEFAULT_MAX_MEMORY_BYTES = 50 * 1024 * 1024

# Namespaces used by the service
NS_NORMALIZED = "normalized"
NS_AGGREGATED = "aggregated"
NS_FILTERED = "filtered"


@dataclass
class CacheEntry:
    key: str
    value: Any
    size: int
    created_at: float = field(default_factory=time.time)
    version: str = field(default_factory=lambda: uuid.uuid4().hex)
    access_count: int = 0


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    return obj


def _digest(obj: Any) -> str:
    payload = json.dumps(_jsonable(obj), sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def estimate_size(value: Any) -> int:
    """Rough byte size of a cached value (serialized length, UTF-16 width)."""
    return len(json.dumps(_jsonable(value), default=str)) * 2


class ComputationCache:
    """Thread-safe LRU cache with hit/miss/eviction statistics.

    Args:
        max_entries: Maximum number of entries kept.
        max_memory_bytes: Maximum estimated size of all values together.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_memory_bytes: int = DEFAULT_MAX_MEMORY_BYTES,
    ) -> None:
        self.max_entries = max(1, int(max_entries))
        self.max_memory_bytes = max(1, int(max_memory_bytes))
        self._lock = threading.RLock()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._memory = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # ---- keys ----
    @staticmethod
    def generate_key(operation: str, data: Any, params: Any = None) -> str:
        """Build `operation:hash(data):hash(params)`."""
        return f"{operation}:{_digest(data)}:{_digest(params or {})}"

    @classmethod
    def filter_key(cls, records: Sequence[AggregatedRecord], filters: AnalyticsFilters | None) -> str:
        """Key for a filter pass; only the dimension fields of `records` are hashed."""
        projection = [
            (r.specialty, r.survey_source, r.region, r.provider_type, r.survey_year)
            for r in records
        ]
        params = filters.model_dump() if filters is not None else {}
        return cls.generate_key(NS_FILTERED, projection, params)

    @classmethod
    def aggregation_key(cls, fingerprint: str, survey_ids: Iterable[str], by_year: bool = False) -> str:
        """Key for an aggregation pass over a given upstream state."""
        return cls.generate_key(NS_AGGREGATED, [fingerprint, sorted(survey_ids)], {"by_year": by_year})

    # ---- access ----
    def get(self, key: str) -> Any | None:
        try:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    self._misses += 1
                    return None
                self._entries.move_to_end(key)
                entry.access_count += 1
                self._hits += 1
                return entry.value
        except Exception as e:
            log.warning("Computation cache get failed for %s: %s", key, e)
            return None

    def has(self, key: str) -> bool:
        try:
            with self._lock:
                return key in self._entries
        except Exception as e:
            log.warning("Computation cache lookup failed for %s: %s", key, e)
            return False

    def entry(self, key: str) -> CacheEntry | None:
        """Entry metadata for `key` without touching LRU order or stats."""
        try:
            with self._lock:
                return self._entries.get(key)
        except Exception as e:
            log.warning("Computation cache entry lookup failed for %s: %s", key, e)
            return None

    def set(self, key: str, value: Any) -> None:
        if value is None:
            return
        try:
            size = estimate_size(value)
            if size > self.max_memory_bytes:
                log.debug("Not caching %s: %d bytes exceeds the cache bound", key, size)
                return
            with self._lock:
                old = self._entries.pop(key, None)
                if old is not None:
                    self._memory -= old.size
                self._entries[key] = CacheEntry(key=key, value=value, size=size)
                self._memory += size
                self._evict()
        except Exception as e:
            log.warning("Computation cache set failed for %s: %s", key, e)

    def _evict(self) -> None:
        while self._entries and (
            len(self._entries) > self.max_entries or self._memory > self.max_memory_bytes
        ):
            key, entry = self._entries.popitem(last=False)
            self._memory -= entry.size
            self._evictions += 1
            log.debug("Evicted %s (%d bytes)", key, entry.size)

    def clear(self, namespace: str | None = None) -> int:
        """Drop every entry, or only those whose key starts with `namespace:`.

        Returns:
            Number of entries removed.
        """
        try:
            with self._lock:
                if namespace is None:
                    removed = len(self._entries)
                    self._entries.clear()
                    self._memory = 0
                    return removed
                prefix = f"{namespace}:"
                doomed = [k for k in self._entries if k.startswith(prefix)]
                for k in doomed:
                    self._memory -= self._entries.pop(k).size
                return len(doomed)
        except Exception as e:
            log.warning("Computation cache clear failed (namespace=%s): %s", namespace, e)
            return 0

    def stats(self) -> dict[str, Any]:
        try:
            with self._lock:
                lookups = self._hits + self._misses
                return {
                    "entries": len(self._entries),
                    "memory_bytes": self._memory,
                    "hits": self._hits,
                    "misses": self._misses,
                    "evictions": self._evictions,
                    "hit_rate": self._hits / lookups if lookups else 0.0,
                }
        except Exception as e:
            log.warning("Computation cache stats failed: %s", e)
            return {"entries": 0, "memory_bytes": 0, "hits": 0, "misses": 0, "evictions": 0, "hit_rate": 0.0}

    def __len__(self) -> int:
        try:
            with self._lock:
                return len(self._entries)
        except Exception as e:
            log.warning("Computation cache size failed: %s", e)
            return 0
