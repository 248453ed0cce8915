"""
Thread-safe response cache with TTL.

Entries are keyed by a request fingerprint: a hash of the semantically
relevant request fields, normalized so that logically-equivalent requests
share an entry. Entries expire after a TTL and are evicted lazily on read;
past capacity the oldest insertion is dropped.
"""

import copy
import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from loguru import logger

# Never part of a request's identity
VOLATILE_FIELDS = frozenset({"timestamp", "request_id", "requested_at", "nonce", "id"})


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return " ".join(value.split()).lower()
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_normalize(v) for v in value]
        # inputs such as ingredient lists are sets; order carries no meaning
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True, default=str))
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def fingerprint(task: str, params: Mapping[str, Any],
                exact_fields: Iterable[str] = ()) -> str:
    """Stable identity of a request for cache lookup.

    Volatile fields are dropped; strings are trimmed, whitespace-collapsed
    and lowercased; lists are order-insensitive; ``None`` values are treated
    as absent. Fields named in ``exact_fields`` are hashed verbatim, for
    values such as source code where case and indentation matter.

    Args:
        task: Task name
        params: Request parameters
        exact_fields: Fields exempt from normalization

    Returns:
        Hex SHA-256 digest
    """
    exact = frozenset(exact_fields)
    relevant = {
        k: v if k in exact else _normalize(v)
        for k, v in params.items()
        if k not in VOLATILE_FIELDS and v is not None
    }
    canonical = json.dumps(
        {"task": _normalize(task), "params": relevant},
        sort_keys=True, separators=(",", ":"), default=str
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    """Single cached value."""
    key: str
    value: Any
    created_at: float  # clock() seconds
    ttl_seconds: float
    hit_count: int = 0

    def is_expired(self, now: float) -> bool:
        return (now - self.created_at) > self.ttl_seconds


class ResponseCache:
    """TTL-bounded memoization of orchestration results. Thread-safe.

    Usage:
        cache = ResponseCache(default_ttl_ms=300000, capacity=50)

        cached = cache.get(key)
        if cached is None:
            cached = compute()
            cache.put(key, cached)
    """

    def __init__(
        self,
        default_ttl_ms: int = 30 * 60 * 1000,
        capacity: int = 50,
        clock: Optional[Callable[[], float]] = None,
    ):
        if default_ttl_ms <= 0:
            raise ValueError("default_ttl_ms must be > 0")
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = Lock()
        self._default_ttl = default_ttl_ms / 1000.0
        self._capacity = capacity
        self._clock = clock or time.monotonic

        # Stats
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                logger.debug(f"Cache entry expired: {key[:12]}")
                return None
            entry.hit_count += 1
            self._hits += 1
            return copy.deepcopy(entry.value)

    def put(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        """Store a value, evicting the oldest insertion past capacity."""
        if ttl_ms is not None and ttl_ms <= 0:
            raise ValueError("ttl_ms must be > 0")
        ttl = ttl_ms / 1000.0 if ttl_ms is not None else self._default_ttl

        with self._lock:
            # re-inserting moves the key to the young end
            self._entries.pop(key, None)
            while len(self._entries) >= self._capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Cache full, evicted oldest entry {evicted[:12]}")
            self._entries[key] = CacheEntry(
                key=key,
                value=copy.deepcopy(value),
                created_at=self._clock(),
                ttl_seconds=ttl,
            )

    def invalidate(self, key: Optional[str] = None) -> int:
        """Drop one entry, or all entries when no key is given."""
        with self._lock:
            if key is None:
                count = len(self._entries)
                self._entries.clear()
            else:
                count = 1 if self._entries.pop(key, None) is not None else 0
        logger.debug(f"Cache invalidated: {count} entries removed")
        return count

    def hit_rate(self) -> float:
        """Fraction of lookups served from the cache; 0.0 before any lookup."""
        with self._lock:
            total = self._hits + self._misses
            return self._hits / total if total else 0.0

    def stats(self) -> Dict[str, Any]:
        """Cache statistics for status displays."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "capacity": self._capacity,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
