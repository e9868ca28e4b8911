"""In-memory LRU/TTL caches for embeddings and extraction results."""

import copy
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: Any
    timestamp: float

    def age(self, now: float) -> float:
        return now - self.timestamp


class TTLCache:
    """Bounded LRU cache whose entries expire ``ttl_seconds`` after being written.

    A hit moves the entry to the most-recently-used position but does not
    extend its lifetime, so an entry is never served once it is older than
    the TTL. Reaching ``max_size`` evicts the least recently used entry.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: float = 86400.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return entry.age(now) >= self.ttl_seconds

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            if self._is_expired(entry, self._clock()):
                del self._entries[key]
                self.expirations += 1
                self.misses += 1
                return default
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, timestamp=self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted_key, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Evicted cache entry {evicted_key}")

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                del self._entries[key]
            self.expirations += len(expired)
            return len(expired)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._is_expired(entry, self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                'size': len(self._entries),
                'max_size': self.max_size,
                'hits': self.hits,
                'misses': self.misses,
                'evictions': self.evictions,
                'expirations': self.expirations,
            }


def corpus_fingerprint(sources: Iterable[Any], params: Optional[Dict[str, Any]] = None) -> str:
    """Fingerprint a corpus and the parameters it is processed with.

    Args:
        sources: Source records (anything with ``id``, ``content_type`` and ``content``)
        params: Processing parameters that influence the result

    Returns:
        Hex digest identifying the (content, parameters) pair
    """
    source_keys = []
    for source in sources:
        content_type = getattr(source.content_type, 'value', source.content_type)
        content_hash = hashlib.md5(source.content.encode('utf-8')).hexdigest()
        source_keys.append([source.id, content_type, content_hash])

    payload = json.dumps(
        {'sources': source_keys, 'params': params or {}},
        sort_keys=True,
        default=str,
    )
    return hashlib.md5(payload.encode('utf-8')).hexdigest()


class ResultCache:
    """Memoizes complete extraction results per corpus fingerprint.

    Independent from the embedding cache so that the two can be sized and
    expired separately.

    Results are copied on the way in and out, so callers that edit a result
    never change what later runs receive.
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 86400.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache = TTLCache(max_size=max_size, ttl_seconds=ttl_seconds, clock=clock)

    def get(self, fingerprint: str) -> Optional[Any]:
        result = self._cache.get(fingerprint)
        if result is None:
            return None
        logger.info(f"Result cache hit for corpus {fingerprint[:12]}")
        return copy.deepcopy(result)

    def put(self, fingerprint: str, result: Any) -> None:
        self._cache.set(fingerprint, copy.deepcopy(result))

    def invalidate(self, fingerprint: str) -> bool:
        return self._cache.delete(fingerprint)

    def clear(self) -> None:
        self._cache.clear()

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> Dict[str, int]:
        return self._cache.stats()
