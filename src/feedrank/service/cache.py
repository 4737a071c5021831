"""Cache service contract, its in-memory and Redis implementations, and the per-user Feed Cache."""

from __future__ import annotations

import hashlib
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol
from urllib.parse import quote

from feedrank.config.config import CACHE_TTL_SECONDS, FEED_CACHE_PREFIX
from feedrank.config.schemas import RecommendationResult
from feedrank.utils.logging import get_logger

logger = get_logger(__name__)


class CacheService(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl: float) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class InMemoryCacheService:
    """Thread-safe TTL cache.

    Expired entries are never returned: reads drop them lazily and
    :meth:`sweep` removes the rest on schedule.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(now):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        entry = CacheEntry(key, value, self._clock() + float(ttl))
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def sweep(self) -> int:
        """Remove every expired entry; returns how many were dropped."""
        now = self._clock()
        with self._lock:
            doomed = [k for k, e in self._entries.items() if e.expired(now)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisCacheService:
    """:class:`CacheService` over a redis-py client with JSON payloads.

    Redis enforces the TTL itself, so :meth:`sweep` is a no-op here.
    """

    def __init__(self, url: str = "redis://localhost:6379/0", client=None):
        if client is None:
            import redis

            client = redis.Redis.from_url(url, encoding="utf-8", decode_responses=True)
        self._redis = client

    def get(self, key: str) -> Optional[Any]:
        payload = self._redis.get(key)
        if not payload:
            return None
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._redis.set(key, json.dumps(value), ex=max(1, int(round(ttl))))

    def delete(self, key: str) -> None:
        self._redis.delete(key)

    def delete_prefix(self, prefix: str) -> int:
        keys = list(self._redis.scan_iter(match=f"{prefix}*"))
        if keys:
            self._redis.delete(*keys)
        return len(keys)

    def sweep(self) -> int:
        return 0


def filters_digest(filters: Optional[Mapping[str, Any]]) -> str:
    """Stable short digest of a filter mapping; empty filters map to ``"all"``."""
    if not filters:
        return "all"
    payload = json.dumps(filters, sort_keys=True, default=str)
    return hashlib.blake2s(payload.encode("utf-8"), digest_size=8).hexdigest()


class FeedCache:
    """Per-user feed cache keyed ``feed:{user_id}:{filters digest}``.

    User ids are percent-encoded in keys, so one user's prefix never matches
    another user's keys and Redis glob characters are inert. Values are plain
    dicts so any :class:`CacheService` (including Redis) can hold them. Each
    entry records the candidate bound its ranking was built from (``None``
    when the candidate list was exhausted); a read asking for a larger
    superset than the entry covers is a miss.
    """

    def __init__(
        self,
        service: Optional[CacheService] = None,
        *,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        prefix: str = FEED_CACHE_PREFIX,
    ) -> None:
        self.service = service if service is not None else InMemoryCacheService()
        self.ttl_seconds = float(ttl_seconds)
        self.prefix = prefix
        self.hits = 0
        self.misses = 0

    def key(self, user_id: str, filters: Optional[Mapping[str, Any]] = None) -> str:
        return f"{self._user_prefix(user_id)}{filters_digest(filters)}"

    def _user_prefix(self, user_id: str) -> str:
        return f"{self.prefix}:{quote(user_id, safe='')}:"

    def get(
        self,
        user_id: str,
        filters: Optional[Mapping[str, Any]] = None,
        candidate_limit: Optional[int] = None,
    ) -> Optional[List[RecommendationResult]]:
        try:
            payload = self.service.get(self.key(user_id, filters))
        except Exception as e:
            logger.warning(f"Feed cache read failed for {user_id}: {e}")
            payload = None
        if not isinstance(payload, dict) or not self._covers(payload.get("bound"), candidate_limit):
            self.misses += 1
            return None
        self.hits += 1
        return [RecommendationResult.from_dict(d) for d in payload["results"]]

    @staticmethod
    def _covers(bound: Optional[int], candidate_limit: Optional[int]) -> bool:
        return bound is None or candidate_limit is None or bound >= candidate_limit

    def set(
        self,
        user_id: str,
        results: List[RecommendationResult],
        filters: Optional[Mapping[str, Any]] = None,
        ttl: Optional[float] = None,
        candidate_limit: Optional[int] = None,
    ) -> None:
        ttl = self.ttl_seconds if ttl is None else float(ttl)
        payload = {"bound": candidate_limit, "results": [r.to_dict() for r in results]}
        try:
            self.service.set(self.key(user_id, filters), payload, ttl)
        except Exception as e:
            logger.warning(f"Feed cache write failed for {user_id}: {e}")

    def invalidate(self, user_id: str) -> int:
        """Drop every cached feed of ``user_id`` regardless of filters."""
        prefix = self._user_prefix(user_id)
        delete_prefix = getattr(self.service, "delete_prefix", None)
        try:
            if delete_prefix is not None:
                removed = delete_prefix(prefix)
            else:
                self.service.delete(self.key(user_id))
                removed = 1
        except Exception as e:
            logger.warning(f"Feed cache invalidation failed for {user_id}: {e}")
            return 0
        logger.debug(f"Invalidated {removed} cached feed(s) for {user_id}")
        return removed

    def sweep(self) -> int:
        sweep = getattr(self.service, "sweep", None)
        removed = sweep() if sweep is not None else 0
        if removed:
            logger.info(f"Feed cache sweep removed {removed} expired entries")
        return removed
