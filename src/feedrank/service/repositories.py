"""Contracts for the external content and user repositories, with in-memory implementations.

The in-memory repositories back the tests and local runs; production
deployments pass adapters over their own storage that satisfy the same
protocols.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Set

from feedrank.config.schemas import ContentItem, InteractionEvent
from feedrank.utils.datetime import ensure_utc, utc_now

TIME_RANGES = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


class ContentRepository(Protocol):
    def list_candidates(self, filters: Mapping[str, Any]) -> List[ContentItem]:
        ...

    def get_content_topics(self, content_id: str) -> List[str]:
        ...

    def get_content(self, content_id: str) -> Optional[ContentItem]:
        ...

    def list_recent(self, since: datetime) -> List[ContentItem]:
        ...


class UserRepository(Protocol):
    def get_following(self, user_id: str) -> Set[str]:
        ...

    def get_followers(self, user_id: str) -> Set[str]:
        ...

    def get_interaction_history(self, user_id: str, window: timedelta) -> List[InteractionEvent]:
        ...


class InMemoryContentRepository:
    """Dict-backed :class:`ContentRepository`.

    Supported filters: ``exclude_author`` (str), ``platforms``,
    ``content_types``, ``topics`` (iterables), ``time_range`` (day, week,
    month, year), ``since`` (datetime) and ``limit`` (int).
    """

    def __init__(self, items: Optional[Iterable[ContentItem]] = None):
        self._items: Dict[str, ContentItem] = {}
        self._topics: Dict[str, List[str]] = {}
        self._lock = threading.Lock()
        for item in items or ():
            self.add(item)

    def add(self, item: ContentItem, topics: Optional[Iterable[str]] = None) -> None:
        with self._lock:
            self._items[item.content_id] = item
            if topics is not None:
                self._topics[item.content_id] = list(topics)

    def get_content(self, content_id: str) -> Optional[ContentItem]:
        with self._lock:
            return self._items.get(content_id)

    def get_content_topics(self, content_id: str) -> List[str]:
        with self._lock:
            if content_id in self._topics:
                return list(self._topics[content_id])
            item = self._items.get(content_id)
        return list(item.topics or []) if item else []

    def list_recent(self, since: datetime) -> List[ContentItem]:
        since = ensure_utc(since)
        with self._lock:
            items = list(self._items.values())
        return [i for i in items if i.published_at >= since]

    def list_candidates(self, filters: Mapping[str, Any]) -> List[ContentItem]:
        filters = dict(filters or {})
        with self._lock:
            items = list(self._items.values())

        since = filters.get("since")
        if since is None and filters.get("time_range") in TIME_RANGES:
            since = utc_now() - TIME_RANGES[filters["time_range"]]
        if since is not None:
            since = ensure_utc(since)
            items = [i for i in items if i.published_at >= since]
        if filters.get("exclude_author"):
            items = [i for i in items if i.author_id != filters["exclude_author"]]
        if filters.get("platforms"):
            allowed = set(filters["platforms"])
            items = [i for i in items if i.platform in allowed]
        if filters.get("content_types"):
            allowed = set(filters["content_types"])
            items = [i for i in items if i.content_type in allowed]
        if filters.get("topics"):
            wanted = set(filters["topics"])
            items = [i for i in items if wanted & set(self.get_content_topics(i.content_id))]

        items.sort(key=lambda i: i.published_at, reverse=True)
        limit = filters.get("limit")
        return items[: int(limit)] if limit else items


class InMemoryUserRepository:
    """Dict-backed :class:`UserRepository` with a follow graph and interaction history."""

    def __init__(self):
        self._following: Dict[str, Set[str]] = defaultdict(set)
        self._history: Dict[str, List[InteractionEvent]] = defaultdict(list)
        self._lock = threading.Lock()

    def follow(self, user_id: str, author_id: str) -> None:
        with self._lock:
            self._following[user_id].add(author_id)

    def unfollow(self, user_id: str, author_id: str) -> None:
        with self._lock:
            self._following[user_id].discard(author_id)

    def add_interaction(self, event: InteractionEvent) -> None:
        with self._lock:
            self._history[event.user_id].append(event)

    def get_following(self, user_id: str) -> Set[str]:
        with self._lock:
            return set(self._following.get(user_id, ()))

    def get_followers(self, user_id: str) -> Set[str]:
        with self._lock:
            return {u for u, authors in self._following.items() if user_id in authors}

    def get_interaction_history(self, user_id: str, window: timedelta) -> List[InteractionEvent]:
        cutoff = utc_now() - window
        with self._lock:
            events = list(self._history.get(user_id, ()))
        return [e for e in events if e.timestamp >= cutoff]
