"""Engagement profile aggregation from interaction history."""

from __future__ import annotations

import threading
import warnings
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Optional

import numpy as np

from feedrank.config.config import (
    EVENT_WEIGHTS,
    PROFILE_LOOKBACK_DAYS,
    PROFILE_MAX_EVENTS,
    PROFILE_TTL_SECONDS,
    STALE_AFTER_SECONDS,
)
from feedrank.config.schemas import (
    EngagementProfile,
    InteractionCounts,
    InteractionEvent,
    InteractionType,
)
from feedrank.errors import StaleDataWarning, UpstreamUnavailable
from feedrank.utils.datetime import utc_now
from feedrank.utils.logging import get_logger

logger = get_logger(__name__)

HistoryFn = Callable[[str, timedelta], Iterable[InteractionEvent]]

_COUNT_FIELDS = {
    InteractionType.LIKE: "likes",
    InteractionType.COMMENT: "comments",
    InteractionType.SHARE: "shares",
    InteractionType.VIEW: "views",
}


class EngagementProfileBuilder:
    """Aggregate interaction events into an :class:`EngagementProfile`.

    Each event type contributes a fixed weight (view < like < share < comment)
    to the content type it touched. Weights accumulate without normalisation;
    only the relative ranking is used downstream. Built profiles are cached per
    user and recomputed once older than ``ttl_seconds``.
    """

    def __init__(
        self,
        *,
        weights: Optional[Mapping[str, float]] = None,
        lookback_days: int = PROFILE_LOOKBACK_DAYS,
        max_events: int = PROFILE_MAX_EVENTS,
        ttl_seconds: float = PROFILE_TTL_SECONDS,
        stale_after_seconds: float = STALE_AFTER_SECONDS,
    ) -> None:
        self.weights: Dict[str, float] = {k: float(v) for k, v in (weights or EVENT_WEIGHTS).items()}
        self.lookback = timedelta(days=lookback_days)
        self.max_events = int(max_events)
        self.ttl_seconds = float(ttl_seconds)
        self.stale_after_seconds = float(stale_after_seconds)
        self._cache: Dict[str, EngagementProfile] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def build(
        self,
        user_id: str,
        events: Optional[Iterable[InteractionEvent]],
        now: Optional[datetime] = None,
    ) -> EngagementProfile:
        """Build a profile from ``events``; empty or missing history gives an all-zero profile."""
        now = now or utc_now()
        window = self._bounded(events or (), now)
        profile = EngagementProfile(user_id=user_id, last_computed_at=now)
        if not window:
            return profile

        type_weights: Dict[str, float] = {}
        author_weights: Dict[str, float] = {}
        counts = InteractionCounts()
        hours = np.zeros(24, dtype=np.int64)

        for event in window:
            weight = self.weights.get(event.type.value, 0.0)
            if event.content_type:
                type_weights[event.content_type] = type_weights.get(event.content_type, 0.0) + weight
            if event.author_id:
                author_weights[event.author_id] = author_weights.get(event.author_id, 0.0) + weight
            field = _COUNT_FIELDS[event.type]
            setattr(counts, field, getattr(counts, field) + 1)
            hours[event.timestamp.hour] += 1

        histogram = hours.tolist()
        profile.content_type_engagement = type_weights
        profile.author_affinity = author_weights
        profile.interaction_counts = counts
        profile.hour_histogram = histogram
        profile.active_hours = sorted(range(24), key=lambda h: (-histogram[h], h))
        profile.preferred_content_types = [
            t for t, _ in sorted(type_weights.items(), key=lambda kv: (-kv[1], kv[0]))
        ]
        profile.total_events = len(window)
        profile.last_interaction_at = window[-1].timestamp
        return profile

    # ------------------------------------------------------------------
    def get_profile(self, user_id: str, history_fn: HistoryFn, *, force: bool = False) -> EngagementProfile:
        """Return a cached profile or rebuild it from ``history_fn``.

        When the history lookup fails and a cached profile exists, the cached
        one is served (eventual consistency) and flagged if stale. Without a
        cached profile the failure is surfaced as :class:`UpstreamUnavailable`.
        """
        with self._lock:
            cached = self._cache.get(user_id)
        if cached is not None and not force and cached.age_seconds() <= self.ttl_seconds:
            return cached

        try:
            events = list(history_fn(user_id, self.lookback))
        except Exception as e:
            if cached is None:
                raise UpstreamUnavailable("user_repository", str(e)) from e
            logger.warning(f"History lookup failed for {user_id}; serving cached profile: {e}")
            self.check_freshness(cached)
            return cached

        profile = self.build(user_id, events)
        with self._lock:
            self._cache[user_id] = profile
        return profile

    def check_freshness(self, profile: EngagementProfile) -> bool:
        """Log a :class:`StaleDataWarning` when ``profile`` is too old; returns True if fresh."""
        if profile.is_stale(self.stale_after_seconds):
            msg = f"Profile for {profile.user_id} is {profile.age_seconds():.0f}s old"
            logger.warning(msg)
            warnings.warn(msg, StaleDataWarning, stacklevel=2)
            return False
        return True

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._cache.pop(user_id, None)

    # ------------------------------------------------------------------
    def _bounded(self, events: Iterable[InteractionEvent], now: datetime) -> List[InteractionEvent]:
        cutoff = now - self.lookback
        recent = sorted((e for e in events if e.timestamp >= cutoff), key=lambda e: e.timestamp)
        if self.max_events and len(recent) > self.max_events:
            recent = recent[-self.max_events:]
        return recent
