"""Feature extraction for (content, user, context) triples.

Raw features are gathered from three domains (content metadata, the user's
engagement profile and network, and the request context) and min-max
normalised column-wise across the batch being scored so every value lands in
``[0, 1]``. A column whose values are all equal (including a one-item batch)
normalises to ``0.5``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from feedrank.config.config import CONTENT_FEATURE_DIM, USER_FEATURE_DIM, CONTEXT_FEATURE_DIM
from feedrank.config.schemas import (
    ContentItem,
    EngagementProfile,
    FeatureVector,
    RequestContext,
)
from feedrank.utils.datetime import hours_between, utc_now

CONTENT_FEATURES = (
    "likes", "comments", "shares", "views", "author_followers",
    "author_posts", "author_engagement_rate", "media_count", "word_count", "topic_count",
)
USER_FEATURES = (
    "likes", "comments", "shares", "views", "total_weight",
    "type_affinity", "author_affinity", "follows_author", "following_count", "events_in_window",
)
CONTEXT_FEATURES = (
    "hour_of_day", "day_of_week", "device_class",
    "time_since_last_interaction", "content_age_hours", "publish_hour_rank",
)

assert len(CONTENT_FEATURES) == CONTENT_FEATURE_DIM
assert len(USER_FEATURES) == USER_FEATURE_DIM
assert len(CONTEXT_FEATURES) == CONTEXT_FEATURE_DIM


def normalize(matrix: np.ndarray) -> np.ndarray:
    """Min-max normalise each column of ``matrix`` into ``[0, 1]``.

    Missing values (NaN/inf) are treated as 0 before scaling. Columns with
    ``max == min`` are set to 0.5 instead of dividing by zero.
    """
    m = np.asarray(matrix, dtype=np.float64)
    if m.ndim == 1:
        return normalize(m.reshape(-1, 1)).ravel()
    if m.size == 0:
        return m.astype(np.float32)
    m = np.where(np.isfinite(m), m, 0.0)
    lo = m.min(axis=0)
    hi = m.max(axis=0)
    span = hi - lo
    flat = span == 0
    out = (m - lo) / np.where(flat, 1.0, span)
    out[:, flat] = 0.5
    return np.clip(out, 0.0, 1.0).astype(np.float32)


def _num(value) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return v if np.isfinite(v) else 0.0


class FeatureExtractor:
    """Build normalised :class:`FeatureVector` batches for scoring and training."""

    content_dim = CONTENT_FEATURE_DIM
    user_dim = USER_FEATURE_DIM
    context_dim = CONTEXT_FEATURE_DIM

    # ------------------------------------------------------------------
    def content_raw(self, item: ContentItem, topics: Optional[Sequence[str]] = None) -> List[float]:
        topic_list = topics if topics is not None else (item.topics or [])
        return [
            _num(item.likes),
            _num(item.comments),
            _num(item.shares),
            _num(item.views),
            _num(item.author_followers),
            _num(item.author_posts),
            _num(item.author_engagement_rate),
            _num(item.media_count),
            _num(item.word_count),
            float(len(topic_list)),
        ]

    def user_raw(
        self,
        item: ContentItem,
        profile: Optional[EngagementProfile],
        following: Optional[Set[str]],
    ) -> List[float]:
        following = following or set()
        if profile is None:
            counts = [0.0, 0.0, 0.0, 0.0]
            total = type_aff = author_aff = events = 0.0
        else:
            counts = [float(c) for c in profile.interaction_counts.as_list()]
            total = profile.total_weight
            type_aff = profile.content_type_engagement.get(item.content_type, 0.0)
            author_aff = profile.author_affinity.get(item.author_id, 0.0)
            events = float(profile.total_events)
        return [
            *counts,
            _num(total),
            _num(type_aff),
            _num(author_aff),
            1.0 if item.author_id in following else 0.0,
            float(len(following)),
            events,
        ]

    def context_raw(
        self,
        item: ContentItem,
        profile: Optional[EngagementProfile],
        context: RequestContext,
        now: Optional[datetime] = None,
    ) -> List[float]:
        now = now or utc_now()
        age = max(0.0, hours_between(item.published_at, now))
        # Higher is better: 24 for the user's most active hour, 0 for an unseen hour.
        hour_rank = 0.0
        if profile is not None and not profile.is_empty:
            hour = item.published_at.hour
            if profile.hour_histogram[hour] > 0:
                hour_rank = float(24 - profile.active_hours.index(hour))
        return [
            float(context.hour_of_day),
            float(context.day_of_week),
            float(int(context.device_class)),
            _num(context.time_since_last_interaction),
            age,
            hour_rank,
        ]

    # ------------------------------------------------------------------
    def raw_blocks(
        self,
        items: Sequence[ContentItem],
        profile: Optional[EngagementProfile],
        following: Optional[Set[str]],
        contexts: Sequence[RequestContext],
        observed_at: Sequence[datetime],
        topics: Optional[Sequence[Sequence[str]]] = None,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Raw (un-normalised) content, user and context matrices, one row per item."""
        topics = topics or [None] * len(items)
        content = np.array([self.content_raw(it, t) for it, t in zip(items, topics)], dtype=np.float64)
        user = np.array([self.user_raw(it, profile, following) for it in items], dtype=np.float64)
        ctx = np.array([
            self.context_raw(it, profile, c, ts) for it, c, ts in zip(items, contexts, observed_at)
        ], dtype=np.float64)
        return content, user, ctx

    @staticmethod
    def vectors_from_raw(content: np.ndarray, user: np.ndarray, ctx: np.ndarray) -> List[FeatureVector]:
        """Normalise raw blocks across the batch and keep a mask of the raw values that carried signal."""
        masks = [np.isfinite(m) & (m != 0) for m in (content, user, ctx)]
        content, user, ctx = normalize(content), normalize(user), normalize(ctx)
        return [
            FeatureVector(content[i], user[i], ctx[i], observed=(masks[0][i], masks[1][i], masks[2][i]))
            for i in range(len(content))
        ]

    def extract_batch(
        self,
        items: Sequence[ContentItem],
        profile: Optional[EngagementProfile],
        following: Optional[Set[str]],
        context: RequestContext,
        topics: Optional[Sequence[Sequence[str]]] = None,
        now: Optional[datetime] = None,
    ) -> List[FeatureVector]:
        """Return one :class:`FeatureVector` per item, normalised within this batch."""
        if not items:
            return []
        now = now or utc_now()
        n = len(items)
        return self.vectors_from_raw(*self.raw_blocks(items, profile, following, [context] * n, [now] * n, topics))

    def extract(
        self,
        item: ContentItem,
        profile: Optional[EngagementProfile],
        following: Optional[Set[str]],
        context: RequestContext,
    ) -> FeatureVector:
        """Single-item convenience wrapper; every value degenerates to 0.5."""
        return self.extract_batch([item], profile, following, context)[0]

    @staticmethod
    def stack(vectors: Iterable[FeatureVector]):
        """Stack vectors into three 2-D arrays (content, user, context)."""
        vectors = list(vectors)
        return (
            np.stack([v.content_features for v in vectors]),
            np.stack([v.user_features for v in vectors]),
            np.stack([v.context_features for v in vectors]),
        )
