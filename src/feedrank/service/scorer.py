"""Hybrid content scoring: rule-based relevance bonuses, trending, collaborative blend and recency decay."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from feedrank.config.config import (
    PREFERENCE_BONUS,
    NETWORK_BONUS,
    TIME_BONUS,
    TRENDING_WEIGHT,
    TOP_PREFERRED_TYPES,
    TOP_ACTIVE_HOURS,
    RECENCY_HALF_LIFE_DAYS,
    COLLABORATIVE_WEIGHT,
    CONTENT_WEIGHT,
    SIMILAR_USERS,
)
from feedrank.config.schemas import ContentItem, EngagementProfile, safe_score
from feedrank.utils.datetime import utc_now
from feedrank.utils.logging import get_logger
from feedrank.utils.time_decay import apply_time_decay

logger = get_logger(__name__)


@dataclass
class ScoreBreakdown:
    """Per-term contributions behind one base score."""

    content_id: str
    preference: float = 0.0
    network: float = 0.0
    time: float = 0.0
    trending: float = 0.0
    content_score: float = 0.0
    collaborative: Optional[float] = None
    decay: float = 1.0
    total: float = 0.0
    reasons: List[str] = field(default_factory=list)


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    a, b = set(a), set(b)
    union = a | b
    return len(a & b) / len(union) if union else 0.0


def collaborative_scores(
    user_items: Iterable[str],
    neighbour_items: Mapping[str, Iterable[str]],
    *,
    top_k: int = SIMILAR_USERS,
) -> Dict[str, float]:
    """Score content by how strongly similar users engaged with it.

    Similarity is the Jaccard index of interacted content ids. The ``top_k``
    most similar users vote for their content with their similarity; votes
    are divided by the total similarity so every score lies in ``[0, 1]``.
    Content the user already interacted with is excluded.
    """
    mine = set(user_items)
    if not mine:
        return {}
    sims: List[Tuple[float, str]] = []
    for other, items in neighbour_items.items():
        s = jaccard(mine, items)
        if s > 0:
            sims.append((s, other))
    sims.sort(key=lambda x: (-x[0], x[1]))
    sims = sims[:top_k]
    total = sum(s for s, _ in sims)
    if total <= 0:
        return {}

    votes: Dict[str, float] = {}
    for s, other in sims:
        for cid in set(neighbour_items[other]) - mine:
            votes[cid] = votes.get(cid, 0.0) + s
    return {cid: v / total for cid, v in votes.items()}


class HybridContentScorer:
    """Base relevance score for candidate content.

    The content-based score adds four terms: a preference bonus when the
    content type is among the user's top preferred types, a network bonus
    when the user follows the author, a time bonus when the publish hour is
    one of the user's top active hours, and ``trending_weight`` times the mean
    trending score of the content's topics. When collaborative scores are
    supplied they are rescaled to the same range and blended in with
    ``collaborative_weight`` / ``content_weight``. The result is then decayed
    by content age with a half-life of ``half_life_days``.
    """

    def __init__(
        self,
        trending_index=None,
        *,
        preference_bonus: float = PREFERENCE_BONUS,
        network_bonus: float = NETWORK_BONUS,
        time_bonus: float = TIME_BONUS,
        trending_weight: float = TRENDING_WEIGHT,
        top_preferred_types: int = TOP_PREFERRED_TYPES,
        top_active_hours: int = TOP_ACTIVE_HOURS,
        half_life_days: float = RECENCY_HALF_LIFE_DAYS,
        collaborative_weight: float = COLLABORATIVE_WEIGHT,
        content_weight: float = CONTENT_WEIGHT,
    ) -> None:
        self.trending_index = trending_index
        self.preference_bonus = float(preference_bonus)
        self.network_bonus = float(network_bonus)
        self.time_bonus = float(time_bonus)
        self.trending_weight = float(trending_weight)
        self.top_preferred_types = int(top_preferred_types)
        self.top_active_hours = int(top_active_hours)
        self.half_life_hours = float(half_life_days) * 24.0
        self.collaborative_weight = float(collaborative_weight)
        self.content_weight = float(content_weight)

    @property
    def max_content_score(self) -> float:
        return self.preference_bonus + self.network_bonus + self.time_bonus + self.trending_weight

    # ------------------------------------------------------------------
    def trending_score(self, topics: Sequence[str]) -> float:
        """Mean trending score over ``topics``; 0 without topics or an index."""
        if not topics or self.trending_index is None:
            return 0.0
        try:
            scores = self.trending_index.scores_for(topics)
        except Exception as e:
            logger.warning(f"Trending lookup failed: {e}")
            return 0.0
        return float(np.mean(scores)) if scores else 0.0

    def breakdown(
        self,
        item: ContentItem,
        profile: Optional[EngagementProfile],
        following: Optional[Set[str]],
        topics: Optional[Sequence[str]] = None,
        collaborative: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> ScoreBreakdown:
        now = now or utc_now()
        following = following or set()
        b = ScoreBreakdown(content_id=item.content_id)

        if profile is not None:
            if item.content_type in profile.preferred_content_types[:self.top_preferred_types]:
                b.preference = self.preference_bonus
                b.reasons.append(f"matches preferred content type '{item.content_type}'")
            if item.published_at.hour in profile.top_active_hours(self.top_active_hours):
                b.time = self.time_bonus
                b.reasons.append(f"published during active hour {item.published_at.hour}:00")
        if item.author_id in following:
            b.network = self.network_bonus
            b.reasons.append(f"from followed author {item.author_id}")

        topics = list(topics if topics is not None else (item.topics or []))
        trend = self.trending_score(topics)
        if trend > 0:
            b.trending = self.trending_weight * trend
            b.reasons.append(f"trending topics ({trend:.2f})")

        b.content_score = b.preference + b.network + b.time + b.trending
        combined = b.content_score
        if collaborative is not None:
            b.collaborative = float(collaborative)
            combined = (
                self.collaborative_weight * b.collaborative * self.max_content_score
                + self.content_weight * b.content_score
            )
            if b.collaborative > 0:
                b.reasons.append(f"liked by similar users ({b.collaborative:.2f})")

        b.decay = apply_time_decay(item.published_at, now, self.half_life_hours)
        b.total = safe_score(combined * b.decay)
        return b

    def score(
        self,
        item: ContentItem,
        profile: Optional[EngagementProfile],
        following: Optional[Set[str]],
        topics: Optional[Sequence[str]] = None,
        collaborative: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> float:
        return self.breakdown(item, profile, following, topics, collaborative, now).total

    def score_batch(
        self,
        items: Sequence[ContentItem],
        profile: Optional[EngagementProfile],
        following: Optional[Set[str]],
        topics: Optional[Sequence[Sequence[str]]] = None,
        collaborative: Optional[Mapping[str, float]] = None,
        now: Optional[datetime] = None,
    ) -> List[float]:
        now = now or utc_now()
        topics = topics or [None] * len(items)
        return [
            self.score(
                item, profile, following, t,
                None if collaborative is None else collaborative.get(item.content_id, 0.0),
                now,
            )
            for item, t in zip(items, topics)
        ]

    def rank(
        self,
        items: Sequence[ContentItem],
        profile: Optional[EngagementProfile],
        following: Optional[Set[str]],
        **kwargs,
    ) -> List[Tuple[ContentItem, float]]:
        """Items with their scores, best first; ties go to the most recently published."""
        scores = self.score_batch(items, profile, following, **kwargs)
        return sorted(
            zip(items, scores),
            key=lambda pair: (-pair[1], -pair[0].published_at.timestamp()),
        )
