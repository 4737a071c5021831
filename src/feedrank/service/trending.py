"""Periodically recomputed topic -> score table of what is trending right now."""

from __future__ import annotations

import threading
import warnings
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from feedrank.config.config import STALE_AFTER_SECONDS, TRENDING_LOOKBACK_HOURS, TRENDING_TOP_N
from feedrank.config.schemas import TrendingEntry
from feedrank.data_pipeline.processors.topics import TopicResolver
from feedrank.errors import StaleDataWarning, UpstreamUnavailable
from feedrank.utils.datetime import utc_now
from feedrank.utils.logging import get_logger

logger = get_logger(__name__)


class TrendingIndex:
    """Topic scores in ``[0, 1]``, normalised by the strongest topic of each cycle.

    Readers always see one complete table: :meth:`recompute` builds a new
    dict off to the side and swaps the reference in a single assignment.
    """

    def __init__(
        self,
        content_repository,
        topic_resolver: Optional[TopicResolver] = None,
        *,
        lookback_hours: int = TRENDING_LOOKBACK_HOURS,
    ) -> None:
        self.content_repository = content_repository
        self.topic_resolver = topic_resolver or TopicResolver(content_repository)
        self.lookback = timedelta(hours=lookback_hours)
        self._scores: Dict[str, float] = {}
        self._lock = threading.Lock()
        self.last_updated: Optional[datetime] = None

    def recompute(self, now: Optional[datetime] = None) -> int:
        """Rebuild the table from content published within the lookback window.

        Returns the number of topics in the new table. A repository failure
        leaves the previous table in place.
        """
        now = now or utc_now()
        try:
            items = list(self.content_repository.list_recent(now - self.lookback))
        except Exception as e:
            raise UpstreamUnavailable("content_repository", str(e)) from e

        totals: Dict[str, float] = {}
        for item in items:
            engagement = float(item.engagement)
            for topic in set(self.topic_resolver.topics_for(item)):
                totals[topic] = totals.get(topic, 0.0) + engagement

        peak = max(totals.values(), default=0.0)
        fresh = {t: (v / peak if peak > 0 else 0.0) for t, v in totals.items()}
        with self._lock:
            self._scores = fresh
            self.last_updated = now
        logger.info(f"Trending index recomputed: {len(fresh)} topics from {len(items)} items")
        return len(fresh)

    def score(self, topic: str) -> float:
        return self._scores.get(topic, 0.0)

    def scores_for(self, topics: Iterable[str]) -> List[float]:
        table = self._scores
        return [table.get(t, 0.0) for t in topics]

    def top(self, n: int = TRENDING_TOP_N) -> List[TrendingEntry]:
        table = self._scores
        ranked = sorted(table.items(), key=lambda kv: (-kv[1], kv[0]))
        return [TrendingEntry(topic, score) for topic, score in ranked[:max(0, int(n))]]

    def is_stale(self, threshold_seconds: float = STALE_AFTER_SECONDS, now: Optional[datetime] = None) -> bool:
        if self.last_updated is None:
            return True
        return ((now or utc_now()) - self.last_updated).total_seconds() > threshold_seconds

    def check_freshness(self, threshold_seconds: float = STALE_AFTER_SECONDS, now: Optional[datetime] = None) -> bool:
        """Log a :class:`StaleDataWarning` when the table is too old to trust; returns True if fresh."""
        if not self.is_stale(threshold_seconds, now):
            return True
        if self.last_updated is None:
            msg = "Trending index has not been computed yet"
        else:
            age = ((now or utc_now()) - self.last_updated).total_seconds()
            msg = f"Trending index is {age:.0f}s old"
        logger.warning(msg)
        warnings.warn(msg, StaleDataWarning, stacklevel=2)
        return False

    def __len__(self) -> int:
        return len(self._scores)
