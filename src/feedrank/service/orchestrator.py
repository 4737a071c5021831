"""Public entry point of the ranking core: feed generation and interaction recording."""

from __future__ import annotations

import time
import traceback
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Union

from feedrank.config.config import DEGRADED_CONFIDENCE
from feedrank.config.schemas import (
    NETWORK_SIGNALS,
    STRONG_SIGNALS,
    ContentItem,
    EngagementProfile,
    InteractionEvent,
    RecommendationResult,
    RequestContext,
    TrainingRecord,
    safe_score,
)
from feedrank.config.settings import FeedConfig
from feedrank.data_pipeline.ingestion import EventIngestor
from feedrank.data_pipeline.processors.features import FeatureExtractor
from feedrank.data_pipeline.processors.profile_builder import EngagementProfileBuilder
from feedrank.data_pipeline.processors.topics import TopicResolver
from feedrank.data_pipeline.training_collector import TrainingDataCollector, TrainingSignal
from feedrank.errors import (
    FeedTimeoutError,
    InputValidationError,
    PredictorUnavailable,
    UpstreamUnavailable,
)
from feedrank.service.cache import FeedCache
from feedrank.service.scorer import HybridContentScorer, ScoreBreakdown, collaborative_scores
from feedrank.service.trending import TrendingIndex
from feedrank.utils.datetime import hours_between, utc_now
from feedrank.utils.logging import get_logger

logger = get_logger(__name__)

ContextLike = Union[RequestContext, Mapping[str, Any], None]


class RecommendationOrchestrator:
    """Fetch candidates, score, predict, blend, filter, rank and cache a user's feed.

    ``final_score = base_score * recommendation_weight + engagement_score * engagement_weight``.
    Predictions below ``min_confidence`` are dropped. When the predictor is
    unavailable, fails, or runs past the deadline, the feed falls back to
    base-score ranking with a synthetic confidence of 1.0 and is cached only
    briefly.
    """

    def __init__(
        self,
        content_repository,
        user_repository,
        predictor,
        *,
        config: Optional[FeedConfig] = None,
        feed_cache: Optional[FeedCache] = None,
        trending_index: Optional[TrendingIndex] = None,
        topic_resolver: Optional[TopicResolver] = None,
        scorer: Optional[HybridContentScorer] = None,
        feature_extractor: Optional[FeatureExtractor] = None,
        profile_builder: Optional[EngagementProfileBuilder] = None,
        ingestor: Optional[EventIngestor] = None,
        collector: Optional[TrainingDataCollector] = None,
        analysis_service=None,
    ) -> None:
        self.config = config or FeedConfig()
        cfg = self.config
        self.content_repository = content_repository
        self.user_repository = user_repository
        self.predictor = predictor

        self.topic_resolver = topic_resolver or TopicResolver(content_repository, analysis_service)
        self.trending_index = trending_index if trending_index is not None else TrendingIndex(
            content_repository, self.topic_resolver, lookback_hours=cfg.trending_lookback_hours
        )
        self.scorer = scorer or HybridContentScorer(
            self.trending_index,
            preference_bonus=cfg.preference_bonus,
            network_bonus=cfg.network_bonus,
            time_bonus=cfg.time_bonus,
            trending_weight=cfg.trending_weight,
            top_preferred_types=cfg.top_preferred_types,
            top_active_hours=cfg.top_active_hours,
            half_life_days=cfg.recency_half_life_days,
            collaborative_weight=cfg.collaborative_weight,
            content_weight=cfg.content_weight,
        )
        self.feature_extractor = feature_extractor or FeatureExtractor()
        self.profile_builder = profile_builder or EngagementProfileBuilder(
            lookback_days=cfg.profile_lookback_days,
            max_events=cfg.profile_max_events,
            ttl_seconds=cfg.profile_ttl_seconds,
            stale_after_seconds=cfg.stale_after_seconds,
        )
        self.feed_cache = feed_cache or FeedCache(ttl_seconds=cfg.cache_ttl_seconds)
        self.ingestor = ingestor or EventIngestor(retention_days=cfg.event_retention_days)
        self.collector = collector or TrainingDataCollector(
            predictor,
            self.build_training_records,
            batch_size=cfg.batch_size,
            outlier_sigma=cfg.outlier_sigma,
        )

        self._pool = ThreadPoolExecutor(max_workers=cfg.prediction_workers, thread_name_prefix="predict")
        self.degraded_responses = 0

    # ------------------------------------------------------------------
    # Lifecycle
    def initialize(self) -> None:
        try:
            self.predictor.initialize()
        except Exception as e:
            logger.warning(f"Predictor failed to initialize; serving base-score feeds: {e}")
        logger.info("Recommendation orchestrator initialized")

    def shutdown(self, wait: bool = True) -> None:
        self.collector.shutdown(wait=wait)
        self.predictor.shutdown(wait=wait)
        self._pool.shutdown(wait=wait)
        logger.info("Recommendation orchestrator stopped")

    # ------------------------------------------------------------------
    # Feed
    def get_feed(
        self,
        user_id: str,
        limit: Optional[int] = None,
        filters: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
        context: ContextLike = None,
    ) -> List[RecommendationResult]:
        """Return up to ``limit`` results sorted by ``final_score`` descending.

        Raises:
            InputValidationError: bad ``user_id``, ``limit``, ``filters`` or ``timeout``.
            UpstreamUnavailable: a repository failed while fetching candidates.
            FeedTimeoutError: ``timeout`` passed before any base score existed.
        """
        limit = self._validate_feed_request(user_id, limit, filters, timeout)
        started = time.monotonic()
        deadline = started + timeout if timeout is not None else None
        candidate_limit = min(limit * self.config.candidate_multiplier, self.config.max_candidates)

        cached = self.feed_cache.get(user_id, filters, candidate_limit)
        if cached is not None:
            return cached[:limit]

        now = utc_now()
        items = self._fetch_candidates(user_id, candidate_limit, filters)
        # Fewer candidates than asked for means the list is complete for any limit.
        cached_bound = candidate_limit if len(items) >= candidate_limit else None
        if not items:
            self.feed_cache.set(user_id, [], filters, candidate_limit=None)
            return []

        following = self._following(user_id)
        profile = self._profile(user_id)
        if deadline is not None and time.monotonic() >= deadline:
            raise FeedTimeoutError(timeout)

        self.trending_index.check_freshness(self.config.stale_after_seconds, now)
        topics = [self.topic_resolver.topics_for(item) for item in items]
        collaborative = self._collaborative(user_id, now) if self.config.collaborative_enabled else None
        base_scores = self.scorer.score_batch(items, profile, following, topics, collaborative, now)

        request_context = self._request_context(context, profile, now)
        predictions = self._predict(items, profile, following, request_context, topics, now, deadline)
        degraded = predictions is None

        results = self._blend(items, base_scores, predictions)
        results.sort(key=lambda r: (-safe_score(r.final_score), -r.published_at.timestamp()))

        # The whole ranked list is cached; later calls reuse it while their
        # candidate superset is no larger than the one it was built from.
        ttl = self.config.degraded_cache_ttl_seconds if degraded else None
        if degraded:
            self.degraded_responses += 1
        self.feed_cache.set(user_id, results, filters, ttl=ttl, candidate_limit=cached_bound)
        logger.debug(
            f"Feed for {user_id}: {len(results)}/{len(items)} candidates kept "
            f"in {time.monotonic() - started:.3f}s (degraded={degraded})"
        )
        return results[:limit]

    def _validate_feed_request(self, user_id, limit, filters, timeout) -> int:
        if not isinstance(user_id, str) or not user_id.strip():
            raise InputValidationError("user_id must be a non-empty string")
        if limit is None:
            limit = self.config.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InputValidationError(f"limit must be an integer, got {limit!r}")
        if not 1 <= limit <= self.config.max_limit:
            raise InputValidationError(f"limit must be in [1, {self.config.max_limit}], got {limit}")
        if filters is not None and not isinstance(filters, Mapping):
            raise InputValidationError("filters must be a mapping")
        if timeout is not None and timeout <= 0:
            raise InputValidationError(f"timeout must be positive, got {timeout}")
        return limit

    def _fetch_candidates(self, user_id: str, candidate_limit: int, filters: Optional[Mapping[str, Any]]) -> List[ContentItem]:
        query: Dict[str, Any] = {"exclude_author": user_id, "time_range": self.config.candidate_window}
        query.update(filters or {})
        query["limit"] = candidate_limit
        try:
            return list(self.content_repository.list_candidates(query))[:query["limit"]]
        except UpstreamUnavailable:
            raise
        except Exception as e:
            logger.error(f"Candidate fetch failed for {user_id}: {e}")
            raise UpstreamUnavailable("content_repository", str(e)) from e

    def _following(self, user_id: str) -> Set[str]:
        try:
            return set(self.user_repository.get_following(user_id))
        except UpstreamUnavailable:
            raise
        except Exception as e:
            logger.error(f"Following lookup failed for {user_id}: {e}")
            raise UpstreamUnavailable("user_repository", str(e)) from e

    def _history(self, user_id: str, window: timedelta) -> List[InteractionEvent]:
        external = list(self.user_repository.get_interaction_history(user_id, window))
        local = self.ingestor.get_user_events(user_id, since=utc_now() - window)
        return list(dict.fromkeys(external + local))

    def _profile(self, user_id: str) -> EngagementProfile:
        profile = self.profile_builder.get_profile(user_id, self._history)
        self.profile_builder.check_freshness(profile)
        return profile

    def _collaborative(self, user_id: str, now: datetime) -> Dict[str, float]:
        since = now - timedelta(days=self.config.profile_lookback_days)
        by_user: Dict[str, Set[str]] = defaultdict(set)
        for event in self.ingestor.get_events_since(since):
            by_user[event.user_id].add(event.content_id)
        mine = by_user.pop(user_id, set())
        return collaborative_scores(mine, by_user)

    def _request_context(self, context: ContextLike, profile: EngagementProfile, now: datetime) -> RequestContext:
        if context is not None:
            return RequestContext.from_mapping(context)
        since_last = 0.0
        if profile.last_interaction_at is not None:
            since_last = max(0.0, hours_between(profile.last_interaction_at, now))
        return RequestContext(now.hour, now.weekday(), time_since_last_interaction=since_last)

    def _predict(self, items, profile, following, context, topics, now, deadline):
        """Predictions for ``items``, or None when ranking must fall back to base scores."""
        if not self.predictor.available:
            logger.warning("Predictor unavailable; degrading to base-score ranking")
            return None
        budget = float(self.config.predict_timeout_seconds)
        if deadline is not None:
            budget = min(budget, deadline - time.monotonic())
        if budget <= 0:
            logger.warning("Deadline reached before prediction; degrading to base-score ranking")
            return None

        vectors = self.feature_extractor.extract_batch(items, profile, following, context, topics, now)
        future = self._pool.submit(self.predictor.predict_batch, vectors)
        try:
            return future.result(timeout=budget)
        except FutureTimeout:
            future.cancel()
            logger.warning(f"Prediction exceeded {budget:.3f}s; degrading to base-score ranking")
        except PredictorUnavailable as e:
            logger.warning(f"Predictor unavailable ({e}); degrading to base-score ranking")
        except Exception as e:
            logger.error(f"Prediction failed; degrading to base-score ranking: {e}")
        return None

    def _blend(self, items, base_scores, predictions) -> List[RecommendationResult]:
        rw, ew = self.config.recommendation_weight, self.config.engagement_weight
        results: List[RecommendationResult] = []
        for i, item in enumerate(items):
            base = safe_score(base_scores[i])
            if predictions is None:
                engagement, confidence, degraded = 0.0, DEGRADED_CONFIDENCE, True
            else:
                engagement = safe_score(predictions[i].engagement_score)
                confidence = safe_score(predictions[i].confidence)
                degraded = False
                if confidence < self.config.min_confidence:
                    continue
            results.append(RecommendationResult(
                content_id=item.content_id,
                base_score=base,
                engagement_score=engagement,
                confidence=confidence,
                final_score=safe_score(base * rw + engagement * ew),
                published_at=item.published_at,
                degraded=degraded,
            ))
        return results

    # ------------------------------------------------------------------
    # Interactions
    def record_interaction(
        self,
        user_id: str,
        content_id: str,
        interaction_type: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Optional[InteractionEvent]:
        """Record a signal from ``user_id``.

        Engagement types (view, like, comment, share) are appended to the event
        log and buffered for training. ``follow``/``unfollow`` take the followed
        author's id as ``content_id`` and update the user repository;
        ``preference`` marks a settings change. Strong signals invalidate the
        user's cached feed.
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise InputValidationError("user_id must be a non-empty string")
        if not isinstance(content_id, str) or not content_id.strip():
            raise InputValidationError("content_id must be a non-empty string")
        kind = str(interaction_type).strip().lower()

        event = None
        if kind in NETWORK_SIGNALS:
            self._update_network(user_id, content_id, kind)
        elif kind != "preference":
            item = self._lookup_content(content_id)
            event = self.ingestor.record(
                user_id,
                content_id,
                kind,
                context,
                content_type=item.content_type if item else None,
                author_id=item.author_id if item else None,
            )
            self.collector.collect_interaction(event, context)

        if kind in STRONG_SIGNALS:
            self.invalidate_user(user_id)
        return event

    def _update_network(self, user_id: str, author_id: str, kind: str) -> None:
        update = getattr(self.user_repository, kind, None)
        if update is None:
            logger.warning(f"User repository cannot {kind}; only invalidating cached feed")
            return
        try:
            update(user_id, author_id)
        except Exception as e:
            logger.error(f"Could not {kind} {author_id} for {user_id}: {e}")
            raise UpstreamUnavailable("user_repository", str(e)) from e
        logger.info(f"{user_id} {kind}ed {author_id}")

    def _lookup_content(self, content_id: str) -> Optional[ContentItem]:
        try:
            return self.content_repository.get_content(content_id)
        except Exception as e:
            logger.warning(f"Content lookup failed for {content_id}: {e}")
            return None

    def record_engagement_metrics(
        self,
        user_id: str,
        content_id: str,
        metrics: Mapping[str, float],
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.collector.collect_engagement_metrics(user_id, content_id, metrics, context)

    def on_content_published(self, item: ContentItem) -> int:
        """Invalidate the cached feeds of every follower of ``item``'s author."""
        try:
            followers = set(self.user_repository.get_followers(item.author_id))
        except Exception as e:
            logger.warning(f"Could not list followers of {item.author_id}: {e}")
            return 0
        for follower in followers:
            self.feed_cache.invalidate(follower)
        logger.info(f"New content {item.content_id}: invalidated {len(followers)} follower feeds")
        return len(followers)

    def invalidate_user(self, user_id: str) -> None:
        self.feed_cache.invalidate(user_id)
        self.profile_builder.invalidate(user_id)

    def explain(self, user_id: str, content_id: str) -> ScoreBreakdown:
        """Base-score breakdown, with human-readable reasons, for one item."""
        item = self._lookup_content(content_id)
        if item is None:
            raise InputValidationError(f"unknown content_id: {content_id!r}")
        following = self._following(user_id)
        profile = self._profile(user_id)
        collaborative = None
        if self.config.collaborative_enabled:
            collaborative = self._collaborative(user_id, utc_now()).get(content_id, 0.0)
        return self.scorer.breakdown(
            item, profile, following, self.topic_resolver.topics_for(item), collaborative
        )

    # ------------------------------------------------------------------
    # Training records
    def build_training_records(self, signals: Sequence[TrainingSignal]) -> List[TrainingRecord]:
        """Turn buffered signals into records holding raw, un-normalised features.

        Normalisation happens later, across the whole batch, after outlier
        cleaning (see :func:`clean_records`). Signals whose content or user
        data cannot be loaded are skipped.
        """
        by_user: Dict[str, List[TrainingSignal]] = defaultdict(list)
        for s in signals:
            by_user[s.user_id].append(s)

        records: List[TrainingRecord] = []
        for user_id, group in by_user.items():
            try:
                following = set(self.user_repository.get_following(user_id))
                profile = self.profile_builder.get_profile(user_id, self._history)
            except Exception as e:
                logger.warning(f"Skipping {len(group)} training signals for {user_id}: {e}")
                continue
            pairs = [(s, self._lookup_content(s.content_id)) for s in group]
            pairs = [(s, item) for s, item in pairs if item is not None]
            if not pairs:
                continue
            kept, items = zip(*pairs)
            try:
                content, user, ctx = self.feature_extractor.raw_blocks(
                    items,
                    profile,
                    following,
                    [RequestContext.from_mapping(s.context) for s in kept],
                    [s.observed_at for s in kept],
                    [self.topic_resolver.topics_for(item) for item in items],
                )
            except Exception:
                logger.error("Feature extraction failed for %s: %s", user_id, traceback.format_exc())
                continue
            records.extend(
                TrainingRecord(content[i], user[i], ctx[i], engagement_label=s.label)
                for i, s in enumerate(kept)
            )
        return records
