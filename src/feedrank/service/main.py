"""Composition root: builds the ranking core from configuration and owns its lifecycle."""

import signal
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from feedrank.config.config import CONFIG_YAML_PATH, PROJECT_ROOT
from feedrank.config.schemas import ContentItem, InteractionEvent, RecommendationResult
from feedrank.config.settings import FeedConfig
from feedrank.data_pipeline.processors.topics import KeywordTopicExtractor
from feedrank.data_pipeline.scheduler import TaskScheduler
from feedrank.model.inference.predictor import EngagementPredictor, HeuristicEngagementPredictor
from feedrank.service.cache import FeedCache, InMemoryCacheService, RedisCacheService
from feedrank.service.orchestrator import RecommendationOrchestrator
from feedrank.service.repositories import InMemoryContentRepository, InMemoryUserRepository
from feedrank.utils.datetime import utc_now
from feedrank.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

TRENDING_TASK = "trending_recompute"
RETRAIN_TASK = "training_drain"
CACHE_SWEEP_TASK = "cache_sweep"
EVENT_PRUNE_TASK = "event_prune"


def load_config(yaml_path: Optional[str] = None, env_file: Optional[Path] = None) -> FeedConfig:
    """Load ``.env``, then YAML overrides, then ``FEEDRANK_*`` variables, and validate."""
    load_dotenv(env_file or PROJECT_ROOT / ".env")
    if yaml_path is None and CONFIG_YAML_PATH.exists():
        yaml_path = str(CONFIG_YAML_PATH)
    return FeedConfig.from_env(yaml_path).validate()


def build_predictor(config: FeedConfig) -> EngagementPredictor:
    if config.predictor_backend == "heuristic":
        return HeuristicEngagementPredictor()
    from feedrank.model.inference.neural import NeuralEngagementPredictor

    return NeuralEngagementPredictor(checkpoint_path=config.model_file, epochs=config.train_epochs)


def build_cache(config: FeedConfig) -> FeedCache:
    if config.cache_backend == "redis":
        service = RedisCacheService(config.redis_url)
    else:
        service = InMemoryCacheService()
    return FeedCache(service, ttl_seconds=config.cache_ttl_seconds)


def build_analysis_service(config: FeedConfig) -> Optional[KeywordTopicExtractor]:
    if config.topic_analysis == "none":
        return None
    return KeywordTopicExtractor()


class FeedRankService:
    """Holds every component of the core plus the scheduler that drives its background tasks.

    Usage:
        service = FeedRankService(load_config(), content_repository=repo, user_repository=users)
        service.initialize()
        feed = service.get_feed("u1", limit=20)
        service.shutdown()
    """

    def __init__(
        self,
        config: Optional[FeedConfig] = None,
        *,
        content_repository=None,
        user_repository=None,
        predictor: Optional[EngagementPredictor] = None,
        feed_cache: Optional[FeedCache] = None,
        analysis_service=None,
        scheduler: Optional[TaskScheduler] = None,
    ) -> None:
        self.config = (config or FeedConfig()).validate()
        self.content_repository = content_repository or InMemoryContentRepository()
        self.user_repository = user_repository or InMemoryUserRepository()
        if analysis_service is None:
            analysis_service = build_analysis_service(self.config)
        self.analysis_service = analysis_service
        self.orchestrator = RecommendationOrchestrator(
            self.content_repository,
            self.user_repository,
            predictor or build_predictor(self.config),
            config=self.config,
            feed_cache=feed_cache or build_cache(self.config),
            analysis_service=analysis_service,
        )
        self.scheduler = scheduler or TaskScheduler()
        self._register_tasks()
        self._initialized = False

    def _register_tasks(self) -> None:
        cfg = self.config
        o = self.orchestrator
        self.scheduler.add_interval_task(
            TRENDING_TASK, o.trending_index.recompute, cfg.trending_recompute_interval_seconds
        )
        self.scheduler.add_interval_task(
            RETRAIN_TASK, lambda: o.collector.drain(reason="timer"), cfg.retrain_interval_seconds
        )
        self.scheduler.add_interval_task(CACHE_SWEEP_TASK, o.feed_cache.sweep, cfg.cache_sweep_interval_seconds)
        self.scheduler.add_interval_task(EVENT_PRUNE_TASK, o.ingestor.prune, cfg.event_prune_interval_seconds)

    # ------------------------------------------------------------------
    def initialize(self, start_scheduler: bool = True) -> None:
        if self._initialized:
            return
        self.orchestrator.initialize()
        self._fit_topic_extractor()
        self.scheduler.run_now(TRENDING_TASK)
        if start_scheduler:
            self.scheduler.start()
        self._initialized = True
        logger.info("FeedRank service initialized")

    def _fit_topic_extractor(self) -> None:
        fit = getattr(self.analysis_service, "fit", None)
        if fit is None:
            return
        since = utc_now() - timedelta(hours=self.config.trending_lookback_hours)
        try:
            corpus = [item.text for item in self.content_repository.list_recent(since) if item.text]
            fit(corpus)
            logger.info(f"Topic extractor fitted on {len(corpus)} recent posts")
        except Exception as e:
            logger.warning(f"Topic extractor fit failed; using per-post keyword weights: {e}")

    def shutdown(self, wait: bool = True) -> None:
        self.scheduler.shutdown(wait=wait)
        self.orchestrator.shutdown(wait=wait)
        self._initialized = False
        logger.info("FeedRank service stopped")

    # ------------------------------------------------------------------
    def get_feed(self, user_id: str, limit: Optional[int] = None,
                 filters: Optional[Mapping[str, Any]] = None,
                 timeout: Optional[float] = None) -> List[RecommendationResult]:
        return self.orchestrator.get_feed(user_id, limit, filters, timeout)

    def record_interaction(self, user_id: str, content_id: str, interaction_type: str,
                           context: Optional[Mapping[str, Any]] = None) -> Optional[InteractionEvent]:
        return self.orchestrator.record_interaction(user_id, content_id, interaction_type, context)

    def publish(self, item: ContentItem) -> int:
        """Add ``item`` to an in-memory content repository and invalidate its author's followers."""
        add = getattr(self.content_repository, "add", None)
        if add is not None:
            add(item)
        return self.orchestrator.on_content_published(item)

    def get_status(self) -> Dict[str, Any]:
        o = self.orchestrator
        return {
            "predictor": {
                "backend": o.predictor.name,
                "available": o.predictor.available,
                "model_version": o.predictor.model_version,
                "last_error": o.predictor.last_error,
            },
            "collector": {
                "pending": o.collector.pending,
                "batches_dispatched": o.collector.batches_dispatched,
                "records_dropped": o.collector.records_dropped,
            },
            "trending": {
                "topics": len(o.trending_index),
                "last_updated": o.trending_index.last_updated.isoformat() if o.trending_index.last_updated else None,
                "stale": o.trending_index.is_stale(self.config.stale_after_seconds),
            },
            "cache": {"hits": o.feed_cache.hits, "misses": o.feed_cache.misses},
            "events": o.ingestor.get_event_count(),
            "degraded_responses": o.degraded_responses,
            "scheduler": self.scheduler.get_status(),
        }


def main() -> None:
    """Run the core with in-memory repositories until interrupted."""
    setup_logging()
    service = FeedRankService(load_config())
    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    service.initialize()
    try:
        while not stop.wait(60):
            logger.info(f"Status: {service.get_status()['collector']}")
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
