import os

import pytest

from feedrank.config.settings import FeedConfig
from feedrank.data_pipeline.processors.topics import KeywordTopicExtractor
from feedrank.model.inference.neural import NeuralEngagementPredictor
from feedrank.model.inference.predictor import HeuristicEngagementPredictor
from feedrank.service.cache import InMemoryCacheService
from feedrank.service.main import (
    CACHE_SWEEP_TASK,
    EVENT_PRUNE_TASK,
    RETRAIN_TASK,
    TRENDING_TASK,
    FeedRankService,
    build_analysis_service,
    build_cache,
    build_predictor,
    load_config,
)
from feedrank.service.repositories import InMemoryContentRepository

from helpers.factories import make_item


@pytest.fixture
def service(content_repo, user_repo):
    config = FeedConfig(predictor_backend="heuristic", min_confidence=0.0, batch_size=1000)
    svc = FeedRankService(config, content_repository=content_repo, user_repository=user_repo)
    svc.initialize(start_scheduler=False)
    yield svc
    svc.shutdown(wait=False)


def test_initialize_builds_trending_index(content_repo, user_repo):
    content_repo.add(make_item("t1", "erin", topics=["ai"], likes=10))
    svc = FeedRankService(FeedConfig(predictor_backend="heuristic"),
                          content_repository=content_repo, user_repository=user_repo)
    svc.initialize(start_scheduler=False)
    try:
        assert svc.orchestrator.trending_index.score("ai") == 1.0
        assert svc.scheduler.tasks[TRENDING_TASK].runs == 1
    finally:
        svc.shutdown(wait=False)


def test_feed_through_service(service):
    feed = service.get_feed("u1", limit=4)
    assert 0 < len(feed) <= 4
    assert service.get_status()["cache"]["misses"] == 1


def test_scheduled_tasks_run_on_demand(service):
    service.record_interaction("u1", "c1", "like")
    assert service.scheduler.run_now(RETRAIN_TASK)
    assert service.orchestrator.collector.pending == 0
    assert service.orchestrator.collector.batches_dispatched == 1
    for name in (CACHE_SWEEP_TASK, EVENT_PRUNE_TASK, TRENDING_TASK):
        assert service.scheduler.run_now(name)


def test_publish_invalidates_follower_feed(service):
    service.get_feed("u1")
    assert service.publish(make_item("fresh", "alice")) == 1
    assert service.orchestrator.feed_cache.get("u1") is None
    assert service.content_repository.get_content("fresh") is not None


def test_status_report(service):
    status = service.get_status()
    assert status["predictor"]["backend"] == "heuristic"
    assert status["predictor"]["available"] is True
    assert {t["name"] for t in status["scheduler"]["tasks"]} == {
        TRENDING_TASK, RETRAIN_TASK, CACHE_SWEEP_TASK, EVENT_PRUNE_TASK,
    }


def test_backend_selection(temp_data_dir):
    assert isinstance(build_predictor(FeedConfig(predictor_backend="heuristic")), HeuristicEngagementPredictor)
    neural = build_predictor(FeedConfig(model_path=str(temp_data_dir / "m.pt"), train_epochs=1))
    assert isinstance(neural, NeuralEngagementPredictor)
    assert neural.epochs == 1
    assert isinstance(build_cache(FeedConfig()).service, InMemoryCacheService)


def test_topic_analysis_selects_extractor():
    assert isinstance(build_analysis_service(FeedConfig()), KeywordTopicExtractor)
    assert build_analysis_service(FeedConfig(topic_analysis="none")) is None


def test_untagged_posts_get_topics_from_extractor(user_repo):
    repo = InMemoryContentRepository()
    repo.add(make_item("p1", "erin", text="#robotics drone launch", likes=10))
    repo.add(make_item("p2", "erin", text="robotics startup raises funding", likes=4))
    svc = FeedRankService(FeedConfig(predictor_backend="heuristic"),
                          content_repository=repo, user_repository=user_repo)
    svc.initialize(start_scheduler=False)
    try:
        assert isinstance(svc.analysis_service, KeywordTopicExtractor)
        assert svc.analysis_service._fitted
        assert svc.orchestrator.trending_index.score("robotics") > 0
    finally:
        svc.shutdown(wait=False)


def test_topic_analysis_can_be_disabled(user_repo):
    repo = InMemoryContentRepository()
    repo.add(make_item("p1", "erin", text="#robotics drone launch", likes=10))
    svc = FeedRankService(FeedConfig(predictor_backend="heuristic", topic_analysis="none"),
                          content_repository=repo, user_repository=user_repo)
    svc.initialize(start_scheduler=False)
    try:
        assert svc.analysis_service is None
        assert svc.orchestrator.trending_index.score("robotics") == 0.0
    finally:
        svc.shutdown(wait=False)


def test_load_config_reads_dotenv_and_yaml(temp_data_dir):
    yaml_path = temp_data_dir / "feedrank.yaml"
    yaml_path.write_text("feed:\n  batch_size: 64\n  min_confidence: 0.4\n")
    env_path = temp_data_dir / ".env"
    env_path.write_text("FEEDRANK_BATCH_SIZE=42\n")
    try:
        cfg = load_config(str(yaml_path), env_file=env_path)
        assert cfg.batch_size == 42
        assert cfg.min_confidence == 0.4
    finally:
        os.environ.pop("FEEDRANK_BATCH_SIZE", None)
