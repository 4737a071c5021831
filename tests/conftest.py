"""Test configuration and shared fixtures."""

import tempfile
from pathlib import Path

import pytest

from feedrank.config.settings import FeedConfig
from feedrank.model.inference.predictor import HeuristicEngagementPredictor
from feedrank.service.cache import FeedCache, InMemoryCacheService
from feedrank.service.orchestrator import RecommendationOrchestrator
from feedrank.service.repositories import InMemoryContentRepository, InMemoryUserRepository

from helpers.factories import hours_ago, make_item


@pytest.fixture
def temp_data_dir():
    """Create a temporary directory for test data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def feed_config():
    # Confidence filtering is exercised separately; keep every candidate here.
    return FeedConfig(min_confidence=0.0, predict_timeout_seconds=5.0, batch_size=10)


@pytest.fixture
def content_repo():
    repo = InMemoryContentRepository()
    repo.add(make_item("c1", "alice", "video", hours_ago(2), likes=50, comments=5, shares=2, views=900))
    repo.add(make_item("c2", "bob", "article", hours_ago(5), likes=10, comments=1, views=200))
    repo.add(make_item("c3", "carol", "image", hours_ago(8), likes=30, shares=8, views=400))
    repo.add(make_item("c4", "alice", "article", hours_ago(20), likes=5, views=50))
    repo.add(make_item("c5", "dave", "video", hours_ago(30), likes=70, comments=20, shares=10, views=3000))
    repo.add(make_item("own", "u1", "video", hours_ago(1), likes=99))
    return repo


@pytest.fixture
def user_repo():
    repo = InMemoryUserRepository()
    repo.follow("u1", "alice")
    return repo


@pytest.fixture
def predictor():
    p = HeuristicEngagementPredictor()
    p.initialize()
    yield p
    p.shutdown()


@pytest.fixture
def cache_service():
    return InMemoryCacheService()


@pytest.fixture
def orchestrator(content_repo, user_repo, predictor, feed_config, cache_service):
    o = RecommendationOrchestrator(
        content_repo,
        user_repo,
        predictor,
        config=feed_config,
        feed_cache=FeedCache(cache_service, ttl_seconds=feed_config.cache_ttl_seconds),
    )
    yield o
    o.shutdown(wait=True)
