import pytest

from feedrank.config.config import MIN_CONFIDENCE, RECOMMENDATION_WEIGHT
from feedrank.config.settings import FeedConfig
from feedrank.errors import InputValidationError


def test_defaults_mirror_constants():
    cfg = FeedConfig()
    assert cfg.min_confidence == MIN_CONFIDENCE
    assert cfg.recommendation_weight == RECOMMENDATION_WEIGHT
    assert cfg.validate() is cfg


def test_yaml_overrides(temp_data_dir):
    path = temp_data_dir / "feedrank.yaml"
    path.write_text("feed:\n  min_confidence: 0.5\n  batch_size: 250\n  unknown_key: 1\n")
    cfg = FeedConfig.from_yaml(str(path))
    assert cfg.min_confidence == 0.5
    assert cfg.batch_size == 250


def test_invalid_yaml_falls_back_to_defaults(temp_data_dir):
    path = temp_data_dir / "broken.yaml"
    path.write_text("feed: [unclosed\n")
    assert FeedConfig.from_yaml(str(path)) == FeedConfig()


def test_env_overrides_yaml(temp_data_dir):
    path = temp_data_dir / "feedrank.yaml"
    path.write_text("feed:\n  cache_ttl_seconds: 120\n")
    env = {"FEEDRANK_CACHE_TTL_SECONDS": "60", "FEEDRANK_COLLABORATIVE_ENABLED": "true"}
    cfg = FeedConfig.from_env(str(path), environ=env)
    assert cfg.cache_ttl_seconds == 60
    assert cfg.collaborative_enabled is True


@pytest.mark.parametrize("overrides", [
    {"min_confidence": 1.5},
    {"engagement_weight": -0.1},
    {"batch_size": 0},
    {"predictor_backend": "oracle"},
    {"cache_backend": "memcached"},
    {"topic_analysis": "llm"},
])
def test_validate_rejects_bad_values(overrides):
    with pytest.raises(InputValidationError):
        FeedConfig(**overrides).validate()


def test_unparseable_env_value():
    with pytest.raises(InputValidationError):
        FeedConfig.from_env(None, environ={"FEEDRANK_BATCH_SIZE": "lots"})
