"""Runtime configuration with YAML and environment overrides."""

import os
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from feedrank.config.config import (
    RECOMMENDATION_WEIGHT,
    ENGAGEMENT_WEIGHT,
    MIN_CONFIDENCE,
    DEFAULT_FEED_LIMIT,
    MAX_FEED_LIMIT,
    CANDIDATE_MULTIPLIER,
    MAX_CANDIDATES,
    CANDIDATE_WINDOW,
    CACHE_TTL_SECONDS,
    DEGRADED_CACHE_TTL_SECONDS,
    CACHE_SWEEP_INTERVAL_SECONDS,
    CACHE_BACKEND,
    REDIS_URL,
    PREFERENCE_BONUS,
    NETWORK_BONUS,
    TIME_BONUS,
    TRENDING_WEIGHT,
    TOP_PREFERRED_TYPES,
    TOP_ACTIVE_HOURS,
    RECENCY_HALF_LIFE_DAYS,
    COLLABORATIVE_WEIGHT,
    CONTENT_WEIGHT,
    COLLABORATIVE_ENABLED,
    PROFILE_LOOKBACK_DAYS,
    PROFILE_MAX_EVENTS,
    PROFILE_TTL_SECONDS,
    STALE_AFTER_SECONDS,
    EVENT_RETENTION_DAYS,
    EVENT_PRUNE_INTERVAL_SECONDS,
    PREDICTOR_BACKEND,
    PREDICTION_WORKERS,
    PREDICT_TIMEOUT_SECONDS,
    BATCH_SIZE,
    RETRAIN_INTERVAL_SECONDS,
    OUTLIER_SIGMA,
    TRAIN_EPOCHS,
    TRENDING_RECOMPUTE_INTERVAL_SECONDS,
    TRENDING_LOOKBACK_HOURS,
    TOPIC_ANALYSIS,
    ENGAGEMENT_MODEL_PATH,
    ENV_PREFIX,
)
from feedrank.errors import InputValidationError
from feedrank.utils.io import load_yaml_section


@dataclass
class FeedConfig:
    """Documented configuration surface of the ranking core.

    The first seven fields are the public knobs; the rest tune internals and
    default to the constants in :mod:`feedrank.config.config`.
    """
    recommendation_weight: float = RECOMMENDATION_WEIGHT
    engagement_weight: float = ENGAGEMENT_WEIGHT
    min_confidence: float = MIN_CONFIDENCE
    batch_size: int = BATCH_SIZE
    retrain_interval_seconds: int = RETRAIN_INTERVAL_SECONDS
    cache_ttl_seconds: int = CACHE_TTL_SECONDS
    trending_recompute_interval_seconds: int = TRENDING_RECOMPUTE_INTERVAL_SECONDS

    default_limit: int = DEFAULT_FEED_LIMIT
    max_limit: int = MAX_FEED_LIMIT
    candidate_multiplier: int = CANDIDATE_MULTIPLIER
    max_candidates: int = MAX_CANDIDATES
    candidate_window: str = CANDIDATE_WINDOW
    degraded_cache_ttl_seconds: int = DEGRADED_CACHE_TTL_SECONDS
    cache_sweep_interval_seconds: int = CACHE_SWEEP_INTERVAL_SECONDS
    cache_backend: str = CACHE_BACKEND
    redis_url: str = REDIS_URL
    preference_bonus: float = PREFERENCE_BONUS
    network_bonus: float = NETWORK_BONUS
    time_bonus: float = TIME_BONUS
    trending_weight: float = TRENDING_WEIGHT
    top_preferred_types: int = TOP_PREFERRED_TYPES
    top_active_hours: int = TOP_ACTIVE_HOURS
    recency_half_life_days: float = RECENCY_HALF_LIFE_DAYS
    collaborative_weight: float = COLLABORATIVE_WEIGHT
    content_weight: float = CONTENT_WEIGHT
    collaborative_enabled: bool = COLLABORATIVE_ENABLED
    profile_lookback_days: int = PROFILE_LOOKBACK_DAYS
    profile_max_events: int = PROFILE_MAX_EVENTS
    profile_ttl_seconds: int = PROFILE_TTL_SECONDS
    stale_after_seconds: int = STALE_AFTER_SECONDS
    event_retention_days: int = EVENT_RETENTION_DAYS
    event_prune_interval_seconds: int = EVENT_PRUNE_INTERVAL_SECONDS
    predictor_backend: str = PREDICTOR_BACKEND
    prediction_workers: int = PREDICTION_WORKERS
    predict_timeout_seconds: float = PREDICT_TIMEOUT_SECONDS
    outlier_sigma: float = OUTLIER_SIGMA
    train_epochs: int = TRAIN_EPOCHS
    trending_lookback_hours: int = TRENDING_LOOKBACK_HOURS
    topic_analysis: str = TOPIC_ANALYSIS
    model_path: str = str(ENGAGEMENT_MODEL_PATH)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "FeedConfig":
        """Create a config from a mapping, ignoring unknown keys and casting to field types."""
        defaults = cls()
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if data and f.name in data and data[f.name] is not None:
                kwargs[f.name] = _coerce(data[f.name], type(getattr(defaults, f.name)))
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, yaml_path: Optional[str] = None) -> "FeedConfig":
        """Create config with optional YAML overrides from a ``feed:`` section."""
        return cls.from_mapping(load_yaml_section(yaml_path, "feed"))

    @classmethod
    def from_env(cls, yaml_path: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None) -> "FeedConfig":
        """YAML overrides first, then ``FEEDRANK_<FIELD>`` environment variables."""
        base = asdict(cls.from_yaml(yaml_path))
        env = os.environ if environ is None else environ
        for name in base:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                base[name] = raw
        return cls.from_mapping(base)

    def validate(self) -> "FeedConfig":
        """Raise :class:`InputValidationError` on out-of-range values."""
        if self.recommendation_weight < 0 or self.engagement_weight < 0:
            raise InputValidationError("blend weights must be non-negative")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise InputValidationError(f"min_confidence must be in [0, 1], got {self.min_confidence}")
        positive = (
            "batch_size", "retrain_interval_seconds", "cache_ttl_seconds",
            "trending_recompute_interval_seconds", "max_limit", "candidate_multiplier",
            "max_candidates", "prediction_workers", "top_preferred_types", "top_active_hours",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise InputValidationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.recency_half_life_days <= 0:
            raise InputValidationError("recency_half_life_days must be positive")
        if self.predictor_backend not in ("neural", "heuristic"):
            raise InputValidationError(f"unknown predictor_backend {self.predictor_backend!r}")
        if self.candidate_window not in ("day", "week", "month", "year"):
            raise InputValidationError(f"unknown candidate_window {self.candidate_window!r}")
        if self.cache_backend not in ("memory", "redis"):
            raise InputValidationError(f"unknown cache_backend {self.cache_backend!r}")
        if self.topic_analysis not in ("keywords", "none"):
            raise InputValidationError(f"unknown topic_analysis {self.topic_analysis!r}")
        return self

    @property
    def model_file(self) -> Path:
        return Path(self.model_path)


def _coerce(value: Any, target: type) -> Any:
    if target is bool:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if target in (int, float, str):
        try:
            return target(value)
        except (TypeError, ValueError) as e:
            raise InputValidationError(f"cannot convert {value!r} to {target.__name__}") from e
    return value
