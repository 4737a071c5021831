"""Schema definitions for structured data used in the project."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from feedrank.utils.datetime import ensure_utc, utc_now


class InteractionType(str, Enum):
    VIEW = "view"
    LIKE = "like"
    COMMENT = "comment"
    SHARE = "share"


# Network signals accepted by ``record_interaction`` but not counted as engagement.
NETWORK_SIGNALS = frozenset({"follow", "unfollow"})
# Signals that invalidate the user's cached feed immediately.
STRONG_SIGNALS = frozenset({"follow", "unfollow", "comment", "share", "preference"})


class DeviceClass(IntEnum):
    DESKTOP = 0
    MOBILE = 1
    TABLET = 2

    @classmethod
    def from_user_agent(cls, user_agent: Optional[str]) -> "DeviceClass":
        if not user_agent:
            return cls.DESKTOP
        if "Tablet" in user_agent or "iPad" in user_agent:
            return cls.TABLET
        if "Mobile" in user_agent:
            return cls.MOBILE
        return cls.DESKTOP


@dataclass(frozen=True)
class RequestContext:
    """Request-time context used for context features."""

    hour_of_day: int = 0
    day_of_week: int = 0
    device_class: DeviceClass = DeviceClass.DESKTOP
    time_since_last_interaction: float = 0.0  # hours

    @classmethod
    def now(cls, device_class: DeviceClass = DeviceClass.DESKTOP,
            time_since_last_interaction: float = 0.0) -> "RequestContext":
        ts = utc_now()
        return cls(ts.hour, ts.weekday(), device_class, time_since_last_interaction)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "RequestContext":
        """Build a context from a loosely-typed mapping, defaulting missing keys."""
        if isinstance(data, RequestContext):
            return data
        data = dict(data or {})
        ts = utc_now()
        device = data.get("device_class")
        if device is None:
            device = DeviceClass.from_user_agent(data.get("user_agent"))
        return cls(
            hour_of_day=int(data.get("hour_of_day", ts.hour)) % 24,
            day_of_week=int(data.get("day_of_week", ts.weekday())) % 7,
            device_class=DeviceClass(int(device)),
            time_since_last_interaction=float(data.get("time_since_last_interaction", 0.0) or 0.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hour_of_day": self.hour_of_day,
            "day_of_week": self.day_of_week,
            "device_class": int(self.device_class),
            "time_since_last_interaction": self.time_since_last_interaction,
        }


@dataclass(frozen=True)
class InteractionEvent:
    """Immutable, append-only record of a user action."""

    user_id: str
    content_id: str
    type: InteractionType
    timestamp: datetime
    context: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    content_type: Optional[str] = None
    author_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", InteractionType(self.type))
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))


@dataclass
class ContentItem:
    """A candidate content item as returned by the content repository."""

    content_id: str
    author_id: str
    content_type: str
    published_at: datetime
    text: str = ""
    topics: Optional[List[str]] = None
    platform: Optional[str] = None
    likes: int = 0
    comments: int = 0
    shares: int = 0
    views: int = 0
    media_count: int = 0
    author_followers: int = 0
    author_posts: int = 0
    author_engagement_rate: float = 0.0
    word_count: Optional[int] = None

    def __post_init__(self) -> None:
        self.published_at = ensure_utc(self.published_at)
        if self.word_count is None:
            self.word_count = len(self.text.split()) if self.text else 0

    @property
    def engagement(self) -> int:
        return int(self.likes or 0) + int(self.comments or 0) + int(self.shares or 0)


@dataclass
class InteractionCounts:
    likes: int = 0
    comments: int = 0
    shares: int = 0
    views: int = 0

    def as_list(self) -> List[int]:
        return [self.likes, self.comments, self.shares, self.views]


@dataclass
class EngagementProfile:
    """Per-user aggregate of interaction history."""

    user_id: str
    content_type_engagement: Dict[str, float] = field(default_factory=dict)
    active_hours: List[int] = field(default_factory=lambda: list(range(24)))
    hour_histogram: List[int] = field(default_factory=lambda: [0] * 24)
    interaction_counts: InteractionCounts = field(default_factory=InteractionCounts)
    preferred_content_types: List[str] = field(default_factory=list)
    author_affinity: Dict[str, float] = field(default_factory=dict)
    total_events: int = 0
    last_interaction_at: Optional[datetime] = None
    last_computed_at: datetime = field(default_factory=utc_now)

    @property
    def is_empty(self) -> bool:
        return self.total_events == 0

    @property
    def total_weight(self) -> float:
        return float(sum(self.content_type_engagement.values()))

    def top_active_hours(self, n: int) -> List[int]:
        """Top ``n`` hours that actually saw activity."""
        return [h for h in self.active_hours if self.hour_histogram[h] > 0][:n]

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utc_now()) - self.last_computed_at).total_seconds()

    def is_stale(self, threshold_seconds: float, now: Optional[datetime] = None) -> bool:
        return self.age_seconds(now) > threshold_seconds


@dataclass
class FeatureVector:
    """Normalised features plus, optionally, which raw values carried a signal.

    ``observed`` holds one boolean mask per block, true where the raw value
    before normalisation was present and non-zero. Batch normalisation maps
    a column with no signal to 0.5, so confidence reads completeness from
    these masks rather than from the normalised values.
    """

    content_features: np.ndarray
    user_features: np.ndarray
    context_features: np.ndarray
    observed: Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]] = field(default=None, compare=False)

    def as_tuple(self):
        return self.content_features, self.user_features, self.context_features


@dataclass
class TrainingRecord:
    content_features: np.ndarray
    user_features: np.ndarray
    context_features: np.ndarray
    engagement_label: float


@dataclass(frozen=True)
class TrendingEntry:
    topic: str
    score: float


@dataclass(frozen=True)
class Prediction:
    engagement_score: float
    confidence: float


@dataclass
class RecommendationResult:
    content_id: str
    base_score: float
    engagement_score: float
    confidence: float
    final_score: float
    published_at: Optional[datetime] = None
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_id": self.content_id,
            "base_score": self.base_score,
            "engagement_score": self.engagement_score,
            "confidence": self.confidence,
            "final_score": self.final_score,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "degraded": self.degraded,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RecommendationResult":
        published = data.get("published_at")
        return cls(
            content_id=data["content_id"],
            base_score=float(data["base_score"]),
            engagement_score=float(data["engagement_score"]),
            confidence=float(data["confidence"]),
            final_score=float(data["final_score"]),
            published_at=ensure_utc(published) if published else None,
            degraded=bool(data.get("degraded", False)),
        )


def safe_score(value: Any, floor: float = 0.0) -> float:
    """Map NaN/inf/None to ``floor``, the minimum possible score."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return floor
    return v if math.isfinite(v) else floor
