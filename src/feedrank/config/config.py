"""Project-wide single-source configuration constants for the feed ranking core."""

from pathlib import Path
from feedrank.utils.path_utils import find_repo_root

# ----- Base directory configuration -------
PROJECT_ROOT = find_repo_root()
DATA_DIR: Path = PROJECT_ROOT / "datasets"

# ------ IO paths -------
MODEL_DIR: Path = DATA_DIR / "models"
ENGAGEMENT_MODEL_PATH: Path = MODEL_DIR / "engagement_predictor.pt"
CONFIG_YAML_PATH: Path = PROJECT_ROOT / "feedrank.yaml"
ENV_PREFIX: str = "FEEDRANK_"

# ------ Blending & filtering -------
RECOMMENDATION_WEIGHT: float = 0.6   # weight of the base (rule) score in the final score
ENGAGEMENT_WEIGHT: float = 0.4       # weight of the predicted engagement in the final score
MIN_CONFIDENCE: float = 0.7          # predictions below this confidence are dropped
DEGRADED_CONFIDENCE: float = 1.0     # synthetic confidence when the predictor is unavailable

# ------ Candidate fetching -------
DEFAULT_FEED_LIMIT: int = 20
MAX_FEED_LIMIT: int = 200
CANDIDATE_MULTIPLIER: int = 5        # superset size = limit * multiplier
MAX_CANDIDATES: int = 500            # hard cap on candidates scored per request
CANDIDATE_WINDOW: str = "week"       # default publish window: day | week | month | year

# ------ Feed cache -------
CACHE_TTL_SECONDS: int = 300               # 5 minutes
DEGRADED_CACHE_TTL_SECONDS: int = 30       # short TTL for base-only feeds
CACHE_SWEEP_INTERVAL_SECONDS: int = 60
FEED_CACHE_PREFIX: str = "feed"
CACHE_BACKEND: str = "memory"              # "memory" | "redis"
REDIS_URL: str = "redis://localhost:6379/0"

# ------ Hybrid scorer -------
PREFERENCE_BONUS: float = 2.0        # content type in the user's preferred types
NETWORK_BONUS: float = 3.0           # author in the user's following set
TIME_BONUS: float = 1.0              # published during one of the user's active hours
TRENDING_WEIGHT: float = 1.0         # multiplier on the mean trending score of the content topics
TOP_PREFERRED_TYPES: int = 3
TOP_ACTIVE_HOURS: int = 3
RECENCY_HALF_LIFE_DAYS: float = 7.0
COLLABORATIVE_WEIGHT: float = 0.6
CONTENT_WEIGHT: float = 0.4
SIMILAR_USERS: int = 10
COLLABORATIVE_ENABLED: bool = False  # blend in similar-user signals from recent events

# ------ Engagement profile -------
EVENT_WEIGHTS: dict[str, int] = {"view": 1, "like": 2, "share": 3, "comment": 4}
PROFILE_LOOKBACK_DAYS: int = 30
PROFILE_MAX_EVENTS: int = 1000
PROFILE_TTL_SECONDS: int = 900       # recompute cached profiles after 15 minutes
STALE_AFTER_SECONDS: int = 3 * 3600  # older profiles / trending index log a StaleDataWarning

# ------ Event ingestion -------
EVENT_RETENTION_DAYS: int = 30
EVENT_PRUNE_INTERVAL_SECONDS: int = 3600

# ------ Predictor -------
PREDICTOR_BACKEND: str = "neural"    # "neural" | "heuristic"
CONTENT_FEATURE_DIM: int = 10
USER_FEATURE_DIM: int = 10
CONTEXT_FEATURE_DIM: int = 6
COMPLETENESS_WEIGHT: float = 0.75    # share of confidence from non-zero features
SPREAD_WEIGHT: float = 0.25          # share of confidence from feature spread
PREDICTION_WORKERS: int = 4
PREDICT_TIMEOUT_SECONDS: float = 2.0

# ------ Training configuration -------
BATCH_SIZE: int = 1000               # records per retraining batch
RETRAIN_INTERVAL_SECONDS: int = 3600 # timer-driven drain
OUTLIER_SIGMA: float = 3.0
TRAIN_EPOCHS: int = 100
TRAIN_MINIBATCH: int = 32
TRAIN_LR: float = 0.001
VALIDATION_SPLIT: float = 0.2
MAX_REMEMBERED_BATCHES: int = 256    # fingerprints kept for per-batch idempotence
INFERENCE_DEVICE: str = "cpu"

# Engagement label weights for aggregated metrics
METRIC_LABEL_WEIGHTS: dict[str, float] = {
    "likes": 0.3,
    "comments": 0.4,
    "shares": 0.2,
    "time_spent": 0.1,
}
METRIC_LABEL_SCALE: float = 100.0

# ------ Trending index -------
TRENDING_RECOMPUTE_INTERVAL_SECONDS: int = 3600
TRENDING_LOOKBACK_HOURS: int = 24
TOPIC_ANALYSIS: str = "keywords"      # "keywords" (local TF-IDF extractor) | "none"
TRENDING_TOP_N: int = 10
