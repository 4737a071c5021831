"""Engagement predictor contract, confidence scoring and a rule-based implementation.

Any implementation of :class:`EngagementPredictor` can be swapped into the
orchestrator. Implementations only provide ``_score`` (serving) and ``_fit``
(building a replacement model from a batch); the base class handles the
lifecycle, input sanitation, confidence, per-batch idempotence and running
retraining off the serving path.
"""

from __future__ import annotations

import hashlib
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from feedrank.config.config import (
    COMPLETENESS_WEIGHT,
    SPREAD_WEIGHT,
    MAX_REMEMBERED_BATCHES,
)
from feedrank.config.schemas import FeatureVector, Prediction, TrainingRecord
from feedrank.errors import PredictorUnavailable
from feedrank.utils.logging import get_logger

logger = get_logger(__name__)


def _as_vector(values) -> np.ndarray:
    v = np.asarray(values if values is not None else [], dtype=np.float64).ravel()
    return np.where(np.isfinite(v), v, 0.0)


def feature_confidence(
    features: np.ndarray,
    completeness_weight: float = COMPLETENESS_WEIGHT,
    spread_weight: float = SPREAD_WEIGHT,
    observed=None,
) -> float:
    """Confidence contributed by one feature vector.

    Completeness is the fraction of features that carried a signal: the
    ``observed`` mask when given, otherwise the non-zero values. Spread is
    twice the standard deviation, capped at 1 (the largest possible std of
    values in ``[0, 1]`` is 0.5). An empty vector, or an all-zero one
    without a mask, yields 0.
    """
    v = _as_vector(features)
    if v.size == 0:
        return 0.0
    mask = None if observed is None else np.asarray(observed, dtype=bool).ravel()
    if mask is not None and mask.size == v.size:
        completeness = float(np.count_nonzero(mask)) / v.size
    else:
        completeness = float(np.count_nonzero(v)) / v.size
    spread = min(1.0, 2.0 * float(v.std()))
    return float(np.clip(completeness_weight * completeness + spread_weight * spread, 0.0, 1.0))


def compute_confidence(
    content_features,
    user_features,
    context_features,
    completeness_weight: float = COMPLETENESS_WEIGHT,
    spread_weight: float = SPREAD_WEIGHT,
    observed=None,
) -> float:
    """Average :func:`feature_confidence` across the three vectors."""
    masks = observed if observed is not None else (None, None, None)
    parts = [
        feature_confidence(f, completeness_weight, spread_weight, m)
        for f, m in zip((content_features, user_features, context_features), masks)
    ]
    return float(sum(parts) / len(parts))


def batch_fingerprint(batch: Sequence[TrainingRecord]) -> str:
    """Deterministic digest of a batch, used to make retraining idempotent."""
    h = hashlib.blake2s(digest_size=16)
    for r in batch:
        for arr in (r.content_features, r.user_features, r.context_features):
            h.update(np.asarray(arr, dtype=np.float32).tobytes())
        h.update(np.float64(r.engagement_label).tobytes())
    return h.hexdigest()


class EngagementPredictor(ABC):
    """Contract: ``predict(content, user, context) -> Prediction`` and async ``train_model(batch)``.

    ``predict`` always reads the current model snapshot; ``train_model`` builds
    a replacement on a single background worker and swaps it in atomically
    via :meth:`_swap`. A failed retraining cycle leaves the serving model
    untouched.
    """

    name = "predictor"

    def __init__(
        self,
        *,
        completeness_weight: float = COMPLETENESS_WEIGHT,
        spread_weight: float = SPREAD_WEIGHT,
        max_remembered_batches: int = MAX_REMEMBERED_BATCHES,
    ) -> None:
        self.completeness_weight = float(completeness_weight)
        self.spread_weight = float(spread_weight)
        self.model_version = 0
        self.last_error: Optional[str] = None

        self._swap_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._available = False
        self._executor: Optional[ThreadPoolExecutor] = None
        self._seen_batches: "OrderedDict[str, None]" = OrderedDict()
        self._in_flight: Dict[str, Future] = {}
        self._max_remembered = int(max_remembered_batches)

    # ------------------------------------------------------------------
    # Lifecycle
    def initialize(self) -> None:
        """Load or create the serving model and start the training worker."""
        with self._state_lock:
            if self._available:
                return
            self._load()
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{self.name}-train")
            self._available = True
        logger.info(f"{self.name} predictor initialized (version {self.model_version})")

    def shutdown(self, wait: bool = True) -> None:
        with self._state_lock:
            self._available = False
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
        logger.info(f"{self.name} predictor stopped")

    @property
    def available(self) -> bool:
        return self._available

    # ------------------------------------------------------------------
    # Serving
    def predict(self, content_features, user_features, context_features, observed=None) -> Prediction:
        if not self._available:
            raise PredictorUnavailable(f"{self.name} predictor is not initialized")
        c, u, x = _as_vector(content_features), _as_vector(user_features), _as_vector(context_features)
        score = self._score(c, u, x)
        return self._prediction(score, c, u, x, observed)

    def predict_batch(self, vectors: Sequence[FeatureVector]) -> List[Prediction]:
        return [self.predict(*v.as_tuple(), observed=v.observed) for v in vectors]

    def _prediction(self, score: float, c, u, x, observed=None) -> Prediction:
        score = float(score)
        if not np.isfinite(score):
            score = 0.0
        return Prediction(
            engagement_score=float(np.clip(score, 0.0, 1.0)),
            confidence=compute_confidence(c, u, x, self.completeness_weight, self.spread_weight, observed),
        )

    # ------------------------------------------------------------------
    # Retraining
    def train_model(self, batch: Sequence[TrainingRecord]) -> Future:
        """Schedule retraining on ``batch``; the future resolves to True when a new model was swapped in.

        Submitting the same batch twice is a no-op (the second future resolves
        to False, or shares the in-flight one).
        """
        batch = list(batch)
        with self._state_lock:
            if not self._available or self._executor is None:
                raise PredictorUnavailable(f"{self.name} predictor is not initialized")
            fp = batch_fingerprint(batch)
            if fp in self._in_flight:
                return self._in_flight[fp]
            if fp in self._seen_batches or not batch:
                done: Future = Future()
                done.set_result(False)
                return done
            future = self._executor.submit(self._train_job, fp, batch)
            self._in_flight[fp] = future
        return future

    def _train_job(self, fp: str, batch: List[TrainingRecord]) -> bool:
        try:
            logger.info(f"Retraining {self.name} predictor on {len(batch)} records")
            new_model = self._fit(batch)
            self._swap(new_model)
            self.last_error = None
            logger.info(f"{self.name} predictor swapped to version {self.model_version}")
            return True
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Retraining failed, keeping version {self.model_version}: {e}")
            return False
        finally:
            with self._state_lock:
                self._in_flight.pop(fp, None)
                self._seen_batches[fp] = None
                while len(self._seen_batches) > self._max_remembered:
                    self._seen_batches.popitem(last=False)

    def _swap(self, new_model: Any) -> None:
        with self._swap_lock:
            self._set_model(new_model)
            self.model_version += 1

    def _snapshot(self) -> Any:
        with self._swap_lock:
            return self._get_model()

    # ------------------------------------------------------------------
    # Implementation hooks
    def _load(self) -> None:
        """Prepare the initial serving model."""

    @abstractmethod
    def _score(self, content: np.ndarray, user: np.ndarray, context: np.ndarray) -> float:
        ...

    @abstractmethod
    def _fit(self, batch: List[TrainingRecord]) -> Any:
        """Return a new model built from ``batch`` without touching the serving one."""

    @abstractmethod
    def _get_model(self) -> Any:
        ...

    @abstractmethod
    def _set_model(self, model: Any) -> None:
        ...


class HeuristicEngagementPredictor(EngagementPredictor):
    """Rule-based predictor: weighted mean of importance-weighted feature vectors.

    Retraining recalibrates per-feature importances from the (positive)
    correlation of each feature with the engagement label in the batch.
    """

    name = "heuristic"

    def __init__(
        self,
        *,
        block_weights: Sequence[float] = (0.5, 0.3, 0.2),
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        total = float(sum(block_weights)) or 1.0
        self.block_weights = tuple(float(w) / total for w in block_weights)
        self._params: Optional[Dict[str, np.ndarray]] = None

    def _get_model(self):
        return self._params

    def _set_model(self, model) -> None:
        self._params = model

    def _score(self, content, user, context) -> float:
        params = self._snapshot()
        total = 0.0
        for weight, key, v in zip(self.block_weights, ("content", "user", "context"), (content, user, context)):
            if v.size == 0:
                continue
            imp = params.get(key) if params else None
            if imp is None or imp.size != v.size:
                total += weight * float(v.mean())
            else:
                total += weight * float(np.dot(v, imp))
        return total

    def _fit(self, batch: List[TrainingRecord]):
        labels = np.array([r.engagement_label for r in batch], dtype=np.float64)
        params: Dict[str, np.ndarray] = {}
        for key, attr in (("content", "content_features"), ("user", "user_features"), ("context", "context_features")):
            X = np.stack([np.asarray(getattr(r, attr), dtype=np.float64) for r in batch])
            params[key] = self._importances(X, labels)
        return params

    @staticmethod
    def _importances(X: np.ndarray, y: np.ndarray) -> np.ndarray:
        n_features = X.shape[1]
        if X.shape[0] < 2 or y.std() == 0:
            return np.full(n_features, 1.0 / n_features)
        xs = X.std(axis=0)
        cov = ((X - X.mean(axis=0)) * (y - y.mean())[:, None]).mean(axis=0)
        corr = np.divide(cov, xs * y.std(), out=np.zeros(n_features), where=xs > 0)
        imp = np.clip(corr, 0.0, None) + 1e-3
        return imp / imp.sum()
