"""Buffering, cleaning and hand-off of training signals to the engagement predictor."""

from __future__ import annotations

import threading
import traceback
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from feedrank.config.config import (
    BATCH_SIZE,
    EVENT_WEIGHTS,
    METRIC_LABEL_WEIGHTS,
    METRIC_LABEL_SCALE,
    OUTLIER_SIGMA,
)
from feedrank.config.schemas import InteractionEvent, TrainingRecord
from feedrank.data_pipeline.processors.cleaning import clean_records
from feedrank.errors import PredictorUnavailable
from feedrank.utils.datetime import utc_now
from feedrank.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TrainingSignal:
    """One buffered observation: who engaged with what, how strongly, and in which context."""

    user_id: str
    content_id: str
    label: float
    context: Dict[str, Any] = field(default_factory=dict)
    observed_at: datetime = field(default_factory=utc_now)
    source: str = "interaction"


RecordBuilder = Callable[[Sequence[TrainingSignal]], List[TrainingRecord]]


def interaction_label(interaction_type: str, weights: Optional[Mapping[str, float]] = None) -> float:
    """Map an interaction type onto ``[0, 1]`` by its weight relative to the strongest type."""
    weights = weights or EVENT_WEIGHTS
    top = max(weights.values()) or 1
    return float(weights.get(str(interaction_type), 0)) / float(top)


def metrics_label(metrics: Mapping[str, float]) -> float:
    """Engagement label from aggregated metrics (likes, comments, shares, time_spent), clipped to ``[0, 1]``."""
    raw = sum(float(metrics.get(k, 0) or 0) * w for k, w in METRIC_LABEL_WEIGHTS.items())
    return min(1.0, max(0.0, raw / METRIC_LABEL_SCALE))


class TrainingDataCollector:
    """Double-buffered collector that releases cleaned batches to the predictor.

    Writers append under a short lock. A drain atomically swaps out up to
    ``batch_size`` signals and processes them outside the lock, so concurrent
    appends are never blocked by cleaning or retraining. When an append fills
    the buffer, the swapped batch is processed on the collector's own worker
    thread and the caller returns immediately; the scheduler's timer calls
    :meth:`drain` for partial batches.

    Delivery is at-most-once: a batch that fails between swap and hand-off
    is logged and dropped, never re-enqueued.
    """

    def __init__(
        self,
        predictor,
        record_builder: RecordBuilder,
        *,
        batch_size: int = BATCH_SIZE,
        outlier_sigma: float = OUTLIER_SIGMA,
    ) -> None:
        self.predictor = predictor
        self.record_builder = record_builder
        self.batch_size = int(batch_size)
        self.outlier_sigma = float(outlier_sigma)

        self._buffer: List[TrainingSignal] = []
        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._worker: Optional[ThreadPoolExecutor] = None
        self._drains: List[Future] = []

        self.batches_dispatched = 0
        self.records_dropped = 0
        self.last_drain_at: Optional[datetime] = None
        self.last_futures: List[Any] = []

        logger.info(f"Training data collector initialized (batch_size: {self.batch_size})")

    # ------------------------------------------------------------------
    def collect_interaction(self, event: InteractionEvent, context: Optional[Mapping[str, Any]] = None) -> None:
        """Buffer an interaction event as a training signal."""
        self.add(TrainingSignal(
            user_id=event.user_id,
            content_id=event.content_id,
            label=interaction_label(event.type.value),
            context=dict(context if context is not None else event.context),
            observed_at=event.timestamp,
        ))

    def collect_engagement_metrics(
        self,
        user_id: str,
        content_id: str,
        metrics: Mapping[str, float],
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Buffer aggregated engagement metrics for a (user, content) pair."""
        self.add(TrainingSignal(
            user_id=user_id,
            content_id=content_id,
            label=metrics_label(metrics),
            context=dict(context or {}),
            source="metrics",
        ))

    def add(self, signal: TrainingSignal) -> None:
        with self._lock:
            self._buffer.append(signal)
            signals = self._take_batch() if len(self._buffer) >= self.batch_size else None
        if signals:
            self._submit(signals)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def _take_batch(self) -> List[TrainingSignal]:
        # Caller holds self._lock.
        if len(self._buffer) > self.batch_size:
            signals = self._buffer[:self.batch_size]
            self._buffer = self._buffer[self.batch_size:]
        else:
            signals, self._buffer = self._buffer, []
        return signals

    def _submit(self, signals: List[TrainingSignal]) -> None:
        with self._stats_lock:
            if self._worker is None:
                self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="training-drain")
            self._drains = [f for f in self._drains if not f.done()]
            self._drains.append(self._worker.submit(self._process, signals, "size"))

    # ------------------------------------------------------------------
    def drain(self, reason: str = "timer") -> int:
        """Swap up to ``batch_size`` signals out and hand them to the predictor.

        Runs in the calling thread. Returns the number of records dispatched.
        """
        with self._lock:
            if not self._buffer:
                return 0
            signals = self._take_batch()
        return self._process(signals, reason)

    def _process(self, signals: List[TrainingSignal], reason: str) -> int:
        self.last_drain_at = utc_now()
        try:
            records = self.record_builder(signals)
            records, stats = clean_records(records, self.outlier_sigma)
            if not records:
                self._count(dropped=len(signals))
                logger.warning(f"Drained {len(signals)} signals ({reason}) but built no records")
                return 0
            future = self.predictor.train_model(records)
            self.last_futures = [future]
            self._count(dispatched=1, dropped=len(signals) - len(records))
            logger.info(
                f"Dispatched training batch ({reason}): {len(records)} records, "
                f"{stats.outliers_replaced} outliers replaced, {stats.missing_filled} missing filled"
            )
            return len(records)
        except PredictorUnavailable as e:
            self._count(dropped=len(signals))
            logger.warning(f"Predictor unavailable; dropped batch of {len(signals)}: {e}")
        except Exception as e:
            self._count(dropped=len(signals))
            logger.error("Training batch failed: %s\n%s", e, traceback.format_exc())
        return 0

    def _count(self, dispatched: int = 0, dropped: int = 0) -> None:
        with self._stats_lock:
            self.batches_dispatched += dispatched
            self.records_dropped += dropped

    def wait_idle(self, timeout: Optional[float] = None) -> int:
        """Block until background drains finish; returns the records they dispatched."""
        with self._stats_lock:
            drains, self._drains = self._drains, []
        return sum(f.result(timeout=timeout) for f in drains)

    def flush(self) -> int:
        """Wait for background drains, then drain everything still buffered."""
        total = self.wait_idle()
        while self.pending:
            total += self.drain(reason="flush")
        return total

    def shutdown(self, wait: bool = True) -> None:
        if wait:
            self.flush()
        with self._stats_lock:
            worker, self._worker = self._worker, None
        if worker is not None:
            worker.shutdown(wait=wait)
