"""Batch cleaning for training records: NaN filling and sigma-based outlier replacement."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from feedrank.config.config import OUTLIER_SIGMA
from feedrank.config.schemas import TrainingRecord
from feedrank.data_pipeline.processors.features import normalize


@dataclass
class CleaningStats:
    records: int = 0
    missing_filled: int = 0
    outliers_replaced: int = 0


def clean_matrix(matrix: np.ndarray, sigma: float = OUTLIER_SIGMA) -> Tuple[np.ndarray, int, int]:
    """Clean each column of ``matrix`` independently.

    Values further than ``sigma`` standard deviations from the column mean are
    dropped and replaced by the mean of the remaining values; NaN/inf values are
    replaced by the same mean. Returns ``(cleaned, n_missing, n_outliers)``.
    """
    m = np.array(matrix, dtype=np.float64, copy=True)
    if m.ndim == 1:
        m = m.reshape(-1, 1)
    n_missing = n_outliers = 0
    for j in range(m.shape[1]):
        col = m[:, j]
        finite = np.isfinite(col)
        if not finite.any():
            n_missing += int(col.size)
            col[:] = 0.0
            continue
        mean = col[finite].mean()
        std = col[finite].std()
        outlier = finite & (np.abs(col - mean) > sigma * std) if std > 0 else np.zeros_like(finite)
        keep = finite & ~outlier
        fill = col[keep].mean() if keep.any() else mean
        n_missing += int((~finite).sum())
        n_outliers += int(outlier.sum())
        col[~keep] = fill
    return m, n_missing, n_outliers


def clean_records(records: Sequence[TrainingRecord], sigma: float = OUTLIER_SIGMA) -> Tuple[List[TrainingRecord], CleaningStats]:
    """Clean a drained batch column-wise, then normalise it.

    Records arrive with raw feature values. Outliers and missing values are
    replaced first, so a single extreme value cannot stretch a column's
    range, and each block is then min-max normalised across the batch.
    Labels only get missing-value filling and are clipped to ``[0, 1]``.
    """
    stats = CleaningStats(records=len(records))
    if not records:
        return [], stats

    cleaned = []
    for attr in ("content_features", "user_features", "context_features"):
        block = np.stack([np.asarray(getattr(r, attr), dtype=np.float64) for r in records])
        block, n_missing, n_outliers = clean_matrix(block, sigma)
        stats.missing_filled += n_missing
        stats.outliers_replaced += n_outliers
        cleaned.append(normalize(block))

    labels = np.array([r.engagement_label for r in records], dtype=np.float64)
    finite = np.isfinite(labels)
    if not finite.all():
        stats.missing_filled += int((~finite).sum())
        labels[~finite] = labels[finite].mean() if finite.any() else 0.0
    labels = np.clip(labels, 0.0, 1.0)

    content, user, context = cleaned
    out = [
        TrainingRecord(content[i], user[i], context[i], float(labels[i]))
        for i in range(len(records))
    ]
    return out, stats
