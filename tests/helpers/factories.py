"""Builders for domain objects used across the test suite."""

from datetime import datetime, timedelta, timezone

import numpy as np

from feedrank.config.schemas import ContentItem, InteractionEvent, TrainingRecord


def hours_ago(hours, now=None):
    return (now or datetime.now(timezone.utc)) - timedelta(hours=hours)


def make_item(content_id, author_id="author", content_type="video", published_at=None, **kwargs):
    return ContentItem(
        content_id=content_id,
        author_id=author_id,
        content_type=content_type,
        published_at=published_at or hours_ago(1),
        **kwargs,
    )


def make_event(user_id, content_id, kind="like", timestamp=None, content_type="video", author_id="author"):
    return InteractionEvent(
        user_id=user_id,
        content_id=content_id,
        type=kind,
        timestamp=timestamp or hours_ago(1),
        content_type=content_type,
        author_id=author_id,
    )


def make_record(value=0.5, label=0.5, content_dim=10, user_dim=10, context_dim=6):
    return TrainingRecord(
        np.full(content_dim, value, dtype=np.float32),
        np.full(user_dim, value, dtype=np.float32),
        np.full(context_dim, value, dtype=np.float32),
        label,
    )


def random_records(n, seed=0):
    rng = np.random.default_rng(seed)
    records = []
    for _ in range(n):
        c = rng.random(10).astype(np.float32)
        u = rng.random(10).astype(np.float32)
        x = rng.random(6).astype(np.float32)
        label = float(c[:3].mean() > 0.5)
        records.append(TrainingRecord(c, u, x, label))
    return records
