"""Append-only store of raw interaction events."""

import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Mapping, Optional

from feedrank.config.config import EVENT_RETENTION_DAYS
from feedrank.config.schemas import InteractionEvent, InteractionType
from feedrank.errors import InputValidationError
from feedrank.utils.datetime import ensure_utc, utc_now
from feedrank.utils.logging import get_logger

logger = get_logger(__name__)


class EventIngestor:
    """Thread-safe, per-user, append-only event log with a rolling retention window.

    Events are never mutated. Anything older than ``retention_days`` is dropped
    by :meth:`prune`, which the scheduler runs periodically.
    """

    def __init__(self, retention_days: int = EVENT_RETENTION_DAYS):
        self.retention = timedelta(days=retention_days)
        self._events: Dict[str, Deque[InteractionEvent]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._count = 0

        logger.info(f"Event ingestor initialized (retention: {retention_days}d)")

    def record(
        self,
        user_id: str,
        content_id: str,
        interaction_type: str,
        context: Optional[Mapping[str, Any]] = None,
        *,
        timestamp: Optional[datetime] = None,
        content_type: Optional[str] = None,
        author_id: Optional[str] = None,
    ) -> InteractionEvent:
        """Validate and append a new event, returning the stored record."""
        if not user_id or not content_id:
            raise InputValidationError("user_id and content_id are required")
        try:
            itype = InteractionType(str(interaction_type).lower())
        except ValueError:
            raise InputValidationError(f"unknown interaction type: {interaction_type!r}")

        event = InteractionEvent(
            user_id=str(user_id),
            content_id=str(content_id),
            type=itype,
            timestamp=timestamp or utc_now(),
            context=dict(context or {}),
            content_type=content_type,
            author_id=author_id,
        )
        self.store_event(event)
        return event

    def store_event(self, event: InteractionEvent) -> None:
        """Append an already-built event."""
        with self._lock:
            self._events[event.user_id].append(event)
            self._count += 1

    def get_user_events(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[InteractionEvent]:
        """Events for ``user_id`` in chronological order, optionally bounded."""
        with self._lock:
            events = list(self._events.get(user_id, ()))
        events.sort(key=lambda e: e.timestamp)
        if since is not None:
            since = ensure_utc(since)
            events = [e for e in events if e.timestamp >= since]
        if limit is not None and limit >= 0:
            events = events[-limit:] if limit else []
        return events

    def get_events_since(self, since: datetime) -> List[InteractionEvent]:
        """All events at or after ``since`` across users."""
        since = ensure_utc(since)
        with self._lock:
            snapshot = [e for q in self._events.values() for e in q]
        return sorted((e for e in snapshot if e.timestamp >= since), key=lambda e: e.timestamp)

    def get_event_count(self) -> int:
        with self._lock:
            return self._count

    def prune(self, now: Optional[datetime] = None) -> int:
        """Drop events older than the retention window; returns the number removed."""
        cutoff = (now or utc_now()) - self.retention
        removed = 0
        with self._lock:
            for user_id in list(self._events):
                q = self._events[user_id]
                kept = deque(e for e in q if e.timestamp >= cutoff)
                removed += len(q) - len(kept)
                if kept:
                    self._events[user_id] = kept
                else:
                    del self._events[user_id]
            self._count -= removed
        if removed:
            logger.info(f"Pruned {removed} events older than {cutoff.isoformat()}")
        return removed
