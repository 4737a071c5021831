import warnings
from datetime import datetime, timedelta, timezone

import pytest

from feedrank.data_pipeline.processors.profile_builder import EngagementProfileBuilder
from feedrank.errors import StaleDataWarning, UpstreamUnavailable

from helpers.factories import make_event

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _at(hour, days_ago=1):
    return (NOW - timedelta(days=days_ago)).replace(hour=hour)


def test_empty_history_gives_valid_zero_profile():
    profile = EngagementProfileBuilder().build("u1", None, now=NOW)
    assert profile.is_empty
    assert profile.content_type_engagement == {}
    assert profile.interaction_counts.as_list() == [0, 0, 0, 0]
    assert profile.preferred_content_types == []
    assert len(profile.active_hours) == 24
    assert profile.top_active_hours(3) == []


def test_weights_accumulate_per_content_type():
    events = [
        make_event("u1", "a", "view", _at(9), content_type="video"),
        make_event("u1", "b", "comment", _at(9), content_type="article"),
        make_event("u1", "c", "like", _at(10), content_type="video"),
        make_event("u1", "d", "share", _at(21), content_type="image"),
    ]
    profile = EngagementProfileBuilder().build("u1", events, now=NOW)
    assert profile.content_type_engagement == {"video": 3.0, "article": 4.0, "image": 3.0}
    # ties broken by name
    assert profile.preferred_content_types == ["article", "image", "video"]
    assert profile.interaction_counts.as_list() == [1, 1, 1, 1]
    assert profile.active_hours[:3] == [9, 10, 21]
    assert profile.top_active_hours(2) == [9, 10]
    assert profile.total_events == 4


def test_lookback_and_max_events_bound_the_window():
    events = [make_event("u1", "old", "comment", NOW - timedelta(days=60), content_type="article")]
    events += [make_event("u1", f"c{i}", "view", NOW - timedelta(minutes=i), content_type="video") for i in range(5)]
    profile = EngagementProfileBuilder(max_events=3).build("u1", events, now=NOW)
    assert profile.total_events == 3
    assert "article" not in profile.content_type_engagement


def test_author_affinity():
    events = [make_event("u1", "a", "comment", _at(8), author_id="alice") for _ in range(2)]
    profile = EngagementProfileBuilder().build("u1", events, now=NOW)
    assert profile.author_affinity == {"alice": 8.0}


def test_get_profile_caches_until_invalidated():
    calls = []

    def history(user_id, window):
        calls.append(window)
        return [make_event(user_id, "a", "like")]

    builder = EngagementProfileBuilder()
    first = builder.get_profile("u1", history)
    assert builder.get_profile("u1", history) is first
    builder.invalidate("u1")
    builder.get_profile("u1", history)
    assert len(calls) == 2
    assert calls[0] == timedelta(days=30)


def test_lookup_failure_without_cache_is_upstream_error():
    def history(user_id, window):
        raise ConnectionError("db down")

    with pytest.raises(UpstreamUnavailable):
        EngagementProfileBuilder().get_profile("u1", history)


def test_lookup_failure_serves_cached_profile():
    builder = EngagementProfileBuilder(ttl_seconds=0)
    cached = builder.get_profile("u1", lambda u, w: [make_event(u, "a", "like")])

    def broken(user_id, window):
        raise ConnectionError("db down")

    assert builder.get_profile("u1", broken) is cached


def test_stale_profile_warns():
    builder = EngagementProfileBuilder(stale_after_seconds=60)
    profile = builder.build("u1", [], now=NOW - timedelta(hours=1))
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        assert builder.check_freshness(profile) is False
    assert any(issubclass(w.category, StaleDataWarning) for w in caught)
