from unittest.mock import MagicMock

from feedrank.config.schemas import RecommendationResult
from feedrank.service.cache import FeedCache, InMemoryCacheService, RedisCacheService, filters_digest
from feedrank.utils.datetime import utc_now


class FakeClock:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


def _result(cid="c1", score=1.0):
    return RecommendationResult(cid, score, 0.5, 0.9, score, published_at=utc_now())


def test_expired_entries_are_never_returned():
    clock = FakeClock()
    cache = InMemoryCacheService(clock)
    cache.set("k", "v", ttl=10)
    assert cache.get("k") == "v"
    clock.t += 10
    assert cache.get("k") is None
    assert len(cache) == 0


def test_sweep_removes_expired():
    clock = FakeClock()
    cache = InMemoryCacheService(clock)
    cache.set("a", 1, ttl=5)
    cache.set("b", 2, ttl=50)
    clock.t += 6
    assert cache.sweep() == 1
    assert cache.get("b") == 2


def test_set_overwrites():
    cache = InMemoryCacheService()
    cache.set("k", 1, ttl=60)
    cache.set("k", 2, ttl=60)
    assert cache.get("k") == 2


def test_feed_cache_round_trip_and_invalidate_all_filters():
    feed = FeedCache(InMemoryCacheService(), ttl_seconds=60)
    results = [_result("c1", 2.0), _result("c2", 1.0)]
    feed.set("u1", results)
    feed.set("u1", results[:1], filters={"platforms": ["rss"]})
    feed.set("u2", results)
    assert feed.get("u1") == results
    assert feed.get("u1", {"platforms": ["rss"]}) == results[:1]

    assert feed.invalidate("u1") == 2
    assert feed.get("u1") is None
    assert feed.get("u2") == results


def test_keys_are_prefixed_per_user():
    feed = FeedCache()
    assert feed.key("u1") == "feed:u1:all"
    assert feed.key("u1", {"b": 1, "a": 2}) == feed.key("u1", {"a": 2, "b": 1})
    assert filters_digest({"a": 1}) != filters_digest({"a": 2})


def test_cache_read_failure_is_a_miss():
    service = MagicMock()
    service.get.side_effect = ConnectionError("redis down")
    feed = FeedCache(service)
    assert feed.get("u1") is None
    assert feed.misses == 1


def test_redis_cache_uses_json_and_ttl():
    client = MagicMock()
    client.get.return_value = '{"x": 1}'
    cache = RedisCacheService(client=client)
    cache.set("k", {"x": 1}, ttl=30)
    client.set.assert_called_once_with("k", '{"x": 1}', ex=30)
    assert cache.get("k") == {"x": 1}
    client.scan_iter.return_value = iter(["feed:u1:all"])
    assert cache.delete_prefix("feed:u1:") == 1
    client.delete.assert_called_with("feed:u1:all")


def test_entry_built_from_smaller_superset_is_a_miss():
    feed = FeedCache(InMemoryCacheService(), ttl_seconds=60)
    results = [_result()]
    feed.set("u1", results, candidate_limit=5)
    assert feed.get("u1", candidate_limit=5) == results
    assert feed.get("u1", candidate_limit=100) is None
    assert (feed.hits, feed.misses) == (1, 1)


def test_exhausted_candidate_list_serves_any_superset():
    feed = FeedCache(InMemoryCacheService(), ttl_seconds=60)
    feed.set("u1", [_result()], candidate_limit=None)
    assert feed.get("u1", candidate_limit=500) is not None


def test_invalidate_failure_is_logged_not_raised():
    service = MagicMock()
    service.delete_prefix.side_effect = ConnectionError("redis down")
    feed = FeedCache(service)
    assert feed.invalidate("u1") == 0


def test_invalidate_does_not_touch_users_sharing_a_prefix():
    feed = FeedCache(InMemoryCacheService(), ttl_seconds=60)
    feed.set("alice", [_result()])
    feed.set("alice:x", [_result()])
    assert feed.invalidate("alice") == 1
    assert feed.get("alice:x") is not None


def test_user_ids_are_escaped_in_keys():
    feed = FeedCache()
    assert feed.key("a*b?[c]:d") == "feed:a%2Ab%3F%5Bc%5D%3Ad:all"
    for ch in "*?[]":
        assert ch not in feed._user_prefix("a*b?[c]")
