from datetime import timedelta

from feedrank.service.repositories import InMemoryContentRepository, InMemoryUserRepository

from helpers.factories import hours_ago, make_event, make_item


def _repo():
    repo = InMemoryContentRepository()
    repo.add(make_item("a", "alice", "video", hours_ago(1), platform="youtube"))
    repo.add(make_item("b", "bob", "article", hours_ago(30), platform="rss"), topics=["news"])
    repo.add(make_item("c", "carol", "video", hours_ago(24 * 10), platform="youtube"))
    return repo


def test_candidates_newest_first_with_filters():
    repo = _repo()
    assert [i.content_id for i in repo.list_candidates({})] == ["a", "b", "c"]
    assert [i.content_id for i in repo.list_candidates({"time_range": "week"})] == ["a", "b"]
    assert [i.content_id for i in repo.list_candidates({"exclude_author": "alice", "limit": 1})] == ["b"]
    assert [i.content_id for i in repo.list_candidates({"platforms": ["youtube"], "content_types": ["video"]})] == ["a", "c"]
    assert [i.content_id for i in repo.list_candidates({"topics": ["news"]})] == ["b"]


def test_topics_and_recent():
    repo = _repo()
    assert repo.get_content_topics("b") == ["news"]
    assert repo.get_content_topics("missing") == []
    assert [i.content_id for i in repo.list_recent(hours_ago(2))] == ["a"]


def test_follow_graph_and_history():
    users = InMemoryUserRepository()
    users.follow("u1", "alice")
    users.follow("u2", "alice")
    users.unfollow("u2", "alice")
    assert users.get_following("u1") == {"alice"}
    assert users.get_followers("alice") == {"u1"}

    users.add_interaction(make_event("u1", "a", timestamp=hours_ago(1)))
    users.add_interaction(make_event("u1", "b", timestamp=hours_ago(24 * 40)))
    assert [e.content_id for e in users.get_interaction_history("u1", timedelta(days=30))] == ["a"]
