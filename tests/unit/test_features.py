import numpy as np

from feedrank.config.schemas import EngagementProfile, RequestContext
from feedrank.data_pipeline.processors.features import CONTENT_FEATURES, USER_FEATURES, FeatureExtractor, normalize
from feedrank.data_pipeline.processors.profile_builder import EngagementProfileBuilder

from helpers.factories import hours_ago, make_event, make_item


def test_normalize_maps_columns_into_unit_range():
    m = np.array([[1.0, 100.0], [3.0, 300.0], [2.0, 200.0]])
    out = normalize(m)
    assert out.min() >= 0.0 and out.max() <= 1.0
    assert out[:, 0].tolist() == [0.0, 1.0, 0.5]


def test_normalize_constant_column_is_half():
    out = normalize(np.array([[7.0, 1.0], [7.0, 2.0]]))
    assert out[:, 0].tolist() == [0.5, 0.5]
    assert out[:, 1].tolist() == [0.0, 1.0]


def test_normalize_treats_missing_as_zero():
    out = normalize(np.array([[np.nan], [2.0], [4.0]]))
    assert out.ravel().tolist() == [0.0, 0.5, 1.0]


def test_single_item_batch_degenerates_to_half():
    fx = FeatureExtractor()
    vec = fx.extract(make_item("c1", likes=10), EngagementProfile("u1"), set(), RequestContext())
    for block in vec.as_tuple():
        assert np.allclose(block, 0.5)


def test_extract_batch_shapes_and_range():
    fx = FeatureExtractor()
    builder = EngagementProfileBuilder()
    profile = builder.build("u1", [make_event("u1", "x", "comment", author_id="alice")])
    items = [
        make_item("a", "alice", likes=100, views=1000, published_at=hours_ago(1)),
        make_item("b", "bob", likes=1, views=5, published_at=hours_ago(40)),
        make_item("c", "carol", published_at=hours_ago(10)),
    ]
    vectors = fx.extract_batch(items, profile, {"alice"}, RequestContext.now())
    assert len(vectors) == 3
    for v in vectors:
        assert v.content_features.shape == (fx.content_dim,)
        assert v.user_features.shape == (fx.user_dim,)
        assert v.context_features.shape == (fx.context_dim,)
        for block in v.as_tuple():
            assert np.all((block >= 0.0) & (block <= 1.0))


def test_follows_author_feature_distinguishes_candidates():
    fx = FeatureExtractor()
    items = [make_item("a", "alice"), make_item("b", "bob")]
    vectors = fx.extract_batch(items, EngagementProfile("u1"), {"alice"}, RequestContext())
    follows = USER_FEATURES.index("follows_author")
    assert vectors[0].user_features[follows] == 1.0
    assert vectors[1].user_features[follows] == 0.0


def test_extract_empty_batch():
    assert FeatureExtractor().extract_batch([], None, None, RequestContext()) == []


def test_observed_mask_tracks_raw_signal_not_normalised_value():
    fx = FeatureExtractor()
    items = [make_item("c1", likes=10), make_item("c2", likes=20)]
    vectors = fx.extract_batch(items, EngagementProfile("nobody"), set(), RequestContext())
    content_mask, user_mask, _ = vectors[0].observed
    assert content_mask[CONTENT_FEATURES.index("likes")]
    assert not content_mask[CONTENT_FEATURES.index("shares")]
    # No history: every user column is constant and normalises to 0.5, yet none carries signal.
    assert vectors[0].user_features.tolist() == [0.5] * 10
    assert not user_mask.any()
