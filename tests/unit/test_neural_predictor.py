import numpy as np
import pytest
import torch

from feedrank.errors import PredictorUnavailable
from feedrank.model.core.engagement_net import EngagementNet
from feedrank.model.inference.neural import NeuralEngagementPredictor
from feedrank.model.training.train import train_engagement_model

from helpers.factories import random_records


def test_engagement_net_outputs_probabilities():
    net = EngagementNet()
    out = net(torch.rand(4, 10), torch.rand(4, 10), torch.rand(4, 6))
    assert out.shape == (4,)
    assert torch.all((out >= 0) & (out <= 1))


def test_training_leaves_base_model_untouched():
    base = EngagementNet()
    before = {k: v.clone() for k, v in base.state_dict().items()}
    model, metrics = train_engagement_model(base, random_records(40), epochs=2)
    for k, v in base.state_dict().items():
        assert torch.equal(v, before[k])
    assert model is not base
    assert {"train_loss", "val_loss", "val_accuracy"} <= metrics.keys()


def test_predict_before_initialize_raises(temp_data_dir):
    p = NeuralEngagementPredictor(checkpoint_path=temp_data_dir / "m.pt")
    with pytest.raises(PredictorUnavailable):
        p.predict(np.ones(10), np.ones(10), np.ones(6))


def test_retrain_swaps_and_checkpoints(temp_data_dir):
    path = temp_data_dir / "m.pt"
    p = NeuralEngagementPredictor(checkpoint_path=path, epochs=2)
    p.initialize()
    try:
        old = p._snapshot()
        assert p.train_model(random_records(30)).result(timeout=60) is True
        assert p.model_version == 1
        assert p._snapshot() is not old
        assert path.exists()

        pred = p.predict(np.full(10, 0.5), np.full(10, 0.5), np.full(6, 0.5))
        assert 0.0 <= pred.engagement_score <= 1.0
        assert pred.confidence == pytest.approx(0.75)
    finally:
        p.shutdown()

    reloaded = NeuralEngagementPredictor(checkpoint_path=path)
    reloaded.initialize()
    try:
        assert reloaded.model_version == 1
    finally:
        reloaded.shutdown()


def test_batch_prediction_matches_single(temp_data_dir):
    p = NeuralEngagementPredictor(checkpoint_path=None)
    p.initialize()
    try:
        from feedrank.config.schemas import FeatureVector

        rng = np.random.default_rng(1)
        vectors = [FeatureVector(rng.random(10), rng.random(10), rng.random(6)) for _ in range(3)]
        batch = p.predict_batch(vectors)
        single = [p.predict(*v.as_tuple()) for v in vectors]
        for a, b in zip(batch, single):
            assert a.engagement_score == pytest.approx(b.engagement_score, abs=1e-5)
    finally:
        p.shutdown()
