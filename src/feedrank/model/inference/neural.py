"""Learned engagement predictor backed by :class:`EngagementNet`."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import torch

from feedrank.config.config import (
    ENGAGEMENT_MODEL_PATH,
    INFERENCE_DEVICE,
    TRAIN_EPOCHS,
)
from feedrank.config.schemas import FeatureVector, Prediction, TrainingRecord
from feedrank.errors import PredictorUnavailable
from feedrank.model.core.engagement_net import EngagementNet
from feedrank.model.inference.predictor import EngagementPredictor
from feedrank.model.training.train import train_engagement_model
from feedrank.utils.io import atomic_path


class NeuralEngagementPredictor(EngagementPredictor):
    """Online inference wrapper for a trained :class:`EngagementNet`.

    Usage:
        predictor = NeuralEngagementPredictor(checkpoint_path="datasets/models/engagement_predictor.pt")
        predictor.initialize()
        pred = predictor.predict(content, user, context)
        predictor.train_model(records)  # async; swaps weights when done
    """

    name = "neural"

    def __init__(
        self,
        *,
        checkpoint_path: str | Path | None = ENGAGEMENT_MODEL_PATH,
        device: str = INFERENCE_DEVICE,
        epochs: int = TRAIN_EPOCHS,
        save_checkpoints: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.logger = logging.getLogger(__name__)
        self.checkpoint_path = Path(checkpoint_path) if checkpoint_path else None
        self.device = torch.device(device)
        self.epochs = int(epochs)
        self.save_checkpoints = save_checkpoints
        self.last_metrics: Dict[str, float] = {}
        self._model: Optional[EngagementNet] = None

    # ------------------------------------------------------------------
    def _get_model(self):
        return self._model

    def _set_model(self, model) -> None:
        self._model = model

    def _load(self) -> None:
        model = EngagementNet()
        if self.checkpoint_path is not None and self.checkpoint_path.exists():
            try:
                obj = torch.load(self.checkpoint_path, map_location="cpu")
                state = obj.get("state_dict", obj) if isinstance(obj, dict) else obj
                hparams = obj.get("hparams") if isinstance(obj, dict) else None
                if isinstance(hparams, dict):
                    model = EngagementNet(**hparams)
                model.load_state_dict(state, strict=True)
                self.model_version = int(obj.get("version", 0)) if isinstance(obj, dict) else 0
                self.logger.info(f"Loaded engagement checkpoint {self.checkpoint_path}")
            except Exception as e:
                self.logger.warning(f"Could not load checkpoint ({self.checkpoint_path}); starting fresh: {e}")
                model = EngagementNet()
        model.to(self.device).eval()
        self._model = model

    # ------------------------------------------------------------------
    def _score(self, content, user, context) -> float:
        model = self._snapshot()
        if model is None:
            raise PredictorUnavailable("no engagement model loaded")
        with torch.no_grad():
            out = model(
                self._tensor(content[None, :]),
                self._tensor(user[None, :]),
                self._tensor(context[None, :]),
            )
        return float(out[0].item())

    def predict_batch(self, vectors: Sequence[FeatureVector]) -> List[Prediction]:
        """Score a whole candidate batch in one forward pass."""
        if not self.available:
            raise PredictorUnavailable(f"{self.name} predictor is not initialized")
        if not vectors:
            return []
        model = self._snapshot()
        if model is None:
            raise PredictorUnavailable("no engagement model loaded")
        c = np.stack([np.nan_to_num(np.asarray(v.content_features, dtype=np.float32)) for v in vectors])
        u = np.stack([np.nan_to_num(np.asarray(v.user_features, dtype=np.float32)) for v in vectors])
        x = np.stack([np.nan_to_num(np.asarray(v.context_features, dtype=np.float32)) for v in vectors])
        with torch.no_grad():
            scores = model(self._tensor(c), self._tensor(u), self._tensor(x)).cpu().numpy()
        return [
            self._prediction(float(s), c[i], u[i], x[i], vectors[i].observed) for i, s in enumerate(scores)
        ]

    def _tensor(self, arr) -> torch.Tensor:
        return torch.as_tensor(np.asarray(arr, dtype=np.float32), device=self.device)

    # ------------------------------------------------------------------
    def _fit(self, batch: List[TrainingRecord]):
        base = self._snapshot()
        if base is None:
            raise PredictorUnavailable("no engagement model loaded")
        model, metrics = train_engagement_model(
            base, batch, epochs=self.epochs, device=str(self.device)
        )
        model.to(self.device).eval()
        self.last_metrics = metrics
        if self.save_checkpoints and self.checkpoint_path is not None:
            self._save(model)
        return model

    def _save(self, model: EngagementNet) -> None:
        try:
            with atomic_path(self.checkpoint_path) as tmp:
                torch.save(
                    {"state_dict": model.state_dict(), "hparams": model.hparams(),
                     "version": self.model_version + 1},
                    tmp,
                )
            self.logger.info(f"Saved engagement checkpoint {self.checkpoint_path}")
        except Exception as e:
            self.logger.warning(f"Could not save checkpoint {self.checkpoint_path}: {e}")
