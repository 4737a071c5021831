"""Training loop for :class:`EngagementNet`."""

from __future__ import annotations

import copy
from typing import Dict, List, Optional, Sequence

import numpy as np
import torch
import torch.nn.functional as F
from sklearn.model_selection import train_test_split

from feedrank.config.config import (
    TRAIN_EPOCHS,
    TRAIN_MINIBATCH,
    TRAIN_LR,
    VALIDATION_SPLIT,
    INFERENCE_DEVICE,
)
from feedrank.config.schemas import TrainingRecord
from feedrank.model.core.engagement_net import EngagementNet
from feedrank.utils.logging import get_logger

logger = get_logger(__name__)


def records_to_arrays(batch: Sequence[TrainingRecord]):
    """Stack records into float32 arrays ``(content, user, context, labels)``."""
    content = np.stack([np.asarray(r.content_features, dtype=np.float32) for r in batch])
    user = np.stack([np.asarray(r.user_features, dtype=np.float32) for r in batch])
    context = np.stack([np.asarray(r.context_features, dtype=np.float32) for r in batch])
    labels = np.asarray([r.engagement_label for r in batch], dtype=np.float32)
    labels = np.clip(np.nan_to_num(labels, nan=0.0, posinf=1.0, neginf=0.0), 0.0, 1.0)  # clean up
    return content, user, context, labels


def train_engagement_model(
    base_model: EngagementNet,
    batch: Sequence[TrainingRecord],
    *,
    epochs: int | None = None,
    minibatch: int = TRAIN_MINIBATCH,
    lr: float = TRAIN_LR,
    validation_split: float = VALIDATION_SPLIT,
    device: str = INFERENCE_DEVICE,
    seed: Optional[int] = 0,
) -> tuple[EngagementNet, Dict[str, float]]:
    """Fine-tune a copy of ``base_model`` on ``batch`` and return it with metrics.

    ``base_model`` is never modified, so it can keep serving while this runs.
    Args:
        base_model: Currently serving network.
        batch: Cleaned training records.
        epochs: Number of epochs. If None, falls back to config.TRAIN_EPOCHS.
        minibatch: Minibatch size.
        lr: Adam learning rate.
        validation_split: Fraction held out for validation loss (skipped for tiny batches).
        device: "cpu" or "cuda".
    """
    epochs = int(epochs) if epochs is not None else int(TRAIN_EPOCHS)
    if seed is not None:
        torch.manual_seed(seed)

    content, user, context, labels = records_to_arrays(batch)
    n = len(labels)
    idx = np.arange(n)
    if validation_split > 0 and n >= 10:
        train_idx, val_idx = train_test_split(idx, test_size=validation_split, random_state=seed)
    else:
        train_idx, val_idx = idx, idx[:0]

    dev = torch.device(device)
    model = copy.deepcopy(base_model).to(dev)
    model.train()
    opt = torch.optim.Adam(model.parameters(), lr=lr)

    def tensors(rows):
        return (
            torch.as_tensor(content[rows], device=dev),
            torch.as_tensor(user[rows], device=dev),
            torch.as_tensor(context[rows], device=dev),
            torch.as_tensor(labels[rows], device=dev),
        )

    rng = np.random.default_rng(seed)
    train_loss = float("nan")
    for epoch in range(epochs):
        order = rng.permutation(train_idx)
        losses: List[float] = []
        for start in range(0, len(order), minibatch):
            c, u, x, y = tensors(order[start:start + minibatch])
            pred = model(c, u, x)
            loss = F.binary_cross_entropy(pred, y)
            opt.zero_grad()
            loss.backward()
            opt.step()
            losses.append(float(loss.item()))
        train_loss = float(np.mean(losses)) if losses else float("nan")
        logger.debug(f"Epoch {epoch + 1}/{epochs} loss={train_loss:.4f}")

    model.eval()
    metrics = {"train_loss": train_loss, "records": float(n)}
    if len(val_idx):
        with torch.no_grad():
            c, u, x, y = tensors(val_idx)
            pred = model(c, u, x)
            metrics["val_loss"] = float(F.binary_cross_entropy(pred, y).item())
            metrics["val_accuracy"] = float(((pred >= 0.5) == (y >= 0.5)).float().mean().item())
    logger.info(f"Engagement model trained: {metrics}")
    return model.cpu(), metrics
