import torch
import torch.nn as nn

from feedrank.config.config import CONTENT_FEATURE_DIM, USER_FEATURE_DIM, CONTEXT_FEATURE_DIM


class EngagementNet(nn.Module):
    """Three-branch MLP mapping (content, user, context) features to an engagement probability."""

    def __init__(
        self,
        content_dim: int = CONTENT_FEATURE_DIM,
        user_dim: int = USER_FEATURE_DIM,
        context_dim: int = CONTEXT_FEATURE_DIM,
    ):
        super().__init__()
        self.content_dim = content_dim
        self.user_dim = user_dim
        self.context_dim = context_dim

        self.content_branch = nn.Sequential(nn.Linear(content_dim, 64), nn.ReLU())
        self.user_branch = nn.Sequential(nn.Linear(user_dim, 32), nn.ReLU())
        self.context_branch = nn.Sequential(nn.Linear(context_dim, 16), nn.ReLU())

        self.head = nn.Sequential(
            nn.Linear(64 + 32 + 16, 128),
            nn.ReLU(),
            nn.Dropout(0.3),
            nn.Linear(128, 64),
            nn.ReLU(),
            nn.Dropout(0.2),
            nn.Linear(64, 32),
            nn.ReLU(),
            nn.Linear(32, 1),
        )

    def forward(self, content, user, context):
        merged = torch.cat(
            [self.content_branch(content), self.user_branch(user), self.context_branch(context)],
            dim=1,
        )
        return torch.sigmoid(self.head(merged)).squeeze(-1)  # (N,)

    def hparams(self) -> dict:
        return {
            "content_dim": self.content_dim,
            "user_dim": self.user_dim,
            "context_dim": self.context_dim,
        }
