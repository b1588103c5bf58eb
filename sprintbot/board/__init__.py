from .models import BoardSnapshot, Card, PullRequest, PullRequestState
from .loader import BoardSnapshotLoader

__all__ = [
    "BoardSnapshot",
    "Card",
    "PullRequest",
    "PullRequestState",
    "BoardSnapshotLoader",
]
