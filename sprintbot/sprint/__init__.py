from .models import (
    KickoffPreview,
    Metrics,
    Sprint,
    SprintDelta,
    SprintEvent,
    SprintRecord,
    SprintStatus,
    Stage,
    Ticket,
)
from .interface import SprintStore
from .engine import SprintEngine

__all__ = [
    "KickoffPreview",
    "Metrics",
    "Sprint",
    "SprintDelta",
    "SprintEvent",
    "SprintRecord",
    "SprintStatus",
    "Stage",
    "Ticket",
    "SprintStore",
    "SprintEngine",
]
