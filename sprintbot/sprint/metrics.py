"""Completion, velocity and trend metrics. Stateless."""

from __future__ import annotations

from .models import Metrics, Sprint, SprintRecord, Trend
from .policy import DEFAULT_POLICY, CompletionPolicy, count_completion

DEFAULT_VELOCITY_WINDOW = 3
TREND_TOLERANCE_PCT = 5.0


def velocity(records: list[SprintRecord], window: int = DEFAULT_VELOCITY_WINDOW) -> float:
    """Mean completed-ticket count over the last ``window`` closed sprints.

    Uses whatever exists when there are fewer records; 0.0 when there are none.
    """
    recent = records[-window:] if window > 0 else []
    if not recent:
        return 0.0
    return round(sum(r.velocity_contribution for r in recent) / len(recent), 2)


def trend(current_pct: float, records: list[SprintRecord], window: int = DEFAULT_VELOCITY_WINDOW) -> Trend:
    recent = records[-window:] if window > 0 else []
    if not recent:
        return Trend.NO_DATA
    baseline = sum(r.completion_pct for r in recent) / len(recent)
    if current_pct > baseline + TREND_TOLERANCE_PCT:
        return Trend.UP
    if current_pct < baseline - TREND_TOLERANCE_PCT:
        return Trend.DOWN
    return Trend.FLAT


def compute_metrics(
    sprint: Sprint,
    records: list[SprintRecord],
    window: int = DEFAULT_VELOCITY_WINDOW,
    policy: CompletionPolicy = DEFAULT_POLICY,
) -> Metrics:
    """Metrics for ``sprint`` against ``records`` (closed sprints, oldest first).

    Never raises for empty input: a sprint with no committed tickets is 0% done.
    """
    count = count_completion(sprint, policy)
    committed = len(sprint.committed_ticket_ids)
    scope_growth = (
        round(len(sprint.scope_added_ids) / committed * 100, 2) if committed else 0.0
    )
    return Metrics(
        completion_pct=count.pct,
        velocity=velocity(records, window),
        scope_growth_pct=scope_growth,
        trend=trend(count.pct, records, window),
        completed_count=count.completed,
        total_count=count.total,
        sample_size=min(len(records), max(window, 0)),
    )
