"""Scheduled daily job: post the check-in, or close the sprint on its end date.

The scheduler itself is external (cron, a Slack workflow, a cloud timer). It
calls ``run_scheduled_job`` once per day per board.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Protocol

from .board.loader import BoardSnapshotLoader
from .reports import renderer
from .sprint.engine import SprintEngine
from .sprint.exceptions import SprintBotError
from .sprint.models import SprintStatus

logger = logging.getLogger(__name__)

SUMMARY = "summary"
REVIEW = "review"
SKIPPED = "skipped"
FAILED = "failed"


class Notifier(Protocol):
    async def post(self, channel: str | None, text: str) -> None: ...


@dataclass
class JobResult:
    action: str
    text: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_scheduled_job(
    engine: SprintEngine,
    loader: BoardSnapshotLoader,
    notifier: Notifier,
    ops_channel: str | None = None,
    today: date | None = None,
) -> JobResult:
    """Refresh the active sprint from the board and post the result.

    On or after the end date the sprint is closed and its review is posted
    instead of a daily summary. Any SprintBotError is reported to the ops
    channel; the engine guarantees state is unchanged when a step fails.
    """
    if await engine.get_status() is not SprintStatus.ACTIVE:
        logger.info("No active sprint, skipping scheduled job")
        return JobResult(action=SKIPPED)

    sprint = await engine.active_sprint()
    try:
        snapshot = await loader.load()
        today = today or snapshot.taken_at.date()
        delta = await engine.ingest_snapshot(snapshot)

        if sprint.end_date is not None and (sprint.end_date - today).days <= 0:
            record = await engine.close_sprint()
            closed = await engine.current_sprint()
            text = renderer.render_sprint_review(closed, record, await engine.records())
            action = REVIEW
        else:
            text = renderer.render_daily_summary(
                await engine.active_sprint(),
                delta,
                await engine.metrics(),
                await engine.records(),
                today=today,
            )
            action = SUMMARY
    except SprintBotError as exc:
        logger.error("Scheduled job for sprint %s failed: %s", sprint.name, exc)
        await notifier.post(ops_channel, f"⚠️ Sprint {sprint.name} job failed: {exc}")
        return JobResult(action=FAILED, error=str(exc))

    await notifier.post(sprint.channel_id, text)
    logger.info("Posted %s for sprint %s", action, sprint.name)
    return JobResult(action=action, text=text)
