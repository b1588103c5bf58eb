"""Pure handler functions for sprint MCP tools.

Each handler takes (args, engine[, loader]) and returns MCP result format.
No SDK dependency, so they are testable with InMemoryStore.
"""

import json
from typing import Any

from ..board.loader import BoardSnapshotLoader
from ..sprint.engine import SprintEngine
from ..sprint.exceptions import SprintBotError
from ..sprint.models import Sprint, SprintRecord, SprintStatus, Ticket


def _text_result(text: str) -> dict[str, Any]:
    """Build MCP tool result with a text content block."""
    return {"content": [{"type": "text", "text": text}]}


def _json_result(data: Any) -> dict[str, Any]:
    """Build MCP tool result with JSON-serialized content."""
    return _text_result(json.dumps(data, indent=2, default=str))


def _ticket_summary(ticket: Ticket) -> dict[str, Any]:
    return {
        "id": ticket.id,
        "title": ticket.title,
        "stage": ticket.stage.value,
        "age_days": ticket.age_days,
        "is_goal": ticket.is_goal,
        "is_blocked": ticket.is_blocked,
        "missing_info": sorted(ticket.missing_info),
    }


def _sprint_summary(sprint: Sprint) -> dict[str, Any]:
    return {
        "id": sprint.id,
        "name": sprint.name,
        "status": sprint.status.value,
        "started_at": sprint.started_at.isoformat(),
        "end_date": sprint.end_date.isoformat() if sprint.end_date else None,
        "committed": len(sprint.committed_ticket_ids),
        "open": len(sprint.open_tickets()),
        "done": len(sprint.done_tickets()),
        "scope_added": sorted(sprint.scope_added_ids),
        "removed": sorted(sprint.removed_ticket_ids),
        "blocked": sorted(sprint.blocked_ids),
    }


def _record_summary(record: SprintRecord) -> dict[str, Any]:
    return {
        "sprint_id": record.sprint_id,
        "name": record.name,
        "closed_at": record.closed_at.isoformat(),
        "completion_pct": record.completion_pct,
        "completed": record.completed_count,
        "total": record.total_count,
        "scope_added": record.scope_added_count,
    }


async def get_sprint_status_handler(
    args: dict[str, Any], engine: SprintEngine
) -> dict[str, Any]:
    """Current sprint with completion metrics, without refreshing from the board."""
    sprint = await engine.current_sprint()
    if sprint is None:
        return _json_result({"status": SprintStatus.NOT_STARTED.value})
    metrics = await engine.metrics()
    data = _sprint_summary(sprint)
    data["metrics"] = {
        "completion_pct": metrics.completion_pct,
        "velocity": metrics.velocity,
        "scope_growth_pct": metrics.scope_growth_pct,
        "trend": metrics.trend.value,
    }
    return _json_result(data)


async def list_blockers_handler(
    args: dict[str, Any], engine: SprintEngine
) -> dict[str, Any]:
    """Blocked tickets in the active sprint."""
    try:
        blockers = await engine.blockers()
    except SprintBotError as exc:
        return _text_result(f"Error: {exc}")
    return _json_result([_ticket_summary(t) for t in blockers])


async def list_sprint_records_handler(
    args: dict[str, Any], engine: SprintEngine
) -> dict[str, Any]:
    """Closed sprints, oldest first. Optional ``limit`` keeps only the most recent."""
    records = await engine.records()
    limit = args.get("limit")
    if limit:
        records = records[-int(limit):]
    return _json_result([_record_summary(r) for r in records])


async def preview_kickoff_handler(
    args: dict[str, Any], engine: SprintEngine, loader: BoardSnapshotLoader
) -> dict[str, Any]:
    """What a kickoff would commit right now. Reads the board; changes nothing."""
    try:
        snapshot = await loader.load()
    except SprintBotError as exc:
        return _text_result(f"Error: {exc}")
    preview = await engine.preview_kickoff(snapshot, name=args.get("name") or None)
    return _json_result({
        "name": preview.name,
        "active_sprint": preview.active_sprint_name,
        "committed": [_ticket_summary(t) for t in preview.committed],
        "already_done": [t.id for t in preview.precompleted],
    })
