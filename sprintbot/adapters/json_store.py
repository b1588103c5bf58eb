"""JSON file sprint store.

Keeps the sprint (with its history) in ``sprint.json`` and closed sprint
records in ``records.json`` under one directory. An optional ``members.json``
maps Trello member ids to Slack user ids. Survives process restarts,
unlike InMemoryStore. Each file is written to a temporary sibling and renamed
over the original, so a crash mid-write never leaves a truncated file.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any

from ..board.models import PullRequest, PullRequestState
from ..sprint.models import (
    EventKind,
    Sprint,
    SprintEvent,
    SprintRecord,
    SprintStatus,
    Stage,
    Ticket,
)

logger = logging.getLogger(__name__)

SPRINT_FILE = "sprint.json"
RECORDS_FILE = "records.json"
MEMBERS_FILE = "members.json"


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def pull_request_to_dict(pr: PullRequest | None) -> dict | None:
    if pr is None:
        return None
    return {
        "url": pr.url,
        "state": pr.state.value,
        "comments": pr.comments,
        "failing_checks": list(pr.failing_checks),
    }


def pull_request_from_dict(data: dict | None) -> PullRequest | None:
    if data is None:
        return None
    return PullRequest(
        url=data["url"],
        state=PullRequestState(data["state"]),
        comments=data.get("comments", 0),
        failing_checks=tuple(data.get("failing_checks", ())),
    )


def ticket_to_dict(ticket: Ticket) -> dict[str, Any]:
    return {
        "id": ticket.id,
        "title": ticket.title,
        "stage": ticket.stage.value,
        "list_name": ticket.list_name,
        "url": ticket.url,
        "labels": list(ticket.labels),
        "member_ids": list(ticket.member_ids),
        "assignees": list(ticket.assignees),
        "checklist_done": ticket.checklist_done,
        "checklist_total": ticket.checklist_total,
        "pull_request": pull_request_to_dict(ticket.pull_request),
        "age_days": ticket.age_days,
        "is_new": ticket.is_new,
        "is_goal": ticket.is_goal,
        "is_blocked": ticket.is_blocked,
        "missing_info": sorted(ticket.missing_info),
    }


def ticket_from_dict(data: dict[str, Any]) -> Ticket:
    return Ticket(
        id=data["id"],
        title=data["title"],
        stage=Stage(data["stage"]),
        list_name=data.get("list_name", ""),
        url=data.get("url", ""),
        labels=tuple(data.get("labels", ())),
        member_ids=tuple(data.get("member_ids", ())),
        assignees=tuple(data.get("assignees", ())),
        checklist_done=data.get("checklist_done", 0),
        checklist_total=data.get("checklist_total", 0),
        pull_request=pull_request_from_dict(data.get("pull_request")),
        age_days=data.get("age_days", 0),
        is_new=data.get("is_new", False),
        is_goal=data.get("is_goal", False),
        is_blocked=data.get("is_blocked", False),
        missing_info=frozenset(data.get("missing_info", ())),
    )


def event_to_dict(event: SprintEvent) -> dict[str, Any]:
    return {
        "kind": event.kind.value,
        "timestamp": _dt(event.timestamp),
        "ticket_id": event.ticket_id,
        "from_stage": event.from_stage.value if event.from_stage else None,
        "to_stage": event.to_stage.value if event.to_stage else None,
        "detail": event.detail,
    }


def event_from_dict(data: dict[str, Any]) -> SprintEvent:
    return SprintEvent(
        kind=EventKind(data["kind"]),
        timestamp=_parse_dt(data["timestamp"]),
        ticket_id=data.get("ticket_id"),
        from_stage=Stage(data["from_stage"]) if data.get("from_stage") else None,
        to_stage=Stage(data["to_stage"]) if data.get("to_stage") else None,
        detail=data.get("detail"),
    )


def sprint_to_dict(sprint: Sprint) -> dict[str, Any]:
    return {
        "id": sprint.id,
        "name": sprint.name,
        "status": sprint.status.value,
        "started_at": _dt(sprint.started_at),
        "end_date": sprint.end_date.isoformat() if sprint.end_date else None,
        "channel_id": sprint.channel_id,
        "committed_ticket_ids": sorted(sprint.committed_ticket_ids),
        "current_ticket_ids": sorted(sprint.current_ticket_ids),
        "scope_added_ids": sorted(sprint.scope_added_ids),
        "removed_ticket_ids": sorted(sprint.removed_ticket_ids),
        "precompleted_ids": sorted(sprint.precompleted_ids),
        "blocked_ids": sorted(sprint.blocked_ids),
        "entered_at": {tid: _dt(ts) for tid, ts in sorted(sprint.entered_at.items())},
        "tickets": [ticket_to_dict(t) for _, t in sorted(sprint.tickets.items())],
        "history": [event_to_dict(e) for e in sprint.history],
        "closed_at": _dt(sprint.closed_at),
        "completion_snapshot": (
            {tid: stage.value for tid, stage in sprint.completion_snapshot.items()}
            if sprint.completion_snapshot is not None
            else None
        ),
    }


def sprint_from_dict(data: dict[str, Any]) -> Sprint:
    snapshot = data.get("completion_snapshot")
    return Sprint(
        id=data["id"],
        name=data["name"],
        status=SprintStatus(data["status"]),
        started_at=_parse_dt(data["started_at"]),
        end_date=_parse_date(data.get("end_date")),
        channel_id=data.get("channel_id"),
        committed_ticket_ids=frozenset(data.get("committed_ticket_ids", ())),
        current_ticket_ids=set(data.get("current_ticket_ids", ())),
        scope_added_ids=set(data.get("scope_added_ids", ())),
        removed_ticket_ids=set(data.get("removed_ticket_ids", ())),
        precompleted_ids=set(data.get("precompleted_ids", ())),
        blocked_ids=set(data.get("blocked_ids", ())),
        entered_at={tid: _parse_dt(ts) for tid, ts in data.get("entered_at", {}).items()},
        tickets={t["id"]: ticket_from_dict(t) for t in data.get("tickets", ())},
        history=[event_from_dict(e) for e in data.get("history", ())],
        closed_at=_parse_dt(data.get("closed_at")),
        completion_snapshot=(
            {tid: Stage(value) for tid, value in snapshot.items()}
            if snapshot is not None
            else None
        ),
    )


def record_to_dict(record: SprintRecord) -> dict[str, Any]:
    return {
        "sprint_id": record.sprint_id,
        "name": record.name,
        "started_at": _dt(record.started_at),
        "closed_at": _dt(record.closed_at),
        "end_date": record.end_date.isoformat() if record.end_date else None,
        "completion_pct": record.completion_pct,
        "completed_count": record.completed_count,
        "total_count": record.total_count,
        "committed_count": record.committed_count,
        "scope_added_count": record.scope_added_count,
        "scope_completed_count": record.scope_completed_count,
        "velocity_contribution": record.velocity_contribution,
    }


def record_from_dict(data: dict[str, Any]) -> SprintRecord:
    return SprintRecord(
        sprint_id=data["sprint_id"],
        name=data["name"],
        started_at=_parse_dt(data["started_at"]),
        closed_at=_parse_dt(data["closed_at"]),
        end_date=_parse_date(data.get("end_date")),
        completion_pct=data["completion_pct"],
        completed_count=data["completed_count"],
        total_count=data["total_count"],
        committed_count=data["committed_count"],
        scope_added_count=data.get("scope_added_count", 0),
        scope_completed_count=data.get("scope_completed_count", 0),
        velocity_contribution=data.get("velocity_contribution", data["completed_count"]),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class JsonFileStore:
    """SprintStore persisted as JSON files in ``directory``."""

    def __init__(self, directory: Path):
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _read(self, name: str) -> Any:
        path = self._dir / name
        if not path.exists():
            return None
        return json.loads(path.read_text())

    def _write(self, name: str, data: Any) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._dir / name
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(path)

    async def load_sprint(self) -> Sprint | None:
        data = self._read(SPRINT_FILE)
        return sprint_from_dict(data) if data is not None else None

    async def save_sprint(self, sprint: Sprint) -> None:
        self._write(SPRINT_FILE, sprint_to_dict(sprint))
        logger.debug("Saved sprint %s to %s", sprint.id, self._dir)

    async def load_records(self) -> list[SprintRecord]:
        data = self._read(RECORDS_FILE) or {"history": []}
        return [record_from_dict(r) for r in data["history"]]

    async def append_record(self, record: SprintRecord) -> None:
        records = await self.load_records()
        if any(r.sprint_id == record.sprint_id for r in records):
            raise ValueError(f"Record already exists for sprint {record.sprint_id}")
        records.append(record)
        self._write(RECORDS_FILE, {"history": [record_to_dict(r) for r in records]})

    async def load_members(self) -> dict[str, str]:
        """``members.json`` is ``{"<trello member id>": "<slack user id>"}``, edited by hand."""
        data = self._read(MEMBERS_FILE)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"{self._dir / MEMBERS_FILE} must map Trello member ids to Slack user ids")
        return {str(k): str(v) for k, v in data.items()}
