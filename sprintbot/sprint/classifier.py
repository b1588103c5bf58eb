"""Ticket classifier: maps a card to a sprint stage and flags missing data.

Pure functions. Nothing here raises for odd board content; problems are
reported through ``Ticket.missing_info``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping

from ..board.labels import TicketLabel, has_label
from ..board.models import Card
from .models import Stage, Ticket

UNMAPPED_LIST = "unmapped-list"
MISSING_ASSIGNEE = "missing-assignee"
MISSING_DESCRIPTION = "missing-description"
MISSING_LABELS = "missing-labels"
MISSING_PULL_REQUEST = "missing-pull-request"

LIST_TO_STAGE: dict[str, Stage] = {
    "in scope": Stage.IN_SCOPE,
    "investigation/discussion": Stage.INVESTIGATION,
    "in progress": Stage.IN_PROGRESS,
    "pending release": Stage.PENDING_RELEASE,
    "demo/final approval": Stage.DEMO,
    "done": Stage.DONE,
}

STAGE_REQUIREMENTS: dict[Stage, tuple[str, ...]] = {
    Stage.IN_SCOPE: (MISSING_DESCRIPTION, MISSING_LABELS),
    Stage.INVESTIGATION: (MISSING_ASSIGNEE,),
    Stage.IN_PROGRESS: (MISSING_ASSIGNEE, MISSING_DESCRIPTION, MISSING_LABELS),
    Stage.PENDING_RELEASE: (MISSING_DESCRIPTION, MISSING_LABELS, MISSING_PULL_REQUEST),
    Stage.DEMO: (MISSING_DESCRIPTION, MISSING_LABELS),
    Stage.DONE: (),
}

_CHECKS = {
    MISSING_ASSIGNEE: lambda card: card.has_assignee,
    MISSING_DESCRIPTION: lambda card: card.has_description,
    MISSING_LABELS: lambda card: bool(card.labels),
    MISSING_PULL_REQUEST: lambda card: card.pr_url is not None or card.pull_request is not None,
}


@dataclass(frozen=True)
class SprintContext:
    """What the classifier needs to know about the active sprint."""

    now: datetime
    entered_at: dict[str, datetime] = field(default_factory=dict)
    new_ticket_days: int = 2
    members: Mapping[str, str] = field(default_factory=dict)


def _normalize_list_name(name: str) -> str:
    return " ".join(name.lower().split())


def stage_for_list(list_name: str) -> Stage | None:
    return LIST_TO_STAGE.get(_normalize_list_name(list_name))


def missing_requirements(card: Card, stage: Stage) -> set[str]:
    return {req for req in STAGE_REQUIREMENTS[stage] if not _CHECKS[req](card)}


def is_blocked(card: Card, stage: Stage) -> bool:
    if has_label(card.labels, TicketLabel.BLOCKED):
        return True
    pr = card.pull_request
    return stage is Stage.PENDING_RELEASE and pr is not None and not pr.is_resolved


def slack_assignees(member_ids: tuple[str, ...], members: Mapping[str, str]) -> tuple[str, ...]:
    return tuple(members[m] for m in member_ids if m in members)


def age_in_days(entered: datetime | None, now: datetime) -> int:
    if entered is None:
        return 0
    return max((now.date() - entered.date()).days, 0)


def classify(card: Card, context: SprintContext) -> Ticket:
    stage = stage_for_list(card.list_name)
    missing: set[str] = set()
    if stage is None:
        stage = Stage.IN_SCOPE
        missing.add(UNMAPPED_LIST)
    missing |= missing_requirements(card, stage)

    age = age_in_days(context.entered_at.get(card.id), context.now)

    return Ticket(
        id=card.id,
        title=card.title,
        stage=stage,
        list_name=card.list_name,
        url=card.url,
        labels=card.labels,
        member_ids=card.member_ids,
        assignees=slack_assignees(card.member_ids, context.members),
        checklist_done=card.checklist_done,
        checklist_total=card.checklist_total,
        pull_request=card.pull_request,
        age_days=age,
        is_new=age < context.new_ticket_days,
        is_goal=has_label(card.labels, TicketLabel.GOAL),
        is_blocked=is_blocked(card, stage),
        missing_info=frozenset(missing),
    )


def classify_all(cards: list[Card], context: SprintContext) -> dict[str, Ticket]:
    return {card.id: classify(card, context) for card in cards}
