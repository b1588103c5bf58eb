"""Normalized board data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PullRequestState(Enum):
    DRAFT = "draft"
    PENDING = "pending"
    FAILING = "failing"
    APPROVED = "approved"
    MERGEABLE = "mergeable"
    MERGED = "merged"


RESOLVED_PR_STATES: frozenset[PullRequestState] = frozenset(
    {PullRequestState.APPROVED, PullRequestState.MERGEABLE, PullRequestState.MERGED}
)


@dataclass(frozen=True)
class PullRequest:
    url: str
    state: PullRequestState
    comments: int = 0
    failing_checks: tuple[str, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return self.state in RESOLVED_PR_STATES

    @property
    def is_draft(self) -> bool:
        return self.state is PullRequestState.DRAFT


@dataclass(frozen=True)
class Card:
    """One Trello card as the engine sees it. Never mutated."""

    id: str
    title: str
    list_name: str
    url: str = ""
    member_ids: tuple[str, ...] = ()
    has_description: bool = False
    labels: tuple[str, ...] = ()
    checklist_done: int = 0
    checklist_total: int = 0
    pr_url: str | None = None
    pull_request: PullRequest | None = None
    last_moved_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def has_assignee(self) -> bool:
        return bool(self.member_ids)

    @property
    def checklist_ratio(self) -> float:
        if self.checklist_total == 0:
            return 0.0
        return self.checklist_done / self.checklist_total


@dataclass
class BoardSnapshot:
    board_id: str
    taken_at: datetime
    cards: list[Card] = field(default_factory=list)

    def card_ids(self) -> set[str]:
        return {c.id for c in self.cards}
