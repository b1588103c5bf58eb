"""Domain models for the sprint engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from ..board.models import PullRequest


class Stage(Enum):
    IN_SCOPE = "in_scope"
    INVESTIGATION = "investigation"
    IN_PROGRESS = "in_progress"
    PENDING_RELEASE = "pending_release"
    DEMO = "demo"
    DONE = "done"

    @property
    def order(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER: list[Stage] = [
    Stage.IN_SCOPE,
    Stage.INVESTIGATION,
    Stage.IN_PROGRESS,
    Stage.PENDING_RELEASE,
    Stage.DEMO,
    Stage.DONE,
]


class SprintStatus(Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class EventKind(Enum):
    KICKED_OFF = "kicked_off"
    SCOPE_INCREASE = "scope_increase"
    STAGE_CHANGED = "stage_changed"
    TICKET_REMOVED = "ticket_removed"
    TICKET_RESTORED = "ticket_restored"
    BLOCKED = "blocked"
    UNBLOCKED = "unblocked"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class Trend(Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class Ticket:
    """A card classified against the active sprint. Recomputed every snapshot.

    ``assignees`` are the Slack user ids of the card's members that have a
    known mapping; unmapped Trello members are left out.
    """

    id: str
    title: str
    stage: Stage
    list_name: str = ""
    url: str = ""
    labels: tuple[str, ...] = ()
    member_ids: tuple[str, ...] = ()
    assignees: tuple[str, ...] = ()
    checklist_done: int = 0
    checklist_total: int = 0
    pull_request: PullRequest | None = None
    age_days: int = 0
    is_new: bool = False
    is_goal: bool = False
    is_blocked: bool = False
    missing_info: frozenset[str] = frozenset()

    @property
    def is_done(self) -> bool:
        return self.stage is Stage.DONE


@dataclass(frozen=True)
class SprintEvent:
    kind: EventKind
    timestamp: datetime
    ticket_id: str | None = None
    from_stage: Stage | None = None
    to_stage: Stage | None = None
    detail: str | None = None


@dataclass
class SprintDelta:
    """Changes found by one ingestion. Empty when the board did not change."""

    sprint_id: str
    events: list[SprintEvent] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.events

    def of_kind(self, kind: EventKind) -> list[SprintEvent]:
        return [e for e in self.events if e.kind is kind]

    @property
    def scope_increases(self) -> list[str]:
        return [e.ticket_id for e in self.of_kind(EventKind.SCOPE_INCREASE)]

    @property
    def removed(self) -> list[str]:
        return [e.ticket_id for e in self.of_kind(EventKind.TICKET_REMOVED)]

    @property
    def transitions(self) -> list[SprintEvent]:
        return self.of_kind(EventKind.STAGE_CHANGED)


@dataclass
class Sprint:
    id: str
    name: str
    status: SprintStatus
    started_at: datetime
    end_date: date | None = None
    channel_id: str | None = None
    committed_ticket_ids: frozenset[str] = frozenset()
    current_ticket_ids: set[str] = field(default_factory=set)
    scope_added_ids: set[str] = field(default_factory=set)
    removed_ticket_ids: set[str] = field(default_factory=set)
    precompleted_ids: set[str] = field(default_factory=set)
    blocked_ids: set[str] = field(default_factory=set)
    entered_at: dict[str, datetime] = field(default_factory=dict)
    tickets: dict[str, Ticket] = field(default_factory=dict)
    history: list[SprintEvent] = field(default_factory=list)
    closed_at: datetime | None = None
    completion_snapshot: dict[str, Stage] | None = None

    def open_tickets(self) -> list[Ticket]:
        return [
            t for tid, t in self.tickets.items()
            if tid in self.current_ticket_ids and not t.is_done
        ]

    def done_tickets(self) -> list[Ticket]:
        return [
            t for tid, t in self.tickets.items()
            if tid in self.current_ticket_ids and t.is_done
        ]


@dataclass(frozen=True)
class SprintRecord:
    """Summary of one closed sprint. Written once, never updated."""

    sprint_id: str
    name: str
    started_at: datetime
    closed_at: datetime
    completion_pct: float
    completed_count: int
    total_count: int
    committed_count: int
    scope_added_count: int = 0
    scope_completed_count: int = 0
    velocity_contribution: int = 0
    end_date: date | None = None


@dataclass
class KickoffPreview:
    """What a kickoff would commit to right now. Never persisted."""

    name: str
    board_id: str
    generated_at: datetime
    end_date: date | None = None
    committed: list[Ticket] = field(default_factory=list)
    precompleted: list[Ticket] = field(default_factory=list)
    active_sprint_name: str | None = None

    @property
    def committed_ids(self) -> set[str]:
        return {t.id for t in self.committed}


@dataclass(frozen=True)
class Metrics:
    completion_pct: float
    velocity: float
    scope_growth_pct: float
    trend: Trend
    completed_count: int = 0
    total_count: int = 0
    sample_size: int = 0
