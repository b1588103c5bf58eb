"""Completion policies: which tickets count toward a sprint's completion.

Committed tickets always count. Whether tickets added after kickoff count is
a team decision, so it lives here behind a small interface instead of inside
the metrics code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .models import Sprint, Ticket


class CompletionPolicy(Protocol):
    name: str

    def counts_scope_ticket(self, ticket: Ticket) -> bool: ...


@dataclass(frozen=True)
class GoalCriticalScopePolicy:
    """Scope additions count only when labelled as a goal."""

    name: str = "goal-critical"

    def counts_scope_ticket(self, ticket: Ticket) -> bool:
        return ticket.is_goal


@dataclass(frozen=True)
class CommittedOnlyPolicy:
    name: str = "committed-only"

    def counts_scope_ticket(self, ticket: Ticket) -> bool:
        return False


@dataclass(frozen=True)
class AllTicketsPolicy:
    name: str = "all"

    def counts_scope_ticket(self, ticket: Ticket) -> bool:
        return True


POLICIES: dict[str, CompletionPolicy] = {
    p.name: p for p in (GoalCriticalScopePolicy(), CommittedOnlyPolicy(), AllTicketsPolicy())
}

DEFAULT_POLICY: CompletionPolicy = POLICIES["goal-critical"]


def get_policy(name: str) -> CompletionPolicy:
    try:
        return POLICIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown completion policy: {name} (choose from {', '.join(sorted(POLICIES))})"
        ) from None


@dataclass(frozen=True)
class CompletionCount:
    completed: int
    total: int
    committed_completed: int
    scope_completed: int

    @property
    def pct(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.completed / self.total * 100, 2)


def count_completion(sprint: Sprint, policy: CompletionPolicy = DEFAULT_POLICY) -> CompletionCount:
    """Numerator and denominator of the sprint's completion percentage.

    Committed tickets that left the board stay in the denominator.
    """
    committed_done = 0
    for tid in sprint.committed_ticket_ids:
        ticket = sprint.tickets.get(tid)
        if ticket is not None and tid in sprint.current_ticket_ids and ticket.is_done:
            committed_done += 1

    scope_total = 0
    scope_done = 0
    for tid in sprint.scope_added_ids:
        if tid not in sprint.current_ticket_ids:
            continue
        ticket = sprint.tickets.get(tid)
        if ticket is None or not policy.counts_scope_ticket(ticket):
            continue
        scope_total += 1
        if ticket.is_done:
            scope_done += 1

    return CompletionCount(
        completed=committed_done + scope_done,
        total=len(sprint.committed_ticket_ids) + scope_total,
        committed_completed=committed_done,
        scope_completed=scope_done,
    )
