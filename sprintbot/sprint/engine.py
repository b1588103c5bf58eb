"""Sprint state engine: owns the active sprint and reacts to board snapshots.

All mutating operations run under one lock, compute on a copy of the sprint,
and replace the held state only after the store accepted the result. A failed
save therefore leaves both the store and the engine exactly as they were.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from datetime import date, datetime, timezone
from typing import Callable

from ..board.models import BoardSnapshot
from .classifier import SprintContext, classify, classify_all, stage_for_list
from .exceptions import ConflictError, NotActiveError
from .interface import SprintStore
from .metrics import compute_metrics
from .models import (
    EventKind,
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
from .policy import DEFAULT_POLICY, CompletionPolicy, count_completion
from .transitions import validate_transition

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _sort_key(ticket: Ticket) -> tuple[int, str]:
    return (ticket.stage.order, ticket.id)


def apply_snapshot(
    sprint: Sprint,
    snapshot: BoardSnapshot,
    now: datetime,
    new_ticket_days: int = 2,
    members: dict[str, str] | None = None,
) -> list[SprintEvent]:
    """Reconcile ``sprint`` with ``snapshot`` in place and return one event per change.

    Ticket ages and the cached ticket view are refreshed without producing
    events, so applying the same snapshot twice yields no events the second time.
    """
    events: list[SprintEvent] = []
    cards = {c.id: c for c in snapshot.cards}
    newly_added: set[str] = set()

    for cid in sorted(cards):
        card = cards[cid]
        if cid in sprint.precompleted_ids:
            if stage_for_list(card.list_name) is Stage.DONE:
                continue
            # Finished before kickoff and reopened since: new work for this sprint.
            sprint.precompleted_ids.discard(cid)
        if cid in sprint.current_ticket_ids:
            continue

        if cid in sprint.removed_ticket_ids:
            sprint.removed_ticket_ids.discard(cid)
            events.append(SprintEvent(
                kind=EventKind.TICKET_RESTORED,
                timestamp=now,
                ticket_id=cid,
                detail=card.title,
            ))
        else:
            sprint.scope_added_ids.add(cid)
            newly_added.add(cid)
            events.append(SprintEvent(
                kind=EventKind.SCOPE_INCREASE,
                timestamp=now,
                ticket_id=cid,
                detail=card.title,
            ))
        sprint.current_ticket_ids.add(cid)
        sprint.entered_at.setdefault(cid, now)

    context = SprintContext(
        now=now,
        entered_at=sprint.entered_at,
        new_ticket_days=new_ticket_days,
        members=members or {},
    )
    for cid in sorted(sprint.current_ticket_ids & cards.keys()):
        ticket = classify(cards[cid], context)
        previous = sprint.tickets.get(cid)

        if previous is not None and cid not in newly_added and previous.stage is not ticket.stage:
            events.append(SprintEvent(
                kind=EventKind.STAGE_CHANGED,
                timestamp=now,
                ticket_id=cid,
                from_stage=previous.stage,
                to_stage=ticket.stage,
                detail=ticket.title,
            ))

        if ticket.is_blocked and cid not in sprint.blocked_ids:
            sprint.blocked_ids.add(cid)
            events.append(SprintEvent(
                kind=EventKind.BLOCKED, timestamp=now, ticket_id=cid, detail=ticket.title
            ))
        elif not ticket.is_blocked and cid in sprint.blocked_ids:
            sprint.blocked_ids.discard(cid)
            events.append(SprintEvent(
                kind=EventKind.UNBLOCKED, timestamp=now, ticket_id=cid, detail=ticket.title
            ))

        sprint.tickets[cid] = ticket

    for cid in sorted(sprint.current_ticket_ids - cards.keys()):
        sprint.current_ticket_ids.discard(cid)
        sprint.removed_ticket_ids.add(cid)
        sprint.blocked_ids.discard(cid)
        previous = sprint.tickets.get(cid)
        events.append(SprintEvent(
            kind=EventKind.TICKET_REMOVED,
            timestamp=now,
            ticket_id=cid,
            from_stage=previous.stage if previous else None,
            detail=previous.title if previous else None,
        ))

    return events


class SprintEngine:
    """Single owner of sprint state for one board.

    Instances are independent; tests can run several side by side.
    """

    def __init__(
        self,
        store: SprintStore,
        policy: CompletionPolicy = DEFAULT_POLICY,
        new_ticket_days: int = 2,
        velocity_window: int = 3,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._policy = policy
        self._new_ticket_days = new_ticket_days
        self._velocity_window = velocity_window
        self._clock = clock or _now
        self._lock = asyncio.Lock()
        self._sprint: Sprint | None = None
        self._records: list[SprintRecord] = []
        self._members: dict[str, str] = {}
        self._loaded = False

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._sprint = await self._store.load_sprint()
        self._records = list(await self._store.load_records())
        self._members = dict(await self._store.load_members())
        self._loaded = True
        if self._sprint is not None:
            logger.info(
                "Loaded sprint %s (%s) with %d history events",
                self._sprint.id, self._sprint.status.value, len(self._sprint.history),
            )

    def _default_name(self) -> str:
        return f"Sprint {len(self._records) + 1}"

    def _next_sprint_id(self) -> str:
        used = {r.sprint_id for r in self._records}
        if self._sprint is not None:
            used.add(self._sprint.id)
        n = len(self._records) + 1
        while f"s-{n}" in used:
            n += 1
        return f"s-{n}"

    def _context(self, now: datetime, entered_at: dict[str, datetime] | None = None) -> SprintContext:
        return SprintContext(
            now=now,
            entered_at=entered_at or {},
            new_ticket_days=self._new_ticket_days,
            members=self._members,
        )

    def _name_used(self, name: str) -> bool:
        return any(r.name == name for r in self._records)

    def _record_for(self, sprint_id: str) -> SprintRecord | None:
        for record in self._records:
            if record.sprint_id == sprint_id:
                return record
        return None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_status(self) -> SprintStatus:
        await self._ensure_loaded()
        if self._sprint is None:
            return SprintStatus.NOT_STARTED
        return self._sprint.status

    async def current_sprint(self) -> Sprint | None:
        await self._ensure_loaded()
        return copy.deepcopy(self._sprint)

    async def active_sprint(self) -> Sprint:
        sprint = await self.current_sprint()
        if sprint is None or sprint.status is not SprintStatus.ACTIVE:
            raise NotActiveError("read the active sprint", sprint.status if sprint else None)
        return sprint

    async def records(self) -> list[SprintRecord]:
        await self._ensure_loaded()
        return list(self._records)

    async def metrics(self) -> Metrics:
        await self._ensure_loaded()
        sprint = self._sprint
        if sprint is None:
            raise NotActiveError("compute metrics", SprintStatus.NOT_STARTED)
        prior = [r for r in self._records if r.sprint_id != sprint.id]
        return compute_metrics(
            sprint, prior, window=self._velocity_window, policy=self._policy
        )

    async def blockers(self) -> list[Ticket]:
        sprint = await self.active_sprint()
        return sorted(
            (sprint.tickets[tid] for tid in sprint.blocked_ids if tid in sprint.tickets),
            key=_sort_key,
        )

    async def preview_kickoff(
        self,
        snapshot: BoardSnapshot,
        name: str | None = None,
        end_date: date | None = None,
    ) -> KickoffPreview:
        """Show what a kickoff would commit to. Allowed in any state; changes nothing."""
        await self._ensure_loaded()
        now = self._clock()
        tickets = classify_all(snapshot.cards, self._context(now))
        ordered = sorted(tickets.values(), key=_sort_key)
        active = self._sprint if self._sprint and self._sprint.status is SprintStatus.ACTIVE else None
        return KickoffPreview(
            name=name or self._default_name(),
            board_id=snapshot.board_id,
            generated_at=now,
            end_date=end_date,
            committed=[t for t in ordered if not t.is_done],
            precompleted=[t for t in ordered if t.is_done],
            active_sprint_name=active.name if active else None,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def kickoff(
        self,
        snapshot: BoardSnapshot,
        name: str | None = None,
        end_date: date | None = None,
        channel_id: str | None = None,
    ) -> Sprint:
        async with self._lock:
            await self._ensure_loaded()
            current = self._sprint
            if current is not None and current.status is SprintStatus.ACTIVE:
                raise ConflictError(
                    f"Sprint {current.name} already in progress", active_sprint_id=current.id
                )
            name = name or self._default_name()
            if self._name_used(name):
                raise ConflictError(f"Sprint name {name} was already used")

            now = self._clock()
            sprint_id = self._next_sprint_id()
            validate_transition(sprint_id, SprintStatus.NOT_STARTED, SprintStatus.ACTIVE)

            eligible = [
                c for c in snapshot.cards if stage_for_list(c.list_name) is not Stage.DONE
            ]
            entered_at = {c.id: now for c in eligible}
            tickets = classify_all(eligible, self._context(now, entered_at))
            sprint = Sprint(
                id=sprint_id,
                name=name,
                status=SprintStatus.ACTIVE,
                started_at=now,
                end_date=end_date,
                channel_id=channel_id,
                committed_ticket_ids=frozenset(tickets),
                current_ticket_ids=set(tickets),
                precompleted_ids=snapshot.card_ids() - set(tickets),
                blocked_ids={tid for tid, t in tickets.items() if t.is_blocked},
                entered_at=entered_at,
                tickets=tickets,
                history=[SprintEvent(
                    kind=EventKind.KICKED_OFF,
                    timestamp=now,
                    detail=f"{len(tickets)} tickets committed",
                )],
            )
            await self._store.save_sprint(sprint)
            self._sprint = sprint
            logger.info("Kicked off %s (%s) with %d committed tickets", name, sprint_id, len(tickets))
            return copy.deepcopy(sprint)

    async def ingest_snapshot(self, snapshot: BoardSnapshot) -> SprintDelta:
        async with self._lock:
            await self._ensure_loaded()
            current = self._sprint
            if current is None or current.status is not SprintStatus.ACTIVE:
                raise NotActiveError("ingest a snapshot", current.status if current else None)

            working = copy.deepcopy(current)
            events = apply_snapshot(
                working,
                snapshot,
                self._clock(),
                new_ticket_days=self._new_ticket_days,
                members=self._members,
            )
            working.history.extend(events)

            if events or working.tickets != current.tickets:
                await self._store.save_sprint(working)
                self._sprint = working

            if events:
                logger.info("Ingested snapshot for %s: %d changes", working.id, len(events))
            else:
                logger.debug("Ingested snapshot for %s: no changes", working.id)
            return SprintDelta(sprint_id=working.id, events=events)

    async def close_sprint(self) -> SprintRecord:
        async with self._lock:
            await self._ensure_loaded()
            current = self._sprint
            if current is None:
                raise NotActiveError("close the sprint", SprintStatus.NOT_STARTED)
            if current.status is SprintStatus.CLOSED:
                existing = self._record_for(current.id)
                if existing is None:
                    raise NotActiveError("close the sprint", current.status)
                return existing
            if current.status is not SprintStatus.ACTIVE:
                raise NotActiveError("close the sprint", current.status)
            validate_transition(current.id, current.status, SprintStatus.CLOSED)

            now = self._clock()
            working = copy.deepcopy(current)
            count = count_completion(working, self._policy)
            scope_done = sum(
                1 for tid in working.scope_added_ids
                if tid in working.current_ticket_ids and working.tickets[tid].is_done
            )

            record = self._record_for(working.id)
            if record is None:
                record = SprintRecord(
                    sprint_id=working.id,
                    name=working.name,
                    started_at=working.started_at,
                    closed_at=now,
                    end_date=working.end_date,
                    completion_pct=count.pct,
                    completed_count=count.completed,
                    total_count=count.total,
                    committed_count=len(working.committed_ticket_ids),
                    scope_added_count=len(working.scope_added_ids),
                    scope_completed_count=scope_done,
                    velocity_contribution=count.completed,
                )
                await self._store.append_record(record)
                self._records.append(record)

            working.status = SprintStatus.CLOSED
            working.closed_at = record.closed_at
            working.completion_snapshot = {
                tid: working.tickets[tid].stage
                for tid in sorted(working.current_ticket_ids)
                if tid in working.tickets
            }
            working.history.append(SprintEvent(
                kind=EventKind.CLOSED,
                timestamp=now,
                detail=f"{record.completion_pct:.2f}% complete",
            ))
            await self._store.save_sprint(working)
            self._sprint = working
            logger.info(
                "Closed %s: %d/%d tickets (%.2f%%)",
                working.name, record.completed_count, record.total_count, record.completion_pct,
            )
            return record

    async def cancel_sprint(self) -> Sprint:
        """Abandon the active sprint without writing a SprintRecord.

        Velocity and the previous-sprints list never see it. Its name can be
        used again.
        """
        async with self._lock:
            await self._ensure_loaded()
            current = self._sprint
            if current is None or current.status is not SprintStatus.ACTIVE:
                raise NotActiveError("cancel the sprint", current.status if current else None)
            validate_transition(current.id, current.status, SprintStatus.CANCELLED)

            now = self._clock()
            working = copy.deepcopy(current)
            working.status = SprintStatus.CANCELLED
            working.closed_at = now
            working.history.append(SprintEvent(kind=EventKind.CANCELLED, timestamp=now))
            await self._store.save_sprint(working)
            self._sprint = working
            logger.info("Cancelled %s (%s)", working.name, working.id)
            return copy.deepcopy(working)
