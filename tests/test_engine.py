"""Tests for SprintEngine: kickoff, ingestion, close."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from sprintbot.adapters.memory import InMemoryStore
from sprintbot.board.models import BoardSnapshot, Card
from sprintbot.reports.renderer import render_daily_summary
from sprintbot.sprint.engine import SprintEngine
from sprintbot.sprint.exceptions import ConflictError, NotActiveError
from sprintbot.sprint.models import EventKind, Sprint, SprintRecord, SprintStatus, Stage
from sprintbot.sprint.policy import AllTicketsPolicy, CommittedOnlyPolicy


def _card(cid: str, list_name: str = "In Scope", **kwargs) -> Card:
    kwargs.setdefault("member_ids", ("m1",))
    kwargs.setdefault("has_description", True)
    kwargs.setdefault("labels", ("Back-End",))
    return Card(id=cid, title=f"Ticket {cid}", list_name=list_name, **kwargs)


def _snapshot(*cards: Card, clock=None) -> BoardSnapshot:
    taken_at = clock() if clock else None
    return BoardSnapshot(board_id="board-1", taken_at=taken_at, cards=list(cards))


def _five_in_scope() -> list[Card]:
    return [_card(f"c{i}") for i in range(1, 6)]


class FailingStore(InMemoryStore):
    """Store whose next save raises, to check nothing half-applies."""

    def __init__(self):
        super().__init__()
        self.fail_next_save = False
        self.fail_next_append = False

    async def save_sprint(self, sprint):
        if self.fail_next_save:
            self.fail_next_save = False
            raise OSError("disk full")
        await super().save_sprint(sprint)

    async def append_record(self, record):
        if self.fail_next_append:
            self.fail_next_append = False
            raise OSError("disk full")
        await super().append_record(record)


class SlowStore(InMemoryStore):
    """Store that yields to the event loop mid-save so concurrent calls interleave."""

    async def save_sprint(self, sprint):
        await asyncio.sleep(0)
        await super().save_sprint(sprint)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def engine(store, clock):
    return SprintEngine(store, clock=clock)


# ---------------------------------------------------------------------------
# Kickoff
# ---------------------------------------------------------------------------


class TestKickoff:
    @pytest.mark.asyncio
    async def test_commits_every_open_card(self, engine, clock):
        sprint = await engine.kickoff(_snapshot(*_five_in_scope()), name="Apollo")
        assert sprint.status is SprintStatus.ACTIVE
        assert sprint.committed_ticket_ids == {"c1", "c2", "c3", "c4", "c5"}
        assert sprint.started_at == clock()
        assert sprint.id == "s-1"
        assert [e.kind for e in sprint.history] == [EventKind.KICKED_OFF]

    @pytest.mark.asyncio
    async def test_done_cards_are_not_committed(self, engine):
        sprint = await engine.kickoff(
            _snapshot(_card("a"), _card("b", "Done")), name="Apollo"
        )
        assert sprint.committed_ticket_ids == {"a"}
        assert sprint.precompleted_ids == {"b"}

    @pytest.mark.asyncio
    async def test_default_name(self, engine):
        sprint = await engine.kickoff(_snapshot(_card("a")))
        assert sprint.name == "Sprint 1"

    @pytest.mark.asyncio
    async def test_persists_sprint(self, engine, store):
        await engine.kickoff(_snapshot(_card("a")), name="Apollo", end_date=date(2025, 3, 14))
        saved = await store.load_sprint()
        assert saved.name == "Apollo"
        assert saved.end_date == date(2025, 3, 14)

    @pytest.mark.asyncio
    async def test_conflict_while_active(self, engine, store):
        first = await engine.kickoff(_snapshot(_card("a")), name="Apollo")
        saves = store.saves
        with pytest.raises(ConflictError) as exc_info:
            await engine.kickoff(_snapshot(_card("b")), name="Gemini")
        assert exc_info.value.active_sprint_id == first.id
        assert store.saves == saves
        current = await engine.active_sprint()
        assert current.name == "Apollo"
        assert current.committed_ticket_ids == {"a"}

    @pytest.mark.asyncio
    async def test_name_cannot_be_reused(self, engine):
        await engine.kickoff(_snapshot(_card("a")), name="Apollo")
        await engine.close_sprint()
        with pytest.raises(ConflictError, match="already used"):
            await engine.kickoff(_snapshot(_card("a")), name="Apollo")

    @pytest.mark.asyncio
    async def test_new_sprint_after_close(self, engine):
        await engine.kickoff(_snapshot(_card("a")), name="Apollo")
        await engine.close_sprint()
        second = await engine.kickoff(_snapshot(_card("b")), name="Gemini")
        assert second.id == "s-2"
        assert second.committed_ticket_ids == {"b"}


class TestPreview:
    @pytest.mark.asyncio
    async def test_preview_changes_nothing(self, engine, store):
        preview = await engine.preview_kickoff(
            _snapshot(_card("a"), _card("b", "Done")), name="Apollo"
        )
        assert preview.committed_ids == {"a"}
        assert [t.id for t in preview.precompleted] == ["b"]
        assert preview.active_sprint_name is None
        assert await engine.get_status() is SprintStatus.NOT_STARTED
        assert store.saves == 0

    @pytest.mark.asyncio
    async def test_preview_allowed_while_active(self, engine):
        await engine.kickoff(_snapshot(_card("a")), name="Apollo")
        preview = await engine.preview_kickoff(_snapshot(_card("a"), _card("b")))
        assert preview.active_sprint_name == "Apollo"
        assert preview.committed_ids == {"a", "b"}


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class TestIngest:
    @pytest.mark.asyncio
    async def test_requires_active_sprint(self, engine, store):
        with pytest.raises(NotActiveError):
            await engine.ingest_snapshot(_snapshot(_card("a")))
        assert store.saves == 0
        assert await engine.get_status() is SprintStatus.NOT_STARTED

    @pytest.mark.asyncio
    async def test_rejected_after_close(self, engine):
        await engine.kickoff(_snapshot(_card("a")))
        await engine.close_sprint()
        with pytest.raises(NotActiveError):
            await engine.ingest_snapshot(_snapshot(_card("a")))

    @pytest.mark.asyncio
    async def test_unchanged_snapshot_is_idempotent(self, engine):
        snapshot = _snapshot(*_five_in_scope())
        await engine.kickoff(snapshot)
        moved = _snapshot(_card("c1", "In Progress"), *_five_in_scope()[1:])
        first = await engine.ingest_snapshot(moved)
        assert len(first.events) == 1
        history_len = len((await engine.active_sprint()).history)

        second = await engine.ingest_snapshot(moved)
        assert second.is_empty
        assert len((await engine.active_sprint()).history) == history_len

    @pytest.mark.asyncio
    async def test_stage_transition_event(self, engine):
        await engine.kickoff(_snapshot(_card("a")))
        delta = await engine.ingest_snapshot(_snapshot(_card("a", "In Progress")))
        [event] = delta.transitions
        assert event.ticket_id == "a"
        assert event.from_stage is Stage.IN_SCOPE
        assert event.to_stage is Stage.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_commitment_immutable(self, engine):
        await engine.kickoff(_snapshot(_card("a"), _card("b")))
        await engine.ingest_snapshot(_snapshot(_card("b", "Done"), _card("c")))
        await engine.ingest_snapshot(_snapshot(_card("d")))
        await engine.ingest_snapshot(_snapshot())
        sprint = await engine.active_sprint()
        assert sprint.committed_ticket_ids == {"a", "b"}

    @pytest.mark.asyncio
    async def test_scope_increase_reported_exactly_once(self, engine):
        await engine.kickoff(_snapshot(_card("a")))
        board = _snapshot(_card("a"), _card("x"))
        first = await engine.ingest_snapshot(board)
        second = await engine.ingest_snapshot(board)
        assert first.scope_increases == ["x"]
        assert second.scope_increases == []
        sprint = await engine.active_sprint()
        assert sprint.scope_added_ids == {"x"}
        assert "x" not in sprint.committed_ticket_ids
        scope_events = [e for e in sprint.history if e.kind is EventKind.SCOPE_INCREASE]
        assert len(scope_events) == 1

    @pytest.mark.asyncio
    async def test_removed_ticket_is_logged(self, engine):
        await engine.kickoff(_snapshot(_card("a"), _card("b")))
        delta = await engine.ingest_snapshot(_snapshot(_card("a")))
        assert delta.removed == ["b"]
        sprint = await engine.active_sprint()
        assert sprint.removed_ticket_ids == {"b"}
        assert "b" in sprint.committed_ticket_ids
        assert "b" in sprint.tickets

        again = await engine.ingest_snapshot(_snapshot(_card("a")))
        assert again.is_empty

    @pytest.mark.asyncio
    async def test_removed_ticket_can_return(self, engine):
        await engine.kickoff(_snapshot(_card("a"), _card("b")))
        await engine.ingest_snapshot(_snapshot(_card("a")))
        delta = await engine.ingest_snapshot(_snapshot(_card("a"), _card("b")))
        assert [e.kind for e in delta.events] == [EventKind.TICKET_RESTORED]
        sprint = await engine.active_sprint()
        assert sprint.removed_ticket_ids == set()
        assert "b" not in sprint.scope_added_ids

    @pytest.mark.asyncio
    async def test_reopened_precompleted_card_is_scope_increase(self, engine):
        await engine.kickoff(_snapshot(_card("a"), _card("b", "Done")))
        quiet = await engine.ingest_snapshot(_snapshot(_card("a"), _card("b", "Done")))
        assert quiet.is_empty
        delta = await engine.ingest_snapshot(_snapshot(_card("a"), _card("b", "In Progress")))
        assert delta.scope_increases == ["b"]

    @pytest.mark.asyncio
    async def test_blocker_set_updates(self, engine):
        await engine.kickoff(_snapshot(_card("a")))
        blocked = await engine.ingest_snapshot(_snapshot(_card("a", labels=("Blocked",))))
        assert [e.kind for e in blocked.events] == [EventKind.BLOCKED]
        assert [t.id for t in await engine.blockers()] == ["a"]

        cleared = await engine.ingest_snapshot(_snapshot(_card("a")))
        assert [e.kind for e in cleared.events] == [EventKind.UNBLOCKED]
        assert await engine.blockers() == []

    @pytest.mark.asyncio
    async def test_age_after_three_daily_ingestions(self, engine, clock):
        board = _snapshot(_card("a"))
        await engine.kickoff(board)
        for _ in range(3):
            clock.advance(days=1)
            delta = await engine.ingest_snapshot(board)
            assert delta.is_empty
        sprint = await engine.active_sprint()
        assert sprint.tickets["a"].age_days == 3
        assert not sprint.tickets["a"].is_new

    @pytest.mark.asyncio
    async def test_scope_ticket_age_starts_when_it_appears(self, engine, clock):
        await engine.kickoff(_snapshot(_card("a")))
        clock.advance(days=2)
        await engine.ingest_snapshot(_snapshot(_card("a"), _card("x")))
        clock.advance(days=1)
        await engine.ingest_snapshot(_snapshot(_card("a"), _card("x")))
        sprint = await engine.active_sprint()
        assert sprint.tickets["a"].age_days == 3
        assert sprint.tickets["x"].age_days == 1
        assert sprint.tickets["x"].is_new

    @pytest.mark.asyncio
    async def test_failed_save_leaves_state_unchanged(self, clock):
        store = FailingStore()
        engine = SprintEngine(store, clock=clock)
        await engine.kickoff(_snapshot(_card("a")))
        before = await engine.active_sprint()

        store.fail_next_save = True
        with pytest.raises(OSError):
            await engine.ingest_snapshot(_snapshot(_card("a", "Done"), _card("x")))

        after = await engine.active_sprint()
        assert after.history == before.history
        assert after.scope_added_ids == set()
        assert after.tickets["a"].stage is Stage.IN_SCOPE
        assert (await store.load_sprint()).history == before.history

        delta = await engine.ingest_snapshot(_snapshot(_card("a", "Done"), _card("x")))
        assert delta.scope_increases == ["x"]

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, engine):
        await engine.kickoff(_snapshot(_card("a")))
        sprint = await engine.active_sprint()
        sprint.current_ticket_ids.add("zzz")
        assert "zzz" not in (await engine.active_sprint()).current_ticket_ids


# ---------------------------------------------------------------------------
# Close
# ---------------------------------------------------------------------------


class TestClose:
    @pytest.mark.asyncio
    async def test_requires_a_sprint(self, engine):
        with pytest.raises(NotActiveError):
            await engine.close_sprint()

    @pytest.mark.asyncio
    async def test_record_and_status(self, engine, store):
        await engine.kickoff(_snapshot(*_five_in_scope()), name="Apollo")
        await engine.ingest_snapshot(_snapshot(_card("c1", "Done"), *_five_in_scope()[1:]))
        record = await engine.close_sprint()

        assert record.completion_pct == 20.0
        assert record.completed_count == 1
        assert record.total_count == 5
        assert record.velocity_contribution == 1
        sprint = await engine.current_sprint()
        assert sprint.status is SprintStatus.CLOSED
        assert sprint.closed_at == record.closed_at
        assert sprint.completion_snapshot["c1"] is Stage.DONE
        assert sprint.history[-1].kind is EventKind.CLOSED
        assert await store.load_records() == [record]

    @pytest.mark.asyncio
    async def test_close_twice_returns_identical_record(self, engine, store):
        await engine.kickoff(_snapshot(_card("a")))
        first = await engine.close_sprint()
        second = await engine.close_sprint()
        assert first == second
        assert len(await store.load_records()) == 1

    @pytest.mark.asyncio
    async def test_zero_committed_closes_at_zero(self, engine):
        await engine.kickoff(_snapshot(_card("done", "Done")))
        record = await engine.close_sprint()
        assert record.completion_pct == 0.0
        assert record.total_count == 0

    @pytest.mark.asyncio
    async def test_non_goal_scope_reported_separately(self, engine):
        await engine.kickoff(_snapshot(_card("a"), _card("b")))
        await engine.ingest_snapshot(
            _snapshot(_card("a", "Done"), _card("b"), _card("x", "Done"))
        )
        record = await engine.close_sprint()
        assert record.total_count == 2
        assert record.completed_count == 1
        assert record.scope_added_count == 1
        assert record.scope_completed_count == 1

    @pytest.mark.asyncio
    async def test_goal_scope_counts_in_denominator(self, engine):
        await engine.kickoff(_snapshot(_card("a")))
        await engine.ingest_snapshot(
            _snapshot(_card("a", "Done"), _card("g", labels=("Goal",)))
        )
        record = await engine.close_sprint()
        assert record.total_count == 2
        assert record.completion_pct == 50.0

    @pytest.mark.asyncio
    async def test_policy_is_configurable(self, store, clock):
        engine = SprintEngine(store, policy=AllTicketsPolicy(), clock=clock)
        await engine.kickoff(_snapshot(_card("a")))
        await engine.ingest_snapshot(_snapshot(_card("a"), _card("x", "Done")))
        record = await engine.close_sprint()
        assert record.total_count == 2
        assert record.completed_count == 1

    @pytest.mark.asyncio
    async def test_committed_only_ignores_goal_scope(self, store, clock):
        engine = SprintEngine(store, policy=CommittedOnlyPolicy(), clock=clock)
        await engine.kickoff(_snapshot(_card("a")))
        await engine.ingest_snapshot(_snapshot(_card("a"), _card("g", "Done", labels=("Goal",))))
        record = await engine.close_sprint()
        assert record.total_count == 1
        assert record.completed_count == 0

    @pytest.mark.asyncio
    async def test_failed_append_leaves_sprint_active(self, clock):
        store = FailingStore()
        engine = SprintEngine(store, clock=clock)
        await engine.kickoff(_snapshot(_card("a")))
        store.fail_next_append = True
        with pytest.raises(OSError):
            await engine.close_sprint()
        assert await engine.get_status() is SprintStatus.ACTIVE
        assert await store.load_records() == []

        record = await engine.close_sprint()
        assert record.sprint_id == "s-1"

    @pytest.mark.asyncio
    async def test_failed_save_after_append_retries_with_same_record(self, clock):
        store = FailingStore()
        engine = SprintEngine(store, clock=clock)
        await engine.kickoff(_snapshot(_card("a")))
        store.fail_next_save = True
        with pytest.raises(OSError):
            await engine.close_sprint()
        assert await engine.get_status() is SprintStatus.ACTIVE
        [pending] = await store.load_records()

        clock.advance(days=1)
        record = await engine.close_sprint()
        assert record == pending
        assert len(await store.load_records()) == 1


class TestReload:
    @pytest.mark.asyncio
    async def test_engine_resumes_from_store(self, store, clock):
        first = SprintEngine(store, clock=clock)
        await first.kickoff(_snapshot(_card("a")), name="Apollo")

        second = SprintEngine(store, clock=clock)
        assert await second.get_status() is SprintStatus.ACTIVE
        delta = await second.ingest_snapshot(_snapshot(_card("a")))
        assert delta.is_empty

    @pytest.mark.asyncio
    async def test_independent_engines(self, clock):
        one = SprintEngine(InMemoryStore(), clock=clock)
        two = SprintEngine(InMemoryStore(), clock=clock)
        await one.kickoff(_snapshot(_card("a")))
        assert await two.get_status() is SprintStatus.NOT_STARTED
        await two.kickoff(_snapshot(_card("b")))


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_one_of_five_done(self, engine, clock):
        await engine.kickoff(_snapshot(*_five_in_scope()), name="Apollo")
        clock.advance(days=1)
        cards = _five_in_scope()
        cards[2] = _card("c3", "Done")
        delta = await engine.ingest_snapshot(_snapshot(*cards))

        sprint = await engine.active_sprint()
        metrics = await engine.metrics()
        text = render_daily_summary(sprint, delta, metrics)

        assert metrics.completion_pct == 20.0
        assert len(sprint.open_tickets()) == 4
        assert len(sprint.done_tickets()) == 1
        assert "*4 Open* | *1 Completed* | 5 Tickets" in text
        assert "20.00% of tasks completed." in text

    @pytest.mark.asyncio
    async def test_metrics_use_prior_records(self, engine):
        await engine.kickoff(_snapshot(_card("a", "Done"), _card("b")), name="One")
        await engine.ingest_snapshot(_snapshot(_card("b", "Done")))
        await engine.close_sprint()

        await engine.kickoff(_snapshot(_card("c"), _card("d")), name="Two")
        metrics = await engine.metrics()
        assert metrics.velocity == 1.0
        assert metrics.sample_size == 1
        assert metrics.completion_pct == 0.0


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_writes_no_record(self, engine, store):
        await engine.kickoff(_snapshot(_card("a")), name="Apollo")
        sprint = await engine.cancel_sprint()
        assert sprint.status is SprintStatus.CANCELLED
        assert sprint.history[-1].kind is EventKind.CANCELLED
        assert await engine.get_status() is SprintStatus.CANCELLED
        assert await engine.records() == []
        assert await store.load_records() == []
        assert (await store.load_sprint()).status is SprintStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_kickoff_after_cancel_reuses_name_with_new_id(self, engine):
        cancelled = await engine.kickoff(_snapshot(_card("a")), name="Apollo")
        await engine.cancel_sprint()
        sprint = await engine.kickoff(_snapshot(_card("b")), name="Apollo")
        assert sprint.id != cancelled.id
        assert sprint.committed_ticket_ids == {"b"}
        record = await engine.close_sprint()
        assert record.sprint_id == sprint.id
        assert (await engine.metrics()).sample_size == 0

    @pytest.mark.asyncio
    async def test_cancel_needs_active_sprint(self, engine):
        with pytest.raises(NotActiveError):
            await engine.cancel_sprint()
        await engine.kickoff(_snapshot(_card("a")))
        await engine.close_sprint()
        with pytest.raises(NotActiveError):
            await engine.cancel_sprint()

    @pytest.mark.asyncio
    async def test_close_after_cancel_is_rejected(self, engine):
        await engine.kickoff(_snapshot(_card("a")))
        await engine.cancel_sprint()
        with pytest.raises(NotActiveError):
            await engine.close_sprint()
        with pytest.raises(NotActiveError):
            await engine.ingest_snapshot(_snapshot(_card("a")))

    @pytest.mark.asyncio
    async def test_failed_save_leaves_sprint_active(self, clock):
        store = FailingStore()
        engine = SprintEngine(store, clock=clock)
        await engine.kickoff(_snapshot(_card("a")))
        store.fail_next_save = True
        with pytest.raises(OSError):
            await engine.cancel_sprint()
        assert await engine.get_status() is SprintStatus.ACTIVE
        assert (await store.load_sprint()).status is SprintStatus.ACTIVE


# ---------------------------------------------------------------------------
# Concurrent calls
# ---------------------------------------------------------------------------


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_only_one_of_two_kickoffs_wins(self, clock):
        store = SlowStore()
        engine = SprintEngine(store, clock=clock)
        results = await asyncio.gather(
            engine.kickoff(_snapshot(_card("a")), name="Apollo"),
            engine.kickoff(_snapshot(_card("b")), name="Gemini"),
            return_exceptions=True,
        )
        started = [r for r in results if isinstance(r, Sprint)]
        rejected = [r for r in results if isinstance(r, ConflictError)]
        assert len(started) == 1
        assert len(rejected) == 1
        assert rejected[0].active_sprint_id == started[0].id
        assert (await engine.active_sprint()).name == started[0].name
        assert store.saves == 1

    @pytest.mark.asyncio
    async def test_same_snapshot_twice_records_change_once(self, clock):
        engine = SprintEngine(SlowStore(), clock=clock)
        await engine.kickoff(_snapshot(_card("a")))
        board = _snapshot(_card("a"), _card("f"))
        first, second = await asyncio.gather(
            engine.ingest_snapshot(board), engine.ingest_snapshot(board)
        )
        assert sorted([first.scope_increases, second.scope_increases]) == [[], ["f"]]
        sprint = await engine.active_sprint()
        assert [e.kind for e in sprint.history].count(EventKind.SCOPE_INCREASE) == 1

    @pytest.mark.asyncio
    async def test_ingest_racing_close_keeps_history_consistent(self, clock):
        store = SlowStore()
        engine = SprintEngine(store, clock=clock)
        await engine.kickoff(_snapshot(_card("a")))
        delta, record = await asyncio.gather(
            engine.ingest_snapshot(_snapshot(_card("a"), _card("f"))),
            engine.close_sprint(),
            return_exceptions=True,
        )
        assert isinstance(record, SprintRecord)

        sprint = await engine.current_sprint()
        kinds = [e.kind for e in sprint.history]
        assert sprint.status is SprintStatus.CLOSED
        assert kinds[-1] is EventKind.CLOSED
        assert kinds.count(EventKind.CLOSED) == 1
        assert await store.load_sprint() == sprint
        if isinstance(delta, NotActiveError):
            assert record.scope_added_count == 0
        else:
            assert delta.scope_increases == ["f"]
            assert record.scope_added_count == 1


# ---------------------------------------------------------------------------
# Slack member mapping
# ---------------------------------------------------------------------------


class TestAssignees:
    @pytest.mark.asyncio
    async def test_mapped_members_become_assignees(self, clock):
        engine = SprintEngine(InMemoryStore(members={"m1": "U42"}), clock=clock)
        sprint = await engine.kickoff(_snapshot(_card("a", member_ids=("m1", "m9"))))
        assert sprint.tickets["a"].assignees == ("U42",)
        assert sprint.tickets["a"].member_ids == ("m1", "m9")

    @pytest.mark.asyncio
    async def test_scope_added_ticket_is_mapped(self, clock):
        engine = SprintEngine(InMemoryStore(members={"m2": "U7"}), clock=clock)
        await engine.kickoff(_snapshot(_card("a")))
        await engine.ingest_snapshot(_snapshot(_card("a"), _card("b", member_ids=("m2",))))
        sprint = await engine.active_sprint()
        assert sprint.tickets["a"].assignees == ()
        assert sprint.tickets["b"].assignees == ("U7",)
