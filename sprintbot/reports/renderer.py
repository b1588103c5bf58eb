"""Report renderer: turns sprint state into Slack mrkdwn text.

Every function is pure: identical inputs give identical text. Dates are taken
from the inputs, never from the clock.
"""

from __future__ import annotations

from datetime import date

from ..board.labels import label_glyphs
from ..sprint.classifier import (
    MISSING_ASSIGNEE,
    MISSING_DESCRIPTION,
    MISSING_LABELS,
    MISSING_PULL_REQUEST,
    UNMAPPED_LIST,
)
from ..sprint.models import (
    STAGE_ORDER,
    EventKind,
    KickoffPreview,
    Metrics,
    Sprint,
    SprintDelta,
    SprintEvent,
    SprintRecord,
    Stage,
    Ticket,
    Trend,
)

MAX_AGE_GLYPHS = 10
AGE_GLYPH = "\U0001f40c"
NEW_MARKER = "\U0001f195"
GOAL_MARKER = "\U0001f3c1"
BLOCKED_MARKER = "\U0001f6a7"
WARNING_MARKER = "⚠️"

STAGE_TITLES: dict[Stage, str] = {
    Stage.IN_SCOPE: "In Scope",
    Stage.INVESTIGATION: "Investigation/Discussion",
    Stage.IN_PROGRESS: "In Progress",
    Stage.PENDING_RELEASE: "Pending Release",
    Stage.DEMO: "Demo/Final Approval",
    Stage.DONE: "✅ Done",
}

MISSING_INFO_TEXT: dict[str, str] = {
    UNMAPPED_LIST: "Unknown List",
    MISSING_ASSIGNEE: "Missing Assignees",
    MISSING_DESCRIPTION: "Missing Description",
    MISSING_LABELS: "Missing Labels",
    MISSING_PULL_REQUEST: "Missing PR",
}

TREND_TEXT: dict[Trend, str] = {
    Trend.UP: "\U0001f4c8 up",
    Trend.DOWN: "\U0001f4c9 down",
    Trend.FLAT: "➡️ flat",
    Trend.NO_DATA: "no history yet",
}

MOON_PHASES = ["\U0001f315", "\U0001f314", "\U0001f313", "\U0001f312", "\U0001f311"]


def _fmt_date(value: date | None) -> str:
    return value.strftime("%m/%d/%y") if value else "?"


def sort_tickets(tickets) -> list[Ticket]:
    return sorted(tickets, key=lambda t: (t.stage.order, t.id))


def age_indicator(age_days: int, cap: int = MAX_AGE_GLYPHS) -> str:
    return AGE_GLYPH * min(max(age_days, 0), cap)


def days_remaining(end_date: date | None, today: date) -> int | None:
    if end_date is None:
        return None
    return (end_date - today).days


def time_indicator(start: date, end_date: date | None, today: date) -> str:
    """Moon phase from full (sprint just started) to new (sprint over)."""
    if end_date is None:
        return MOON_PHASES[0]
    total = (end_date - start).days
    if total <= 0:
        return MOON_PHASES[0]
    left = max((end_date - today).days, 0)
    index = round((1 - left / total) * 4)
    return MOON_PHASES[min(max(index, 0), 4)]


def missing_info_text(missing: frozenset[str]) -> list[str]:
    return [MISSING_INFO_TEXT.get(m, m) for m in sorted(missing)]


def render_ticket(ticket: Ticket, struck: bool = False) -> str:
    markers = age_indicator(ticket.age_days)
    if ticket.is_new:
        markers += NEW_MARKER
    if ticket.is_goal:
        markers += GOAL_MARKER
    if ticket.is_blocked:
        markers += BLOCKED_MARKER

    title = f"~{ticket.title}~" if struck else ticket.title
    name = f"<{ticket.url}|{title}>" if ticket.url else title
    head = f"• {markers} *{name}*" if markers else f"• *{name}*"
    glyphs = label_glyphs(ticket.labels)
    if glyphs:
        head += f" {glyphs}"
    if ticket.assignees:
        head += " " + " ".join(f"<@{user}>" for user in ticket.assignees)

    lines = [head]
    if ticket.missing_info:
        lines.append(f"    {WARNING_MARKER} " + " | ".join(missing_info_text(ticket.missing_info)))
    if ticket.checklist_total:
        lines.append(f"    {ticket.checklist_done}/{ticket.checklist_total} completed")
    pr = ticket.pull_request
    if pr is not None:
        link = f"<{pr.url}|{BLOCKED_MARKER} View Draft PR>" if pr.is_draft else f"<{pr.url}|View PR>"
        parts = [link, pr.state.value]
        if pr.comments:
            parts.append(f"{pr.comments} \U0001f4ac")
        if pr.failing_checks:
            parts.append("Failing check runs: " + ", ".join(f"`{c}`" for c in pr.failing_checks))
        lines.append("    " + " | ".join(parts))
    return "\n".join(lines)


def render_ticket_sections(tickets: list[Ticket]) -> list[str]:
    """One section per non-empty stage, in stage order; tickets by id within."""
    sections = []
    ordered = sort_tickets(tickets)
    for stage in STAGE_ORDER:
        group = [t for t in ordered if t.stage is stage]
        if not group:
            continue
        body = "\n".join(render_ticket(t) for t in group)
        sections.append(f"*{STAGE_TITLES[stage]}* ({len(group)})\n{body}")
    return sections


def render_history(records: list[SprintRecord]) -> str:
    if not records:
        return ""
    lines = ["*Previous Sprints:*"]
    for record in records:
        lines.append(
            f"{_fmt_date(record.started_at.date())} - {_fmt_date(record.closed_at.date())}: "
            f"*{record.completed_count} tickets | {record.completion_pct:.2f}%*"
        )
    return "\n".join(lines)


def _event_line(event: SprintEvent, titles: dict[str, str]) -> str:
    title = event.detail or titles.get(event.ticket_id or "", event.ticket_id or "")
    if event.kind is EventKind.SCOPE_INCREASE:
        return f"➕ Added to scope: {title}"
    if event.kind is EventKind.STAGE_CHANGED:
        return f"➡️ {title}: {STAGE_TITLES[event.from_stage]} → {STAGE_TITLES[event.to_stage]}"
    if event.kind is EventKind.TICKET_REMOVED:
        return f"➖ Removed from board: {title}"
    if event.kind is EventKind.TICKET_RESTORED:
        return f"↩️ Back on board: {title}"
    if event.kind is EventKind.BLOCKED:
        return f"{BLOCKED_MARKER} Blocked: {title}"
    if event.kind is EventKind.UNBLOCKED:
        return f"✅ Unblocked: {title}"
    return f"{event.kind.value}: {title}"


def render_changes(delta: SprintDelta, sprint: Sprint) -> str:
    if delta.is_empty:
        return "_No board changes since the last check-in._"
    titles = {tid: t.title for tid, t in sprint.tickets.items()}
    lines = ["*Changes since last check-in*"]
    lines.extend(_event_line(e, titles) for e in delta.events)
    return "\n".join(lines)


def _as_of(sprint: Sprint) -> date:
    if sprint.history:
        return sprint.history[-1].timestamp.date()
    return sprint.started_at.date()


def render_daily_summary(
    sprint: Sprint,
    delta: SprintDelta,
    metrics: Metrics,
    records: list[SprintRecord] | tuple = (),
    today: date | None = None,
) -> str:
    today = today or _as_of(sprint)
    open_tickets = sprint.open_tickets()
    done_tickets = sprint.done_tickets()
    total = len(open_tickets) + len(done_tickets)

    moon = time_indicator(sprint.started_at.date(), sprint.end_date, today)
    parts = [f"{moon} Sprint {sprint.name} Daily Summary: {_fmt_date(today)}"]

    counts = f"*{len(open_tickets)} Open* | *{len(done_tickets)} Completed* | {total} Tickets"
    remaining = days_remaining(sprint.end_date, today)
    if remaining is not None:
        counts += f"\n*{max(remaining, 0)} Days* Remain In Sprint."
    parts.append(counts)

    stats = [f"*{metrics.completion_pct:.2f}% of tasks completed.* ({metrics.completed_count}/{metrics.total_count})"]
    stats.append(
        f"Velocity: {metrics.velocity:.1f} tickets/sprint over {metrics.sample_size} sprints"
        f" | Trend: {TREND_TEXT[metrics.trend]}"
    )
    if sprint.scope_added_ids:
        stats.append(
            f"Scope growth: +{len(sprint.scope_added_ids)} tickets ({metrics.scope_growth_pct:.2f}%)"
        )
    parts.append("\n".join(stats))

    parts.append(render_changes(delta, sprint))

    blocked = sort_tickets(sprint.tickets[tid] for tid in sprint.blocked_ids if tid in sprint.tickets)
    if blocked:
        parts.append(
            f"*\U0001f6a8 Blocked ({len(blocked)})*\n" + "\n".join(f"• {t.title}" for t in blocked)
        )

    parts.extend(render_ticket_sections(open_tickets + done_tickets))

    removed = sort_tickets(
        sprint.tickets[tid] for tid in sprint.removed_ticket_ids if tid in sprint.tickets
    )
    if removed:
        parts.append(
            f"*Removed From Board* ({len(removed)})\n"
            + "\n".join(render_ticket(t, struck=True) for t in removed)
        )

    history = render_history(list(records))
    if history:
        parts.append(history)
    return "\n\n".join(parts)


def render_kickoff_preview(
    preview: KickoffPreview,
    records: list[SprintRecord] | tuple = (),
) -> str:
    today = preview.generated_at.date()
    parts = [
        f"\U0001f52d Sprint {preview.name} Preview: {_fmt_date(today)} - {_fmt_date(preview.end_date)}"
    ]
    if preview.active_sprint_name:
        parts.append(
            f"{WARNING_MARKER} Sprint {preview.active_sprint_name} is still active. "
            "Close it before kicking off a new one."
        )

    counts = f"*{len(preview.committed)} Tickets*"
    remaining = days_remaining(preview.end_date, today)
    if remaining is not None:
        counts += f"\n*{remaining} Days*"
    if preview.precompleted:
        counts += f"\n{len(preview.precompleted)} tickets already done and not committed."
    parts.append(counts)

    parts.extend(render_ticket_sections(preview.committed))

    history = render_history(list(records))
    if history:
        parts.append(history)
    return "\n\n".join(parts)


def render_kickoff(sprint: Sprint) -> str:
    today = sprint.started_at.date()
    committed = [sprint.tickets[tid] for tid in sprint.committed_ticket_ids if tid in sprint.tickets]
    parts = [
        f"\U0001f680 Sprint {sprint.name} Kickoff: {_fmt_date(today)} - {_fmt_date(sprint.end_date)}",
        "Sprint starts now!",
    ]
    counts = f"*{len(committed)} Tickets*"
    remaining = days_remaining(sprint.end_date, today)
    if remaining is not None:
        counts += f"\n*{remaining} Days*"
    parts.append(counts)
    parts.extend(render_ticket_sections(committed))
    return "\n\n".join(parts)


def render_sprint_review(
    sprint: Sprint,
    record: SprintRecord,
    records: list[SprintRecord] | tuple = (),
) -> str:
    start = record.started_at.date()
    end = record.closed_at.date()
    parts = [
        f"\U0001f386 Sprint {record.name} Review: {_fmt_date(start)} - {_fmt_date(end)}",
        f"*{record.completed_count}/{record.total_count} Tickets* Completed in {(end - start).days} Days\n"
        f"*{record.completion_pct:.2f}% of tasks completed.*",
    ]
    if record.scope_added_count:
        parts.append(
            f"{record.scope_added_count} tickets added to scope, "
            f"{record.scope_completed_count} of them completed"
        )
    parts.extend(render_ticket_sections(sprint.open_tickets() + sprint.done_tickets()))
    earlier = [r for r in records if r.sprint_id != record.sprint_id]
    history = render_history(earlier)
    if history:
        parts.append(history)
    return "\n\n".join(parts)


def render_blockers(sprint_name: str, blockers: list[Ticket]) -> str:
    if not blockers:
        return f"No blockers in Sprint {sprint_name}. \U0001f389"
    header = f"\U0001f6a8 Sprint {sprint_name} Blockers ({len(blockers)})"
    return header + "\n\n" + "\n".join(render_ticket(t) for t in sort_tickets(blockers))


def render_cancelled(sprint: Sprint) -> str:
    ended = sprint.closed_at.date() if sprint.closed_at else None
    return (
        f"\U0001f6d1 Sprint {sprint.name} Cancelled: {_fmt_date(sprint.started_at.date())} - {_fmt_date(ended)}\n\n"
        f"{len(sprint.done_tickets())} of {len(sprint.current_ticket_ids)} tickets were done. "
        "No sprint record was kept."
    )
