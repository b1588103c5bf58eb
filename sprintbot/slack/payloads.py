"""Inbound Slack payload parsing.

Slash commands arrive as form-encoded bodies. Button clicks arrive as a form
body with a single ``payload`` field holding the JSON interaction.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from urllib.parse import parse_qs

from ..sprint.exceptions import SprintBotError

KICKOFF_DATE_FORMAT = "%m/%d/%Y"


class InvalidSlackRequest(SprintBotError):
    """Raised when an inbound request is not a Slack payload we understand."""


@dataclass(frozen=True)
class SlackRequest:
    command: str
    text: str = ""
    user_id: str | None = None
    channel_id: str | None = None
    response_url: str | None = None
    is_interaction: bool = False


def _first(form: dict[str, list[str]], key: str) -> str | None:
    values = form.get(key)
    return values[0] if values else None


def _object_id(value) -> str | None:
    return value.get("id") if isinstance(value, dict) else None


def _parse_interaction(raw: str) -> SlackRequest:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidSlackRequest(f"Interaction payload is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidSlackRequest("Interaction payload is not an object")
    actions = payload.get("actions")
    if payload.get("type") != "block_actions" or not actions:
        raise InvalidSlackRequest(f"Unsupported interaction type: {payload.get('type')}")
    action = actions[0] if isinstance(actions, list) else None
    if not isinstance(action, dict):
        raise InvalidSlackRequest("Interaction action is not an object")
    return SlackRequest(
        command=str(action.get("action_id", "")),
        text=str(action.get("value", "")),
        user_id=_object_id(payload.get("user")),
        channel_id=_object_id(payload.get("channel")),
        response_url=payload.get("response_url"),
        is_interaction=True,
    )


def parse_request(body: str) -> SlackRequest:
    form = parse_qs(body, keep_blank_values=True)
    payload = _first(form, "payload")
    if payload is not None:
        return _parse_interaction(payload)

    command = _first(form, "command")
    if command is None:
        raise InvalidSlackRequest("Body is neither a slash command nor an interaction")
    return SlackRequest(
        command=command,
        text=(_first(form, "text") or "").strip(),
        user_id=_first(form, "user_id"),
        channel_id=_first(form, "channel_id"),
        response_url=_first(form, "response_url"),
    )


def parse_kickoff_args(text: str) -> tuple[date, str]:
    """Split ``"MM/DD/YYYY Sprint Name"`` into an end date and a name."""
    parts = text.strip().split(" ", 1)
    if len(parts) < 2 or not parts[1].strip():
        raise ValueError("Expected an end date and a sprint name, e.g. `03/15/2025 Apollo`")
    try:
        end_date = datetime.strptime(parts[0], KICKOFF_DATE_FORMAT).date()
    except ValueError:
        raise ValueError(f"Failed to parse date: '{parts[0]}' (use MM/DD/YYYY)") from None
    return end_date, parts[1].strip()


def format_kickoff_args(end_date: date, name: str) -> str:
    return f"{end_date.strftime(KICKOFF_DATE_FORMAT)} {name}"
