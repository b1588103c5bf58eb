"""Slack Block Kit builders for rendered reports."""

from __future__ import annotations

from typing import Any

SECTION_TEXT_LIMIT = 3000
HEADER_TEXT_LIMIT = 150


def header_block(text: str) -> dict[str, Any]:
    return {
        "type": "header",
        "text": {"type": "plain_text", "text": text[:HEADER_TEXT_LIMIT], "emoji": True},
    }


def section_block(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def context_block(text: str) -> dict[str, Any]:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


def divider_block() -> dict[str, Any]:
    return {"type": "divider"}


def primary_button_block(text: str, action_id: str, value: str) -> dict[str, Any]:
    return {
        "type": "actions",
        "elements": [
            {
                "type": "button",
                "text": {"type": "plain_text", "text": text, "emoji": True},
                "style": "primary",
                "action_id": action_id,
                "value": value,
            }
        ],
    }


def _chunks(text: str, limit: int = SECTION_TEXT_LIMIT) -> list[str]:
    """Split on line boundaries so no chunk exceeds Slack's section limit."""
    if len(text) <= limit:
        return [text]
    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def report_blocks(text: str, board_url: str | None = None) -> list[dict[str, Any]]:
    """First paragraph becomes the header; the rest become sections split by dividers."""
    paragraphs = [p for p in text.split("\n\n") if p.strip()]
    if not paragraphs:
        return []
    blocks = [header_block(paragraphs[0])]
    for paragraph in paragraphs[1:]:
        if paragraph.startswith("*") and blocks[-1]["type"] == "section":
            blocks.append(divider_block())
        blocks.extend(section_block(chunk) for chunk in _chunks(paragraph))
    if board_url:
        blocks.append(context_block(f"<{board_url}|View sprint board>"))
    return blocks


def message(
    text: str,
    response_type: str = "in_channel",
    board_url: str | None = None,
    extra_blocks: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Outbound Slack message payload: fallback text plus blocks."""
    blocks = report_blocks(text, board_url=board_url)
    blocks.extend(extra_blocks or [])
    return {
        "response_type": response_type,
        "text": text.split("\n", 1)[0],
        "blocks": blocks,
    }


def ephemeral(text: str) -> dict[str, Any]:
    return {
        "response_type": "ephemeral",
        "text": text,
        "blocks": [section_block(chunk) for chunk in _chunks(text)],
    }
