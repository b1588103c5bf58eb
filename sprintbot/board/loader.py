"""Board snapshot loader: Trello payloads in, normalized BoardSnapshot out."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from ..sprint.exceptions import CollaboratorUnavailable, MalformedSnapshot
from .models import BoardSnapshot, Card, PullRequest
from .sources import PullRequestClient, TrelloClient

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_LISTS: tuple[str, ...] = ("Backlog/Ideas", "Backlog", "Objectives", "To Do")

REQUIRED_CARD_FIELDS = ("id", "name", "idList")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize(name: str) -> str:
    return " ".join(name.lower().split())


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def created_at_from_id(object_id: str) -> datetime | None:
    """Trello ids start with an 8-hex-digit Unix timestamp."""
    try:
        return datetime.fromtimestamp(int(object_id[:8], 16), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def find_pull_request_url(attachments: list[dict[str, Any]]) -> str | None:
    for attachment in attachments or []:
        url = attachment.get("url") or ""
        if "github.com" in url and "/pull/" in url:
            return url
    return None


def normalize_card(raw: dict[str, Any], list_name: str) -> Card:
    missing = [f for f in REQUIRED_CARD_FIELDS if f not in raw]
    if missing:
        raise MalformedSnapshot(
            f"card is missing {', '.join(missing)}", card_id=raw.get("id")
        )
    badges = raw.get("badges") or {}
    try:
        checklist_done = int(badges.get("checkItemsChecked", 0))
        checklist_total = int(badges.get("checkItems", 0))
    except (TypeError, ValueError, AttributeError):
        raise MalformedSnapshot("card has non-numeric checklist badges", card_id=raw["id"]) from None
    return Card(
        id=raw["id"],
        title=raw["name"],
        list_name=list_name,
        url=raw.get("url") or raw.get("shortUrl") or "",
        member_ids=tuple(raw.get("idMembers") or ()),
        has_description=bool((raw.get("desc") or "").strip()),
        labels=tuple(
            label["name"] for label in raw.get("labels") or () if label.get("name")
        ),
        checklist_done=checklist_done,
        checklist_total=checklist_total,
        pr_url=find_pull_request_url(raw.get("attachments") or []),
        last_moved_at=parse_timestamp(raw.get("dateLastActivity")),
        created_at=created_at_from_id(raw["id"]),
    )


def normalize_board(
    lists: Any,
    cards: Any,
    ignored_lists: tuple[str, ...] = DEFAULT_IGNORED_LISTS,
) -> list[Card]:
    """Turn raw Trello lists and cards into cards the classifier understands.

    Archived cards, cards in archived lists and cards in ignored lists are left
    out. A card in a list the board does not declare keeps an empty list name
    and is flagged later by the classifier.
    """
    if not isinstance(lists, list):
        raise MalformedSnapshot("board has no lists")
    if not isinstance(cards, list):
        raise MalformedSnapshot("board has no cards")

    list_names: dict[str, str] = {}
    closed_lists: set[str] = set()
    for entry in lists:
        if not isinstance(entry, dict) or "id" not in entry or "name" not in entry:
            raise MalformedSnapshot("list entry is missing id or name")
        list_names[entry["id"]] = entry["name"]
        if entry.get("closed"):
            closed_lists.add(entry["id"])

    ignored = {_normalize(name) for name in ignored_lists}
    result = []
    for raw in cards:
        if not isinstance(raw, dict):
            raise MalformedSnapshot("card entry is not an object")
        if raw.get("closed") or raw.get("idList") in closed_lists:
            continue
        list_name = list_names.get(raw.get("idList"), "")
        if _normalize(list_name) in ignored:
            continue
        result.append(normalize_card(raw, list_name))
    return result


class BoardSnapshotLoader:
    """Fetches one board and resolves each linked PR once per load."""

    def __init__(
        self,
        trello: TrelloClient,
        board_id: str,
        pull_requests: PullRequestClient | None = None,
        ignored_lists: tuple[str, ...] = DEFAULT_IGNORED_LISTS,
        clock: Callable[[], datetime] | None = None,
    ):
        self._trello = trello
        self._board_id = board_id
        self._pull_requests = pull_requests
        self._ignored_lists = ignored_lists
        self._clock = clock or _now

    @property
    def board_id(self) -> str:
        return self._board_id

    async def _fetch_board(self) -> tuple[Any, Any]:
        try:
            return await asyncio.gather(
                self._trello.fetch_lists(self._board_id),
                self._trello.fetch_cards(self._board_id),
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise CollaboratorUnavailable("Trello", str(exc) or type(exc).__name__) from exc

    async def _resolve_pull_requests(self, urls: list[str]) -> dict[str, PullRequest]:
        if self._pull_requests is None or not urls:
            return {}
        try:
            resolved = await asyncio.gather(
                *(self._pull_requests.fetch_pull_request(url) for url in urls)
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise CollaboratorUnavailable("GitHub", str(exc) or type(exc).__name__) from exc
        return dict(zip(urls, resolved))

    async def load(self) -> BoardSnapshot:
        lists, raw_cards = await self._fetch_board()
        cards = normalize_board(lists, raw_cards, self._ignored_lists)

        urls = sorted({c.pr_url for c in cards if c.pr_url})
        statuses = await self._resolve_pull_requests(urls)
        if statuses:
            cards = [
                dataclasses.replace(c, pull_request=statuses[c.pr_url]) if c.pr_url else c
                for c in cards
            ]

        logger.info(
            "Loaded board %s: %d cards, %d linked PRs", self._board_id, len(cards), len(urls)
        )
        return BoardSnapshot(board_id=self._board_id, taken_at=self._clock(), cards=cards)
