"""Collaborator protocols the loader reads from, plus file-backed sources.

The live Trello and GitHub HTTP clients are provided by the deployment; they
only have to satisfy these protocols and raise ``CollaboratorUnavailable`` on
failure or timeout.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

from ..sprint.exceptions import CollaboratorUnavailable, MalformedSnapshot
from .models import PullRequest, PullRequestState


class TrelloClient(Protocol):
    async def fetch_lists(self, board_id: str) -> list[dict[str, Any]]: ...

    async def fetch_cards(self, board_id: str) -> list[dict[str, Any]]: ...


class PullRequestClient(Protocol):
    async def fetch_pull_request(self, url: str) -> PullRequest: ...


class TrelloExportSource:
    """TrelloClient that reads a board's JSON export ("Print and export" > JSON)."""

    def __init__(self, path: Path):
        self._path = Path(path)

    def _read(self) -> dict[str, Any]:
        try:
            data = json.loads(self._path.read_text())
        except OSError as exc:
            raise CollaboratorUnavailable("Trello export", str(exc)) from exc
        except json.JSONDecodeError as exc:
            raise MalformedSnapshot(f"{self._path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedSnapshot(f"{self._path} does not contain a board object")
        return data

    async def fetch_lists(self, board_id: str) -> list[dict[str, Any]]:
        return self._read().get("lists")

    async def fetch_cards(self, board_id: str) -> list[dict[str, Any]]:
        return self._read().get("cards")


class StaticPullRequests:
    """PullRequestClient answering from a fixed url -> PullRequest mapping.

    Unknown URLs resolve to a pending PR.
    """

    def __init__(self, pull_requests: dict[str, PullRequest] | None = None):
        self._pull_requests = dict(pull_requests or {})

    @classmethod
    def from_file(cls, path: Path) -> StaticPullRequests:
        """Load ``{"<url>": {"state": "approved", "comments": 2, "failing_checks": []}}``."""
        try:
            raw = json.loads(Path(path).read_text())
        except OSError as exc:
            raise CollaboratorUnavailable("Pull request file", str(exc)) from exc
        except json.JSONDecodeError as exc:
            raise MalformedSnapshot(f"{path} is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise MalformedSnapshot(f"{path} does not map PR URLs to states")
        pull_requests = {}
        for url, entry in raw.items():
            try:
                pull_requests[url] = PullRequest(
                    url=url,
                    state=PullRequestState(entry.get("state", "pending")),
                    comments=int(entry.get("comments", 0)),
                    failing_checks=tuple(entry.get("failing_checks", ())),
                )
            except (AttributeError, TypeError, ValueError) as exc:
                raise MalformedSnapshot(f"{path}: bad entry for {url}: {exc}") from exc
        return cls(pull_requests)

    async def fetch_pull_request(self, url: str) -> PullRequest:
        return self._pull_requests.get(url, PullRequest(url=url, state=PullRequestState.PENDING))
