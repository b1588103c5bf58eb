"""Bot configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from .board.loader import DEFAULT_IGNORED_LISTS
from .sprint.metrics import DEFAULT_VELOCITY_WINDOW
from .sprint.policy import DEFAULT_POLICY, CompletionPolicy, get_policy


def _split_lists(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass
class BotConfig:
    """Configuration for one board's sprint bot."""

    board_id: str = ""
    signing_secret: str | None = None
    ops_channel: str | None = None
    store_dir: Path = Path(".sprintbot")
    velocity_window: int = DEFAULT_VELOCITY_WINDOW
    new_ticket_days: int = 2
    scope_policy: str = DEFAULT_POLICY.name
    ignored_lists: tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_IGNORED_LISTS))

    @property
    def policy(self) -> CompletionPolicy:
        return get_policy(self.scope_policy)

    @property
    def board_url(self) -> str | None:
        return f"https://trello.com/b/{self.board_id}" if self.board_id else None

    @classmethod
    def from_env(cls, dotenv: bool = True) -> BotConfig:
        """Read settings from the environment, loading ``.env`` first when asked.

        Raises ValueError for non-numeric windows or an unknown scope policy.
        """
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))
        defaults = cls()
        ignored = os.getenv("SPRINTBOT_IGNORED_LISTS")
        config = cls(
            board_id=os.getenv("TRELLO_BOARD_ID", ""),
            signing_secret=os.getenv("SLACK_APP_SIGNING_SECRET") or None,
            ops_channel=os.getenv("SLACK_OPS_CHANNEL") or None,
            store_dir=Path(os.getenv("SPRINTBOT_STORE_DIR", str(defaults.store_dir))),
            velocity_window=int(os.getenv("SPRINTBOT_VELOCITY_WINDOW", defaults.velocity_window)),
            new_ticket_days=int(os.getenv("SPRINTBOT_NEW_TICKET_DAYS", defaults.new_ticket_days)),
            scope_policy=os.getenv("SPRINTBOT_SCOPE_POLICY", defaults.scope_policy),
            ignored_lists=_split_lists(ignored) if ignored is not None else defaults.ignored_lists,
        )
        if config.velocity_window < 1:
            raise ValueError(f"SPRINTBOT_VELOCITY_WINDOW must be positive, got {config.velocity_window}")
        get_policy(config.scope_policy)
        return config
