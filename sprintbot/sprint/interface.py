"""Persistence protocol for sprint state."""

from typing import Protocol

from .models import Sprint, SprintRecord


class SprintStore(Protocol):
    """Storage the engine needs to survive restarts.

    A sprint is saved together with its history. Records are append-only.
    Members map Trello member ids to Slack user ids and are maintained by hand.
    Implementations must either persist a save completely or raise.
    """

    async def load_sprint(self) -> Sprint | None: ...

    async def save_sprint(self, sprint: Sprint) -> None: ...

    async def load_records(self) -> list[SprintRecord]: ...

    async def append_record(self, record: SprintRecord) -> None: ...

    async def load_members(self) -> dict[str, str]: ...
