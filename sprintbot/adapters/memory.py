"""In-memory sprint store for tests and demos."""

import copy

from ..sprint.models import Sprint, SprintRecord


class InMemoryStore:
    """SprintStore backed by plain attributes. Lost on restart."""

    def __init__(
        self,
        sprint: Sprint | None = None,
        records: list[SprintRecord] | None = None,
        members: dict[str, str] | None = None,
    ):
        self._sprint = copy.deepcopy(sprint)
        self._records: list[SprintRecord] = list(records or [])
        self._members = dict(members or {})
        self.saves = 0

    async def load_sprint(self) -> Sprint | None:
        return copy.deepcopy(self._sprint)

    async def save_sprint(self, sprint: Sprint) -> None:
        self._sprint = copy.deepcopy(sprint)
        self.saves += 1

    async def load_records(self) -> list[SprintRecord]:
        return list(self._records)

    async def append_record(self, record: SprintRecord) -> None:
        if any(r.sprint_id == record.sprint_id for r in self._records):
            raise ValueError(f"Record already exists for sprint {record.sprint_id}")
        self._records.append(record)

    async def load_members(self) -> dict[str, str]:
        return dict(self._members)
