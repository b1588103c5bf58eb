"""Sprint engine exception types."""


class SprintBotError(Exception):
    """Base class for every error the bot reports to users or operators."""


class ConflictError(SprintBotError):
    """Raised when a kickoff would create a second active sprint."""

    def __init__(self, message: str, active_sprint_id: str | None = None):
        self.active_sprint_id = active_sprint_id
        super().__init__(message)


class NotActiveError(SprintBotError):
    """Raised when a mutating operation needs an active sprint and there is none."""

    def __init__(self, operation: str, status=None):
        self.operation = operation
        self.status = status
        state = status.value if status is not None else "none"
        super().__init__(f"Cannot {operation}: no active sprint (status: {state})")


class CollaboratorUnavailable(SprintBotError):
    """Raised when Trello, GitHub or Slack failed or timed out."""

    def __init__(self, collaborator: str, reason: str):
        self.collaborator = collaborator
        self.reason = reason
        super().__init__(f"{collaborator} unavailable: {reason}")


class MalformedSnapshot(SprintBotError):
    """Raised when a board payload lacks required structure entirely."""

    def __init__(self, reason: str, card_id: str | None = None):
        self.reason = reason
        self.card_id = card_id
        where = f" (card {card_id})" if card_id else ""
        super().__init__(f"Malformed board snapshot{where}: {reason}")


class InvalidTransitionError(SprintBotError):
    """Raised when a sprint status change is not allowed."""

    def __init__(self, sprint_id: str, from_status, to_status):
        self.sprint_id = sprint_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for sprint {sprint_id}: "
            f"{from_status.value} → {to_status.value}"
        )
