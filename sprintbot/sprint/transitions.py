"""Sprint status state machine defined as data."""

from .exceptions import InvalidTransitionError
from .models import SprintStatus

VALID_TRANSITIONS: frozenset[tuple[SprintStatus, SprintStatus]] = frozenset(
    {
        (SprintStatus.NOT_STARTED, SprintStatus.ACTIVE),  # kickoff
        (SprintStatus.ACTIVE, SprintStatus.CLOSED),       # close
        (SprintStatus.ACTIVE, SprintStatus.CANCELLED),    # cancel, no record
    }
)


def validate_transition(
    sprint_id: str,
    from_status: SprintStatus,
    to_status: SprintStatus,
) -> None:
    """Raise InvalidTransitionError if the transition is not allowed."""
    if (from_status, to_status) not in VALID_TRANSITIONS:
        raise InvalidTransitionError(sprint_id, from_status, to_status)
