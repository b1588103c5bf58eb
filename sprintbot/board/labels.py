"""Known Trello labels and the glyphs reports show for them."""

from __future__ import annotations

from enum import Enum


class TicketLabel(Enum):
    GOAL = "Goal"
    FRONT_END = "Front-End"
    BACK_END = "Back-End"
    INFRA = "Infra"
    BUG = "Bug"
    MINOR = "Minor"
    BLOCKED = "Blocked"


LABEL_GLYPHS: dict[TicketLabel, str] = {
    TicketLabel.GOAL: "\U0001f3c1",
    TicketLabel.FRONT_END: "\U0001f4f1",
    TicketLabel.BACK_END: "\U0001f310",
    TicketLabel.INFRA: "\U0001f527",
    TicketLabel.BUG: "\U0001f41b",
    TicketLabel.MINOR: "\U0001fab6",
    TicketLabel.BLOCKED: "\U0001f6a7",
}


def parse_label(name: str) -> TicketLabel | None:
    """Match a board label name case-insensitively. Unknown names return None."""
    wanted = name.strip().lower()
    for label in TicketLabel:
        if label.value.lower() == wanted:
            return label
    return None


def has_label(labels: tuple[str, ...], label: TicketLabel) -> bool:
    return any(parse_label(name) is label for name in labels)


def label_glyphs(labels: tuple[str, ...]) -> str:
    """Glyphs for the descriptive labels, in enum order.

    Goal and Blocked are left out; the renderer shows them as ticket markers.
    """
    present = {parse_label(name) for name in labels}
    return "".join(
        LABEL_GLYPHS[label]
        for label in TicketLabel
        if label in present and label not in (TicketLabel.GOAL, TicketLabel.BLOCKED)
    )
