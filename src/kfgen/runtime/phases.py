"""Lifecycle phases of a managed object and their allowed transitions."""

from __future__ import annotations

import enum

from kfgen.exceptions import InvalidTransitionError


class Phase(str, enum.Enum):
    PENDING = "Pending"
    CREATING = "Creating"
    READY = "Ready"
    UPDATING = "Updating"
    DELETING = "Deleting"
    DELETED = "Deleted"


# Every live phase may move to Deleting; Deleted is terminal.
TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.PENDING: frozenset({Phase.CREATING, Phase.DELETING}),
    Phase.CREATING: frozenset({Phase.READY, Phase.PENDING, Phase.DELETING}),
    Phase.READY: frozenset({Phase.UPDATING, Phase.READY, Phase.PENDING, Phase.DELETING}),
    Phase.UPDATING: frozenset({Phase.READY, Phase.PENDING, Phase.DELETING}),
    Phase.DELETING: frozenset({Phase.DELETED, Phase.DELETING}),
    Phase.DELETED: frozenset(),
}


def can_transition(current: Phase, target: Phase) -> bool:
    return target in TRANSITIONS[Phase(current)]


def transition(current: Phase, target: Phase) -> Phase:
    """Return *target* if the move from *current* is allowed.

    Raises:
        InvalidTransitionError: For any move outside :data:`TRANSITIONS`.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Invalid phase transition {Phase(current).value} -> {Phase(target).value}"
        )
    return Phase(target)
