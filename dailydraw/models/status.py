"""Status vocabularies and their allowed transitions.

Statuses are stored as plain strings; the enums exist so application code
never spells a status by hand. Each claimable status field has an explicit
transition table consulted before any write.
"""

from __future__ import annotations

from enum import Enum

from ..errors import InvalidTransition


class DrawStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    COMPLETED = "COMPLETED"


class TicketStatus(str, Enum):
    IN_DRAW = "IN_DRAW"
    WON = "WON"
    EXPIRED = "EXPIRED"
    NOT_PICKED = "NOT_PICKED"
    CLAIMED = "CLAIMED"


class BonusDropStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    FIRED = "FIRED"
    CANCELLED = "CANCELLED"


class RewardKind(str, Enum):
    MAIN = "MAIN"
    BONUS = "BONUS"


class OpsMode(str, Enum):
    MANUAL = "MANUAL"
    AUTO = "AUTO"


DRAW_TRANSITIONS: dict[DrawStatus, frozenset[DrawStatus]] = {
    # CLOSED -> OPEN only for an unresolved draw: lifecycle resync or operator reopen.
    DrawStatus.OPEN: frozenset({DrawStatus.CLOSED, DrawStatus.COMPLETED}),
    DrawStatus.CLOSED: frozenset({DrawStatus.OPEN, DrawStatus.COMPLETED}),
    DrawStatus.COMPLETED: frozenset(),
}

TICKET_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    TicketStatus.IN_DRAW: frozenset(
        {TicketStatus.WON, TicketStatus.EXPIRED, TicketStatus.NOT_PICKED}
    ),
    TicketStatus.WON: frozenset({TicketStatus.CLAIMED}),
    TicketStatus.EXPIRED: frozenset(),
    TicketStatus.NOT_PICKED: frozenset(),
    TicketStatus.CLAIMED: frozenset(),
}

BONUS_DROP_TRANSITIONS: dict[BonusDropStatus, frozenset[BonusDropStatus]] = {
    BonusDropStatus.SCHEDULED: frozenset(
        {BonusDropStatus.FIRED, BonusDropStatus.CANCELLED}
    ),
    BonusDropStatus.FIRED: frozenset(),
    BonusDropStatus.CANCELLED: frozenset(),
}

_TABLES = {
    DrawStatus: DRAW_TRANSITIONS,
    TicketStatus: TICKET_TRANSITIONS,
    BonusDropStatus: BONUS_DROP_TRANSITIONS,
}


def can_transition(current: Enum | str, target: Enum) -> bool:
    """Return whether ``current`` may move to ``target``.

    ``current`` may be the raw string loaded from the database.
    """
    enum_cls = type(target)
    table = _TABLES[enum_cls]
    try:
        current_status = enum_cls(current)
    except ValueError:
        return False
    return target in table[current_status]


def check_transition(current: Enum | str, target: Enum) -> None:
    """Raise :class:`InvalidTransition` unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        current_value = getattr(current, "value", current)
        raise InvalidTransition(
            f"{type(target).__name__} cannot move from {current_value} to {target.value}"
        )


__all__ = [
    "DrawStatus",
    "TicketStatus",
    "BonusDropStatus",
    "RewardKind",
    "OpsMode",
    "DRAW_TRANSITIONS",
    "TICKET_TRANSITIONS",
    "BONUS_DROP_TRANSITIONS",
    "can_transition",
    "check_transition",
]
