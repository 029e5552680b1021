from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle, in lifecycle order."""

    WAITING = "waiting"
    CALLED_ASSESSMENT = "called_assessment"
    WAITING_PURCHASE = "waiting_purchase"
    CALLED_PURCHASE = "called_purchase"
    DONE = "done"


# A user may hold at most one ticket in one of these states.
ACTIVE_STATUSES: tuple[TicketStatus, ...] = (
    TicketStatus.WAITING,
    TicketStatus.CALLED_ASSESSMENT,
    TicketStatus.WAITING_PURCHASE,
)

CALLED_STATUSES: tuple[TicketStatus, ...] = (
    TicketStatus.CALLED_ASSESSMENT,
    TicketStatus.CALLED_PURCHASE,
)


class TicketStateMachine:
    """Validate ticket lifecycle transitions.

    The lifecycle is strictly linear: every status has at most one successor
    and no transition skips a stage or goes backwards. Entering a status
    stamps the timestamp columns listed in ``_TIMESTAMPS``; ``called_at`` is
    stamped by both call events, so the purchase call overwrites it.
    """

    _TRANSITIONS: Mapping[TicketStatus, TicketStatus] = {
        TicketStatus.WAITING: TicketStatus.CALLED_ASSESSMENT,
        TicketStatus.CALLED_ASSESSMENT: TicketStatus.WAITING_PURCHASE,
        TicketStatus.WAITING_PURCHASE: TicketStatus.CALLED_PURCHASE,
        TicketStatus.CALLED_PURCHASE: TicketStatus.DONE,
    }

    _TIMESTAMPS: Mapping[TicketStatus, Sequence[str]] = {
        TicketStatus.CALLED_ASSESSMENT: ("called_at", "assessment_called_at"),
        TicketStatus.WAITING_PURCHASE: ("assessment_completed_at",),
        TicketStatus.CALLED_PURCHASE: ("called_at", "purchase_called_at"),
        TicketStatus.DONE: ("completed_at",),
    }

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.WAITING

    @classmethod
    def next_status(cls, current: TicketStatus) -> TicketStatus | None:
        return cls._TRANSITIONS.get(current)

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return cls._TRANSITIONS.get(current) == new

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise ValueError(f"Invalid ticket status transition: {current.value} -> {new.value}")

    @classmethod
    def timestamps_for(cls, status: TicketStatus) -> tuple[str, ...]:
        """Columns stamped with the store clock when a ticket enters ``status``."""

        return tuple(cls._TIMESTAMPS.get(status, ()))
