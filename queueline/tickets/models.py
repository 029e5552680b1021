from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from .state import TicketStatus


@dataclass(frozen=True, slots=True)
class Location:
    """Where the ticket was requested from."""

    lat: float
    lng: float


@dataclass(slots=True)
class Ticket:
    """A numbered place in the two-stage service queue."""

    id: UUID
    number: int
    user_id: str
    status: TicketStatus
    location: Location | None
    created_at: datetime
    called_at: datetime | None = None
    assessment_called_at: datetime | None = None
    assessment_completed_at: datetime | None = None
    purchase_called_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(slots=True)
class TicketAuditEntry:
    """History entry recording the creation or a status change of a ticket."""

    id: UUID
    ticket_id: UUID
    from_status: TicketStatus | None
    to_status: TicketStatus
    actor: str
    note: str
    created_at: datetime


@dataclass(slots=True)
class CalledTickets:
    """Tickets currently being served, per stage, ordered by number."""

    assessment: list[Ticket]
    purchase: list[Ticket]
