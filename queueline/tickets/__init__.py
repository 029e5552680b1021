"""Ticket lifecycle engine: models, state machine, persistence and service."""

from .models import CalledTickets, Location, Ticket, TicketAuditEntry
from .service import (
    ActiveTicketConflictError,
    InvalidTicketStateError,
    TicketContentionError,
    TicketNotFoundError,
    TicketService,
    TicketServiceError,
    TicketStoreError,
)
from .state import ACTIVE_STATUSES, TicketStateMachine, TicketStatus

__all__ = [
    "ACTIVE_STATUSES",
    "ActiveTicketConflictError",
    "CalledTickets",
    "InvalidTicketStateError",
    "Location",
    "Ticket",
    "TicketAuditEntry",
    "TicketContentionError",
    "TicketNotFoundError",
    "TicketService",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketStoreError",
]
