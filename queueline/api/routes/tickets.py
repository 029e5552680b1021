from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from queueline.dependencies.tickets import QueueUser, TicketServiceDep
from queueline.tickets.models import CalledTickets, Location, Ticket, TicketAuditEntry
from queueline.tickets.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LocationModel(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_location(self) -> Location:
        return Location(lat=self.lat, lng=self.lng)


class TicketIssueRequest(CamelModel):
    location: LocationModel | None = None


class TicketResponse(CamelModel):
    id: UUID
    number: int
    user_id: str
    status: TicketStatus
    location: LocationModel | None = None
    created_at: datetime
    called_at: datetime | None = None
    assessment_called_at: datetime | None = None
    assessment_completed_at: datetime | None = None
    purchase_called_at: datetime | None = None
    completed_at: datetime | None = None


class CalledTicketsResponse(CamelModel):
    assessment: list[TicketResponse]
    purchase: list[TicketResponse]


class TicketAuditResponse(CamelModel):
    id: UUID
    ticket_id: UUID
    from_status: TicketStatus | None
    to_status: TicketStatus
    actor: str
    note: str
    created_at: datetime


def ticket_to_response(ticket: Ticket) -> TicketResponse:
    location = None
    if ticket.location is not None:
        location = LocationModel(lat=ticket.location.lat, lng=ticket.location.lng)
    return TicketResponse(
        id=ticket.id,
        number=ticket.number,
        user_id=ticket.user_id,
        status=ticket.status,
        location=location,
        created_at=ticket.created_at,
        called_at=ticket.called_at,
        assessment_called_at=ticket.assessment_called_at,
        assessment_completed_at=ticket.assessment_completed_at,
        purchase_called_at=ticket.purchase_called_at,
        completed_at=ticket.completed_at,
    )


def called_to_response(called: CalledTickets) -> CalledTicketsResponse:
    return CalledTicketsResponse(
        assessment=[ticket_to_response(ticket) for ticket in called.assessment],
        purchase=[ticket_to_response(ticket) for ticket in called.purchase],
    )


def audit_to_response(entry: TicketAuditEntry) -> TicketAuditResponse:
    return TicketAuditResponse(
        id=entry.id,
        ticket_id=entry.ticket_id,
        from_status=entry.from_status,
        to_status=entry.to_status,
        actor=entry.actor,
        note=entry.note,
        created_at=entry.created_at,
    )


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def issue_ticket(
    service: TicketServiceDep,
    user: QueueUser,
    payload: TicketIssueRequest | None = None,
) -> TicketResponse:
    location = payload.location.to_location() if payload and payload.location else None
    ticket = await service.issue_ticket(user.user_id, location)
    return ticket_to_response(ticket)


@router.get("/my-ticket", response_model=TicketResponse)
async def get_my_ticket(service: TicketServiceDep, user: QueueUser) -> TicketResponse:
    ticket = await service.get_active_ticket(user.user_id)
    return ticket_to_response(ticket)


@router.get("/called", response_model=CalledTicketsResponse, summary="Tickets currently being served")
async def get_called_tickets(service: TicketServiceDep, _: QueueUser) -> CalledTicketsResponse:
    called = await service.get_currently_called()
    return called_to_response(called)
