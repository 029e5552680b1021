from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from queueline.api.routes.tickets import (
    TicketAuditResponse,
    TicketResponse,
    audit_to_response,
    ticket_to_response,
)
from queueline.dependencies.tickets import AdminUser, TicketServiceDep

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/assessment-queue", response_model=list[TicketResponse])
async def get_assessment_queue(service: TicketServiceDep, _: AdminUser) -> list[TicketResponse]:
    tickets = await service.list_waiting_for_assessment()
    return [ticket_to_response(ticket) for ticket in tickets]


@router.post("/call/assessment", response_model=TicketResponse, summary="Call the next waiting ticket")
async def call_next_assessment(service: TicketServiceDep, user: AdminUser) -> TicketResponse:
    ticket = await service.call_next_for_assessment(actor=user.user_id)
    return ticket_to_response(ticket)


@router.post("/assessment-complete/{ticket_id}", response_model=TicketResponse)
async def complete_assessment(ticket_id: UUID, service: TicketServiceDep, user: AdminUser) -> TicketResponse:
    ticket = await service.complete_assessment(ticket_id, actor=user.user_id)
    return ticket_to_response(ticket)


@router.get("/purchase-queue", response_model=list[TicketResponse])
async def get_purchase_queue(service: TicketServiceDep, _: AdminUser) -> list[TicketResponse]:
    tickets = await service.list_waiting_for_purchase()
    return [ticket_to_response(ticket) for ticket in tickets]


@router.post("/call/purchase/{ticket_id}", response_model=TicketResponse)
async def call_ticket_for_purchase(ticket_id: UUID, service: TicketServiceDep, user: AdminUser) -> TicketResponse:
    ticket = await service.call_for_purchase(ticket_id, actor=user.user_id)
    return ticket_to_response(ticket)


@router.post("/ticket/complete/{ticket_id}", response_model=TicketResponse)
async def complete_ticket(ticket_id: UUID, service: TicketServiceDep, user: AdminUser) -> TicketResponse:
    ticket = await service.complete_ticket(ticket_id, actor=user.user_id)
    return ticket_to_response(ticket)


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: UUID, service: TicketServiceDep, _: AdminUser) -> TicketResponse:
    ticket = await service.get_ticket(ticket_id)
    return ticket_to_response(ticket)


@router.get("/tickets/{ticket_id}/audit", response_model=list[TicketAuditResponse])
async def get_ticket_audit(ticket_id: UUID, service: TicketServiceDep, _: AdminUser) -> list[TicketAuditResponse]:
    entries = await service.get_audit_log(ticket_id)
    return [audit_to_response(entry) for entry in entries]
