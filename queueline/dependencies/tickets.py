from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from queueline.dependencies.auth import Role, User, role_required
from queueline.tickets.service import TicketService

require_user = role_required(Role.USER)
require_admin = role_required(Role.ADMIN)

QueueUser = Annotated[User, Depends(require_user)]
AdminUser = Annotated[User, Depends(require_admin)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
