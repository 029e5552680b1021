"""Exception handlers mapping engine and framework errors onto JSON responses."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from queueline.api.routes.tickets import ticket_to_response
from queueline.tickets.service import (
    ActiveTicketConflictError,
    InvalidTicketStateError,
    TicketNotFoundError,
    TicketServiceError,
    TicketContentionError,
    TicketStoreError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[TicketServiceError], int], ...] = (
    (TicketNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTicketStateError, status.HTTP_400_BAD_REQUEST),
    (ActiveTicketConflictError, status.HTTP_400_BAD_REQUEST),
    (TicketStoreError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_code_for(exc: TicketServiceError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def ticket_service_error_handler(request: Request, exc: TicketServiceError) -> JSONResponse:
    code = status_code_for(exc)
    content: dict[str, Any] = {"message": str(exc), "kind": exc.kind}
    if isinstance(exc, InvalidTicketStateError):
        content["actualStatus"] = exc.actual.value
        content["expectedStatus"] = exc.expected.value
    elif isinstance(exc, ActiveTicketConflictError):
        content["ticket"] = ticket_to_response(exc.ticket).model_dump(mode="json", by_alias=True)
    elif isinstance(exc, TicketStoreError) and not isinstance(exc, TicketContentionError):
        # The store cause stays in the logs.
        content["message"] = "Ticket store is unavailable. Please try again later."

    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content=content)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Invalid request.", "errors": jsonable_encoder(exc.errors())},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error."},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TicketServiceError, ticket_service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
