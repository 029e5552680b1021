import logging

from fastapi import APIRouter, HTTPException, Request

from queueline.tickets.service import STORE_ERRORS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready", summary="Ticket store readiness probe")
async def ready(request: Request) -> dict[str, str]:
    tester = getattr(request.app.state, "postgres_tester", None)
    if tester is None or getattr(request.app.state, "ticket_service", None) is None:
        raise HTTPException(status_code=503, detail="Ticket store is not configured")
    try:
        await tester.test_connection()
    except STORE_ERRORS as exc:
        logger.warning("Readiness probe failed: %s", exc)
        raise HTTPException(status_code=503, detail="Ticket store is unavailable") from exc
    return {"status": "ok"}
