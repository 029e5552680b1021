from contextlib import asynccontextmanager

from fastapi import FastAPI

from queueline.api.errors import register_exception_handlers
from queueline.api.routes import admin, ping, profile, tickets
from queueline.core.config import Settings, get_settings
from queueline.core.logging import configure_logging, init_tracer, shutdown_tracer
from queueline.security.identity import build_identity_verifier
from queueline.services.postgres import PostgresConnectionTester
from queueline.tickets.repository import TicketRepository
from queueline.tickets.service import TicketService


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings: Settings = app.state.settings
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    postgres_tester = PostgresConnectionTester(
        dsn=settings.postgres_dsn,
        min_size=settings.postgres_pool_min_size,
        max_size=settings.postgres_pool_max_size,
    )
    app.state.postgres_tester = postgres_tester
    app.state.ticket_service = None
    try:
        pool = await postgres_tester.get_pool()
        repository = TicketRepository(pool)
        await repository.ensure_schema()
        app.state.ticket_service = TicketService(
            repository,
            number_allocation_attempts=settings.number_allocation_attempts,
            call_next_attempts=settings.call_next_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
        )
        logger.info("Ticket service ready")
    except Exception:
        logger.exception("Ticket service initialisation failed; ticket routes will return 503")
    try:
        yield
    finally:
        await postgres_tester.close()
        verifier = getattr(app.state, "identity_verifier", None)
        if verifier is not None:
            await verifier.close()
        shutdown_tracer(tracer_provider)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.identity_verifier = build_identity_verifier(settings)
    register_exception_handlers(app)
    app.include_router(ping.router)
    app.include_router(profile.router)
    app.include_router(tickets.router)
    app.include_router(admin.router)
    return app


app = create_app()
