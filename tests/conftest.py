from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Sequence
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from queueline.core.config import Settings
from queueline.main import create_app
from queueline.security.identity import Role, SentinelTokenVerifier
from queueline.tickets.models import Location, Ticket, TicketAuditEntry
from queueline.tickets.repository import ActiveTicketExistsError, TicketNumberTakenError
from queueline.tickets.service import TicketService
from queueline.tickets.state import ACTIVE_STATUSES, TicketStatus


class InMemoryTicketStore:
    """Ticket store double honouring the same uniqueness and conditional-update rules as Postgres."""

    def __init__(self) -> None:
        self.tickets: dict[UUID, Ticket] = {}
        self.audit: list[TicketAuditEntry] = []
        self.fail_with: BaseException | None = None
        self.number_races = 0
        self._clock = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _check_failure(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _insert(self, number: int, user_id: str, status: TicketStatus, location: Location | None) -> Ticket:
        ticket = Ticket(
            id=uuid4(),
            number=number,
            user_id=user_id,
            status=status,
            location=location,
            created_at=self.now(),
        )
        self.tickets[ticket.id] = ticket
        self.audit.append(
            TicketAuditEntry(
                id=uuid4(),
                ticket_id=ticket.id,
                from_status=None,
                to_status=status,
                actor=user_id,
                note="Ticket issued",
                created_at=ticket.created_at,
            )
        )
        return ticket

    async def get_highest_number(self) -> int | None:
        self._check_failure()
        return max((ticket.number for ticket in self.tickets.values()), default=None)

    async def create_ticket(
        self, *, number: int, user_id: str, status: TicketStatus, location: Location | None
    ) -> Ticket:
        self._check_failure()
        if self.number_races > 0:
            # Another issuer grabs the number between read and insert.
            self.number_races -= 1
            self._insert(number, f"racer-{number}", TicketStatus.WAITING, None)
        if any(ticket.number == number for ticket in self.tickets.values()):
            raise TicketNumberTakenError(number)
        if any(t.user_id == user_id and t.status in ACTIVE_STATUSES for t in self.tickets.values()):
            raise ActiveTicketExistsError(user_id)
        return replace(self._insert(number, user_id, status, location))

    async def get_ticket(self, ticket_id: UUID) -> Ticket | None:
        self._check_failure()
        ticket = self.tickets.get(ticket_id)
        return None if ticket is None else replace(ticket)

    async def find_latest_ticket(self, user_id: str, statuses: Sequence[TicketStatus]) -> Ticket | None:
        self._check_failure()
        matches = [t for t in self.tickets.values() if t.user_id == user_id and t.status in statuses]
        if not matches:
            return None
        return replace(max(matches, key=lambda ticket: ticket.created_at))

    async def list_tickets_by_status(self, status: TicketStatus, *, order_by: str = "number") -> list[Ticket]:
        self._check_failure()
        matches = [replace(t) for t in self.tickets.values() if t.status == status]
        if order_by == "number":
            return sorted(matches, key=lambda ticket: ticket.number)
        return sorted(matches, key=lambda ticket: (getattr(ticket, order_by), ticket.number))

    async def transition_status(
        self,
        ticket_id: UUID,
        *,
        from_status: TicketStatus,
        to_status: TicketStatus,
        timestamps: Sequence[str],
        actor: str,
        note: str = "Status updated",
    ) -> Ticket | None:
        self._check_failure()
        ticket = self.tickets.get(ticket_id)
        if ticket is None or ticket.status != from_status:
            return None
        now = self.now()
        updated = replace(ticket, status=to_status, **{column: now for column in timestamps})
        self.tickets[ticket_id] = updated
        self.audit.append(
            TicketAuditEntry(
                id=uuid4(),
                ticket_id=ticket_id,
                from_status=from_status,
                to_status=to_status,
                actor=actor,
                note=note,
                created_at=now,
            )
        )
        return replace(updated)

    async def get_audit_log(self, ticket_id: UUID) -> list[TicketAuditEntry]:
        self._check_failure()
        return [entry for entry in self.audit if entry.ticket_id == ticket_id]


USER_TOKEN = "TEST_VALID_TOKEN_USER"
ADMIN_TOKEN = "TEST_VALID_TOKEN_ADMIN"


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def store() -> InMemoryTicketStore:
    return InMemoryTicketStore()


@pytest.fixture
def service(store: InMemoryTicketStore) -> TicketService:
    return TicketService(store, retry_backoff_seconds=0)


@pytest.fixture
def app(service: TicketService):
    app = create_app(Settings(auth_mode="sentinel"))
    app.state.ticket_service = service
    app.state.identity_verifier = SentinelTokenVerifier(
        {
            USER_TOKEN: ("mockUser123", (Role.USER,)),
            "TEST_VALID_TOKEN_USER_2": ("mockUser456", (Role.USER,)),
            ADMIN_TOKEN: ("mockAdmin789", (Role.ADMIN, Role.USER)),
        }
    )
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def user_headers() -> dict[str, str]:
    return bearer(USER_TOKEN)


@pytest.fixture
def other_user_headers() -> dict[str, str]:
    return bearer("TEST_VALID_TOKEN_USER_2")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return bearer(ADMIN_TOKEN)
