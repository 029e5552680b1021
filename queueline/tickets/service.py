from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

import asyncpg
from opentelemetry import trace

from .models import CalledTickets, Location, Ticket, TicketAuditEntry
from .repository import ActiveTicketExistsError, TicketNumberTakenError, TicketStore
from .state import ACTIVE_STATUSES, TicketStateMachine, TicketStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Exceptions raised by the store or its transport that surface as StoreFailure.
STORE_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    TimeoutError,
    asyncio.TimeoutError,
)


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""

    kind = "error"


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located or a queue is empty."""

    kind = "not_found"


class InvalidTicketStateError(TicketServiceError):
    """Raised when a ticket is not in the status an operation requires."""

    kind = "invalid_state"

    def __init__(self, ticket_id: UUID, *, actual: TicketStatus, expected: TicketStatus) -> None:
        super().__init__(
            f"Ticket {ticket_id} is not in '{expected.value}' state. Current status: {actual.value}."
        )
        self.ticket_id = ticket_id
        self.actual = actual
        self.expected = expected


class ActiveTicketConflictError(TicketServiceError):
    """Raised when a user asks for a ticket while already holding an active one."""

    kind = "conflict"

    def __init__(self, ticket: Ticket) -> None:
        super().__init__("User already has an active ticket.")
        self.ticket = ticket


class TicketStoreError(TicketServiceError):
    """Raised when the underlying store fails; the cause is chained."""

    kind = "store_failure"

    def __init__(self, operation: str, cause: BaseException | None = None, *, message: str | None = None) -> None:
        super().__init__(message or f"Ticket store failure during {operation}")
        self.operation = operation
        self.cause = cause


class TicketContentionError(TicketStoreError):
    """Raised when concurrent callers keep winning the same race until retries run out."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        super().__init__(operation, cause, message="The queue is busy. Please try again.")


class TicketService:
    """Ticket lifecycle engine: issuing, queue queries and stage transitions."""

    def __init__(
        self,
        repository: TicketStore,
        *,
        state_machine: TicketStateMachine | None = None,
        number_allocation_attempts: int = 5,
        call_next_attempts: int = 3,
        retry_backoff_seconds: float = 0.05,
    ) -> None:
        self._repository = repository
        self._state_machine = state_machine or TicketStateMachine()
        self._number_allocation_attempts = max(1, number_allocation_attempts)
        self._call_next_attempts = max(1, call_next_attempts)
        self._retry_backoff_seconds = retry_backoff_seconds

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        with tracer.start_as_current_span(f"tickets.{name}"):
            try:
                yield
            except STORE_ERRORS as exc:
                logger.exception("Ticket store failure during %s", name)
                raise TicketStoreError(name, exc) from exc

    async def _backoff(self, attempt: int) -> None:
        if self._retry_backoff_seconds:
            await asyncio.sleep(self._retry_backoff_seconds * (2**attempt))

    async def generate_next_number(self) -> int:
        """Return one more than the highest number issued so far, starting at 1.

        Two concurrent callers can observe the same value; ``issue_ticket``
        relies on the store's unique constraint to detect that and retries.
        """

        with self._operation("generate_next_number"):
            highest = await self._repository.get_highest_number()
        return 1 if highest is None else highest + 1

    async def find_active_ticket(self, user_id: str) -> Ticket | None:
        with self._operation("find_active_ticket"):
            return await self._repository.find_latest_ticket(user_id, ACTIVE_STATUSES)

    async def get_active_ticket(self, user_id: str) -> Ticket:
        ticket = await self.find_active_ticket(user_id)
        if ticket is None:
            raise TicketNotFoundError("No active ticket found for this user.")
        return ticket

    async def issue_ticket(self, user_id: str, location: Location | None = None) -> Ticket:
        existing = await self.find_active_ticket(user_id)
        if existing is not None:
            raise ActiveTicketConflictError(existing)

        last_error: TicketNumberTakenError | None = None
        for attempt in range(self._number_allocation_attempts):
            number = await self.generate_next_number()
            try:
                with self._operation("issue_ticket"):
                    ticket = await self._repository.create_ticket(
                        number=number,
                        user_id=user_id,
                        status=self._state_machine.initial_state(),
                        location=location,
                    )
            except TicketNumberTakenError as exc:
                logger.warning("Ticket number %s taken concurrently (attempt %s)", number, attempt + 1)
                last_error = exc
                await self._backoff(attempt)
                continue
            except ActiveTicketExistsError as exc:
                winner = await self.find_active_ticket(user_id)
                if winner is None:
                    raise TicketStoreError("issue_ticket", exc) from exc
                raise ActiveTicketConflictError(winner) from exc
            logger.info("Issued ticket #%s to %s", ticket.number, user_id)
            return ticket

        raise TicketContentionError("issue_ticket", last_error) from last_error

    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        with self._operation("get_ticket"):
            ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found.")
        return ticket

    async def list_waiting_for_assessment(self) -> list[Ticket]:
        with self._operation("list_waiting_for_assessment"):
            return await self._repository.list_tickets_by_status(TicketStatus.WAITING, order_by="number")

    async def list_waiting_for_purchase(self) -> list[Ticket]:
        with self._operation("list_waiting_for_purchase"):
            return await self._repository.list_tickets_by_status(
                TicketStatus.WAITING_PURCHASE, order_by="assessment_completed_at"
            )

    async def get_currently_called(self) -> CalledTickets:
        with self._operation("get_currently_called"):
            assessment = await self._repository.list_tickets_by_status(
                TicketStatus.CALLED_ASSESSMENT, order_by="number"
            )
            purchase = await self._repository.list_tickets_by_status(TicketStatus.CALLED_PURCHASE, order_by="number")
        return CalledTickets(assessment=assessment, purchase=purchase)

    async def call_next_for_assessment(self, *, actor: str) -> Ticket:
        """Call the lowest-numbered waiting ticket.

        When another caller takes the head of the queue between the read and
        the conditional update, the queue is read again and the new head is
        tried, up to ``call_next_attempts`` times.
        """

        target = self._state_machine.next_status(TicketStatus.WAITING)
        for attempt in range(self._call_next_attempts):
            queue = await self.list_waiting_for_assessment()
            if not queue:
                raise TicketNotFoundError("No tickets waiting for assessment.")
            head = queue[0]
            with self._operation("call_next_for_assessment"):
                updated = await self._repository.transition_status(
                    head.id,
                    from_status=TicketStatus.WAITING,
                    to_status=target,
                    timestamps=self._state_machine.timestamps_for(target),
                    actor=actor,
                    note="Called for assessment",
                )
            if updated is not None:
                logger.info("Called ticket #%s for assessment", updated.number)
                return updated
            logger.warning("Ticket #%s was called concurrently (attempt %s)", head.number, attempt + 1)
            await self._backoff(attempt)

        raise TicketContentionError("call_next_for_assessment")

    async def complete_assessment(self, ticket_id: UUID, *, actor: str) -> Ticket:
        return await self._advance(
            ticket_id,
            expected=TicketStatus.CALLED_ASSESSMENT,
            actor=actor,
            note="Assessment completed",
        )

    async def call_for_purchase(self, ticket_id: UUID, *, actor: str) -> Ticket:
        # Staff may pick any ticket waiting for purchase, not only the head.
        return await self._advance(
            ticket_id,
            expected=TicketStatus.WAITING_PURCHASE,
            actor=actor,
            note="Called for purchase",
        )

    async def complete_ticket(self, ticket_id: UUID, *, actor: str) -> Ticket:
        return await self._advance(
            ticket_id,
            expected=TicketStatus.CALLED_PURCHASE,
            actor=actor,
            note="Ticket completed",
        )

    async def get_audit_log(self, ticket_id: UUID) -> list[TicketAuditEntry]:
        await self.get_ticket(ticket_id)
        with self._operation("get_audit_log"):
            return await self._repository.get_audit_log(ticket_id)

    async def _advance(
        self,
        ticket_id: UUID,
        *,
        expected: TicketStatus,
        actor: str,
        note: str,
    ) -> Ticket:
        target = self._state_machine.next_status(expected)
        if target is None:
            raise ValueError(f"Ticket status {expected.value} has no successor")
        operation = f"advance_to_{target.value}"
        with self._operation(operation):
            updated = await self._repository.transition_status(
                ticket_id,
                from_status=expected,
                to_status=target,
                timestamps=self._state_machine.timestamps_for(target),
                actor=actor,
                note=note,
            )
            if updated is None:
                current = await self._repository.get_ticket(ticket_id)
        if updated is not None:
            logger.info("Ticket #%s moved %s -> %s by %s", updated.number, expected.value, target.value, actor)
            return updated
        if current is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found.")
        raise InvalidTicketStateError(ticket_id, actual=current.status, expected=expected)
