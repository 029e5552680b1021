from __future__ import annotations

from typing import Any, Protocol, Sequence
from uuid import UUID, uuid4

import asyncpg

from .models import Location, Ticket, TicketAuditEntry
from .state import TicketStateMachine, TicketStatus


class TicketStoreConflict(RuntimeError):
    """Base class for uniqueness conflicts reported by the ticket store."""


class TicketNumberTakenError(TicketStoreConflict):
    """Raised when another ticket was inserted with the same number first."""

    def __init__(self, number: int) -> None:
        super().__init__(f"Ticket number {number} is already taken")
        self.number = number


class ActiveTicketExistsError(TicketStoreConflict):
    """Raised when the user already holds an active ticket at insert time."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} already has an active ticket")
        self.user_id = user_id


class TicketStore(Protocol):
    """Operations the lifecycle engine needs from its persistence layer."""

    async def get_highest_number(self) -> int | None:
        ...

    async def create_ticket(
        self, *, number: int, user_id: str, status: TicketStatus, location: Location | None
    ) -> Ticket:
        ...

    async def get_ticket(self, ticket_id: UUID) -> Ticket | None:
        ...

    async def find_latest_ticket(self, user_id: str, statuses: Sequence[TicketStatus]) -> Ticket | None:
        ...

    async def list_tickets_by_status(self, status: TicketStatus, *, order_by: str = "number") -> list[Ticket]:
        ...

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
        ...

    async def get_audit_log(self, ticket_id: UUID) -> list[TicketAuditEntry]:
        ...


_TICKET_COLUMNS = (
    "id, number, user_id, status, location_lat, location_lng, created_at, called_at, "
    "assessment_called_at, assessment_completed_at, purchase_called_at, completed_at"
)

# Columns a transition may stamp; anything else is rejected before building SQL.
_TIMESTAMP_COLUMNS = frozenset(
    {"called_at", "assessment_called_at", "assessment_completed_at", "purchase_called_at", "completed_at"}
)

# Secondary keys keep queue order deterministic when the primary key ties.
_ORDERINGS: dict[str, str] = {
    "number": "number ASC",
    "assessment_completed_at": "assessment_completed_at ASC, number ASC",
    "created_at": "created_at ASC, number ASC",
}


class TicketRepository:
    """Data access layer for ticket records."""

    ACTIVE_TICKET_INDEX = "tickets_one_active_per_user"
    NUMBER_CONSTRAINT = "tickets_number_key"

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id UUID PRIMARY KEY,
        number INTEGER NOT NULL CONSTRAINT tickets_number_key UNIQUE CHECK (number > 0),
        user_id TEXT NOT NULL,
        status TEXT NOT NULL,
        location_lat DOUBLE PRECISION NULL,
        location_lng DOUBLE PRECISION NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        called_at TIMESTAMPTZ NULL,
        assessment_called_at TIMESTAMPTZ NULL,
        assessment_completed_at TIMESTAMPTZ NULL,
        purchase_called_at TIMESTAMPTZ NULL,
        completed_at TIMESTAMPTZ NULL
    )
    """

    _CREATE_STATUS_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS tickets_status_number_idx ON tickets (status, number)
    """

    _CREATE_ACTIVE_INDEX_SQL = """
    CREATE UNIQUE INDEX IF NOT EXISTS tickets_one_active_per_user ON tickets (user_id)
    WHERE status IN ('waiting', 'called_assessment', 'waiting_purchase')
    """

    _CREATE_AUDIT_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_audit_logs (
        id UUID PRIMARY KEY,
        ticket_id UUID NOT NULL REFERENCES tickets(id),
        from_status TEXT NULL,
        to_status TEXT NOT NULL,
        actor TEXT NOT NULL,
        note TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _SELECT_HIGHEST_NUMBER_SQL = """
    SELECT number FROM tickets ORDER BY number DESC LIMIT 1
    """

    _INSERT_TICKET_SQL = f"""
    INSERT INTO tickets (id, number, user_id, status, location_lat, location_lng)
    VALUES ($1, $2, $3, $4, $5, $6)
    RETURNING {_TICKET_COLUMNS}
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE id = $1
    """

    _SELECT_LATEST_FOR_USER_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE user_id = $1 AND status = ANY($2::text[])
    ORDER BY created_at DESC
    LIMIT 1
    """

    _INSERT_AUDIT_SQL = """
    INSERT INTO ticket_audit_logs (id, ticket_id, from_status, to_status, actor, note)
    VALUES ($1, $2, $3, $4, $5, $6)
    """

    _SELECT_AUDIT_SQL = """
    SELECT id, ticket_id, from_status, to_status, actor, note, created_at
    FROM ticket_audit_logs
    WHERE ticket_id = $1
    ORDER BY created_at ASC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_STATUS_INDEX_SQL)
            await connection.execute(self._CREATE_ACTIVE_INDEX_SQL)
            await connection.execute(self._CREATE_AUDIT_SQL)

    async def get_highest_number(self) -> int | None:
        async with self._pool.acquire() as connection:
            value = await connection.fetchval(self._SELECT_HIGHEST_NUMBER_SQL)
        return None if value is None else int(value)

    async def create_ticket(
        self,
        *,
        number: int,
        user_id: str,
        status: TicketStatus,
        location: Location | None,
        note: str = "Ticket issued",
    ) -> Ticket:
        ticket_id = uuid4()
        try:
            async with self._pool.acquire() as connection:
                async with connection.transaction():
                    row = await connection.fetchrow(
                        self._INSERT_TICKET_SQL,
                        ticket_id,
                        number,
                        user_id,
                        status.value,
                        None if location is None else location.lat,
                        None if location is None else location.lng,
                    )
                    if row is None:
                        raise RuntimeError("Failed to insert ticket")
                    await self._insert_audit(
                        connection,
                        ticket_id=ticket_id,
                        from_status=None,
                        to_status=status,
                        actor=user_id,
                        note=note,
                    )
        except asyncpg.UniqueViolationError as exc:
            if getattr(exc, "constraint_name", None) == self.ACTIVE_TICKET_INDEX:
                raise ActiveTicketExistsError(user_id) from exc
            raise TicketNumberTakenError(number) from exc
        return self._row_to_ticket(row)

    async def get_ticket(self, ticket_id: UUID) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def find_latest_ticket(self, user_id: str, statuses: Sequence[TicketStatus]) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                self._SELECT_LATEST_FOR_USER_SQL,
                user_id,
                [status.value for status in statuses],
            )
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def list_tickets_by_status(self, status: TicketStatus, *, order_by: str = "number") -> list[Ticket]:
        if order_by not in _ORDERINGS:
            raise ValueError(f"Unsupported ticket ordering: {order_by}")
        query = f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE status = $1 ORDER BY {_ORDERINGS[order_by]}"
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, status.value)
        return [self._row_to_ticket(row) for row in rows]

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
        """Move a ticket to ``to_status`` only if it is still in ``from_status``.

        Returns ``None`` when no row matched, either because the ticket does
        not exist or because its status changed in the meantime.
        """

        TicketStateMachine.assert_transition(from_status, to_status)
        unknown = set(timestamps) - _TIMESTAMP_COLUMNS
        if unknown:
            raise ValueError(f"Unknown timestamp columns: {sorted(unknown)}")
        assignments = ["status = $3", *(f"{column} = CURRENT_TIMESTAMP" for column in timestamps)]
        query = (
            f"UPDATE tickets SET {', '.join(assignments)} "
            f"WHERE id = $1 AND status = $2 RETURNING {_TICKET_COLUMNS}"
        )
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(query, ticket_id, from_status.value, to_status.value)
                if row is None:
                    return None
                await self._insert_audit(
                    connection,
                    ticket_id=ticket_id,
                    from_status=from_status,
                    to_status=to_status,
                    actor=actor,
                    note=note,
                )
        return self._row_to_ticket(row)

    async def get_audit_log(self, ticket_id: UUID) -> list[TicketAuditEntry]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_AUDIT_SQL, ticket_id)
        return [self._row_to_audit(row) for row in rows]

    async def _insert_audit(
        self,
        connection: Any,
        *,
        ticket_id: UUID,
        from_status: TicketStatus | None,
        to_status: TicketStatus,
        actor: str,
        note: str,
    ) -> None:
        await connection.execute(
            self._INSERT_AUDIT_SQL,
            uuid4(),
            ticket_id,
            None if from_status is None else from_status.value,
            to_status.value,
            actor,
            note,
        )

    @staticmethod
    def _row_to_ticket(row: Any) -> Ticket:
        lat, lng = row["location_lat"], row["location_lng"]
        location = None if lat is None or lng is None else Location(lat=float(lat), lng=float(lng))
        return Ticket(
            id=_to_uuid(row["id"]),
            number=int(row["number"]),
            user_id=str(row["user_id"]),
            status=TicketStatus(str(row["status"])),
            location=location,
            created_at=row["created_at"],
            called_at=row["called_at"],
            assessment_called_at=row["assessment_called_at"],
            assessment_completed_at=row["assessment_completed_at"],
            purchase_called_at=row["purchase_called_at"],
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _row_to_audit(row: Any) -> TicketAuditEntry:
        from_status = row["from_status"]
        return TicketAuditEntry(
            id=_to_uuid(row["id"]),
            ticket_id=_to_uuid(row["ticket_id"]),
            from_status=TicketStatus(str(from_status)) if from_status else None,
            to_status=TicketStatus(str(row["to_status"])),
            actor=str(row["actor"]),
            note=str(row["note"]),
            created_at=row["created_at"],
        )


def _to_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    return UUID(str(value))
