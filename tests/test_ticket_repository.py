from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import asyncpg
import pytest

from queueline.tickets.models import Location
from queueline.tickets.repository import (
    ActiveTicketExistsError,
    TicketNumberTakenError,
    TicketRepository,
)
from queueline.tickets.state import ACTIVE_STATUSES, TicketStatus


class DummyAcquire:
    def __init__(self, connection):
        self._connection = connection

    async def __aenter__(self):
        return self._connection

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyTransaction:
    def __init__(self):
        self.entered = False

    async def __aenter__(self):
        self.entered = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyPool:
    def __init__(self, connection):
        self._connection = connection

    def acquire(self):
        return DummyAcquire(self._connection)


def _make_connection() -> MagicMock:
    connection = MagicMock()
    connection.execute = AsyncMock()
    connection.fetchrow = AsyncMock()
    connection.fetch = AsyncMock(return_value=[])
    connection.fetchval = AsyncMock()
    connection.transaction = MagicMock(return_value=DummyTransaction())
    return connection


def _ticket_row(**overrides):
    now = datetime.now(timezone.utc)
    row = {
        "id": uuid4(),
        "number": 1,
        "user_id": "mockUser123",
        "status": "waiting",
        "location_lat": None,
        "location_lng": None,
        "created_at": now,
        "called_at": None,
        "assessment_called_at": None,
        "assessment_completed_at": None,
        "purchase_called_at": None,
        "completed_at": None,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_ensure_schema_creates_tables_and_indexes():
    connection = _make_connection()
    repository = TicketRepository(DummyPool(connection))

    await repository.ensure_schema()

    executed = [call.args[0] for call in connection.execute.await_args_list]
    assert len(executed) == 4
    assert any("CREATE TABLE IF NOT EXISTS tickets" in stmt for stmt in executed)
    assert any("ticket_audit_logs" in stmt for stmt in executed)
    assert any(TicketRepository.ACTIVE_TICKET_INDEX in stmt and "WHERE status IN" in stmt for stmt in executed)


@pytest.mark.asyncio
async def test_get_highest_number_reads_top_of_descending_sort():
    connection = _make_connection()
    connection.fetchval = AsyncMock(side_effect=[None, 7])
    repository = TicketRepository(DummyPool(connection))

    assert await repository.get_highest_number() is None
    assert await repository.get_highest_number() == 7
    query = connection.fetchval.await_args.args[0]
    assert "ORDER BY number DESC" in query
    assert "LIMIT 1" in query


@pytest.mark.asyncio
async def test_create_ticket_inserts_ticket_and_audit_in_transaction():
    connection = _make_connection()
    row = _ticket_row(number=4, location_lat=13.75, location_lng=100.5)
    connection.fetchrow = AsyncMock(return_value=row)
    repository = TicketRepository(DummyPool(connection))

    ticket = await repository.create_ticket(
        number=4,
        user_id="mockUser123",
        status=TicketStatus.WAITING,
        location=Location(lat=13.75, lng=100.5),
    )

    assert ticket.number == 4
    assert ticket.location == Location(lat=13.75, lng=100.5)
    assert connection.transaction.return_value.entered
    insert_args = connection.fetchrow.await_args.args
    assert insert_args[2:] == (4, "mockUser123", "waiting", 13.75, 100.5)
    audit_args = connection.execute.await_args.args
    assert "INSERT INTO ticket_audit_logs" in audit_args[0]
    assert audit_args[3:] == (None, "waiting", "mockUser123", "Ticket issued")


@pytest.mark.asyncio
async def test_create_ticket_translates_unique_violations():
    connection = _make_connection()
    number_clash = asyncpg.UniqueViolationError("duplicate key")
    number_clash.constraint_name = TicketRepository.NUMBER_CONSTRAINT
    active_clash = asyncpg.UniqueViolationError("duplicate key")
    active_clash.constraint_name = TicketRepository.ACTIVE_TICKET_INDEX
    connection.fetchrow = AsyncMock(side_effect=[number_clash, active_clash])
    repository = TicketRepository(DummyPool(connection))

    with pytest.raises(TicketNumberTakenError) as taken:
        await repository.create_ticket(number=3, user_id="u1", status=TicketStatus.WAITING, location=None)
    with pytest.raises(ActiveTicketExistsError):
        await repository.create_ticket(number=4, user_id="u1", status=TicketStatus.WAITING, location=None)

    assert taken.value.number == 3


@pytest.mark.asyncio
async def test_transition_status_is_conditional_on_expected_status():
    connection = _make_connection()
    ticket_id = uuid4()
    row = _ticket_row(id=ticket_id, status="called_assessment", called_at=datetime.now(timezone.utc))
    connection.fetchrow = AsyncMock(return_value=row)
    repository = TicketRepository(DummyPool(connection))

    updated = await repository.transition_status(
        ticket_id,
        from_status=TicketStatus.WAITING,
        to_status=TicketStatus.CALLED_ASSESSMENT,
        timestamps=("called_at", "assessment_called_at"),
        actor="mockAdmin789",
    )

    assert updated is not None
    assert updated.status == TicketStatus.CALLED_ASSESSMENT
    query, *params = connection.fetchrow.await_args.args
    assert "WHERE id = $1 AND status = $2" in query
    assert "called_at = CURRENT_TIMESTAMP" in query
    assert "assessment_called_at = CURRENT_TIMESTAMP" in query
    assert params == [ticket_id, "waiting", "called_assessment"]
    connection.execute.assert_awaited()


@pytest.mark.asyncio
async def test_transition_status_returns_none_without_audit_when_nothing_matches():
    connection = _make_connection()
    connection.fetchrow = AsyncMock(return_value=None)
    repository = TicketRepository(DummyPool(connection))

    updated = await repository.transition_status(
        uuid4(),
        from_status=TicketStatus.CALLED_PURCHASE,
        to_status=TicketStatus.DONE,
        timestamps=("completed_at",),
        actor="mockAdmin789",
    )

    assert updated is None
    connection.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_transition_status_rejects_unknown_columns():
    repository = TicketRepository(DummyPool(_make_connection()))

    with pytest.raises(ValueError):
        await repository.transition_status(
            uuid4(),
            from_status=TicketStatus.WAITING,
            to_status=TicketStatus.CALLED_ASSESSMENT,
            timestamps=("status; DROP TABLE tickets",),
            actor="mockAdmin789",
        )


@pytest.mark.asyncio
async def test_list_tickets_by_status_orders_queue():
    connection = _make_connection()
    connection.fetch = AsyncMock(return_value=[_ticket_row(status="waiting_purchase")])
    repository = TicketRepository(DummyPool(connection))

    tickets = await repository.list_tickets_by_status(
        TicketStatus.WAITING_PURCHASE, order_by="assessment_completed_at"
    )

    assert tickets[0].status == TicketStatus.WAITING_PURCHASE
    query, status_param = connection.fetch.await_args.args
    assert "ORDER BY assessment_completed_at ASC, number ASC" in query
    assert status_param == "waiting_purchase"

    with pytest.raises(ValueError):
        await repository.list_tickets_by_status(TicketStatus.WAITING, order_by="user_id")


@pytest.mark.asyncio
async def test_find_latest_ticket_filters_by_status_set():
    connection = _make_connection()
    connection.fetchrow = AsyncMock(return_value=None)
    repository = TicketRepository(DummyPool(connection))

    assert await repository.find_latest_ticket("mockUser123", ACTIVE_STATUSES) is None
    query, user_id, statuses = connection.fetchrow.await_args.args
    assert "ORDER BY created_at DESC" in query
    assert user_id == "mockUser123"
    assert statuses == ["waiting", "called_assessment", "waiting_purchase"]


@pytest.mark.asyncio
async def test_get_audit_log_maps_rows():
    connection = _make_connection()
    ticket_id = uuid4()
    connection.fetch = AsyncMock(
        return_value=[
            {
                "id": str(uuid4()),
                "ticket_id": str(ticket_id),
                "from_status": None,
                "to_status": "waiting",
                "actor": "mockUser123",
                "note": "Ticket issued",
                "created_at": datetime.now(timezone.utc),
            }
        ]
    )
    repository = TicketRepository(DummyPool(connection))

    entries = await repository.get_audit_log(ticket_id)

    assert entries[0].ticket_id == ticket_id
    assert entries[0].from_status is None
    assert entries[0].to_status == TicketStatus.WAITING


@pytest.mark.asyncio
async def test_transition_status_refuses_illegal_transitions():
    connection = _make_connection()
    repository = TicketRepository(DummyPool(connection))

    with pytest.raises(ValueError):
        await repository.transition_status(
            uuid4(),
            from_status=TicketStatus.WAITING,
            to_status=TicketStatus.DONE,
            timestamps=("completed_at",),
            actor="mockAdmin789",
        )

    connection.fetchrow.assert_not_awaited()
