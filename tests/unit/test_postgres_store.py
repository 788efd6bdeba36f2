"""
Unit tests for the PostgreSQL ballot store using asyncpg doubles.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from app.core.context import Isolation, RequestContext
from app.core.errors import ConflictError, InvalidStateError, StoreUnavailableError
from app.store.postgres import PostgresBallotSession, PostgresBallotStore


class FakeTransaction:
    def __init__(self):
        self.exit_exc_type = None
        self.exited = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True
        self.exit_exc_type = exc_type
        return False


class FakeAcquire:
    def __init__(self, conn):
        self.conn = conn
        self.released = False

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        self.released = True
        return False


@pytest.fixture
def conn():
    connection = MagicMock()
    connection.execute = AsyncMock(return_value="SELECT 1")
    connection.fetch = AsyncMock(return_value=[])
    connection.fetchrow = AsyncMock(return_value=None)
    connection.fetchval = AsyncMock(return_value=None)
    connection.tx = FakeTransaction()
    connection.transaction = MagicMock(return_value=connection.tx)
    return connection


@pytest.fixture
def pool(conn):
    fake_pool = MagicMock()
    fake_pool.acquire = MagicMock(side_effect=lambda: FakeAcquire(conn))
    return fake_pool


@pytest.fixture
def pg_store(pool):
    return PostgresBallotStore(pool)


@pytest.mark.asyncio
async def test_transaction_sets_request_context(pg_store, conn):
    ctx = RequestContext(actor_user_id=7, organization_id=3, request_id="req-1")

    async with pg_store.transaction(ctx) as session:
        assert isinstance(session, PostgresBallotSession)
        assert session.conn is conn

    conn.transaction.assert_called_once_with(isolation="read_committed")
    sql, actor, organization, request_id = conn.execute.call_args_list[0].args
    assert "set_config('app.actor_user_id', $1, true)" in sql
    assert (actor, organization, request_id) == ("7", "3", "req-1")
    assert conn.tx.exit_exc_type is None


@pytest.mark.asyncio
async def test_transaction_uses_requested_isolation(pg_store, conn):
    async with pg_store.transaction(RequestContext(actor_user_id=7), Isolation.SERIALIZABLE):
        pass

    conn.transaction.assert_called_once_with(isolation="serializable")


@pytest.mark.asyncio
async def test_system_context_clears_actor(pg_store, conn):
    async with pg_store.transaction(RequestContext.system("tick")):
        pass

    _, actor, organization, request_id = conn.execute.call_args_list[0].args
    assert (actor, organization, request_id) == ("", "", "tick")


@pytest.mark.asyncio
async def test_driver_errors_are_translated_and_rolled_back(pg_store, conn):
    original = asyncpg.exceptions.UniqueViolationError("duplicate key")

    with pytest.raises(ConflictError) as exc_info:
        async with pg_store.transaction(RequestContext(actor_user_id=7)):
            raise original

    assert exc_info.value.__cause__ is original
    assert conn.tx.exit_exc_type is asyncpg.exceptions.UniqueViolationError


@pytest.mark.asyncio
async def test_serialization_failure_is_retryable(pg_store, conn):
    conn.fetchval.side_effect = asyncpg.exceptions.SerializationError("could not serialize")

    with pytest.raises(StoreUnavailableError) as exc_info:
        async with pg_store.transaction(RequestContext(actor_user_id=7)) as session:
            await session.insert_vote(1, 2, 7, "WEB")

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_app_errors_pass_through_unchanged(pg_store, conn):
    error = InvalidStateError("Election not open for voting")

    with pytest.raises(InvalidStateError) as exc_info:
        async with pg_store.transaction(RequestContext(actor_user_id=7)):
            raise error

    assert exc_info.value is error
    assert conn.tx.exit_exc_type is InvalidStateError


@pytest.mark.asyncio
async def test_unexpected_errors_propagate(pg_store):
    with pytest.raises(KeyError):
        async with pg_store.transaction(RequestContext(actor_user_id=7)):
            raise KeyError("bug")


@pytest.mark.asyncio
async def test_acquire_failure_is_store_unavailable(conn):
    pool = MagicMock()
    pool.acquire = MagicMock(side_effect=ConnectionRefusedError("refused"))

    with pytest.raises(StoreUnavailableError):
        async with PostgresBallotStore(pool).transaction(RequestContext(actor_user_id=7)):
            pass


@pytest.mark.asyncio
async def test_process_due_elections_single_statement(pg_store, conn):
    now = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)
    conn.fetch.return_value = [
        {"election_id": 4, "election_name": "Board", "action": "opened"},
        {"election_id": 2, "election_name": "Budget", "action": "closed"},
    ]

    transitions = await pg_store.process_due_elections(now)

    assert [t["action"] for t in transitions] == ["opened", "closed"]
    conn.fetch.assert_awaited_once()
    sql, arg = conn.fetch.call_args.args
    assert "WITH opened AS" in sql
    assert "closed AS" in sql
    assert arg == now
    assert conn.transaction.call_count == 1


@pytest.mark.asyncio
async def test_transition_guard_passes_source_statuses(pg_store, conn):
    at = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)

    async with pg_store.transaction(RequestContext(actor_user_id=7)) as session:
        result = await session.transition_election(5, ("DRAFT", "SCHEDULED"), "OPEN", at)

    assert result is None
    sql, election_id, sources, target, when = conn.fetchrow.call_args.args
    assert "status = ANY($2::text[])" in sql
    assert (election_id, sources, target, when) == (5, ["DRAFT", "SCHEDULED"], "OPEN", at)


@pytest.mark.asyncio
async def test_vote_lock_key(pg_store, conn):
    async with pg_store.transaction(RequestContext(actor_user_id=7)) as session:
        await session.lock_voter_race(7, 3)

    sql, namespace, key = conn.execute.call_args_list[-1].args
    assert "pg_advisory_xact_lock" in sql
    assert key == "7:3"


@pytest.mark.asyncio
async def test_delete_election_reports_affected_rows(pg_store, conn):
    conn.execute.return_value = "DELETE 1"

    async with pg_store.transaction(RequestContext(actor_user_id=7)) as session:
        assert await session.delete_election(5) is True


@pytest.mark.asyncio
async def test_ping(pg_store, conn):
    conn.fetchval.return_value = 1

    assert await pg_store.ping() is True
