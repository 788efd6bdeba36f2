"""PostgreSQL ballot store backed by the asyncpg pool."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

import asyncpg

from app.core.context import Isolation, RequestContext
from app.core.errors import AppError, translate_store_error
from app.core.logging_config import get_logger
from app.store import elections, races, voters, votes
from app.store.base import BallotSession, BallotStore

logger = get_logger(__name__)


async def apply_session_settings(conn: asyncpg.Connection, ctx: RequestContext) -> None:
    """Expose actor, organization and request identity to triggers for this transaction only."""
    values = ctx.session_settings()
    await conn.execute(
        """
        SELECT set_config('app.actor_user_id', $1, true),
               set_config('app.organization_id', $2, true),
               set_config('app.request_id', $3, true)
        """,
        values["app.actor_user_id"],
        values["app.organization_id"],
        values["app.request_id"],
    )


class PostgresBallotSession(BallotSession):
    """Ballot operations bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def get_member_role(self, organization_id, user_id):
        return await elections.get_member_role(self.conn, organization_id, user_id)

    async def get_election(self, election_id, *, for_update=False):
        return await elections.get_election(self.conn, election_id, for_update=for_update)

    async def list_elections(self, organization_id, status=None):
        return await elections.list_elections(self.conn, organization_id, status)

    async def insert_election(self, organization_id, election_name, description, created_by):
        return await elections.insert_election(
            self.conn, organization_id, election_name, description, created_by
        )

    async def update_election(self, election_id, election_name, description, start_at, end_at):
        return await elections.update_election(
            self.conn, election_id, election_name, description, start_at, end_at
        )

    async def schedule_election(self, election_id, start_at, end_at):
        return await elections.schedule_election(self.conn, election_id, start_at, end_at)

    async def transition_election(self, election_id, from_statuses, to_status, at):
        return await elections.transition_election(
            self.conn, election_id, from_statuses, to_status, at
        )

    async def delete_election(self, election_id):
        return await elections.delete_election(self.conn, election_id)

    async def count_election_votes(self, election_id):
        return await elections.count_election_votes(self.conn, election_id)

    async def get_race(self, race_id):
        return await races.get_race(self.conn, race_id)

    async def list_races(self, election_id):
        return await races.list_races(self.conn, election_id)

    async def insert_race(self, election_id, race_name, description, max_votes_per_voter, max_winners):
        return await races.insert_race(
            self.conn, election_id, race_name, description, max_votes_per_voter, max_winners
        )

    async def update_race(self, race_id, race_name, description, max_votes_per_voter, max_winners):
        return await races.update_race(
            self.conn, race_id, race_name, description, max_votes_per_voter, max_winners
        )

    async def delete_race(self, race_id):
        return await races.delete_race(self.conn, race_id)

    async def get_race_candidate(self, candidate_race_id):
        return await races.get_race_candidate(self.conn, candidate_race_id)

    async def list_race_candidates(self, race_id):
        return await races.list_race_candidates(self.conn, race_id)

    async def add_candidate_to_race(
        self, race_id, full_name, affiliation_name, bio, display_name, ballot_order, is_approved
    ):
        return await races.add_candidate_to_race(
            self.conn,
            race_id,
            full_name,
            affiliation_name,
            bio,
            display_name,
            ballot_order,
            is_approved,
        )

    async def update_race_candidate(
        self,
        candidate_race_id,
        full_name,
        affiliation_name,
        bio,
        display_name,
        ballot_order,
        is_approved,
    ):
        return await races.update_race_candidate(
            self.conn,
            candidate_race_id,
            full_name,
            affiliation_name,
            bio,
            display_name,
            ballot_order,
            is_approved,
        )

    async def remove_race_candidate(self, candidate_race_id):
        return await races.remove_race_candidate(self.conn, candidate_race_id)

    async def get_voter(self, organization_id, user_id):
        return await voters.get_voter(self.conn, organization_id, user_id)

    async def register_voter(self, organization_id, user_id):
        return await voters.register_voter(self.conn, organization_id, user_id)

    async def approve_voter(self, organization_id, user_id, approved_by):
        return await voters.approve_voter(self.conn, organization_id, user_id, approved_by)

    async def list_pending_voters(self, organization_id):
        return await voters.list_pending_voters(self.conn, organization_id)

    async def lock_voter_race(self, user_id, race_id):
        await votes.lock_voter_race(self.conn, user_id, race_id)

    async def count_voter_votes(self, race_id, user_id):
        return await votes.count_voter_votes(self.conn, race_id, user_id)

    async def has_vote(self, race_id, candidate_race_id, user_id):
        return await votes.has_vote(self.conn, race_id, candidate_race_id, user_id)

    async def insert_vote(self, race_id, candidate_race_id, user_id, channel):
        return await votes.insert_vote(self.conn, race_id, candidate_race_id, user_id, channel)

    async def race_results(self, race_id):
        return await votes.race_results(self.conn, race_id)


class PostgresBallotStore(BallotStore):
    """Ballot store whose transactions run on pooled asyncpg connections."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @asynccontextmanager
    async def transaction(
        self,
        ctx: RequestContext,
        isolation: Isolation = Isolation.READ_COMMITTED,
    ) -> AsyncIterator[BallotSession]:
        # Any exception, including cancellation, leaves the transaction block
        # and asyncpg rolls back before the connection returns to the pool.
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction(isolation=isolation.value):
                    await apply_session_settings(conn, ctx)
                    yield PostgresBallotSession(conn)
        except AppError:
            raise
        except Exception as exc:
            translated = translate_store_error(exc)
            if translated is None:
                raise
            logger.debug(
                f"Store error in request {ctx.request_id}: {exc!r} -> {translated.code}"
            )
            raise translated from exc

    async def process_due_elections(self, now: datetime) -> list[dict]:
        ctx = RequestContext.system()
        async with self.transaction(ctx) as session:
            return await elections.process_due_elections(session.conn, now)

    async def ping(self) -> bool:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
