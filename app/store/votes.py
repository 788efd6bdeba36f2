"""Vote queries."""

import asyncpg

# Namespace for pg_advisory_xact_lock(int, int) keys; the lock is released at
# commit or rollback.
_VOTE_LOCK_NAMESPACE = 7401


async def lock_voter_race(conn: asyncpg.Connection, user_id: int, race_id: int) -> None:
    """Serialize concurrent vote attempts of one voter in one race."""
    await conn.execute(
        "SELECT pg_advisory_xact_lock($1::int, hashtext($2::text))",
        _VOTE_LOCK_NAMESPACE,
        f"{user_id}:{race_id}",
    )


async def count_voter_votes(conn: asyncpg.Connection, race_id: int, user_id: int) -> int:
    """Number of votes a voter has recorded in a race."""
    result = await conn.fetchval(
        "SELECT COUNT(*) FROM votes WHERE race_id = $1 AND voter_user_id = $2",
        race_id,
        user_id,
    )
    return result or 0


async def has_vote(
    conn: asyncpg.Connection, race_id: int, candidate_race_id: int, user_id: int
) -> bool:
    """Check whether this exact (voter, race, candidate) vote exists."""
    result = await conn.fetchval(
        """
        SELECT EXISTS(
            SELECT 1 FROM votes
            WHERE race_id = $1 AND candidate_race_id = $2 AND voter_user_id = $3
        )
        """,
        race_id,
        candidate_race_id,
        user_id,
    )
    return result is True


async def insert_vote(
    conn: asyncpg.Connection,
    race_id: int,
    candidate_race_id: int,
    user_id: int,
    channel: str,
) -> int:
    """Record a vote and return its ID."""
    return await conn.fetchval(
        """
        INSERT INTO votes (race_id, candidate_race_id, voter_user_id, channel)
        VALUES ($1, $2, $3, $4)
        RETURNING vote_id
        """,
        race_id,
        candidate_race_id,
        user_id,
        channel,
    )


async def race_results(conn: asyncpg.Connection, race_id: int) -> list[dict]:
    """
    Vote counts for every candidate of a race, including those with none.

    Ordered by count desc, then ballot_order asc (nulls last), then
    display name asc.
    """
    rows = await conn.fetch(
        """
        SELECT cr.candidate_race_id, cr.candidate_id, cr.display_name,
               cr.ballot_order, COUNT(v.vote_id)::int AS vote_count
        FROM candidate_races cr
        LEFT JOIN votes v ON v.candidate_race_id = cr.candidate_race_id
        WHERE cr.race_id = $1
        GROUP BY cr.candidate_race_id, cr.candidate_id, cr.display_name, cr.ballot_order
        ORDER BY vote_count DESC, cr.ballot_order ASC NULLS LAST, cr.display_name ASC
        """,
        race_id,
    )
    return [dict(row) for row in rows]
