"""Race and candidate-in-race queries."""

import asyncpg

RACE_COLUMNS = """
    er.race_id, er.election_id, er.race_name, er.description,
    er.max_votes_per_voter, er.max_winners, er.created_at
"""

CANDIDATE_COLUMNS = """
    cr.candidate_race_id, cr.race_id, cr.candidate_id, cr.display_name,
    cr.ballot_order, c.full_name, c.affiliation_name, c.bio, c.is_approved
"""


# ============================================
# RACE OPERATIONS
# ============================================


async def get_race(conn: asyncpg.Connection, race_id: int) -> dict | None:
    """Get race by ID."""
    row = await conn.fetchrow(
        f"SELECT {RACE_COLUMNS} FROM election_races er WHERE er.race_id = $1",
        race_id,
    )
    return dict(row) if row else None


async def list_races(conn: asyncpg.Connection, election_id: int) -> list[dict]:
    """List all races for an election."""
    rows = await conn.fetch(
        f"""
        SELECT {RACE_COLUMNS} FROM election_races er
        WHERE er.election_id = $1
        ORDER BY er.race_id
        """,
        election_id,
    )
    return [dict(row) for row in rows]


async def insert_race(
    conn: asyncpg.Connection,
    election_id: int,
    race_name: str,
    description: str | None,
    max_votes_per_voter: int,
    max_winners: int,
) -> dict:
    """Add a race to an election."""
    row = await conn.fetchrow(
        f"""
        INSERT INTO election_races AS er (
            election_id, race_name, description, max_votes_per_voter, max_winners
        )
        VALUES ($1, $2, $3, $4, $5)
        RETURNING {RACE_COLUMNS}
        """,
        election_id,
        race_name,
        description,
        max_votes_per_voter,
        max_winners,
    )
    return dict(row)


async def update_race(
    conn: asyncpg.Connection,
    race_id: int,
    race_name: str,
    description: str | None,
    max_votes_per_voter: int,
    max_winners: int,
) -> dict | None:
    """Update a race."""
    row = await conn.fetchrow(
        f"""
        UPDATE election_races AS er
        SET race_name = $2, description = $3, max_votes_per_voter = $4, max_winners = $5
        WHERE er.race_id = $1
        RETURNING {RACE_COLUMNS}
        """,
        race_id,
        race_name,
        description,
        max_votes_per_voter,
        max_winners,
    )
    return dict(row) if row else None


async def delete_race(conn: asyncpg.Connection, race_id: int) -> bool:
    """Delete a race and its candidate associations."""
    result = await conn.execute("DELETE FROM election_races WHERE race_id = $1", race_id)
    return int(result.split()[-1]) > 0


# ============================================
# CANDIDATE OPERATIONS
# ============================================


async def get_race_candidate(
    conn: asyncpg.Connection, candidate_race_id: int
) -> dict | None:
    """Get a candidate-in-race association with its candidate data."""
    row = await conn.fetchrow(
        f"""
        SELECT {CANDIDATE_COLUMNS}
        FROM candidate_races cr
        JOIN candidates c ON cr.candidate_id = c.candidate_id
        WHERE cr.candidate_race_id = $1
        """,
        candidate_race_id,
    )
    return dict(row) if row else None


async def list_race_candidates(conn: asyncpg.Connection, race_id: int) -> list[dict]:
    """List candidates of a race in ballot order."""
    rows = await conn.fetch(
        f"""
        SELECT {CANDIDATE_COLUMNS}
        FROM candidate_races cr
        JOIN candidates c ON cr.candidate_id = c.candidate_id
        WHERE cr.race_id = $1
        ORDER BY cr.ballot_order NULLS LAST, cr.display_name, cr.candidate_race_id
        """,
        race_id,
    )
    return [dict(row) for row in rows]


async def add_candidate_to_race(
    conn: asyncpg.Connection,
    race_id: int,
    full_name: str,
    affiliation_name: str | None,
    bio: str | None,
    display_name: str,
    ballot_order: int | None,
    is_approved: bool,
) -> dict:
    """Create a candidate and associate it with a race."""
    candidate_id = await conn.fetchval(
        """
        INSERT INTO candidates (full_name, affiliation_name, bio, is_approved)
        VALUES ($1, $2, $3, $4)
        RETURNING candidate_id
        """,
        full_name,
        affiliation_name,
        bio,
        is_approved,
    )
    candidate_race_id = await conn.fetchval(
        """
        INSERT INTO candidate_races (candidate_id, race_id, display_name, ballot_order)
        VALUES ($1, $2, $3, $4)
        RETURNING candidate_race_id
        """,
        candidate_id,
        race_id,
        display_name,
        ballot_order,
    )
    return await get_race_candidate(conn, candidate_race_id)


async def update_race_candidate(
    conn: asyncpg.Connection,
    candidate_race_id: int,
    full_name: str,
    affiliation_name: str | None,
    bio: str | None,
    display_name: str,
    ballot_order: int | None,
    is_approved: bool,
) -> dict | None:
    """Update a candidate and its ballot display data."""
    candidate_id = await conn.fetchval(
        """
        UPDATE candidate_races
        SET display_name = $2, ballot_order = $3
        WHERE candidate_race_id = $1
        RETURNING candidate_id
        """,
        candidate_race_id,
        display_name,
        ballot_order,
    )
    if candidate_id is None:
        return None

    await conn.execute(
        """
        UPDATE candidates
        SET full_name = $2, affiliation_name = $3, bio = $4, is_approved = $5
        WHERE candidate_id = $1
        """,
        candidate_id,
        full_name,
        affiliation_name,
        bio,
        is_approved,
    )
    return await get_race_candidate(conn, candidate_race_id)


async def remove_race_candidate(conn: asyncpg.Connection, candidate_race_id: int) -> bool:
    """Remove a candidate from a race."""
    result = await conn.execute(
        "DELETE FROM candidate_races WHERE candidate_race_id = $1",
        candidate_race_id,
    )
    return int(result.split()[-1]) > 0
