"""Voter registration queries."""

import asyncpg

VOTER_COLUMNS = """
    v.voter_id, v.organization_id, v.user_id, v.is_approved,
    v.registered_at, v.approved_at, v.approved_by
"""


async def get_voter(
    conn: asyncpg.Connection, organization_id: int, user_id: int
) -> dict | None:
    """Get a user's voter record in an organization."""
    row = await conn.fetchrow(
        f"""
        SELECT {VOTER_COLUMNS} FROM voters v
        WHERE v.organization_id = $1 AND v.user_id = $2
        """,
        organization_id,
        user_id,
    )
    return dict(row) if row else None


async def register_voter(conn: asyncpg.Connection, organization_id: int, user_id: int) -> dict:
    """Insert a pending voter registration."""
    row = await conn.fetchrow(
        f"""
        INSERT INTO voters AS v (organization_id, user_id, is_approved)
        VALUES ($1, $2, FALSE)
        RETURNING {VOTER_COLUMNS}
        """,
        organization_id,
        user_id,
    )
    return dict(row)


async def approve_voter(
    conn: asyncpg.Connection, organization_id: int, user_id: int, approved_by: int
) -> dict | None:
    """Approve a pending voter registration."""
    row = await conn.fetchrow(
        f"""
        UPDATE voters AS v
        SET is_approved = TRUE, approved_at = CURRENT_TIMESTAMP, approved_by = $3
        WHERE v.organization_id = $1 AND v.user_id = $2 AND v.is_approved = FALSE
        RETURNING {VOTER_COLUMNS}
        """,
        organization_id,
        user_id,
        approved_by,
    )
    return dict(row) if row else None


async def list_pending_voters(conn: asyncpg.Connection, organization_id: int) -> list[dict]:
    """List registrations awaiting approval, oldest first."""
    rows = await conn.fetch(
        f"""
        SELECT {VOTER_COLUMNS} FROM voters v
        WHERE v.organization_id = $1 AND v.is_approved = FALSE
        ORDER BY v.registered_at, v.voter_id
        """,
        organization_id,
    )
    return [dict(row) for row in rows]
