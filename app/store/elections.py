"""Election queries."""

from datetime import datetime

import asyncpg

ELECTION_COLUMNS = """
    e.election_id, e.organization_id, e.election_name, e.description,
    e.start_at, e.end_at, e.status, e.created_by, e.created_at,
    e.updated_at, e.opened_at, e.closed_at
"""


# ============================================
# MEMBERSHIP
# ============================================


async def get_member_role(
    conn: asyncpg.Connection, organization_id: int, user_id: int
) -> str | None:
    """Role of an active organization member, or None."""
    return await conn.fetchval(
        """
        SELECT role_name FROM org_members
        WHERE organization_id = $1 AND user_id = $2 AND is_active = TRUE
        """,
        organization_id,
        user_id,
    )


# ============================================
# ELECTION CRUD
# ============================================


async def get_election(
    conn: asyncpg.Connection, election_id: int, for_update: bool = False
) -> dict | None:
    """Get election by ID, optionally locking the row for the transaction."""
    query = f"SELECT {ELECTION_COLUMNS} FROM elections e WHERE e.election_id = $1"
    if for_update:
        query += " FOR UPDATE"
    row = await conn.fetchrow(query, election_id)
    return dict(row) if row else None


async def list_elections(
    conn: asyncpg.Connection, organization_id: int, status: str | None = None
) -> list[dict]:
    """List an organization's elections, newest first."""
    query = f"SELECT {ELECTION_COLUMNS} FROM elections e WHERE e.organization_id = $1"
    params: list = [organization_id]

    if status:
        params.append(status)
        query += f" AND e.status = ${len(params)}"

    query += " ORDER BY e.created_at DESC, e.election_id DESC"
    rows = await conn.fetch(query, *params)
    return [dict(row) for row in rows]


async def insert_election(
    conn: asyncpg.Connection,
    organization_id: int,
    election_name: str,
    description: str | None,
    created_by: int,
) -> dict:
    """Insert a new DRAFT election."""
    row = await conn.fetchrow(
        f"""
        INSERT INTO elections AS e (organization_id, election_name, description, status, created_by)
        VALUES ($1, $2, $3, 'DRAFT', $4)
        RETURNING {ELECTION_COLUMNS}
        """,
        organization_id,
        election_name,
        description,
        created_by,
    )
    return dict(row)


async def update_election(
    conn: asyncpg.Connection,
    election_id: int,
    election_name: str,
    description: str | None,
    start_at: datetime | None,
    end_at: datetime | None,
) -> dict | None:
    """Update election details while it is still editable."""
    row = await conn.fetchrow(
        f"""
        UPDATE elections AS e
        SET election_name = $2, description = $3, start_at = $4, end_at = $5,
            updated_at = CURRENT_TIMESTAMP
        WHERE e.election_id = $1 AND e.status IN ('DRAFT', 'SCHEDULED')
        RETURNING {ELECTION_COLUMNS}
        """,
        election_id,
        election_name,
        description,
        start_at,
        end_at,
    )
    return dict(row) if row else None


async def delete_election(conn: asyncpg.Connection, election_id: int) -> bool:
    """Delete an election; races and candidate associations cascade."""
    result = await conn.execute(
        "DELETE FROM elections WHERE election_id = $1 AND status <> 'OPEN'",
        election_id,
    )
    return int(result.split()[-1]) > 0


async def count_election_votes(conn: asyncpg.Connection, election_id: int) -> int:
    """Count votes recorded in any race of an election."""
    result = await conn.fetchval(
        """
        SELECT COUNT(*)
        FROM votes v
        JOIN election_races er ON v.race_id = er.race_id
        WHERE er.election_id = $1
        """,
        election_id,
    )
    return result or 0


# ============================================
# ELECTION LIFECYCLE
# ============================================


async def schedule_election(
    conn: asyncpg.Connection, election_id: int, start_at: datetime, end_at: datetime
) -> dict | None:
    """Set start/end and move DRAFT -> SCHEDULED."""
    row = await conn.fetchrow(
        f"""
        UPDATE elections AS e
        SET start_at = $2, end_at = $3, status = 'SCHEDULED',
            updated_at = CURRENT_TIMESTAMP
        WHERE e.election_id = $1 AND e.status = 'DRAFT'
        RETURNING {ELECTION_COLUMNS}
        """,
        election_id,
        start_at,
        end_at,
    )
    return dict(row) if row else None


async def transition_election(
    conn: asyncpg.Connection,
    election_id: int,
    from_statuses: tuple[str, ...],
    to_status: str,
    at: datetime,
) -> dict | None:
    """
    Move an election to ``to_status`` if its current status is one of
    ``from_statuses``. Records ``opened_at``/``closed_at`` for OPEN/CLOSED.

    Returns None when the status guard did not match.
    """
    row = await conn.fetchrow(
        f"""
        UPDATE elections AS e
        SET status = $3,
            opened_at = CASE WHEN $3::text = 'OPEN' THEN $4 ELSE e.opened_at END,
            closed_at = CASE WHEN $3::text = 'CLOSED' THEN $4 ELSE e.closed_at END,
            updated_at = $4
        WHERE e.election_id = $1 AND e.status = ANY($2::text[])
        RETURNING {ELECTION_COLUMNS}
        """,
        election_id,
        list(from_statuses),
        to_status,
        at,
    )
    return dict(row) if row else None


async def process_due_elections(conn: asyncpg.Connection, now: datetime) -> list[dict]:
    """
    Open due SCHEDULED elections and close due OPEN elections in one statement.

    Both data-modifying CTEs see the same snapshot, so an election is moved at
    most one step per call.
    """
    rows = await conn.fetch(
        """
        WITH opened AS (
            UPDATE elections
            SET status = 'OPEN', opened_at = $1, updated_at = $1
            WHERE status = 'SCHEDULED' AND start_at IS NOT NULL AND start_at <= $1
            RETURNING election_id, election_name, 'opened'::text AS action
        ),
        closed AS (
            UPDATE elections
            SET status = 'CLOSED', closed_at = $1, updated_at = $1
            WHERE status = 'OPEN' AND end_at IS NOT NULL AND end_at <= $1
            RETURNING election_id, election_name, 'closed'::text AS action
        )
        SELECT election_id, election_name, action FROM (
            SELECT election_id, election_name, action, 0 AS phase FROM opened
            UNION ALL
            SELECT election_id, election_name, action, 1 AS phase FROM closed
        ) due
        ORDER BY phase, election_id
        """,
        now,
    )
    return [dict(row) for row in rows]
