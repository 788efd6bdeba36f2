"""
Election lifecycle engine.

Owns the election status state machine:

    DRAFT --schedule--> SCHEDULED --(start_at elapsed)--> OPEN --(end_at elapsed)--> CLOSED
    DRAFT / SCHEDULED --open--> OPEN
    OPEN --close--> CLOSED

No transition leaves CLOSED and none moves status backward. ARCHIVED is a
terminal state reserved for future use; nothing transitions into it yet.

Every operation runs in one ballot store transaction and checks the actor's
organization role explicitly; the store's own constraints stay in place as a
second line of defense.
"""

from datetime import datetime
from enum import Enum

from app.core.context import RequestContext
from app.core.errors import (
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from app.core.logging_config import election_events, get_logger
from app.services.authorization import require_org_admin, require_org_member
from app.store.base import BallotSession, BallotStore
from app.utils.time import ensure_utc, now_utc

logger = get_logger(__name__)


class ElectionStatus(str, Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    ARCHIVED = "ARCHIVED"


# Position along the lifecycle; status never moves to a lower rank.
STATUS_RANK = {
    ElectionStatus.DRAFT: 0,
    ElectionStatus.SCHEDULED: 1,
    ElectionStatus.OPEN: 2,
    ElectionStatus.CLOSED: 3,
    ElectionStatus.ARCHIVED: 4,
}

ALLOWED_TRANSITIONS: dict[ElectionStatus, frozenset[ElectionStatus]] = {
    ElectionStatus.DRAFT: frozenset({ElectionStatus.SCHEDULED, ElectionStatus.OPEN}),
    ElectionStatus.SCHEDULED: frozenset({ElectionStatus.OPEN}),
    ElectionStatus.OPEN: frozenset({ElectionStatus.CLOSED}),
    ElectionStatus.CLOSED: frozenset(),
    ElectionStatus.ARCHIVED: frozenset(),
}

# Races and candidates may only change before voting starts.
EDITABLE_STATUSES = frozenset({ElectionStatus.DRAFT, ElectionStatus.SCHEDULED})


def can_transition(current: str, target: str) -> bool:
    """Check whether ``current -> target`` is a legal status transition."""
    return ElectionStatus(target) in ALLOWED_TRANSITIONS[ElectionStatus(current)]


def sources_for(target: ElectionStatus) -> tuple[str, ...]:
    """Statuses from which ``target`` can be reached."""
    return tuple(
        source.value
        for source, targets in ALLOWED_TRANSITIONS.items()
        if target in targets
    )


def ensure_editable(election: dict, what: str = "races") -> None:
    """Raise InvalidStateError once an election is OPEN or later."""
    if ElectionStatus(election["status"]) not in EDITABLE_STATUSES:
        raise InvalidStateError(
            f"Cannot modify {what} of an election in {election['status']} status"
        )


def _clean_name(name: str | None, field: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidArgumentError(f"{field} is required")
    return cleaned


def _validate_window(start_at: datetime | None, end_at: datetime | None) -> None:
    if start_at is not None and end_at is not None and end_at <= start_at:
        raise InvalidArgumentError("end_at must be after start_at")


async def load_election(
    session: BallotSession, election_id: int, *, for_update: bool = False
) -> dict:
    election = await session.get_election(election_id, for_update=for_update)
    if not election:
        raise NotFoundError("Election")
    return election


# ============================================
# ELECTION CRUD
# ============================================


async def create_election(
    store: BallotStore,
    ctx: RequestContext,
    organization_id: int,
    name: str,
    description: str | None = None,
) -> dict:
    """Create a DRAFT election in ``organization_id`` (OWNER/ADMIN only)."""
    election_name = _clean_name(name, "election_name")

    async with store.transaction(ctx) as session:
        await require_org_admin(session, ctx, organization_id, "create elections")
        election = await session.insert_election(
            organization_id, election_name, description, ctx.actor_user_id
        )

    logger.info(
        f"Election {election['election_id']} created in organization {organization_id}"
    )
    return election


async def update_election(
    store: BallotStore,
    ctx: RequestContext,
    election_id: int,
    name: str,
    description: str | None = None,
    start_at: datetime | None = None,
    end_at: datetime | None = None,
) -> dict:
    """
    Update name, description and time window of a DRAFT or SCHEDULED election.

    Changing the window of a SCHEDULED election reschedules its automatic
    transitions without changing its status.
    """
    election_name = _clean_name(name, "election_name")
    start_at, end_at = ensure_utc(start_at), ensure_utc(end_at)
    _validate_window(start_at, end_at)

    async with store.transaction(ctx) as session:
        election = await load_election(session, election_id, for_update=True)
        await require_org_admin(session, ctx, election["organization_id"], "update election")

        if ElectionStatus(election["status"]) not in EDITABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot update an election in {election['status']} status"
            )
        if election["status"] == ElectionStatus.SCHEDULED and (
            start_at is None or end_at is None
        ):
            raise InvalidArgumentError("A scheduled election needs both start_at and end_at")

        updated = await session.update_election(
            election_id, election_name, description, start_at, end_at
        )
        if updated is None:
            raise InvalidStateError("Election is no longer editable")

    return updated


async def delete_election(store: BallotStore, ctx: RequestContext, election_id: int) -> None:
    """
    Permanently delete an election with its races and candidate associations.

    OPEN elections must be closed first, and no election with recorded votes
    can be deleted, whatever its status.
    """
    async with store.transaction(ctx) as session:
        election = await load_election(session, election_id, for_update=True)
        await require_org_admin(session, ctx, election["organization_id"], "delete election")

        if election["status"] == ElectionStatus.OPEN:
            raise InvalidStateError("Cannot delete an open election; close it first")
        if await session.count_election_votes(election_id) > 0:
            raise InvalidStateError("Cannot delete an election with recorded votes")

        if not await session.delete_election(election_id):
            raise InvalidStateError("Election could not be deleted in its current state")

    logger.info(f"Election {election_id} deleted")


async def get_election(store: BallotStore, ctx: RequestContext, election_id: int) -> dict:
    """Election with its races and their candidates (organization members only)."""
    async with store.transaction(ctx) as session:
        election = await load_election(session, election_id)
        await require_org_member(session, ctx, election["organization_id"], "view election")

        election_races = await _races_with_candidates(session, election_id)

    return {**election, "races": election_races}


async def list_elections(
    store: BallotStore,
    ctx: RequestContext,
    organization_id: int,
    status: str | None = None,
) -> list[dict]:
    """List an organization's elections (organization members only)."""
    if status is not None:
        try:
            status = ElectionStatus(status.upper()).value
        except ValueError:
            raise InvalidArgumentError(f"Unknown election status: {status}") from None

    async with store.transaction(ctx) as session:
        await require_org_member(session, ctx, organization_id, "list elections")
        return await session.list_elections(organization_id, status)


# ============================================
# ELECTION LIFECYCLE
# ============================================


async def schedule_election(
    store: BallotStore,
    ctx: RequestContext,
    election_id: int,
    start_at: datetime,
    end_at: datetime,
) -> dict:
    """Set the voting window and move DRAFT -> SCHEDULED."""
    if start_at is None or end_at is None:
        raise InvalidArgumentError("start_at and end_at are required")
    start_at, end_at = ensure_utc(start_at), ensure_utc(end_at)
    _validate_window(start_at, end_at)

    async with store.transaction(ctx) as session:
        election = await load_election(session, election_id, for_update=True)
        await require_org_admin(session, ctx, election["organization_id"], "schedule election")

        if not can_transition(election["status"], ElectionStatus.SCHEDULED):
            raise InvalidStateError(
                f"Cannot schedule an election in {election['status']} status"
            )

        scheduled = await session.schedule_election(election_id, start_at, end_at)
        if scheduled is None:
            raise InvalidStateError("Election status changed concurrently")

    logger.info(f"Election {election_id} scheduled from {start_at} to {end_at}")
    return scheduled


async def _manual_transition(
    store: BallotStore,
    ctx: RequestContext,
    election_id: int,
    target: ElectionStatus,
    verb: str,
    action: str,
) -> dict:
    async with store.transaction(ctx) as session:
        election = await load_election(session, election_id, for_update=True)
        await require_org_admin(session, ctx, election["organization_id"], f"{verb} election")

        if not can_transition(election["status"], target):
            raise InvalidStateError(
                f"Cannot {verb} an election in {election['status']} status"
            )

        updated = await session.transition_election(
            election_id, sources_for(target), target.value, now_utc()
        )
        if updated is None:
            raise InvalidStateError("Election status changed concurrently")

    election_events.log_transition(
        election_id,
        updated["election_name"],
        action,
        source="manual",
        actor_user_id=ctx.actor_user_id,
        request_id=ctx.request_id,
    )
    return updated


async def open_election(store: BallotStore, ctx: RequestContext, election_id: int) -> dict:
    """Open a DRAFT or SCHEDULED election for voting now."""
    return await _manual_transition(
        store, ctx, election_id, ElectionStatus.OPEN, "open", "opened"
    )


async def close_election(store: BallotStore, ctx: RequestContext, election_id: int) -> dict:
    """Close an OPEN election now."""
    return await _manual_transition(
        store, ctx, election_id, ElectionStatus.CLOSED, "close", "closed"
    )


# ============================================
# RACE OPERATIONS
# ============================================


def _validate_limits(max_votes_per_voter: int, max_winners: int) -> None:
    if max_votes_per_voter < 1:
        raise InvalidArgumentError("max_votes_per_voter must be at least 1")
    if max_winners < 1:
        raise InvalidArgumentError("max_winners must be at least 1")


async def _races_with_candidates(session: BallotSession, election_id: int) -> list[dict]:
    election_races = await session.list_races(election_id)
    for race in election_races:
        race["candidates"] = await session.list_race_candidates(race["race_id"])
    return election_races


async def _load_editable_race(
    session: BallotSession, ctx: RequestContext, race_id: int, operation: str
) -> tuple[dict, dict]:
    race = await session.get_race(race_id)
    if not race:
        raise NotFoundError("Race")
    election = await load_election(session, race["election_id"], for_update=True)
    await require_org_admin(session, ctx, election["organization_id"], operation)
    ensure_editable(election)
    return race, election


async def get_race(store: BallotStore, ctx: RequestContext, race_id: int) -> dict:
    """Race with its election name and candidates in ballot order (organization members only)."""
    async with store.transaction(ctx) as session:
        race = await session.get_race(race_id)
        if not race:
            raise NotFoundError("Race")
        election = await load_election(session, race["election_id"])
        await require_org_member(session, ctx, election["organization_id"], "view race")
        candidates = await session.list_race_candidates(race_id)

    return {
        **race,
        "election_name": election["election_name"],
        "organization_id": election["organization_id"],
        "candidates": candidates,
    }


async def list_races(store: BallotStore, ctx: RequestContext, election_id: int) -> list[dict]:
    """Races of an election, each with its candidates (organization members only)."""
    async with store.transaction(ctx) as session:
        election = await load_election(session, election_id)
        await require_org_member(session, ctx, election["organization_id"], "view races")
        return await _races_with_candidates(session, election_id)


async def create_race(
    store: BallotStore,
    ctx: RequestContext,
    election_id: int,
    name: str,
    description: str | None = None,
    max_votes_per_voter: int = 1,
    max_winners: int = 1,
) -> dict:
    race_name = _clean_name(name, "race_name")
    _validate_limits(max_votes_per_voter, max_winners)

    async with store.transaction(ctx) as session:
        election = await load_election(session, election_id, for_update=True)
        await require_org_admin(session, ctx, election["organization_id"], "create races")
        ensure_editable(election)
        return await session.insert_race(
            election_id, race_name, description, max_votes_per_voter, max_winners
        )


async def update_race(
    store: BallotStore,
    ctx: RequestContext,
    race_id: int,
    name: str,
    description: str | None = None,
    max_votes_per_voter: int = 1,
    max_winners: int = 1,
) -> dict:
    race_name = _clean_name(name, "race_name")
    _validate_limits(max_votes_per_voter, max_winners)

    async with store.transaction(ctx) as session:
        await _load_editable_race(session, ctx, race_id, "update race")
        updated = await session.update_race(
            race_id, race_name, description, max_votes_per_voter, max_winners
        )
        if updated is None:
            raise NotFoundError("Race")
        return updated


async def delete_race(store: BallotStore, ctx: RequestContext, race_id: int) -> None:
    async with store.transaction(ctx) as session:
        await _load_editable_race(session, ctx, race_id, "delete race")
        if not await session.delete_race(race_id):
            raise NotFoundError("Race")


# ============================================
# CANDIDATE OPERATIONS
# ============================================


async def add_candidate(
    store: BallotStore,
    ctx: RequestContext,
    race_id: int,
    full_name: str,
    affiliation_name: str | None = None,
    bio: str | None = None,
    display_name: str | None = None,
    ballot_order: int | None = None,
    is_approved: bool = True,
) -> dict:
    """Add a candidate to a race of a DRAFT or SCHEDULED election."""
    full_name = _clean_name(full_name, "full_name")
    display_name = (display_name or "").strip() or full_name

    async with store.transaction(ctx) as session:
        await _load_editable_race(session, ctx, race_id, "add candidates")
        return await session.add_candidate_to_race(
            race_id, full_name, affiliation_name, bio, display_name, ballot_order, is_approved
        )


async def _load_race_candidate(
    session: BallotSession, race_id: int, candidate_race_id: int
) -> dict:
    candidate = await session.get_race_candidate(candidate_race_id)
    if not candidate or candidate["race_id"] != race_id:
        raise NotFoundError("Candidate", message="Candidate not found in this race")
    return candidate


async def update_candidate(
    store: BallotStore,
    ctx: RequestContext,
    race_id: int,
    candidate_race_id: int,
    full_name: str,
    affiliation_name: str | None = None,
    bio: str | None = None,
    display_name: str | None = None,
    ballot_order: int | None = None,
    is_approved: bool = True,
) -> dict:
    full_name = _clean_name(full_name, "full_name")
    display_name = (display_name or "").strip() or full_name

    async with store.transaction(ctx) as session:
        await _load_editable_race(session, ctx, race_id, "update candidates")
        await _load_race_candidate(session, race_id, candidate_race_id)
        updated = await session.update_race_candidate(
            candidate_race_id,
            full_name,
            affiliation_name,
            bio,
            display_name,
            ballot_order,
            is_approved,
        )
        if updated is None:
            raise NotFoundError("Candidate")
        return updated


async def remove_candidate(
    store: BallotStore, ctx: RequestContext, race_id: int, candidate_race_id: int
) -> None:
    async with store.transaction(ctx) as session:
        await _load_editable_race(session, ctx, race_id, "remove candidates")
        await _load_race_candidate(session, race_id, candidate_race_id)
        if not await session.remove_race_candidate(candidate_race_id):
            raise NotFoundError("Candidate")
