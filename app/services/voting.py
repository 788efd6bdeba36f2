"""Voting service functions."""

from app.core.context import Isolation, RequestContext
from app.core.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from app.core.logging_config import election_events, get_logger
from app.services.authorization import require_org_admin, require_org_member
from app.services.lifecycle import ElectionStatus, load_election
from app.store.base import BallotSession, BallotStore

logger = get_logger(__name__)

DEFAULT_CHANNEL = "WEB"


# ============================================
# VOTER ADMISSION
# ============================================


async def register_voter(store: BallotStore, ctx: RequestContext, organization_id: int) -> dict:
    """Request voter registration for the calling member; approval comes later."""
    async with store.transaction(ctx) as session:
        await require_org_member(session, ctx, organization_id, "register as voter")

        if await session.get_voter(organization_id, ctx.actor_user_id):
            raise ConflictError("Voter already registered", code="ALREADY_REGISTERED")

        voter = await session.register_voter(organization_id, ctx.actor_user_id)

    logger.info(f"User {ctx.actor_user_id} registered as voter in organization {organization_id}")
    return voter


async def approve_voter(
    store: BallotStore, ctx: RequestContext, organization_id: int, user_id: int
) -> dict:
    """Approve a pending registration (OWNER/ADMIN)."""
    async with store.transaction(ctx) as session:
        await require_org_admin(session, ctx, organization_id, "approve voters")

        voter = await session.approve_voter(organization_id, user_id, ctx.actor_user_id)
        if voter is None:
            raise NotFoundError("Voter", message="No pending voter registration found")

    logger.info(
        f"Voter {user_id} approved in organization {organization_id} by {ctx.actor_user_id}"
    )
    return voter


async def list_pending_voters(
    store: BallotStore, ctx: RequestContext, organization_id: int
) -> list[dict]:
    async with store.transaction(ctx) as session:
        await require_org_admin(session, ctx, organization_id, "list pending voters")
        return await session.list_pending_voters(organization_id)


async def get_voter_status(
    store: BallotStore,
    ctx: RequestContext,
    organization_id: int,
    user_id: int | None = None,
) -> dict:
    """
    Registration status of ``user_id`` (the caller when omitted).

    Members may look up themselves; looking up someone else needs OWNER/ADMIN.
    """
    target = user_id if user_id is not None else ctx.actor_user_id

    async with store.transaction(ctx) as session:
        if target == ctx.actor_user_id:
            await require_org_member(session, ctx, organization_id, "view voter status")
        else:
            await require_org_admin(session, ctx, organization_id, "view voter status")
        voter = await session.get_voter(organization_id, target)

    return {
        "organization_id": organization_id,
        "user_id": target,
        "is_registered": voter is not None,
        "is_approved": bool(voter and voter["is_approved"]),
        "registered_at": voter["registered_at"] if voter else None,
        "approved_at": voter["approved_at"] if voter else None,
    }


# ============================================
# VOTE CASTING
# ============================================


async def cast_vote(
    store: BallotStore,
    ctx: RequestContext,
    election_id: int,
    race_id: int,
    candidate_race_id: int,
    channel: str = DEFAULT_CHANNEL,
) -> int:
    """
    Cast one vote for the calling voter and return the new vote ID.

    Checks, in order: election exists and is OPEN, race belongs to the
    election, candidate belongs to the race and is approved, voter is
    approved in the election's organization, the voter still has votes left
    in the race, and this exact vote was not cast before.

    The count and duplicate checks run after the per-(voter, race) advisory
    lock is held, at READ COMMITTED, so each sees every vote committed by the
    previous lock holder. The vote trigger and the unique constraint enforce
    the same rules in the store.
    """
    channel = (channel or "").strip().upper()
    if not channel:
        raise InvalidArgumentError("channel is required")
    if ctx.actor_user_id is None:
        raise UnauthorizedError("Authentication required")

    voter_id = ctx.actor_user_id

    async with store.transaction(ctx, Isolation.READ_COMMITTED) as session:
        election = await load_election(session, election_id)
        if election["status"] != ElectionStatus.OPEN:
            raise InvalidStateError("Election not open for voting")

        race = await session.get_race(race_id)
        if not race or race["election_id"] != election_id:
            raise NotFoundError("Race", message="Race not found in this election")

        candidate = await session.get_race_candidate(candidate_race_id)
        if not candidate or candidate["race_id"] != race_id or not candidate["is_approved"]:
            raise NotFoundError("Candidate", message="Candidate not found in this race")

        voter = await session.get_voter(election["organization_id"], voter_id)
        if not voter or not voter["is_approved"]:
            election_events.log_access_denied(
                "cast vote",
                voter_id,
                organization_id=election["organization_id"],
                reason="voter not approved",
                request_id=ctx.request_id,
            )
            raise UnauthorizedError("Voter not approved")

        await session.lock_voter_race(voter_id, race_id)

        if await session.count_voter_votes(race_id, voter_id) >= race["max_votes_per_voter"]:
            raise ConflictError("Maximum votes reached for this race", code="MAX_VOTES_REACHED")
        if await session.has_vote(race_id, candidate_race_id, voter_id):
            raise ConflictError("Duplicate vote", code="DUPLICATE_VOTE")

        vote_id = await session.insert_vote(race_id, candidate_race_id, voter_id, channel)

    election_events.log_vote_cast(
        election_id, race_id, vote_id, channel, request_id=ctx.request_id
    )
    return vote_id


# ============================================
# RESULTS
# ============================================


def rank_results(rows: list[dict], max_winners: int) -> list[dict]:
    """Flag the leading ``max_winners`` candidates that received any votes."""
    ranked = []
    for position, row in enumerate(rows):
        ranked.append(
            {**row, "is_winner": position < max_winners and row["vote_count"] > 0}
        )
    return ranked


async def _race_results(session: BallotSession, race: dict) -> dict:
    rows = await session.race_results(race["race_id"])
    candidates = rank_results(rows, race["max_winners"])
    return {
        "race_id": race["race_id"],
        "race_name": race["race_name"],
        "max_votes_per_voter": race["max_votes_per_voter"],
        "max_winners": race["max_winners"],
        "total_votes": sum(row["vote_count"] for row in candidates),
        "candidates": candidates,
    }


async def get_race_results(
    store: BallotStore, ctx: RequestContext, election_id: int, race_id: int
) -> dict:
    """Current vote counts for one race, recomputed from the store."""
    async with store.transaction(ctx) as session:
        election = await load_election(session, election_id)
        await require_org_member(session, ctx, election["organization_id"], "view results")

        race = await session.get_race(race_id)
        if not race or race["election_id"] != election_id:
            raise NotFoundError("Race", message="Race not found in this election")

        results = await _race_results(session, race)

    return {"election_id": election_id, "status": election["status"], **results}


async def get_election_results(store: BallotStore, ctx: RequestContext, election_id: int) -> dict:
    async with store.transaction(ctx) as session:
        election = await load_election(session, election_id)
        await require_org_member(session, ctx, election["organization_id"], "view results")

        race_results = [
            await _race_results(session, race)
            for race in await session.list_races(election_id)
        ]

    return {
        "election_id": election_id,
        "election_name": election["election_name"],
        "status": election["status"],
        "total_votes": sum(race["total_votes"] for race in race_results),
        "races": race_results,
    }
