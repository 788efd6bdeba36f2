"""Voting API routes: voter admission, vote casting and results."""

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from app.api.deps import (
    MAX_ID,
    CurrentContext,
    PathID,
    Store,
    resolve_organization_id,
    with_request_timeout,
)
from app.core.responses import success_response
from app.services import voting

router = APIRouter(prefix="/voting", tags=["Voting"])


# ============================================
# PYDANTIC MODELS
# ============================================


class VoterRegister(BaseModel):
    organization_id: int | None = Field(None, gt=0, le=MAX_ID)


class VoterApprove(BaseModel):
    organization_id: int | None = Field(None, gt=0, le=MAX_ID)
    user_id: int = Field(..., gt=0, le=MAX_ID)


class VoteCast(BaseModel):
    """Cast vote request model."""

    election_id: int = Field(..., gt=0, le=MAX_ID)
    race_id: int = Field(..., gt=0, le=MAX_ID)
    candidate_race_id: int = Field(..., gt=0, le=MAX_ID)
    channel: str = Field(default=voting.DEFAULT_CHANNEL, max_length=32)


# ============================================
# VOTER ADMISSION ENDPOINTS
# ============================================


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_voter(request: VoterRegister, ctx: CurrentContext, store: Store):
    """Request voter registration in an organization; an admin must approve it."""
    organization_id = resolve_organization_id(request.organization_id, ctx)
    voter = await with_request_timeout(voting.register_voter(store, ctx, organization_id))
    return success_response(data=voter, message="Voter registration submitted")


@router.post("/approve")
async def approve_voter(request: VoterApprove, ctx: CurrentContext, store: Store):
    """
    Approve a pending voter registration.

    Requires OWNER or ADMIN role in the organization.
    """
    organization_id = resolve_organization_id(request.organization_id, ctx)
    voter = await with_request_timeout(
        voting.approve_voter(store, ctx, organization_id, request.user_id)
    )
    return success_response(data=voter, message="Voter approved")


@router.get("/pending")
async def list_pending_voters(
    ctx: CurrentContext,
    store: Store,
    organization_id: int | None = Query(None, gt=0, le=MAX_ID),
):
    organization_id = resolve_organization_id(organization_id, ctx)
    voters = await with_request_timeout(
        voting.list_pending_voters(store, ctx, organization_id)
    )
    return success_response(data=voters, message=f"Found {len(voters)} pending voters")


@router.get("/status")
async def get_voter_status(
    ctx: CurrentContext,
    store: Store,
    organization_id: int | None = Query(None, gt=0, le=MAX_ID),
    user_id: int | None = Query(None, gt=0, le=MAX_ID),
):
    """Registration status of the caller, or of `user_id` for admins."""
    organization_id = resolve_organization_id(organization_id, ctx)
    voter_status = await with_request_timeout(
        voting.get_voter_status(store, ctx, organization_id, user_id)
    )
    return success_response(data=voter_status)


# ============================================
# VOTING ENDPOINTS
# ============================================


@router.post("/cast", status_code=status.HTTP_201_CREATED)
async def cast_vote(request: VoteCast, ctx: CurrentContext, store: Store):
    """Cast a vote for one candidate in one race of an OPEN election."""
    vote_id = await with_request_timeout(
        voting.cast_vote(
            store,
            ctx,
            request.election_id,
            request.race_id,
            request.candidate_race_id,
            request.channel,
        )
    )
    return success_response(data={"vote_id": vote_id}, message="Vote cast successfully")


@router.get("/results")
async def get_race_results(
    ctx: CurrentContext,
    store: Store,
    election_id: int = Query(..., gt=0, le=MAX_ID),
    race_id: int = Query(..., gt=0, le=MAX_ID),
):
    """Live vote counts for one race."""
    results = await with_request_timeout(
        voting.get_race_results(store, ctx, election_id, race_id)
    )
    return success_response(data=results)


@router.get("/election-results/{election_id}")
async def get_election_results(election_id: PathID, ctx: CurrentContext, store: Store):
    """Live vote counts for every race of an election."""
    results = await with_request_timeout(voting.get_election_results(store, ctx, election_id))
    return success_response(data=results)
