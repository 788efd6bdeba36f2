"""Race and candidate API routes."""

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from app.api.deps import (
    MAX_ID,
    MAX_INT,
    CurrentContext,
    PathID,
    Store,
    with_request_timeout,
)
from app.core.responses import success_response
from app.services import lifecycle

router = APIRouter(prefix="/races", tags=["Races"])


class RaceCreate(BaseModel):
    """Create race request model."""

    election_id: int = Field(..., gt=0, le=MAX_ID)
    race_name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    max_votes_per_voter: int = Field(default=1, ge=1, le=MAX_INT)
    max_winners: int = Field(default=1, ge=1, le=MAX_INT)


class RaceUpdate(BaseModel):
    """Update race request model."""

    race_name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    max_votes_per_voter: int = Field(default=1, ge=1, le=MAX_INT)
    max_winners: int = Field(default=1, ge=1, le=MAX_INT)


class CandidateIn(BaseModel):
    """Candidate details for adding to or updating in a race."""

    full_name: str = Field(..., min_length=1, max_length=255)
    affiliation_name: str | None = Field(None, max_length=255)
    bio: str | None = None
    display_name: str | None = Field(None, max_length=255)
    ballot_order: int | None = Field(None, ge=1, le=MAX_INT)
    is_approved: bool = True


# ============================================
# RACE ENDPOINTS
# ============================================


@router.get("/election/{election_id}")
async def list_races(election_id: PathID, ctx: CurrentContext, store: Store):
    """List an election's races with their candidates."""
    races = await with_request_timeout(lifecycle.list_races(store, ctx, election_id))
    return success_response(data=races)


@router.get("/{race_id}")
async def get_race(race_id: PathID, ctx: CurrentContext, store: Store):
    """Get a race with its election name and candidates."""
    race = await with_request_timeout(lifecycle.get_race(store, ctx, race_id))
    return success_response(data=race)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_race(request: RaceCreate, ctx: CurrentContext, store: Store):
    """
    Add a race to a DRAFT or SCHEDULED election.

    Requires OWNER or ADMIN role in the organization.
    """
    race = await with_request_timeout(
        lifecycle.create_race(
            store,
            ctx,
            request.election_id,
            request.race_name,
            request.description,
            request.max_votes_per_voter,
            request.max_winners,
        )
    )
    return success_response(data=race, message="Race created successfully")


@router.put("/{race_id}")
async def update_race(race_id: PathID, request: RaceUpdate, ctx: CurrentContext, store: Store):
    race = await with_request_timeout(
        lifecycle.update_race(
            store,
            ctx,
            race_id,
            request.race_name,
            request.description,
            request.max_votes_per_voter,
            request.max_winners,
        )
    )
    return success_response(data=race, message="Race updated successfully")


@router.delete("/{race_id}")
async def delete_race(race_id: PathID, ctx: CurrentContext, store: Store):
    await with_request_timeout(lifecycle.delete_race(store, ctx, race_id))
    return success_response(message="Race deleted successfully")


# ============================================
# CANDIDATE ENDPOINTS
# ============================================


@router.post("/{race_id}/candidates", status_code=status.HTTP_201_CREATED)
async def add_candidate(race_id: PathID, request: CandidateIn, ctx: CurrentContext, store: Store):
    """Add a candidate to a race; `display_name` defaults to `full_name`."""
    candidate = await with_request_timeout(
        lifecycle.add_candidate(
            store,
            ctx,
            race_id,
            request.full_name,
            request.affiliation_name,
            request.bio,
            request.display_name,
            request.ballot_order,
            request.is_approved,
        )
    )
    return success_response(data=candidate, message="Candidate added successfully")


@router.put("/{race_id}/candidates/{candidate_race_id}")
async def update_candidate(
    race_id: PathID,
    candidate_race_id: PathID,
    request: CandidateIn,
    ctx: CurrentContext,
    store: Store,
):
    candidate = await with_request_timeout(
        lifecycle.update_candidate(
            store,
            ctx,
            race_id,
            candidate_race_id,
            request.full_name,
            request.affiliation_name,
            request.bio,
            request.display_name,
            request.ballot_order,
            request.is_approved,
        )
    )
    return success_response(data=candidate, message="Candidate updated successfully")


@router.delete("/{race_id}/candidates/{candidate_race_id}")
async def remove_candidate(
    race_id: PathID, candidate_race_id: PathID, ctx: CurrentContext, store: Store
):
    await with_request_timeout(lifecycle.remove_candidate(store, ctx, race_id, candidate_race_id))
    return success_response(message="Candidate removed successfully")
