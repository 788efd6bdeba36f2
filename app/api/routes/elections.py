"""Elections API routes."""

from datetime import datetime

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
from app.services import lifecycle

router = APIRouter(prefix="/elections", tags=["Elections"])


# ============================================
# PYDANTIC MODELS
# ============================================


class ElectionCreate(BaseModel):
    """Create election request model."""

    organization_id: int | None = Field(None, gt=0, le=MAX_ID)
    election_name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None


class ElectionUpdate(BaseModel):
    """Update election request model."""

    election_name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None


class ElectionSchedule(BaseModel):
    """Voting window for scheduling an election."""

    start_at: datetime
    end_at: datetime


# ============================================
# ELECTION CRUD ENDPOINTS
# ============================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_election(request: ElectionCreate, ctx: CurrentContext, store: Store):
    """
    Create a new DRAFT election.

    Requires OWNER or ADMIN role in the organization.
    """
    organization_id = resolve_organization_id(request.organization_id, ctx)
    election = await with_request_timeout(
        lifecycle.create_election(
            store, ctx, organization_id, request.election_name, request.description
        )
    )
    return success_response(data=election, message="Election created successfully")


@router.get("")
async def list_elections(
    ctx: CurrentContext,
    store: Store,
    organization_id: int | None = Query(None, gt=0, le=MAX_ID),
    status_filter: str | None = Query(None, alias="status"),
):
    """List elections of an organization (members only)."""
    organization_id = resolve_organization_id(organization_id, ctx)
    elections = await with_request_timeout(
        lifecycle.list_elections(store, ctx, organization_id, status_filter)
    )
    return success_response(data=elections, message=f"Found {len(elections)} elections")


@router.get("/{election_id}")
async def get_election(election_id: PathID, ctx: CurrentContext, store: Store):
    """Get election details with races and candidates."""
    election = await with_request_timeout(lifecycle.get_election(store, ctx, election_id))
    return success_response(data=election)


@router.put("/{election_id}")
async def update_election(
    election_id: PathID, request: ElectionUpdate, ctx: CurrentContext, store: Store
):
    """
    Update a DRAFT or SCHEDULED election.

    Requires OWNER or ADMIN role in the organization.
    """
    election = await with_request_timeout(
        lifecycle.update_election(
            store,
            ctx,
            election_id,
            request.election_name,
            request.description,
            request.start_at,
            request.end_at,
        )
    )
    return success_response(data=election, message="Election updated successfully")


@router.delete("/{election_id}")
async def delete_election(election_id: PathID, ctx: CurrentContext, store: Store):
    """
    Delete an election that is not OPEN and has no recorded votes.

    Requires OWNER or ADMIN role in the organization.
    """
    await with_request_timeout(lifecycle.delete_election(store, ctx, election_id))
    return success_response(message="Election deleted successfully")


# ============================================
# ELECTION LIFECYCLE ENDPOINTS
# ============================================


@router.post("/{election_id}/schedule")
async def schedule_election(
    election_id: PathID, request: ElectionSchedule, ctx: CurrentContext, store: Store
):
    """Schedule a DRAFT election to open at `start_at` and close at `end_at`."""
    election = await with_request_timeout(
        lifecycle.schedule_election(store, ctx, election_id, request.start_at, request.end_at)
    )
    return success_response(data=election, message="Election scheduled successfully")


@router.post("/{election_id}/open")
async def open_election(election_id: PathID, ctx: CurrentContext, store: Store):
    """Open a DRAFT or SCHEDULED election for voting immediately."""
    election = await with_request_timeout(lifecycle.open_election(store, ctx, election_id))
    return success_response(data=election, message="Election opened successfully")


@router.post("/{election_id}/close")
async def close_election(election_id: PathID, ctx: CurrentContext, store: Store):
    """Close an OPEN election immediately."""
    election = await with_request_timeout(lifecycle.close_election(store, ctx, election_id))
    return success_response(data=election, message="Election closed successfully")
