"""Organization role checks performed by the engine before touching data."""

from app.core.context import RequestContext
from app.core.errors import UnauthorizedError
from app.core.logging_config import election_events
from app.store.base import BallotSession

ADMIN_ROLES = frozenset({"OWNER", "ADMIN"})
MEMBER_ROLES = frozenset({"OWNER", "ADMIN", "MEMBER"})


async def require_org_role(
    session: BallotSession,
    ctx: RequestContext,
    organization_id: int,
    allowed: frozenset[str],
    operation: str,
) -> str:
    """Return the actor's role in ``organization_id`` or raise UnauthorizedError."""
    if ctx.actor_user_id is None:
        raise UnauthorizedError("Authentication required")

    role = await session.get_member_role(organization_id, ctx.actor_user_id)
    if role not in allowed:
        reason = "not a member" if role is None else f"role {role} not permitted"
        election_events.log_access_denied(
            operation,
            ctx.actor_user_id,
            organization_id=organization_id,
            reason=reason,
            request_id=ctx.request_id,
        )
        raise UnauthorizedError(f"Not authorized to {operation}")
    return role


async def require_org_admin(
    session: BallotSession, ctx: RequestContext, organization_id: int, operation: str
) -> str:
    return await require_org_role(session, ctx, organization_id, ADMIN_ROLES, operation)


async def require_org_member(
    session: BallotSession, ctx: RequestContext, organization_id: int, operation: str
) -> str:
    return await require_org_role(session, ctx, organization_id, MEMBER_ROLES, operation)
