"""API dependencies for authentication, request context and the ballot store."""

import asyncio
from collections.abc import Awaitable
from typing import Annotated, TypeVar

from fastapi import Depends, Header, HTTPException, Path, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.context import RequestContext, new_request_id
from app.core.errors import InvalidArgumentError, StoreUnavailableError
from app.core.logging_config import get_logger
from app.core.security import decode_access_token, user_id_from_payload
from app.store.base import BallotStore

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

# Identifiers are BIGSERIAL keys; counts and ballot positions are INTEGER columns
MAX_ID = 2**63 - 1
MAX_INT = 2**31 - 1

T = TypeVar("T")


def _unauthenticated(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> int:
    """
    Dependency returning the authenticated user id.

    Validates the bearer JWT; identity itself is managed by the identity
    provider that issued the token.
    """
    if credentials is None:
        raise _unauthenticated("Authentication required")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthenticated("Invalid authentication credentials")

    user_id = user_id_from_payload(payload)
    if user_id is None:
        raise _unauthenticated("Invalid authentication credentials")
    return user_id


async def get_request_context(
    request: Request,
    user_id: Annotated[int, Depends(get_current_user_id)],
    x_org_id: Annotated[int | None, Header(gt=0, le=MAX_ID)] = None,
) -> RequestContext:
    """Build the RequestContext for this request from the token and headers."""
    request_id = getattr(request.state, "request_id", None) or new_request_id()
    return RequestContext(
        actor_user_id=user_id, organization_id=x_org_id, request_id=request_id
    )


def get_store(request: Request) -> BallotStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise StoreUnavailableError("Ballot store not initialized")
    return store


def resolve_organization_id(organization_id: int | None, ctx: RequestContext) -> int:
    """Explicit organization id, falling back to the X-Org-Id header."""
    resolved = organization_id if organization_id is not None else ctx.organization_id
    if resolved is None:
        raise InvalidArgumentError("organization_id is required (body, query or X-Org-Id header)")
    return resolved


async def with_request_timeout(awaitable: Awaitable[T]) -> T:
    """
    Await a service call under REQUEST_TIMEOUT_SECONDS.

    On timeout the call is cancelled, its transaction rolls back and a
    retryable StoreUnavailableError is raised.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.REQUEST_TIMEOUT_SECONDS)
    except TimeoutError:
        logger.warning(
            f"Request exceeded {settings.REQUEST_TIMEOUT_SECONDS}s and was cancelled"
        )
        raise StoreUnavailableError("Request timed out, please retry") from None


CurrentContext = Annotated[RequestContext, Depends(get_request_context)]
Store = Annotated[BallotStore, Depends(get_store)]
PathID = Annotated[int, Path(gt=0, le=MAX_ID)]
