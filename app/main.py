"""FastAPI main application for the election manager backend."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.routes import elections, races, voting
from app.core.config import settings
from app.core.context import new_request_id
from app.core.database import close_db_pool, init_db_pool
from app.core.errors import AppError
from app.core.logging_config import get_logger, setup_logging
from app.core.responses import error_body, error_response_dict, success_response
from app.services.scheduler import ElectionScheduler
from app.store.postgres import PostgresBallotStore

# Setup logging
setup_logging()
logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request id to every request and echo it on the response."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # HSTS only in production with HTTPS
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - runs on startup and shutdown."""
    logger.info("Starting election manager backend...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    # Tests install their own store on app.state
    if settings.ENVIRONMENT != "test":
        pool = await init_db_pool(settings)
        app.state.store = PostgresBallotStore(pool)

    scheduler = None
    store = getattr(app.state, "store", None)
    if settings.SCHEDULER_ENABLED and store is not None:
        scheduler = ElectionScheduler(
            store,
            interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS,
            timezone=settings.SCHEDULER_TIMEZONE,
        )
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        scheduler.stop()
    if settings.ENVIRONMENT != "test":
        await close_db_pool()
    logger.info("Shutting down election manager backend...")


app = FastAPI(
    title="Election Manager Backend",
    description="""
    **Election Manager Backend** - election lifecycle, scheduling and vote casting

    Features:
    - Elections with races and candidates, owned by organizations
    - Lifecycle DRAFT -> SCHEDULED -> OPEN -> CLOSED with automatic opening and closing
    - Voter registration with admin approval
    - Vote casting with per-race vote limits and live results

    ## Authentication

    All endpoints except `/health` require a bearer JWT whose `sub` claim is the user id:

    ```
    Authorization: Bearer <your_jwt_token>
    ```

    The optional `X-Org-Id` header supplies the organization when a request does not name one.
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)

# CORS middleware
if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "Origin",
            "User-Agent",
            "X-Org-Id",
            REQUEST_ID_HEADER,
        ],
        expose_headers=[REQUEST_ID_HEADER],
    )


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


# Exception handlers
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Render domain errors in the standard envelope with their error code."""
    if exc.retryable:
        logger.warning(f"[{_request_id(request)}] {exc.code}: {exc.message}")
        headers = {"Retry-After": "1"}
    else:
        logger.debug(f"[{_request_id(request)}] {exc.code}: {exc.message}")
        headers = None
    return error_response_dict(exc.to_dict(), exc.status_code, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions with standardized error responses."""
    codes = {
        status.HTTP_401_UNAUTHORIZED: "UNAUTHENTICATED",
        status.HTTP_404_NOT_FOUND: "NOT_FOUND",
        status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    }
    return error_response_dict(
        error_body(str(exc.detail), codes.get(exc.status_code, "HTTP_ERROR")),
        exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors[field] = error["msg"]

    return error_response_dict(
        error_body("Validation failed", "VALIDATION_ERROR", errors),
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"[{_request_id(request)}] Unexpected error: {exc}", exc_info=True)
    return error_response_dict(
        error_body("An unexpected error occurred", "INTERNAL_ERROR"),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


app.include_router(elections.router)
app.include_router(races.router)
app.include_router(voting.router)


@app.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring and load balancers.

    Returns 200 when the ballot store answers, 503 otherwise.
    """
    store = getattr(request.app.state, "store", None)
    scheduler = getattr(request.app.state, "scheduler", None)

    health_status = {
        "status": "healthy",
        "checks": {
            "api": {"status": "healthy"},
            "scheduler": {"running": bool(scheduler and scheduler.running)},
        },
    }

    try:
        database_ok = store is not None and await store.ping()
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        database_ok = False

    health_status["checks"]["database"] = {
        "status": "healthy" if database_ok else "unhealthy"
    }
    if not database_ok:
        health_status["status"] = "unhealthy"
        body = error_body("Health check failed", "STORE_UNAVAILABLE")
        body["data"] = health_status
        return error_response_dict(body, status.HTTP_503_SERVICE_UNAVAILABLE)

    return success_response(data=health_status)
