# src/crownmatch/main.py

"""Main FastAPI application for CrownMatch."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .api import match, matchmaking, player
from .config import Settings, get_settings
from .db.session import engine
from .exceptions import (
    ConflictError,
    CrownMatchError,
    NotAParticipantError,
    RateLimitExceededError,
    ResourceNotFoundError,
    StorageFailureError,
    UnauthenticatedError,
    ValidationError,
)
from .middleware import RequestLoggingMiddleware
from .ratelimit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Set up root logging once per process."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_rate_limiter(settings: Settings) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        limit=settings.rate_limit, window_seconds=settings.rate_window_seconds
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan context manager for startup and shutdown events."""
    settings = get_settings()
    configure_logging(settings)
    # One limiter per process, shared by all requests
    app.state.rate_limiter = build_rate_limiter(settings)
    logger.info(
        "CrownMatch starting",
        extra={"tier_table": settings.tier_table, "rating_window": settings.rating_window},
    )
    yield
    app.state.rate_limiter.reset()
    # Shutdown: Dispose of database connections gracefully
    await engine.dispose()


app = FastAPI(title="CrownMatch API", lifespan=lifespan)

# Add middleware (order matters - first added = outermost)
app.add_middleware(RequestLoggingMiddleware)


def _error_response(
    status_code: int, exc: CrownMatchError, headers: dict | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error_type": type(exc).__name__},
        headers=headers,
    )


# =============================================================================
# Global Exception Handlers
# =============================================================================


@app.exception_handler(UnauthenticatedError)
async def unauthenticated_handler(
    request: Request, exc: UnauthenticatedError
) -> JSONResponse:
    """Missing or invalid caller identity -> 401."""
    logger.warning("Unauthenticated request: %s", exc.message)
    return _error_response(401, exc, headers={"WWW-Authenticate": "Bearer"})


@app.exception_handler(NotAParticipantError)
async def not_a_participant_handler(
    request: Request, exc: NotAParticipantError
) -> JSONResponse:
    """Acting on someone else's match -> 403."""
    logger.warning("Forbidden: %s", exc.message, extra=exc.details)
    return _error_response(403, exc)


@app.exception_handler(ResourceNotFoundError)
async def resource_not_found_handler(
    request: Request, exc: ResourceNotFoundError
) -> JSONResponse:
    """Handle all resource not found errors -> 404."""
    logger.warning("Resource not found: %s", exc.message, extra=exc.details)
    return _error_response(404, exc)


@app.exception_handler(ValidationError)
async def validation_error_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """Handle all validation errors -> 422."""
    logger.warning("Validation error: %s", exc.message, extra=exc.details)
    return _error_response(422, exc)


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError) -> JSONResponse:
    """Handle state conflicts -> 409."""
    logger.warning("Conflict: %s", exc.message, extra=exc.details)
    return _error_response(409, exc)


@app.exception_handler(RateLimitExceededError)
async def rate_limit_handler(
    request: Request, exc: RateLimitExceededError
) -> JSONResponse:
    """Throttled caller -> 429 with Retry-After."""
    retry_after = max(1, int(exc.retry_after + 0.999))
    return _error_response(429, exc, headers={"Retry-After": str(retry_after)})


@app.exception_handler(StorageFailureError)
async def storage_failure_handler(
    request: Request, exc: StorageFailureError
) -> JSONResponse:
    """Queue/match store failures -> 503, the client may retry."""
    logger.error("Storage failure: %s", exc.message, extra=exc.details)
    return _error_response(503, exc)


@app.exception_handler(CrownMatchError)
async def crownmatch_error_handler(
    request: Request, exc: CrownMatchError
) -> JSONResponse:
    """Catch-all for any other CrownMatch errors -> 500."""
    logger.error("CrownMatch error: %s", exc.message, extra=exc.details, exc_info=True)
    return _error_response(500, exc)


@app.exception_handler(IntegrityError)
async def integrity_error_handler(
    request: Request, exc: IntegrityError
) -> JSONResponse:
    """Handle database integrity constraint violations."""
    error_msg = str(exc.orig) if exc.orig else str(exc)
    logger.warning("Database integrity error: %s", error_msg)

    # Unique constraint violations -> 409 Conflict
    if "UNIQUE constraint failed" in error_msg or "duplicate key" in error_msg:
        return JSONResponse(
            status_code=409,
            content={"detail": "Resource already exists with given unique field(s)"},
        )

    return JSONResponse(
        status_code=400,
        content={"detail": "Database constraint violation"},
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_error_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    """Catch-all for other SQLAlchemy database errors."""
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=503,
        content={"detail": "A database error occurred, please retry"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions."""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal server error occurred"},
    )


# Include routers into the main application
app.include_router(player.router)
app.include_router(matchmaking.router)
app.include_router(match.router)


@app.get("/", tags=["Root"])
async def read_root() -> dict[str, str]:
    """Provides a welcome message."""
    return {"message": "Welcome to the CrownMatch API"}


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for monitoring."""
    return {"status": "healthy"}
