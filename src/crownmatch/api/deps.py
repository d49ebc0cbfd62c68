# src/crownmatch/api/deps.py

"""Shared FastAPI dependencies: caller identity and request throttling."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from crownmatch.db.models import Player
from crownmatch.db.session import get_db
from crownmatch.exceptions import UnauthenticatedError
from crownmatch.ratelimit import SlidingWindowRateLimiter

# auto_error=False so a missing header reaches our own 401 handler
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_player(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Player:
    """
    Resolve the calling player from an `Authorization: Bearer <token>` header.

    Raises:
        UnauthenticatedError: If the header is missing or the token is unknown.
    """
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Not authenticated")

    player = await Player.find_by_token(db, credentials.credentials)
    if player is None:
        raise UnauthenticatedError("Invalid token")
    return player


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    """The process-wide limiter created at application startup."""
    limiter: SlidingWindowRateLimiter = request.app.state.rate_limiter
    return limiter


async def enforce_matchmaking_rate_limit(
    request: Request,
    player: Player = Depends(get_current_player),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
) -> None:
    """Count one matchmaking call against the caller's allowance."""
    limiter.hit(f"{request.url.path}:{player.id}")
