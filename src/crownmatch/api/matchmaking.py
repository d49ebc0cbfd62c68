# src/crownmatch/api/matchmaking.py

"""API endpoints for the matchmaking queue."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from crownmatch.api.deps import enforce_matchmaking_rate_limit, get_current_player
from crownmatch.config import Settings, get_settings
from crownmatch.db.models import Player, QueueEntry
from crownmatch.db.session import get_db
from crownmatch.exceptions import QueueEntryNotFoundError
from crownmatch.schemas import match as match_schema
from crownmatch.schemas import matchmaking as mm_schema
from crownmatch.services import matchmaking_service

router = APIRouter(prefix="/matchmaking", tags=["Matchmaking"])


@router.post(
    "/",
    response_model=mm_schema.MatchmakingResponse,
    dependencies=[Depends(enforce_matchmaking_rate_limit)],
)
async def request_match(
    request_in: mm_schema.MatchmakingRequest | None = None,
    player: Player = Depends(get_current_player),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
) -> mm_schema.MatchmakingResponse:
    """
    Pair the caller with a waiting opponent, or put them in the queue.

    - **game_mode**: Queue to search (default `quick_play`)
    - **duration_seconds**: Time control; only equal time controls pair
    - **region**: Informational, stored on the queue entry

    Returns `{"matched": true, "game": {...}}` or
    `{"matched": false, "queued": true, "enqueued_at": ...}`.
    Being queued is not an error.

    Raises:
        401: Missing or invalid token
        422: Malformed game mode or time control
        429: Too many matchmaking requests
        503: Storage failure (safe to retry)
    """
    result = await matchmaking_service.find_or_queue(
        db, player, request_in or mm_schema.MatchmakingRequest(), settings
    )
    if result.matched and result.match is not None:
        return mm_schema.MatchedResponse(
            game=match_schema.MatchRead.model_validate(result.match)
        )
    return mm_schema.QueuedResponse(enqueued_at=result.enqueued_at)


@router.get("/queue", response_model=mm_schema.QueueEntryRead)
async def read_queue_entry(
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
) -> QueueEntry:
    """Return the caller's pending queue entry (404 when not queued)."""
    entry = await matchmaking_service.get_queue_entry(db, player.id)
    if entry is None:
        raise QueueEntryNotFoundError(player.id)
    return entry


@router.delete("/queue", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_queue_entry(
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    Leave the matchmaking queue.

    Idempotent: cancelling when not queued also returns 204.
    """
    await matchmaking_service.remove_from_queue(db, player.id)
    return None
