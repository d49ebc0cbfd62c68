# src/crownmatch/api/match.py

"""API endpoints for matches."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from crownmatch.api.deps import get_current_player
from crownmatch.config import Settings, get_settings
from crownmatch.db.models import Match, Player
from crownmatch.db.session import get_db
from crownmatch.schemas import match as match_schema
from crownmatch.services import match_service, matchmaking_service

router = APIRouter(prefix="/matches", tags=["Matches"])


@router.get("/active", response_model=match_schema.ActiveMatchResponse)
async def read_active_match(
    duration_seconds: int | None = Query(
        None, gt=0, description="Only report matches with this time control"
    ),
    untimed: bool = Query(False, description="Only report untimed matches"),
    since: datetime | None = Query(
        None, description="Ignore matches created before this moment"
    ),
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
) -> match_schema.ActiveMatchResponse:
    """
    Return the caller's most recent in-progress match, or `{"match": null}`.

    This is the polling source used by clients waiting in the queue. They
    pass the `enqueued_at` of their queued response as `since`, so a game
    left running from an earlier search is not mistaken for a new pairing.
    `untimed` has no effect when `duration_seconds` is given.
    """
    match = await matchmaking_service.get_active_match(
        db,
        player.id,
        duration_seconds=duration_seconds,
        any_duration=duration_seconds is None and not untimed,
        since=since,
    )
    return match_schema.ActiveMatchResponse(
        match=match_schema.MatchRead.model_validate(match) if match else None
    )


@router.get("/{match_id}", response_model=match_schema.MatchRead)
async def read_match(match_id: int, db: AsyncSession = Depends(get_db)) -> Match:
    """Retrieve a single match by its ID."""
    return await match_service.get_match(db, match_id)


@router.post("/{match_id}/result", response_model=match_schema.MatchRead)
async def report_result(
    match_id: int,
    result_in: match_schema.MatchResultCreate,
    player: Player = Depends(get_current_player),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
) -> Match:
    """
    Conclude an in-progress match and apply Elo updates to both players.

    - **result**: `white`, `black` or `draw`
    - **termination**: Optional reason (checkmate, resignation, timeout, ...)

    Raises:
        403: Caller is not playing in this match
        404: Match doesn't exist
        409: Match has already concluded
    """
    return await match_service.conclude_match(
        db, match_id, player.id, result_in, settings
    )
