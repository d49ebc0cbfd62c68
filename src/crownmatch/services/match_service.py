# src/crownmatch/services/match_service.py

"""Business logic for concluding matches and updating ratings."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crownmatch.config import Settings
from crownmatch.db import models
from crownmatch.exceptions import (
    MatchAlreadyConcludedError,
    MatchNotFoundError,
    NotAParticipantError,
    PlayerNotFoundError,
    StorageFailureError,
)
from crownmatch.rating.elo import rating_deltas
from crownmatch.rating.tiers import TierTable, get_tier_table
from crownmatch.schemas.match import MatchResultCreate
from crownmatch.services.matchmaking_service import effective_rating

logger = logging.getLogger(__name__)

# Reported result -> (terminal state, white's score)
_RESULTS: dict[str, tuple[str, float]] = {
    "white": (models.MATCH_WHITE_WON, 1.0),
    "black": (models.MATCH_BLACK_WON, 0.0),
    "draw": (models.MATCH_DRAW, 0.5),
}


def _apply_result(
    player: models.Player, delta: int, score: float, tiers: TierTable
) -> None:
    """Update a player's rating, tier and record after one game."""
    new_rating = effective_rating(player) + delta
    player.rating = new_rating
    player.rank_tier = tiers.tier_for(new_rating)
    player.games_played += 1

    if score == 1.0:
        player.wins += 1
        player.win_streak += 1
    elif score == 0.0:
        player.losses += 1
        player.win_streak = 0
    else:
        player.draws += 1
    player.version += 1


async def get_match(db: AsyncSession, match_id: int) -> models.Match:
    """Fetch a match or raise MatchNotFoundError."""
    match = await db.get(models.Match, match_id)
    if match is None:
        raise MatchNotFoundError(match_id)
    return match


async def conclude_match(
    db: AsyncSession,
    match_id: int,
    reporter_id: int,
    result_in: MatchResultCreate,
    settings: Settings,
) -> models.Match:
    """
    Record the final result of an in-progress match.

    This service is responsible for:
    1. Checking the reporter plays in the match
    2. Moving the match to its terminal state with a conditional update,
       so a match can only ever be concluded once
    3. Computing both players' new Elo ratings from their pre-match ratings
    4. Updating ratings, tiers and win/loss/draw records

    All changes are committed together or not at all.

    Raises:
        MatchNotFoundError: If the match doesn't exist
        NotAParticipantError: If the reporter is not one of the two players
        MatchAlreadyConcludedError: If the match is already terminal
        StorageFailureError: If the database update fails
    """
    match = await get_match(db, match_id)
    if not match.has_player(reporter_id):
        raise NotAParticipantError(reporter_id, match_id)
    if match.is_terminal:
        raise MatchAlreadyConcludedError(match_id, match.state)

    state, white_score = _RESULTS[result_in.result]
    tiers = get_tier_table(settings.tier_table)
    log_extra = {"match_id": match_id, "result": result_in.result}

    try:
        white = await db.get(models.Player, match.white_player_id)
        black = await db.get(models.Player, match.black_player_id)
        if white is None:
            raise PlayerNotFoundError(match.white_player_id)
        if black is None:
            raise PlayerNotFoundError(match.black_player_id)

        white_delta, black_delta = rating_deltas(
            effective_rating(white),
            effective_rating(black),
            white_score,
            settings.k_factor,
        )

        if state == models.MATCH_WHITE_WON:
            winner_id = white.id
        elif state == models.MATCH_BLACK_WON:
            winner_id = black.id
        else:
            winner_id = None

        values: dict = {
            "state": state,
            "winner_id": winner_id,
            "termination": result_in.termination,
            "white_rating_change": white_delta,
            "black_rating_change": black_delta,
            "ended_at": datetime.now(timezone.utc),
            "version": models.Match.version + 1,
        }
        if result_in.board_state is not None:
            values["board_state"] = result_in.board_state
        if result_in.moves is not None:
            values["moves"] = result_in.moves

        # Only an in-progress row can transition; a concurrent report loses
        result = await db.execute(
            update(models.Match)
            .where(
                models.Match.id == match_id,
                models.Match.state == models.MATCH_IN_PROGRESS,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            current = await get_match(db, match_id)
            await db.refresh(current)
            raise MatchAlreadyConcludedError(match_id, current.state)

        _apply_result(white, white_delta, white_score, tiers)
        _apply_result(black, black_delta, 1.0 - white_score, tiers)
        await db.commit()

    except SQLAlchemyError as e:
        logger.error(
            "Failed to conclude match",
            extra={**log_extra, "error": str(e)},
            exc_info=True,
        )
        await db.rollback()
        raise StorageFailureError("match conclusion", e) from e

    await db.refresh(match)
    logger.info(
        "Match concluded",
        extra={
            **log_extra,
            "white_rating_change": white_delta,
            "black_rating_change": black_delta,
        },
    )
    return match
