# src/crownmatch/services/matchmaking_service.py

"""Business logic for pairing players from the matchmaking queue."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import Select, delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crownmatch.config import Settings
from crownmatch.db import models
from crownmatch.exceptions import StorageFailureError
from crownmatch.rating.elo import DEFAULT_RATING
from crownmatch.schemas.matchmaking import MatchmakingRequest

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


@dataclass
class MatchmakingResult:
    """Outcome of one matchmaking call: a new match, or queued."""

    matched: bool
    match: models.Match | None = None
    # Set when queued: the time the caller's wait started
    enqueued_at: datetime | None = None

    @property
    def queued(self) -> bool:
        return not self.matched


def effective_rating(player: models.Player) -> int:
    """The player's rating, or the default for unrated players."""
    return DEFAULT_RATING if player.rating is None else player.rating


async def get_queue_entry(
    db: AsyncSession, player_id: int
) -> models.QueueEntry | None:
    """Return the player's queue entry, if any."""
    result = await db.execute(
        select(models.QueueEntry).where(models.QueueEntry.player_id == player_id)
    )
    return result.scalar_one_or_none()


def candidate_query(
    player_id: int,
    rating: int,
    request: MatchmakingRequest,
    rating_window: int,
    not_before: datetime | None = None,
) -> Select:
    """
    Build the search for the oldest queued opponent compatible with the requester.

    A candidate plays the same game mode and time control, is a different
    player, and is within `rating_window` points (inclusive). Ties on
    enqueue time fall back to insertion order.

    On PostgreSQL, rows locked by a concurrent pairing are skipped, so two
    queued players requesting at once never wait on each other's rows.
    SQLite serializes writers and ignores the lock clause.
    """
    entry = models.QueueEntry
    query = select(entry).where(
        entry.game_mode == request.game_mode,
        entry.player_id != player_id,
        entry.rating >= rating - rating_window,
        entry.rating <= rating + rating_window,
    )
    if request.duration_seconds is None:
        query = query.where(entry.duration_seconds.is_(None))
    else:
        query = query.where(entry.duration_seconds == request.duration_seconds)
    if not_before is not None:
        query = query.where(entry.enqueued_at >= not_before)

    return (
        query.order_by(entry.enqueued_at.asc(), entry.id.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )


async def find_candidate(
    db: AsyncSession,
    player_id: int,
    rating: int,
    request: MatchmakingRequest,
    rating_window: int,
    not_before: datetime | None = None,
) -> models.QueueEntry | None:
    """Return the oldest compatible queued opponent, if any."""
    result = await db.execute(
        candidate_query(player_id, rating, request, rating_window, not_before)
    )
    return result.scalar_one_or_none()


async def claim_queue_entry(db: AsyncSession, entry_id: int) -> bool:
    """
    Remove a queue row only if it still exists.

    Returns True when this call deleted the row. A concurrent transaction
    that already removed it makes this return False, so a queued player
    can be claimed by at most one pairing.
    """
    result = await db.execute(
        delete(models.QueueEntry).where(models.QueueEntry.id == entry_id)
    )
    return result.rowcount == 1


async def purge_stale_entries(db: AsyncSession, cutoff: datetime) -> int:
    """Delete queue entries enqueued before `cutoff`. Caller commits."""
    result = await db.execute(
        delete(models.QueueEntry).where(models.QueueEntry.enqueued_at < cutoff)
    )
    if result.rowcount:
        logger.info("Purged stale queue entries", extra={"count": result.rowcount})
    return result.rowcount


async def upsert_queue_entry(
    db: AsyncSession,
    player_id: int,
    rating: int,
    request: MatchmakingRequest,
    enqueued_at: datetime | None = None,
) -> datetime:
    """
    Insert or overwrite the player's queue entry (one row per player).

    An overwrite replaces mode, rating, region and time control but keeps
    the original enqueue time, which is returned. Caller commits.
    """
    values = {
        "player_id": player_id,
        "game_mode": request.game_mode,
        "rating": rating,
        "region": request.region,
        "duration_seconds": request.duration_seconds,
        "enqueued_at": enqueued_at or datetime.now(timezone.utc),
    }
    dialect = db.get_bind().dialect.name
    insert = _UPSERT_INSERTS.get(dialect)

    if insert is not None:
        stmt = insert(models.QueueEntry).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[models.QueueEntry.player_id],
            set_={
                "game_mode": stmt.excluded.game_mode,
                "rating": stmt.excluded.rating,
                "region": stmt.excluded.region,
                "duration_seconds": stmt.excluded.duration_seconds,
            },
        )
        await db.execute(stmt)
    else:
        # Other backends: update in place, insert when nothing was there
        result = await db.execute(
            update(models.QueueEntry)
            .where(models.QueueEntry.player_id == player_id)
            .values({k: v for k, v in values.items() if k != "enqueued_at"})
        )
        if result.rowcount == 0:
            db.add(models.QueueEntry(**values))
            await db.flush()

    # Column read, not the entity: the identity map may hold a stale row
    stored = await db.execute(
        select(models.QueueEntry.enqueued_at).where(
            models.QueueEntry.player_id == player_id
        )
    )
    return stored.scalar_one()


async def remove_from_queue(db: AsyncSession, player_id: int) -> bool:
    """
    Cancel a player's queue entry.

    Idempotent: returns False (not an error) when nothing was queued.

    Raises:
        StorageFailureError: If the delete cannot be committed.
    """
    try:
        result = await db.execute(
            delete(models.QueueEntry).where(models.QueueEntry.player_id == player_id)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageFailureError("queue cancellation", e) from e

    removed = result.rowcount > 0
    logger.info(
        "Queue entry cancelled" if removed else "No queue entry to cancel",
        extra={"player_id": player_id},
    )
    return removed


async def get_active_match(
    db: AsyncSession,
    player_id: int,
    duration_seconds: int | None = None,
    any_duration: bool = True,
    since: datetime | None = None,
) -> models.Match | None:
    """
    Return the player's most recent in-progress match, if any.

    With `any_duration` off, only matches with exactly `duration_seconds`
    count (None meaning untimed). `since` ignores matches created before
    that moment, such as a game still running from an earlier search.
    """
    query = select(models.Match).where(
        models.Match.state == models.MATCH_IN_PROGRESS,
        (models.Match.white_player_id == player_id)
        | (models.Match.black_player_id == player_id),
    )
    if not any_duration:
        if duration_seconds is None:
            query = query.where(models.Match.duration_seconds.is_(None))
        else:
            query = query.where(models.Match.duration_seconds == duration_seconds)
    if since is not None:
        query = query.where(models.Match.created_at >= since)

    query = query.order_by(models.Match.created_at.desc(), models.Match.id.desc())
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


def _new_match(
    requester_id: int,
    opponent_id: int,
    request: MatchmakingRequest,
    rng: random.Random | None,
) -> models.Match:
    # 50/50 color assignment
    coin = (rng or random).random()
    if coin < 0.5:
        white_id, black_id = requester_id, opponent_id
    else:
        white_id, black_id = opponent_id, requester_id

    return models.Match(
        white_player_id=white_id,
        black_player_id=black_id,
        game_mode=request.game_mode,
        duration_seconds=request.duration_seconds,
        state=models.MATCH_IN_PROGRESS,
        board_state=models.STARTING_FEN,
        moves=[],
    )


async def find_or_queue(
    db: AsyncSession,
    player: models.Player,
    request: MatchmakingRequest,
    settings: Settings,
    rng: random.Random | None = None,
) -> MatchmakingResult:
    """
    Pair the requester with a waiting opponent, or enqueue them.

    This service is responsible for:
    1. Taking the requester's own queue row out of the queue, so no other
       pairing can claim them while this one runs
    2. Searching the oldest compatible candidate and claiming it with a
       conditional delete, re-searching if a concurrent request won it
    3. Creating the match with random colors, or upserting the requester
       back into the queue when nobody is available

    Everything happens in one transaction: a failure rolls back the claim,
    the match and the queue changes together.

    Raises:
        StorageFailureError: If any database operation fails.
    """
    # Plain values only: a rollback below expires ORM instances
    player_id = player.id
    rating = effective_rating(player)
    log_extra = {
        "player_id": player_id,
        "rating": rating,
        "game_mode": request.game_mode,
        "duration_seconds": request.duration_seconds,
    }
    logger.info("Processing matchmaking request", extra=log_extra)
    started_at = datetime.now(timezone.utc)

    try:
        not_before = None
        if settings.queue_ttl_seconds > 0:
            not_before = datetime.now(timezone.utc) - timedelta(
                seconds=settings.queue_ttl_seconds
            )
            await purge_stale_entries(db, not_before)

        own_entry = await get_queue_entry(db, player_id)
        original_enqueued_at = own_entry.enqueued_at if own_entry else None
        if own_entry is not None and not await claim_queue_entry(db, own_entry.id):
            # Our row vanished between the read and the delete: either we
            # were just paired by someone else, or we cancelled.
            await db.rollback()
            active = await get_active_match(db, player_id)
            if active is not None:
                logger.info(
                    "Requester was paired concurrently",
                    extra={**log_extra, "match_id": active.id},
                )
                return MatchmakingResult(matched=True, match=active)
            original_enqueued_at = None

        for attempt in range(1, settings.claim_attempts + 1):
            candidate = await find_candidate(
                db, player_id, rating, request, settings.rating_window, not_before
            )
            if candidate is None:
                break

            opponent_id = candidate.player_id
            if not await claim_queue_entry(db, candidate.id):
                logger.info(
                    "Candidate claimed by a concurrent request, retrying",
                    extra={**log_extra, "candidate_id": opponent_id, "attempt": attempt},
                )
                continue

            new_match = _new_match(player_id, opponent_id, request, rng)
            db.add(new_match)
            await db.commit()
            logger.info(
                "Players paired",
                extra={
                    **log_extra,
                    "match_id": new_match.id,
                    "white_player_id": new_match.white_player_id,
                    "black_player_id": new_match.black_player_id,
                },
            )
            return MatchmakingResult(matched=True, match=new_match)

        enqueued_at = await upsert_queue_entry(
            db, player_id, rating, request, enqueued_at=original_enqueued_at
        )
        await db.commit()
        logger.info("Player queued", extra=log_extra)
        return MatchmakingResult(matched=False, enqueued_at=enqueued_at)

    except SQLAlchemyError as e:
        logger.error(
            "Matchmaking failed",
            extra={**log_extra, "error": str(e)},
            exc_info=True,
        )
        await db.rollback()
        paired = await _paired_during_failure(db, player_id, started_at)
        if paired is not None:
            logger.info(
                "Requester was paired by a concurrent request",
                extra={**log_extra, "match_id": paired.id},
            )
            return MatchmakingResult(matched=True, match=paired)
        raise StorageFailureError("matchmaking", e) from e


async def _paired_during_failure(
    db: AsyncSession, player_id: int, started_at: datetime
) -> models.Match | None:
    # An aborted transaction (deadlock victim, serialization failure) may
    # still have been paired by the request it collided with
    try:
        return await get_active_match(db, player_id, since=started_at)
    except SQLAlchemyError:
        logger.warning(
            "Could not check for a concurrent pairing",
            extra={"player_id": player_id},
            exc_info=True,
        )
        return None
