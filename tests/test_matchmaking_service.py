# tests/test_matchmaking_service.py

"""Unit tests for queue pairing in the matchmaking service."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from crownmatch.config import Settings
from crownmatch.db.models import (
    MATCH_IN_PROGRESS,
    STARTING_FEN,
    Match,
    Player,
    QueueEntry,
)
from crownmatch.exceptions import StorageFailureError
from crownmatch.schemas.matchmaking import MatchmakingRequest
from crownmatch.services import matchmaking_service
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FixedCoin:
    """Stands in for random.Random with a predetermined draw."""

    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


async def enqueue(
    db: AsyncSession,
    player: Player,
    rating: int,
    minutes_ago: int,
    game_mode: str = "quick_play",
    duration_seconds: int | None = None,
    enqueued_at: datetime | None = None,
) -> QueueEntry:
    """Insert a queue row directly with a controlled enqueue time."""
    entry = QueueEntry(
        player_id=player.id,
        game_mode=game_mode,
        rating=rating,
        duration_seconds=duration_seconds,
        enqueued_at=enqueued_at or BASE_TIME - timedelta(minutes=minutes_ago),
    )
    db.add(entry)
    await db.commit()
    return entry


async def queued_player_ids(factory: async_sessionmaker[AsyncSession]) -> set[int]:
    async with factory() as session:
        result = await session.execute(select(QueueEntry.player_id))
        return set(result.scalars().all())


async def count_matches(factory: async_sessionmaker[AsyncSession]) -> int:
    async with factory() as session:
        result = await session.execute(select(func.count()).select_from(Match))
        return int(result.scalar_one())


# =============================================================================
# Queueing
# =============================================================================


@pytest.mark.asyncio
async def test_empty_queue_enqueues_requester(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    """With nobody waiting, the requester is queued at the default rating."""
    newcomer = await make_player("Newcomer")

    result = await matchmaking_service.find_or_queue(
        db_session, newcomer, MatchmakingRequest(), settings
    )

    assert result.matched is False
    assert result.queued is True
    assert result.match is None

    async with session_factory() as session:
        entry = await matchmaking_service.get_queue_entry(session, newcomer.id)
    assert entry is not None
    assert entry.rating == 1200
    assert entry.game_mode == "quick_play"


@pytest.mark.asyncio
async def test_rated_player_queued_with_profile_rating(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    veteran = await make_player("Veteran", rating=1734)

    await matchmaking_service.find_or_queue(
        db_session,
        veteran,
        MatchmakingRequest(game_mode="blitz", duration_seconds=300, region="eu"),
        settings,
    )

    async with session_factory() as session:
        entry = await matchmaking_service.get_queue_entry(session, veteran.id)
    assert entry is not None
    assert entry.rating == 1734
    assert entry.duration_seconds == 300
    assert entry.region == "eu"


@pytest.mark.asyncio
async def test_requeue_overwrites_entry_and_keeps_enqueue_time(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    """One entry per player: a second request replaces the first."""
    player = await make_player("Switcher")
    player_id = player.id
    await enqueue(db_session, player, 1200, minutes_ago=5, game_mode="blitz")

    result = await matchmaking_service.find_or_queue(
        db_session, player, MatchmakingRequest(game_mode="bullet"), settings
    )

    assert result.queued
    async with session_factory() as session:
        rows = (
            (
                await session.execute(
                    select(QueueEntry).where(QueueEntry.player_id == player_id)
                )
            )
            .scalars()
            .all()
        )
    assert len(rows) == 1
    assert rows[0].game_mode == "bullet"
    assert rows[0].enqueued_at.replace(tzinfo=None) == (
        BASE_TIME - timedelta(minutes=5)
    ).replace(tzinfo=None)


@pytest.mark.asyncio
async def test_requester_is_never_paired_with_self(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    loner = await make_player("Loner")
    loner_id = loner.id
    await enqueue(db_session, loner, 1200, minutes_ago=1)

    result = await matchmaking_service.find_or_queue(
        db_session, loner, MatchmakingRequest(), settings
    )

    assert result.queued
    assert await queued_player_ids(session_factory) == {loner_id}
    assert await count_matches(session_factory) == 0


# =============================================================================
# Pairing
# =============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("first_in_line", ["low", "high"])
async def test_pairs_with_oldest_eligible_candidate(
    db_session: AsyncSession,
    make_player,
    settings: Settings,
    session_factory,
    first_in_line: str,
):
    """
    A 1220 requester may pair with the 1200 or 1250 entry, whichever
    queued first, and never with the 1800 entry.
    """
    low = await make_player("Low", rating=1200)
    high = await make_player("High", rating=1250)
    strong = await make_player("Strong", rating=1800)
    requester = await make_player("Requester", rating=1220)

    # The 1800 player has waited longest of all
    await enqueue(db_session, strong, 1800, minutes_ago=30)
    await enqueue(
        db_session, low, 1200, minutes_ago=10 if first_in_line == "low" else 5
    )
    await enqueue(
        db_session, high, 1250, minutes_ago=10 if first_in_line == "high" else 5
    )
    expected_opponent = low.id if first_in_line == "low" else high.id
    other_id = high.id if first_in_line == "low" else low.id
    ids = {"strong": strong.id, "requester": requester.id}

    result = await matchmaking_service.find_or_queue(
        db_session, requester, MatchmakingRequest(), settings
    )

    assert result.matched is True
    match = result.match
    assert match is not None
    assert {match.white_player_id, match.black_player_id} == {
        ids["requester"],
        expected_opponent,
    }
    # The opponent left the queue; everyone else is still waiting
    assert await queued_player_ids(session_factory) == {ids["strong"], other_id}


@pytest.mark.asyncio
async def test_match_starts_in_progress_from_initial_position(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    waiting = await make_player("Waiting")
    requester = await make_player("Arriving")
    await enqueue(db_session, waiting, 1200, minutes_ago=1, duration_seconds=600)

    result = await matchmaking_service.find_or_queue(
        db_session,
        requester,
        MatchmakingRequest(duration_seconds=600),
        settings,
    )

    match = result.match
    assert match is not None
    assert match.id is not None
    assert match.state == MATCH_IN_PROGRESS
    assert match.board_state == STARTING_FEN
    assert match.moves == []
    assert match.game_mode == "quick_play"
    assert match.duration_seconds == 600
    assert await queued_player_ids(session_factory) == set()
    assert await count_matches(session_factory) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("coin, requester_is_white", [(0.2, True), (0.8, False)])
async def test_colors_follow_the_coin_flip(
    db_session: AsyncSession,
    make_player,
    settings: Settings,
    coin: float,
    requester_is_white: bool,
):
    waiting = await make_player("CoinWaiting")
    requester = await make_player("CoinRequester")
    waiting_id, requester_id = waiting.id, requester.id
    await enqueue(db_session, waiting, 1200, minutes_ago=1)

    result = await matchmaking_service.find_or_queue(
        db_session, requester, MatchmakingRequest(), settings, rng=FixedCoin(coin)
    )

    match = result.match
    assert match is not None
    if requester_is_white:
        assert (match.white_player_id, match.black_player_id) == (
            requester_id,
            waiting_id,
        )
    else:
        assert (match.white_player_id, match.black_player_id) == (
            waiting_id,
            requester_id,
        )


@pytest.mark.asyncio
@pytest.mark.parametrize("candidate_rating, pairs", [(1400, True), (1401, False)])
async def test_rating_window_is_inclusive(
    db_session: AsyncSession,
    make_player,
    settings: Settings,
    candidate_rating: int,
    pairs: bool,
):
    candidate = await make_player("Edge", rating=candidate_rating)
    requester = await make_player("Centre", rating=1200)
    await enqueue(db_session, candidate, candidate_rating, minutes_ago=1)

    result = await matchmaking_service.find_or_queue(
        db_session, requester, MatchmakingRequest(), settings
    )

    assert result.matched is pairs


@pytest.mark.asyncio
async def test_configured_rating_window(
    db_session: AsyncSession, make_player, settings: Settings
):
    candidate = await make_player("FarAway", rating=1700)
    requester = await make_player("Wide", rating=1200)
    await enqueue(db_session, candidate, 1700, minutes_ago=1)

    result = await matchmaking_service.find_or_queue(
        db_session,
        requester,
        MatchmakingRequest(),
        replace(settings, rating_window=500),
    )

    assert result.matched


@pytest.mark.asyncio
async def test_game_mode_must_match(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    blitz = await make_player("BlitzFan")
    requester = await make_player("RapidFan")
    blitz_id, requester_id = blitz.id, requester.id
    await enqueue(db_session, blitz, 1200, minutes_ago=1, game_mode="blitz")

    result = await matchmaking_service.find_or_queue(
        db_session, requester, MatchmakingRequest(game_mode="rapid"), settings
    )

    assert result.queued
    assert await queued_player_ids(session_factory) == {blitz_id, requester_id}


@pytest.mark.asyncio
async def test_time_control_must_match(
    db_session: AsyncSession, make_player, settings: Settings
):
    """Untimed requests only pair with untimed entries, and vice versa."""
    timed = await make_player("Timed")
    untimed = await make_player("Untimed")
    await enqueue(db_session, timed, 1200, minutes_ago=2, duration_seconds=180)

    result = await matchmaking_service.find_or_queue(
        db_session, untimed, MatchmakingRequest(), settings
    )
    assert result.queued

    third = await make_player("AlsoTimed")
    result = await matchmaking_service.find_or_queue(
        db_session, third, MatchmakingRequest(duration_seconds=300), settings
    )
    assert result.queued


# =============================================================================
# Claims and races
# =============================================================================


@pytest.mark.asyncio
async def test_claim_queue_entry_only_succeeds_once(
    db_session: AsyncSession, make_player
):
    player = await make_player("Claimed")
    entry = await enqueue(db_session, player, 1200, minutes_ago=1)
    entry_id = entry.id

    assert await matchmaking_service.claim_queue_entry(db_session, entry_id) is True
    assert await matchmaking_service.claim_queue_entry(db_session, entry_id) is False
    await db_session.commit()


@pytest.mark.asyncio
async def test_candidate_claimed_elsewhere_requeues_requester(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    """
    If the chosen candidate disappears before the claim, no match is made
    and the requester is queued instead.
    """
    gone = await make_player("AlreadyPaired")
    requester = await make_player("TooLate")
    requester_id = requester.id
    stale = QueueEntry(
        id=424242, player_id=gone.id, game_mode="quick_play", rating=1200
    )

    with patch(
        "crownmatch.services.matchmaking_service.find_candidate",
        new=AsyncMock(side_effect=[stale, None]),
    ) as find_mock:
        result = await matchmaking_service.find_or_queue(
            db_session, requester, MatchmakingRequest(), settings
        )

    assert result.queued
    assert find_mock.await_count == 2
    assert await count_matches(session_factory) == 0
    assert await queued_player_ids(session_factory) == {requester_id}


@pytest.mark.asyncio
async def test_simultaneous_requests_claim_single_candidate_once(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    """Two concurrent pairings against one candidate create exactly one match."""
    candidate = await make_player("Sought")
    first = await make_player("RacerOne")
    second = await make_player("RacerTwo")
    candidate_id = candidate.id
    await enqueue(db_session, candidate, 1200, minutes_ago=1)

    async def request(player: Player):
        async with session_factory() as session:
            return await matchmaking_service.find_or_queue(
                session, player, MatchmakingRequest(), settings
            )

    results = await asyncio.gather(request(first), request(second))

    matched = [r for r in results if r.matched]
    queued = [r for r in results if r.queued]
    assert len(matched) == 1
    assert len(queued) == 1
    assert await count_matches(session_factory) == 1

    match = matched[0].match
    assert match is not None
    assert candidate_id in (match.white_player_id, match.black_player_id)

    # The loser of the race waits in the queue; the candidate is gone
    winner_id = (
        match.black_player_id
        if match.white_player_id == candidate_id
        else match.white_player_id
    )
    loser_id = first.id if winner_id == second.id else second.id
    assert await queued_player_ids(session_factory) == {loser_id}


@pytest.mark.asyncio
async def test_requester_paired_concurrently_gets_existing_match(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    """
    When the requester's own queue row was claimed by someone else just
    before this call, the call reports that match instead of pairing again.
    """
    requester = await make_player("Popular")
    opponent = await make_player("Quick")
    bystander = await make_player("Bystander")
    requester_id = requester.id
    existing = Match(
        white_player_id=opponent.id,
        black_player_id=requester_id,
        game_mode="quick_play",
    )
    db_session.add(existing)
    await db_session.commit()
    existing_id = existing.id
    await enqueue(db_session, bystander, 1200, minutes_ago=1)
    bystander_id = bystander.id

    own_stale = QueueEntry(
        id=515151, player_id=requester_id, game_mode="quick_play", rating=1200
    )
    with patch(
        "crownmatch.services.matchmaking_service.get_queue_entry",
        new=AsyncMock(return_value=own_stale),
    ):
        result = await matchmaking_service.find_or_queue(
            db_session, requester, MatchmakingRequest(), settings
        )

    assert result.matched
    assert result.match is not None
    assert result.match.id == existing_id
    assert await count_matches(session_factory) == 1
    assert await queued_player_ids(session_factory) == {bystander_id}


@pytest.mark.asyncio
async def test_storage_failure_during_match_creation_rolls_back(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    """A failed pairing leaves the candidate queued and creates no match."""
    waiting = await make_player("StillWaiting")
    requester = await make_player("Unlucky")
    waiting_id = waiting.id
    await enqueue(db_session, waiting, 1200, minutes_ago=1)

    with patch(
        "crownmatch.services.matchmaking_service._new_match",
        side_effect=OperationalError("INSERT INTO matches", {}, Exception("disk I/O")),
    ):
        with pytest.raises(StorageFailureError) as exc_info:
            await matchmaking_service.find_or_queue(
                db_session, requester, MatchmakingRequest(), settings
            )

    assert exc_info.value.details["operation"] == "matchmaking"
    assert await count_matches(session_factory) == 0
    assert await queued_player_ids(session_factory) == {waiting_id}


@pytest.mark.asyncio
async def test_expired_entries_are_purged_and_skipped(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    old = await make_player("Forgotten")
    requester = await make_player("Fresh")
    requester_id = requester.id
    await enqueue(
        db_session,
        old,
        1200,
        minutes_ago=0,
        enqueued_at=datetime.now(timezone.utc) - timedelta(hours=2),
    )

    result = await matchmaking_service.find_or_queue(
        db_session,
        requester,
        MatchmakingRequest(),
        replace(settings, queue_ttl_seconds=600),
    )

    assert result.queued
    assert await queued_player_ids(session_factory) == {requester_id}


# =============================================================================
# Cancellation and lookup
# =============================================================================


@pytest.mark.asyncio
async def test_cancel_is_idempotent(
    db_session: AsyncSession, make_player, session_factory
):
    player = await make_player("Quitter")
    player_id = player.id
    await enqueue(db_session, player, 1200, minutes_ago=1)

    assert await matchmaking_service.remove_from_queue(db_session, player_id) is True
    assert await matchmaking_service.remove_from_queue(db_session, player_id) is False
    assert await queued_player_ids(session_factory) == set()


@pytest.mark.asyncio
async def test_get_active_match_filters_by_time_control(
    db_session: AsyncSession, make_player
):
    white = await make_player("ActiveWhite")
    black = await make_player("ActiveBlack")
    timed = Match(
        white_player_id=white.id,
        black_player_id=black.id,
        game_mode="quick_play",
        duration_seconds=300,
    )
    db_session.add(timed)
    await db_session.commit()

    found = await matchmaking_service.get_active_match(db_session, black.id)
    assert found is not None and found.id == timed.id

    same = await matchmaking_service.get_active_match(
        db_session, white.id, duration_seconds=300, any_duration=False
    )
    assert same is not None

    untimed = await matchmaking_service.get_active_match(
        db_session, white.id, duration_seconds=None, any_duration=False
    )
    assert untimed is None


@pytest.mark.asyncio
async def test_get_active_match_ignores_games_before_since(
    db_session: AsyncSession, make_player
):
    white = await make_player("EarlierWhite")
    black = await make_player("EarlierBlack")
    earlier = Match(
        white_player_id=white.id,
        black_player_id=black.id,
        game_mode="quick_play",
        created_at=BASE_TIME,
    )
    db_session.add(earlier)
    await db_session.commit()

    assert (
        await matchmaking_service.get_active_match(
            db_session, white.id, since=BASE_TIME + timedelta(seconds=1)
        )
        is None
    )
    found = await matchmaking_service.get_active_match(
        db_session, white.id, since=BASE_TIME
    )
    assert found is not None and found.id == earlier.id


@pytest.mark.asyncio
async def test_queued_result_reports_original_enqueue_time(
    db_session: AsyncSession, make_player, settings: Settings
):
    """Re-requesting while queued keeps the wait's start time."""
    waiter = await make_player("PatientOne")
    await enqueue(db_session, waiter, 1200, minutes_ago=5)

    result = await matchmaking_service.find_or_queue(
        db_session, waiter, MatchmakingRequest(game_mode="blitz"), settings
    )

    assert result.queued
    assert result.enqueued_at is not None
    assert result.enqueued_at.replace(tzinfo=None) == (
        BASE_TIME - timedelta(minutes=5)
    ).replace(tzinfo=None)


@pytest.mark.asyncio
async def test_fresh_queue_entry_reports_enqueue_time(
    db_session: AsyncSession, make_player, settings: Settings
):
    newcomer = await make_player("Newcomer")
    before = datetime.now(timezone.utc).replace(tzinfo=None)

    result = await matchmaking_service.find_or_queue(
        db_session, newcomer, MatchmakingRequest(), settings
    )

    assert result.queued
    assert result.enqueued_at is not None
    assert result.enqueued_at.replace(tzinfo=None) >= before


def test_candidate_search_skips_locked_rows_on_postgres():
    query = matchmaking_service.candidate_query(
        1, 1200, MatchmakingRequest(game_mode="blitz"), rating_window=200
    )

    assert "FOR UPDATE SKIP LOCKED" in str(query.compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE" not in str(query.compile(dialect=sqlite.dialect()))


@pytest.mark.asyncio
async def test_aborted_request_reports_concurrent_pairing(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    """
    A request aborted by the database (e.g. chosen as a deadlock victim)
    reports the match a colliding request created for it, not a failure.
    """
    victim = await make_player("DeadlockVictim")
    survivor = await make_player("DeadlockSurvivor")
    victim_id, survivor_id = victim.id, survivor.id
    created: list[int] = []

    async def paired_then_aborted(*args, **kwargs):
        async with session_factory() as session:
            match = Match(
                white_player_id=survivor_id,
                black_player_id=victim_id,
                game_mode="quick_play",
            )
            session.add(match)
            await session.commit()
            created.append(match.id)
        raise OperationalError(
            "DELETE FROM queue_entries", {}, Exception("deadlock detected")
        )

    with patch(
        "crownmatch.services.matchmaking_service.find_candidate",
        new=AsyncMock(side_effect=paired_then_aborted),
    ):
        result = await matchmaking_service.find_or_queue(
            db_session, victim, MatchmakingRequest(), settings
        )

    assert result.matched
    assert result.match is not None and result.match.id == created[0]
    assert await queued_player_ids(session_factory) == set()


@pytest.mark.asyncio
async def test_aborted_request_ignores_earlier_games(
    db_session: AsyncSession, make_player, settings: Settings, session_factory
):
    """A game that already existed before the request is no excuse to succeed."""
    player = await make_player("StillPlaying")
    rival = await make_player("OldRival")
    db_session.add(
        Match(
            white_player_id=player.id,
            black_player_id=rival.id,
            game_mode="quick_play",
            created_at=BASE_TIME,
        )
    )
    await db_session.commit()

    with patch(
        "crownmatch.services.matchmaking_service.find_candidate",
        side_effect=OperationalError("SELECT", {}, Exception("deadlock detected")),
    ):
        with pytest.raises(StorageFailureError):
            await matchmaking_service.find_or_queue(
                db_session, player, MatchmakingRequest(), settings
            )
