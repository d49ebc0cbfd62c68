# src/crownmatch/api/player.py

"""API endpoints for managing players."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crownmatch.api.deps import get_current_player
from crownmatch.config import Settings, get_settings
from crownmatch.db.models import Player
from crownmatch.db.session import get_db
from crownmatch.exceptions import PlayerNotFoundError
from crownmatch.rating.elo import DEFAULT_RATING
from crownmatch.rating.tiers import get_tier_table
from crownmatch.schemas import player as player_schema

# - prefix="/players": All routes here will be prefixed with /players
# - tags=["Players"]: Groups these endpoints under "Players" in the API docs
router = APIRouter(prefix="/players", tags=["Players"])


@router.post(
    "/",
    response_model=player_schema.PlayerCreated,
    status_code=status.HTTP_201_CREATED,
)
async def create_player(
    player_in: player_schema.PlayerCreate,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
) -> Player:
    """
    Register a new player.

    - **name**: The unique name for the player.
    - **rating**: Optional starting rating (unrated players count as 1200).

    The response carries the player's API token. It is not shown again.

    Raises:
        409 Conflict: If a player with the same name already exists.
    """
    tiers = get_tier_table(settings.tier_table)
    new_player = Player(**player_in.model_dump())
    starting = DEFAULT_RATING if player_in.rating is None else player_in.rating
    new_player.rank_tier = tiers.tier_for(starting)

    try:
        db.add(new_player)
        await db.commit()
        await db.refresh(new_player)
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Player with name '{player_in.name}' already exists",
        )

    return new_player


@router.get("/me", response_model=player_schema.PlayerRead)
async def read_current_player(player: Player = Depends(get_current_player)) -> Player:
    """Return the authenticated caller's profile."""
    return player


@router.get("/leaderboard", response_model=player_schema.LeaderboardPage)
async def read_leaderboard(
    skip: int = Query(0, ge=0, description="Records to skip"),
    limit: int = Query(50, ge=1, le=100, description="Max records to return"),
    db: AsyncSession = Depends(get_db),
) -> player_schema.LeaderboardPage:
    """
    Players ordered by rating, highest first. Unrated players count as 1200.

    - **skip**: Number of records to skip (for pagination)
    - **limit**: Maximum number of records to return (1-100)
    """
    count_query = select(func.count()).select_from(Player)
    total = (await db.execute(count_query)).scalar_one()

    effective = func.coalesce(Player.rating, DEFAULT_RATING)
    query = (
        select(Player)
        .order_by(effective.desc(), Player.id.asc())
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(query)
    players = list(result.scalars().all())

    items = [
        player_schema.LeaderboardEntry(
            rank=skip + position,
            player=player_schema.PlayerRead.model_validate(p),
        )
        for position, p in enumerate(players, start=1)
    ]
    return player_schema.LeaderboardPage(
        items=items,
        total=total,
        skip=skip,
        limit=limit,
        has_more=(skip + len(items)) < total,
    )


@router.get("/{player_id}", response_model=player_schema.PlayerRead)
async def read_player(player_id: int, db: AsyncSession = Depends(get_db)) -> Player:
    """Retrieve a single player by their ID."""
    player = await db.get(Player, player_id)
    if not player:
        raise PlayerNotFoundError(player_id)
    return player
