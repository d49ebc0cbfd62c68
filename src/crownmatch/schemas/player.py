# src/crownmatch/schemas/player.py

"""Pydantic schemas for the Player resource."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ===============================================
# Base Schema: Defines shared attributes for creation
# ===============================================
class PlayerBase(BaseModel):
    """Shared properties for a player."""

    name: str = Field(..., min_length=1, max_length=64)


# ===============================================
# Create Schema: Inherits the base properties
# ===============================================
class PlayerCreate(PlayerBase):
    """Properties to receive via API on create.

    A starting rating may be supplied (e.g. when importing players);
    otherwise the player starts unrated and is treated as 1200.
    """

    rating: int | None = Field(default=None, ge=0, le=4000)


# ===============================================
# Read Schema: Defines attributes for returning data
# ===============================================
class PlayerRead(PlayerBase):
    """Properties to return to the client."""

    id: int
    rating: int | None = None
    rank_tier: str | None = None
    wins: int = 0
    losses: int = 0
    draws: int = 0
    games_played: int = 0
    win_streak: int = 0
    created_at: datetime

    # Enable ORM mode for this schema
    model_config = ConfigDict(from_attributes=True)


class PlayerCreated(PlayerRead):
    """Returned once on registration; the only response carrying the token."""

    api_token: str


class LeaderboardEntry(BaseModel):
    """Single entry in the rating leaderboard.

    Attributes:
        rank: Position in leaderboard (1-indexed)
        player: The player information
    """

    rank: int = Field(..., ge=1, description="Position in leaderboard (1-indexed)")
    player: PlayerRead


class LeaderboardPage(BaseModel):
    """One page of the leaderboard, highest rating first."""

    items: list[LeaderboardEntry]
    total: int = Field(..., description="Registered players")
    skip: int
    limit: int
    has_more: bool = Field(..., description="More players ranked below this page")
