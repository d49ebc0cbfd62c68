# src/crownmatch/schemas/match.py

"""Pydantic schemas for the Match resource."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class MatchRead(BaseModel):
    """Properties to return to the client for a match."""

    id: int
    white_player_id: int
    black_player_id: int
    game_mode: str
    duration_seconds: int | None = None
    state: str
    board_state: str
    moves: list = Field(default_factory=list)
    winner_id: int | None = None
    termination: str | None = None
    white_rating_change: int | None = None
    black_rating_change: int | None = None
    created_at: datetime
    ended_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ActiveMatchResponse(BaseModel):
    """Polling response: the caller's current in-progress match, if any."""

    match: MatchRead | None = None


class MatchResultCreate(BaseModel):
    """Result report for an in-progress match.

    Examples:
        {"result": "white", "termination": "checkmate"}
        {"result": "draw", "termination": "agreement"}
    """

    result: Literal["white", "black", "draw"]
    termination: str | None = Field(default=None, max_length=32)
    board_state: str | None = Field(
        default=None, description="Final position (FEN), stored as-is"
    )
    moves: list[str] | None = Field(default=None, description="Full move list")
