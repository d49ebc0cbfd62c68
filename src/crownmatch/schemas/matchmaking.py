# src/crownmatch/schemas/matchmaking.py

"""Pydantic schemas for matchmaking requests and responses."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .match import MatchRead

GAME_MODE_PATTERN = r"^[a-z0-9_]{1,32}$"


class MatchmakingRequest(BaseModel):
    """Body of a matchmaking request.

    Examples:
        {}
        {"game_mode": "blitz", "duration_seconds": 300}
    """

    game_mode: str = Field(default="quick_play", pattern=GAME_MODE_PATTERN)
    duration_seconds: int | None = Field(
        default=None, gt=0, le=86400, description="Time control; omit for untimed"
    )
    region: str | None = Field(default=None, max_length=32)


class MatchedResponse(BaseModel):
    """A pairing was made; `game` is the newly created match."""

    matched: Literal[True] = True
    game: MatchRead


class QueuedResponse(BaseModel):
    """No opponent yet; the caller now waits in the queue."""

    matched: Literal[False] = False
    queued: Literal[True] = True
    enqueued_at: datetime | None = Field(
        default=None, description="When the wait started; pass as `since` when polling"
    )


MatchmakingResponse = MatchedResponse | QueuedResponse


class QueueEntryRead(BaseModel):
    """The caller's pending queue entry."""

    player_id: int
    game_mode: str
    rating: int
    region: str | None = None
    duration_seconds: int | None = None
    enqueued_at: datetime

    model_config = ConfigDict(from_attributes=True)
