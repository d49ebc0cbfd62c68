# src/crownmatch/schemas/__init__.py

"""Pydantic schemas for API validation and serialization."""

from .match import ActiveMatchResponse, MatchRead, MatchResultCreate
from .matchmaking import (
    MatchedResponse,
    MatchmakingRequest,
    MatchmakingResponse,
    QueuedResponse,
    QueueEntryRead,
)
from .player import (
    LeaderboardEntry,
    LeaderboardPage,
    PlayerBase,
    PlayerCreate,
    PlayerCreated,
    PlayerRead,
)

__all__ = [
    # Match
    "ActiveMatchResponse",
    "MatchRead",
    "MatchResultCreate",
    # Matchmaking
    "MatchedResponse",
    "MatchmakingRequest",
    "MatchmakingResponse",
    "QueuedResponse",
    "QueueEntryRead",
    # Player
    "LeaderboardEntry",
    "LeaderboardPage",
    "PlayerBase",
    "PlayerCreate",
    "PlayerCreated",
    "PlayerRead",
]
