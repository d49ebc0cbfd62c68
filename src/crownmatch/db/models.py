# src/crownmatch/db/models.py

"""Database models for the CrownMatch application."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    ForeignKey,
    String,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import (
    Mapped,
    declarative_base,
    mapped_column,
)

Base = declarative_base()

# FEN of the standard chess starting position
STARTING_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"

# Match lifecycle states
MATCH_IN_PROGRESS = "in_progress"
MATCH_WHITE_WON = "white_won"
MATCH_BLACK_WON = "black_won"
MATCH_DRAW = "draw"
MATCH_ABORTED = "aborted"
TERMINAL_MATCH_STATES = frozenset(
    {MATCH_WHITE_WON, MATCH_BLACK_WON, MATCH_DRAW, MATCH_ABORTED}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_api_token() -> str:
    """Create a new opaque bearer token for a player."""
    return secrets.token_urlsafe(32)


# ===============================================
# Mixins for Common Columns
# ===============================================


class TimestampMixin:
    """Mixin providing created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        default=None,
        onupdate=_utcnow,
        nullable=True,
    )


class VersionMixin:
    """Mixin providing optimistic locking via version column."""

    version: Mapped[int] = mapped_column(default=1, nullable=False)


# ===============================================
# Player profile store
# ===============================================


class Player(Base, TimestampMixin, VersionMixin):
    """A registered player and their rating profile.

    Attributes:
        rating: Current Elo rating; None until the first rated game, in
            which case the default rating applies.
        rank_tier: Tier label derived from the rating by the configured table.
        api_token: Secret bearer token identifying the player to the API.
    """

    __tablename__ = "players"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    api_token: Mapped[str] = mapped_column(
        String, unique=True, nullable=False, default=generate_api_token
    )
    rating: Mapped[int | None] = mapped_column(nullable=True, index=True)
    rank_tier: Mapped[str | None] = mapped_column(String, nullable=True)
    wins: Mapped[int] = mapped_column(default=0, nullable=False)
    losses: Mapped[int] = mapped_column(default=0, nullable=False)
    draws: Mapped[int] = mapped_column(default=0, nullable=False)
    games_played: Mapped[int] = mapped_column(default=0, nullable=False)
    win_streak: Mapped[int] = mapped_column(default=0, nullable=False)

    def __init__(self, name: str, **kw: Any):
        super().__init__(**kw)
        self.name = name

    @classmethod
    async def find_by_token(cls, db: AsyncSession, token: str) -> "Player | None":
        """Find a player by their API token."""
        result = await db.execute(select(cls).where(cls.api_token == token))
        return result.scalar_one_or_none()


# ===============================================
# Matchmaking queue
# ===============================================


class QueueEntry(Base):
    """A pending matchmaking request. At most one row per player."""

    __tablename__ = "matchmaking_queue"
    id: Mapped[int] = mapped_column(primary_key=True)
    player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    game_mode: Mapped[str] = mapped_column(String, nullable=False, index=True)
    rating: Mapped[int] = mapped_column(nullable=False)
    region: Mapped[str | None] = mapped_column(String, nullable=True)
    # Time control in seconds; NULL means untimed
    duration_seconds: Mapped[int | None] = mapped_column(nullable=True)
    enqueued_at: Mapped[datetime] = mapped_column(
        default=_utcnow, nullable=False, index=True
    )


# ===============================================
# Matches
# ===============================================


class Match(Base, TimestampMixin, VersionMixin):
    """A game between two paired players."""

    __tablename__ = "matches"
    id: Mapped[int] = mapped_column(primary_key=True)
    white_player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id"), nullable=False, index=True
    )
    black_player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id"), nullable=False, index=True
    )
    game_mode: Mapped[str] = mapped_column(String, nullable=False)
    duration_seconds: Mapped[int | None] = mapped_column(nullable=True)

    # in_progress -> white_won | black_won | draw | aborted
    state: Mapped[str] = mapped_column(
        String, default=MATCH_IN_PROGRESS, nullable=False, index=True
    )
    board_state: Mapped[str] = mapped_column(
        String, default=STARTING_FEN, nullable=False
    )
    moves: Mapped[list] = mapped_column(JSON, default=lambda: [])

    winner_id: Mapped[int | None] = mapped_column(
        ForeignKey("players.id"), nullable=True
    )
    # Ex: 'checkmate', 'resignation', 'timeout', 'agreement', 'stalemate'
    termination: Mapped[str | None] = mapped_column(String, nullable=True)
    white_rating_change: Mapped[int | None] = mapped_column(nullable=True)
    black_rating_change: Mapped[int | None] = mapped_column(nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_terminal(self) -> bool:
        """Whether the match has reached a final state."""
        return self.state in TERMINAL_MATCH_STATES

    def has_player(self, player_id: int) -> bool:
        return player_id in (self.white_player_id, self.black_player_id)
