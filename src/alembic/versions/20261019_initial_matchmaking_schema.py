"""Create players, matchmaking queue and matches tables

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

The queue keeps one row per player (unique player_id) so a matchmaking
request can upsert its entry, and pairing claims rows by primary key.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the three tables and their indexes."""
    op.create_table(
        "players",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("api_token", sa.String(), nullable=False, unique=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("rank_tier", sa.String(), nullable=True),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("losses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("draws", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("games_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("win_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_players_rating", "players", ["rating"])

    op.create_table(
        "matchmaking_queue",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "player_id",
            sa.Integer(),
            sa.ForeignKey("players.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("game_mode", sa.String(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("region", sa.String(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("enqueued_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_matchmaking_queue_game_mode", "matchmaking_queue", ["game_mode"]
    )
    op.create_index(
        "ix_matchmaking_queue_enqueued_at", "matchmaking_queue", ["enqueued_at"]
    )

    op.create_table(
        "matches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "white_player_id", sa.Integer(), sa.ForeignKey("players.id"), nullable=False
        ),
        sa.Column(
            "black_player_id", sa.Integer(), sa.ForeignKey("players.id"), nullable=False
        ),
        sa.Column("game_mode", sa.String(), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("board_state", sa.String(), nullable=False),
        sa.Column("moves", sa.JSON(), nullable=True),
        sa.Column("winner_id", sa.Integer(), sa.ForeignKey("players.id"), nullable=True),
        sa.Column("termination", sa.String(), nullable=True),
        sa.Column("white_rating_change", sa.Integer(), nullable=True),
        sa.Column("black_rating_change", sa.Integer(), nullable=True),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_matches_white_player_id", "matches", ["white_player_id"])
    op.create_index("ix_matches_black_player_id", "matches", ["black_player_id"])
    op.create_index("ix_matches_state", "matches", ["state"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("matches")
    op.drop_table("matchmaking_queue")
    op.drop_table("players")
