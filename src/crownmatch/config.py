# src/crownmatch/config.py

"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class Settings:
    """Service settings.

    Attributes:
        database_url: SQLAlchemy async URL (SQLite fallback for development)
        db_echo: Echo SQL statements to the log
        db_pool_size: Connection pool size (ignored for SQLite)
        db_max_overflow: Extra connections above the pool size
        db_pool_recycle: Seconds before a pooled connection is recycled
        rating_window: Max rating gap (inclusive) between paired players
        k_factor: Elo K-factor used when concluding matches
        tier_table: Name of the tier table used for rank labels
        queue_ttl_seconds: Queue entries older than this are ignored and
            purged during candidate search; 0 disables expiry
        claim_attempts: How many times a pairing re-searches after losing
            a candidate to a concurrent request
        rate_limit: Max matchmaking requests per player per window
        rate_window_seconds: Length of the rate-limit window
        log_level: Root log level applied at startup
    """

    database_url: str = "sqlite+aiosqlite:///./crownmatch.db"
    db_echo: bool = False
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_recycle: int = 3600
    rating_window: int = 200
    k_factor: int = 24
    tier_table: str = "standard"
    queue_ttl_seconds: int = 0
    claim_attempts: int = 3
    rate_limit: int = 60
    rate_window_seconds: float = 60.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            db_echo=_env_bool("DB_ECHO"),
            db_pool_size=int(os.getenv("DB_POOL_SIZE", "20")),
            db_max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            db_pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "3600")),
            rating_window=int(os.getenv("CROWNMATCH_RATING_WINDOW", "200")),
            k_factor=int(os.getenv("CROWNMATCH_K_FACTOR", "24")),
            tier_table=os.getenv("CROWNMATCH_TIER_TABLE", "standard"),
            queue_ttl_seconds=int(os.getenv("CROWNMATCH_QUEUE_TTL_SECONDS", "0")),
            claim_attempts=int(os.getenv("CROWNMATCH_CLAIM_ATTEMPTS", "3")),
            rate_limit=int(os.getenv("CROWNMATCH_RATE_LIMIT", "60")),
            rate_window_seconds=float(
                os.getenv("CROWNMATCH_RATE_WINDOW_SECONDS", "60")
            ),
            log_level=os.getenv("CROWNMATCH_LOG_LEVEL", "INFO").upper(),
        )


@lru_cache
def get_settings() -> Settings:
    """FastAPI dependency returning the process-wide settings."""
    return Settings.from_env()
