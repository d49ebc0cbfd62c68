# tests/conftest.py

"""Pytest configuration and fixtures."""

from pathlib import Path
from typing import AsyncGenerator, Awaitable, Callable

import pytest
from crownmatch.config import Settings, get_settings
from crownmatch.db.models import Base, Player
from crownmatch.db.session import create_engine_from_settings, get_db
from crownmatch.main import app
from crownmatch.ratelimit import SlidingWindowRateLimiter
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    A fresh file-backed SQLite database per test.

    A file (rather than :memory:) gives every session its own connection,
    so concurrent requests see real SQLite locking.
    """
    test_engine = create_engine_from_settings(
        Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine, expire_on_commit=False, autocommit=False, autoflush=False
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A session for arranging and inspecting data directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite+aiosqlite://", rate_limit=1000)


@pytest.fixture
def make_player(
    db_session: AsyncSession,
) -> Callable[..., Awaitable[Player]]:
    """Factory creating committed players directly in the database."""

    async def _make(name: str, rating: int | None = None) -> Player:
        player = Player(name=name, rating=rating)
        db_session.add(player)
        await db_session.commit()
        return player

    return _make


@pytest.fixture
async def async_client(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> AsyncGenerator[AsyncClient, None]:
    """Fixture to provide an async test client for the API."""

    # Each request gets its own session, like the real get_db
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    # Lifespan doesn't run under ASGITransport, so install the limiter here
    app.state.rate_limiter = SlidingWindowRateLimiter(
        settings.rate_limit, settings.rate_window_seconds
    )

    transport = ASGITransport(app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def register(async_client: AsyncClient) -> Callable[..., Awaitable[dict]]:
    """Factory creating players through the API; returns the response body."""

    async def _register(name: str, rating: int | None = None) -> dict:
        payload: dict = {"name": name}
        if rating is not None:
            payload["rating"] = rating
        res = await async_client.post("/players/", json=payload)
        assert res.status_code == 201, res.text
        return res.json()  # type: ignore[no-any-return]

    return _register


@pytest.fixture
def auth() -> Callable[[dict], dict[str, str]]:
    """Authorization header for a player returned by `register`."""

    def _auth(player: dict) -> dict[str, str]:
        return {"Authorization": f"Bearer {player['api_token']}"}

    return _auth
