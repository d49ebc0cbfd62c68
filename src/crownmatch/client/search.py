# src/crownmatch/client/search.py

"""Client-side driver for the matchmaking API.

`MatchSearchController` issues one matchmaking request and, when the caller
is queued, polls for the match that pairs them. It exposes a small state
machine:

    idle -> searching -> matched | error
    searching -> idle            (cancel)

The polling task is owned by the controller and is always stopped on
success, failure, cancellation and `close()`.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0


class SearchState(str, Enum):
    """States of a match search."""

    IDLE = "idle"
    SEARCHING = "searching"
    MATCHED = "matched"
    ERROR = "error"


class MatchStatusSource(Protocol):
    """Anything that can tell whether a match naming this player exists.

    `since` is the `enqueued_at` the server returned when the search was
    queued; matches created earlier must not be reported.
    """

    async def active_match_id(
        self, duration_seconds: int | None, since: str | None = None
    ) -> int | None: ...


def connect(base_url: str, token: str, timeout: float = 10.0) -> httpx.AsyncClient:
    """Build an HTTP client authenticated as one player."""
    return httpx.AsyncClient(
        base_url=base_url,
        headers={"Authorization": f"Bearer {token}"},
        timeout=timeout,
    )


def _error_message(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            detail = exc.response.json().get("detail")
        except ValueError:
            detail = None
        return str(detail or f"API error: {exc.response.status_code}")
    if isinstance(exc, httpx.HTTPError):
        return str(exc) or type(exc).__name__
    return "Matchmaking failed"


class MatchmakingAPI:
    """Thin wrapper over the matchmaking and match endpoints."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def request_match(
        self,
        game_mode: str,
        duration_seconds: int | None = None,
        region: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"game_mode": game_mode}
        if duration_seconds is not None:
            body["duration_seconds"] = duration_seconds
        if region is not None:
            body["region"] = region
        response = await self._client.post("/matchmaking/", json=body)
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]

    async def cancel(self) -> None:
        response = await self._client.delete("/matchmaking/queue")
        response.raise_for_status()

    async def active_match_id(
        self, duration_seconds: int | None, since: str | None = None
    ) -> int | None:
        params: dict[str, Any] = {}
        if duration_seconds is None:
            params["untimed"] = "true"
        else:
            params["duration_seconds"] = duration_seconds
        if since is not None:
            params["since"] = since
        response = await self._client.get("/matches/active", params=params)
        response.raise_for_status()
        match = response.json().get("match")
        return match["id"] if match else None


class MatchSearchController:
    """Drive one local player's match search.

    Args:
        client: HTTP client already authenticated as the player
            (see `connect`).
        poll_interval: Seconds between match-status checks while queued.
        status_source: Where to look for the match while queued. Defaults
            to polling `GET /matches/active`; a push-based source with the
            same interface can be substituted.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        status_source: MatchStatusSource | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._api = MatchmakingAPI(client)
        self._status_source = status_source or self._api
        self.poll_interval = poll_interval

        self._state = SearchState.IDLE
        self._match_id: int | None = None
        self._error: str | None = None
        self._poll_task: asyncio.Task[None] | None = None
        # Bumped on every start/cancel so late responses from an old search
        # are ignored
        self._generation = 0
        self._settled = asyncio.Event()
        self._closed = False

    @property
    def state(self) -> SearchState:
        return self._state

    @property
    def match_id(self) -> int | None:
        """ID of the matched game once in the `matched` state."""
        return self._match_id

    @property
    def error(self) -> str | None:
        """Human-readable failure once in the `error` state."""
        return self._error

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def __aenter__(self) -> "MatchSearchController":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -- transitions ---------------------------------------------------------

    def _settle(
        self,
        state: SearchState,
        match_id: int | None = None,
        error: str | None = None,
    ) -> None:
        self._state = state
        self._match_id = match_id
        self._error = error
        self._settled.set()
        logger.info(
            "Match search %s",
            state.value,
            extra={"match_id": match_id, "error": error},
        )

    async def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # -- operations ----------------------------------------------------------

    async def start_search(
        self,
        game_mode: str = "quick_play",
        duration_seconds: int | None = None,
        region: str | None = None,
    ) -> SearchState:
        """
        Ask the server for a match.

        Legal from any state except `searching` (where it is a no-op) and
        after `close()`. Returns the state reached when the request
        completes: `matched`, `error`, or `searching` while queued.
        """
        if self._closed:
            raise RuntimeError("controller is closed")
        if self._state is SearchState.SEARCHING:
            return self._state

        await self._stop_polling()
        self._generation += 1
        generation = self._generation
        self._settled.clear()
        self._state = SearchState.SEARCHING
        self._match_id = None
        self._error = None

        try:
            data = await self._api.request_match(game_mode, duration_seconds, region)
        except httpx.HTTPError as e:
            if generation == self._generation:
                self._settle(SearchState.ERROR, error=_error_message(e))
            return self._state

        if generation != self._generation:
            # Cancelled while the request was in flight
            return self._state

        game = data.get("game") if data.get("matched") else None
        if game and game.get("id") is not None:
            self._settle(SearchState.MATCHED, match_id=game["id"])
        elif data.get("queued"):
            self._poll_task = asyncio.create_task(
                self._poll(generation, duration_seconds, data.get("enqueued_at"))
            )
        else:
            self._settle(SearchState.ERROR, error="Unexpected matchmaking response")
        return self._state

    async def _poll(
        self, generation: int, duration_seconds: int | None, since: str | None
    ) -> None:
        while generation == self._generation:
            await asyncio.sleep(self.poll_interval)
            try:
                match_id = await self._status_source.active_match_id(
                    duration_seconds, since
                )
            except httpx.HTTPError as e:
                # Transient; the next tick retries
                logger.warning("Match status poll failed: %s", _error_message(e))
                continue
            except Exception as e:
                logger.error("Match status source failed", exc_info=True)
                if generation == self._generation:
                    self._poll_task = None
                    self._settle(
                        SearchState.ERROR, error=str(e) or type(e).__name__
                    )
                return

            if generation != self._generation:
                return
            if match_id is not None:
                self._poll_task = None
                self._settle(SearchState.MATCHED, match_id=match_id)
                return

    async def cancel(self) -> None:
        """
        Stop searching and leave the queue.

        Only acts from `searching`; a no-op in every other state.

        Raises:
            httpx.HTTPError: If the queue entry could not be removed. The
                controller is `idle` either way.
        """
        if self._state is not SearchState.SEARCHING:
            return

        self._generation += 1
        await self._stop_polling()
        self._settle(SearchState.IDLE)
        await self._api.cancel()

    async def wait(self, timeout: float | None = None) -> SearchState:
        """Wait until the search settles (matched, error or cancelled)."""
        await asyncio.wait_for(self._settled.wait(), timeout)
        return self._state

    async def close(self) -> None:
        """Release the polling task. The controller can't be reused after."""
        self._closed = True
        self._generation += 1
        await self._stop_polling()
