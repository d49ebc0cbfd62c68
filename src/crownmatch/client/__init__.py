# src/crownmatch/client/__init__.py

"""Python client for the CrownMatch matchmaking API."""

from .search import (
    MatchmakingAPI,
    MatchSearchController,
    MatchStatusSource,
    SearchState,
    connect,
)

__all__ = [
    "MatchmakingAPI",
    "MatchSearchController",
    "MatchStatusSource",
    "SearchState",
    "connect",
]
