# src/crownmatch/exceptions.py

"""Custom exception hierarchy for CrownMatch.

This module provides a structured exception hierarchy that enables:
1. Proper HTTP status code mapping in API endpoints
2. Detailed error context for logging and debugging
3. Clear distinction between client errors and retryable storage failures
"""

from __future__ import annotations


class CrownMatchError(Exception):
    """Base exception for all CrownMatch errors.

    Attributes:
        message: Human-readable error description
        details: Optional dict with additional context for logging/debugging
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


# =============================================================================
# Authentication Errors (HTTP 401 / 403)
# =============================================================================


class UnauthenticatedError(CrownMatchError):
    """Raised when the caller identity is missing or cannot be verified."""

    def __init__(self, reason: str = "Not authenticated") -> None:
        super().__init__(message=reason)


class NotAParticipantError(CrownMatchError):
    """Raised when a player acts on a match they are not playing in."""

    def __init__(self, player_id: int, match_id: int) -> None:
        super().__init__(
            message=f"Player {player_id} is not a participant of match {match_id}",
            details={"player_id": player_id, "match_id": match_id},
        )


# =============================================================================
# Resource Not Found Errors (HTTP 404)
# =============================================================================


class ResourceNotFoundError(CrownMatchError):
    """Base class for resource not found errors."""

    pass


class PlayerNotFoundError(ResourceNotFoundError):
    """Raised when a player ID does not exist."""

    def __init__(self, player_id: int) -> None:
        super().__init__(
            message=f"Player with ID {player_id} not found",
            details={"player_id": player_id},
        )


class MatchNotFoundError(ResourceNotFoundError):
    """Raised when a match ID does not exist."""

    def __init__(self, match_id: int) -> None:
        super().__init__(
            message=f"Match with ID {match_id} not found",
            details={"match_id": match_id},
        )


class QueueEntryNotFoundError(ResourceNotFoundError):
    """Raised when a player has no matchmaking queue entry to report."""

    def __init__(self, player_id: int) -> None:
        super().__init__(
            message=f"Player {player_id} is not in the matchmaking queue",
            details={"player_id": player_id},
        )


# =============================================================================
# Validation Errors (HTTP 422)
# =============================================================================


class ValidationError(CrownMatchError):
    """Base class for validation errors."""

    pass


class InvalidRatingInputError(ValidationError):
    """Raised when a rating, score or K-factor is not usable."""

    def __init__(self, field: str, value: object, reason: str) -> None:
        super().__init__(
            message=f"Invalid {field} {value!r}: {reason}",
            details={"field": field, "value": repr(value), "reason": reason},
        )


class InvalidTierTableError(ValidationError):
    """Raised when a tier table is malformed or unknown."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=f"Invalid tier table: {reason}")


# =============================================================================
# Conflict Errors (HTTP 409)
# =============================================================================


class ConflictError(CrownMatchError):
    """Base class for state conflicts."""

    pass


class MatchAlreadyConcludedError(ConflictError):
    """Raised when a result is reported for a match in a terminal state."""

    def __init__(self, match_id: int, state: str) -> None:
        super().__init__(
            message=f"Match {match_id} has already concluded ({state})",
            details={"match_id": match_id, "state": state},
        )


# =============================================================================
# Throttling and Storage Errors (HTTP 429 / 503)
# =============================================================================


class RateLimitExceededError(CrownMatchError):
    """Raised when a caller exceeds its request allowance."""

    def __init__(self, key: str, retry_after: float) -> None:
        super().__init__(
            message="Rate limit exceeded",
            details={"key": key, "retry_after": round(retry_after, 3)},
        )
        self.retry_after = retry_after


class StorageFailureError(CrownMatchError):
    """Raised when the queue or match store fails; safe to retry."""

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        super().__init__(
            message=f"Storage failure during {operation}",
            details={"operation": operation, "cause": str(cause) if cause else None},
        )
