# src/crownmatch/rating/elo.py

"""
Elo rating update used after a match concludes.

Expected score follows the logistic curve with a 400-point scale:
    expected = 1 / (1 + 10 ** ((opponent - rating) / 400))
and the new rating is rating + K * (score - expected), rounded half away
from zero. Ratings are not clamped.
"""

from __future__ import annotations

import math
from numbers import Real
from typing import Literal

from crownmatch.exceptions import InvalidRatingInputError

DEFAULT_RATING = 1200
DEFAULT_K_FACTOR = 24
SCALE_FACTOR = 400.0

Outcome = Literal["win", "loss", "draw"]

VALID_SCORES = (0, 0.5, 1)

_OUTCOME_SCORES: dict[str, float] = {"win": 1.0, "loss": 0.0, "draw": 0.5}


def validate_number(field: str, value: object) -> float:
    # bool is an int subclass but never a rating
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidRatingInputError(field, value, "must be a number")
    as_float = float(value)
    if not math.isfinite(as_float):
        raise InvalidRatingInputError(field, value, "must be finite")
    return as_float


def validate_rating(field: str, value: object) -> int:
    """A rating must be a whole number; 1500.0 is accepted, 1500.7 is not."""
    as_float = validate_number(field, value)
    if not as_float.is_integer():
        raise InvalidRatingInputError(field, value, "must be a whole number")
    return int(as_float)


def round_half_away_from_zero(value: float) -> int:
    """Round to the nearest integer, ties away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def score_for(outcome: str) -> float:
    """Map a win/loss/draw outcome to its Elo score."""
    try:
        return _OUTCOME_SCORES[outcome]
    except KeyError:
        raise InvalidRatingInputError(
            "outcome", outcome, "must be one of win, loss, draw"
        ) from None


def expected_score(rating: int, opponent_rating: int) -> float:
    """Expected score of `rating` against `opponent_rating`."""
    own = validate_rating("rating", rating)
    other = validate_rating("opponent_rating", opponent_rating)
    return 1.0 / (1.0 + 10.0 ** ((other - own) / SCALE_FACTOR))


def update_rating(
    rating: int,
    opponent_rating: int,
    score: float,
    k_factor: float = DEFAULT_K_FACTOR,
) -> int:
    """
    Compute a player's new rating after a single game.

    Args:
        rating: The player's pre-match rating.
        opponent_rating: The opponent's pre-match rating.
        score: 1 for a win, 0.5 for a draw, 0 for a loss.
        k_factor: Maximum swing per game.

    Raises:
        InvalidRatingInputError: If a rating is not a whole number, the
            score is not one of 0, 0.5, 1, or the K-factor is not a positive
            finite number.
    """
    score_value = validate_number("score", score)
    if score_value not in VALID_SCORES:
        raise InvalidRatingInputError("score", score, "must be 0, 0.5 or 1")

    k = validate_number("k_factor", k_factor)
    if k <= 0:
        raise InvalidRatingInputError("k_factor", k_factor, "must be positive")

    own = validate_rating("rating", rating)
    expected = expected_score(own, opponent_rating)
    return round_half_away_from_zero(own + k * (score_value - expected))


def rating_deltas(
    white_rating: int, black_rating: int, white_score: float, k_factor: float
) -> tuple[int, int]:
    """Return the (white, black) rating changes for one finished game."""
    new_white = update_rating(white_rating, black_rating, white_score, k_factor)
    new_black = update_rating(black_rating, white_rating, 1 - white_score, k_factor)
    return new_white - white_rating, new_black - black_rating
