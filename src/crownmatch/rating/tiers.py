# src/crownmatch/rating/tiers.py

"""Rating-to-tier classification with configurable threshold tables."""

from __future__ import annotations

from dataclasses import dataclass

from crownmatch.exceptions import InvalidTierTableError
from crownmatch.rating.elo import validate_rating


@dataclass(frozen=True)
class TierTable:
    """An ordered set of tier breakpoints.

    `breakpoints` is a sequence of (min_rating, tier_name) pairs in strictly
    increasing rating order. The first pair is the floor tier: it applies
    to every rating below the second breakpoint, including ratings under
    its own minimum.
    """

    name: str
    breakpoints: tuple[tuple[int, str], ...]

    def __post_init__(self) -> None:
        if not self.breakpoints:
            raise InvalidTierTableError(f"{self.name!r} has no breakpoints")

        names = [tier for _, tier in self.breakpoints]
        if len(set(names)) != len(names):
            raise InvalidTierTableError(f"{self.name!r} repeats a tier name")

        thresholds = [threshold for threshold, _ in self.breakpoints]
        if any(b <= a for a, b in zip(thresholds, thresholds[1:])):
            raise InvalidTierTableError(
                f"{self.name!r} thresholds must be strictly increasing"
            )

    @property
    def tiers(self) -> list[str]:
        """Tier names from lowest to highest."""
        return [tier for _, tier in self.breakpoints]

    def tier_for(self, rating: int) -> str:
        """Return the tier for a rating. Highest matching breakpoint wins."""
        value = validate_rating("rating", rating)
        for threshold, tier in reversed(self.breakpoints[1:]):
            if value >= threshold:
                return tier
        return self.breakpoints[0][1]

    def ordinal(self, tier: str) -> int:
        """Position of a tier in this table (0 = lowest)."""
        try:
            return self.tiers.index(tier)
        except ValueError:
            raise InvalidTierTableError(
                f"{tier!r} is not a tier of {self.name!r}"
            ) from None


STANDARD_TIERS = TierTable(
    name="standard",
    breakpoints=(
        (0, "Bronze"),
        (1300, "Silver"),
        (1600, "Gold"),
        (1900, "Platinum"),
        (2200, "Diamond"),
        (2500, "Crown Master"),
    ),
)

# Profile badge thresholds from the first release of the client.
CLASSIC_TIERS = TierTable(
    name="classic",
    breakpoints=(
        (0, "Bronze"),
        (500, "Silver"),
        (800, "Gold"),
        (1200, "Platinum"),
        (1600, "Diamond"),
    ),
)

OVERVIEW_TIERS = TierTable(
    name="overview",
    breakpoints=(
        (0, "Starter"),
        (1200, "Contender"),
        (1500, "Elite"),
        (1800, "Grand Crown"),
    ),
)

TIER_TABLES: dict[str, TierTable] = {
    table.name: table for table in (STANDARD_TIERS, CLASSIC_TIERS, OVERVIEW_TIERS)
}


def get_tier_table(name: str) -> TierTable:
    """Look up a shipped tier table by name."""
    try:
        return TIER_TABLES[name]
    except KeyError:
        raise InvalidTierTableError(
            f"unknown table {name!r}, expected one of {sorted(TIER_TABLES)}"
        ) from None


def tier_for(rating: int, table: TierTable = STANDARD_TIERS) -> str:
    """Return the tier label for `rating` under `table`."""
    return table.tier_for(rating)
