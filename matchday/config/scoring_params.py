"""Scoring constants and bounds.

All scoring-related configuration lives here so that grading, streaks and
rules validation read one source of truth. Changing a value changes the
points of every prediction graded afterwards; already-graded ledger rows
keep the factors recorded at grading time.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field


class TimingTier(BaseModel):
    """One band of the timing coefficient step function."""

    min_hours: int = Field(ge=0, description="Inclusive lower bound of lead time (hours).")
    multiplier: Decimal = Field(ge=Decimal("1"), le=Decimal("10"))
    name: str


class TimingParams(BaseModel):
    """Lead-time bonus for predictions made well before kick-off.

    Tiers are ordered by ``min_hours`` descending; the first tier whose
    lower bound the lead time reaches wins. Negative lead times fall
    through to the last tier.
    """

    tiers: List[TimingTier] = Field(
        default_factory=lambda: [
            TimingTier(min_hours=168, multiplier=Decimal("2.0"), name="Early Bird"),
            TimingTier(min_hours=72, multiplier=Decimal("1.5"), name="Ahead of Time"),
            TimingTier(min_hours=24, multiplier=Decimal("1.25"), name="Timely"),
            TimingTier(min_hours=12, multiplier=Decimal("1.1"), name="Last Minute"),
            TimingTier(min_hours=0, multiplier=Decimal("1.0"), name="Standard"),
        ]
    )


class StreakTier(BaseModel):
    min_streak: int = Field(ge=0)
    multiplier: Decimal = Field(ge=Decimal("1"), le=Decimal("10"))


class StreakParams(BaseModel):
    """Multiplier awarded for consecutive successful predictions."""

    tiers: List[StreakTier] = Field(
        default_factory=lambda: [
            StreakTier(min_streak=10, multiplier=Decimal("2.00")),
            StreakTier(min_streak=7, multiplier=Decimal("1.75")),
            StreakTier(min_streak=5, multiplier=Decimal("1.50")),
            StreakTier(min_streak=3, multiplier=Decimal("1.25")),
            StreakTier(min_streak=0, multiplier=Decimal("1.00")),
        ]
    )


class RulesBounds(BaseModel):
    """Validation bounds for contest rules documents."""

    any_other_threshold: int = Field(
        default=4,
        ge=0,
        description="A result is 'any other' when either side scores more than this.",
    )
    risky_min_selections: int = 1
    risky_max_selections: int = 10
    totalizator_min_events: int = 5
    totalizator_max_events: int = 30
    relay_min_team_size: int = 2
    relay_max_team_size: int = 10
    relay_min_events: int = 5
    relay_max_events: int = 50


class MarketPoints(BaseModel):
    """Flat points for winner, over/under and prop picks in non-risky contests."""

    winner: Decimal = Field(default=Decimal("3"), ge=Decimal("0"))
    over_under: Decimal = Field(default=Decimal("2"), ge=Decimal("0"))
    prop_default: Decimal = Field(
        default=Decimal("2"),
        ge=Decimal("0"),
        description="Points for a correct prop pick that names no points_value of its own.",
    )


class ScoringParams(BaseModel):
    timing: TimingParams = Field(default_factory=TimingParams)
    streak: StreakParams = Field(default_factory=StreakParams)
    rules: RulesBounds = Field(default_factory=RulesBounds)
    markets: MarketPoints = Field(default_factory=MarketPoints)


DEFAULT_SCORING_PARAMS = ScoringParams()


def get_scoring_params() -> ScoringParams:
    """Get scoring parameters."""
    return DEFAULT_SCORING_PARAMS


__all__ = [
    "TimingTier",
    "TimingParams",
    "StreakTier",
    "StreakParams",
    "RulesBounds",
    "MarketPoints",
    "ScoringParams",
    "DEFAULT_SCORING_PARAMS",
    "get_scoring_params",
]
