"""Per-(user, contest) streak state machine."""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from matchday.config.scoring_params import StreakParams, get_scoring_params

from .types import ZERO


@dataclass(frozen=True)
class StreakState:
    current_streak: int = 0
    max_streak: int = 0
    last_prediction_id: int | None = None
    last_correct: bool | None = None


def is_successful(base_points: Decimal, *, risky: bool, strict_risky: bool = False) -> bool:
    """Whether a graded prediction extends the streak.

    Standard variants need positive points. Risky selections that net
    to zero keep the streak unless strict mode is on.
    """
    if risky and not strict_risky:
        return base_points >= ZERO
    return base_points > ZERO


def advance(state: StreakState, prediction_id: int, successful: bool) -> StreakState:
    if successful:
        current = state.current_streak + 1
        return replace(
            state,
            current_streak=current,
            max_streak=max(state.max_streak, current),
            last_prediction_id=prediction_id,
            last_correct=True,
        )
    return replace(
        state,
        current_streak=0,
        last_prediction_id=prediction_id,
        last_correct=False,
    )


def streak_multiplier(current_streak: int, params: StreakParams | None = None) -> Decimal:
    params = params or get_scoring_params().streak
    for tier in sorted(params.tiers, key=lambda t: t.min_streak, reverse=True):
        if current_streak >= tier.min_streak:
            return tier.multiplier
    return Decimal("1.00")


__all__ = ["StreakState", "is_successful", "advance", "streak_multiplier"]
