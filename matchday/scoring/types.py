"""Type definitions, errors and constants for the scoring system."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple, TypedDict, Union

from matchday.shared.enums import MatchStatus


DECIMAL_PLACES = 2  # Rounding precision for stored points
ZERO = Decimal("0")


# ─────────────────────────────────────────────────────────────────────────────
# Error taxonomy
# ─────────────────────────────────────────────────────────────────────────────


class ScoringError(Exception):
    """Base class for every error raised by the scoring core."""

    reason: str = "scoring_error"

    def __init__(self, message: str = "", *, reason: str | None = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class InvalidInput(ScoringError):
    """Malformed request data. Returned to the caller, never retried."""

    reason = "invalid_input"


class ValidationError(InvalidInput):
    """Raised when a value fails numeric validation."""

    reason = "invalid_value"


class InvalidSelection(InvalidInput):
    """Unknown, duplicated or too many risky-event selections."""

    reason = "invalid_selection"


class NotFound(InvalidInput):
    reason = "not_found"


class InvalidRules(ScoringError):
    """Rules document failed validation."""

    reason = "invalid_rules"


class Conflict(ScoringError):
    """Composite-key duplicate; callers treat this as success."""

    reason = "conflict"


class Transient(ScoringError):
    """Cache or database temporarily unavailable. Safe to retry."""

    reason = "transient"


class ContestClosed(ScoringError):
    """Contest was not active when the match finalized."""

    reason = "contest_closed"


class InconsistentState(ScoringError):
    """Projection drifted from the ledger. ``drifted`` maps user id -> both totals."""

    reason = "inconsistent_state"

    def __init__(self, message: str = "", *, drifted: Dict[int, Dict[str, str]] | None = None):
        super().__init__(message)
        self.drifted = drifted or {}


# ─────────────────────────────────────────────────────────────────────────────
# Prediction payloads and match results
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ScorePayload:
    """Score-style prediction: a scoreline or the 'any other' pick."""

    home: int = 0
    away: int = 0
    any_other: bool = False

    def to_dict(self) -> Dict[str, Any]:
        if self.any_other:
            return {"type": "any_other"}
        return {"home_score": self.home, "away_score": self.away}


@dataclass(frozen=True)
class RiskyPayload:
    """Risky prediction: the event slugs the user expects to happen."""

    selections: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"selections": list(self.selections)}


@dataclass(frozen=True)
class WinnerPayload:
    """Match-winner pick: ``home``, ``away`` or ``draw``."""

    winner: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "winner", "winner": self.winner}


@dataclass(frozen=True)
class OverUnderPayload:
    """Total-goals pick against a line such as 2.5."""

    side: str
    threshold: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "over_under", "over_under": self.side, "threshold": float(self.threshold)}


@dataclass(frozen=True)
class PropPick:
    """One prop market pick. ``points`` of None means the configured default."""

    slug: str
    selection: str
    line: Optional[Decimal] = None
    points: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"prop_slug": self.slug, "selection": self.selection}
        if self.line is not None:
            out["line"] = float(self.line)
        if self.points is not None:
            out["points_value"] = float(self.points)
        return out


@dataclass(frozen=True)
class PropsPayload:
    props: Tuple[PropPick, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "props", "props": [p.to_dict() for p in self.props]}


PredictionPayload = Union[ScorePayload, RiskyPayload, WinnerPayload, OverUnderPayload, PropsPayload]


@dataclass(frozen=True)
class MatchResult:
    """A match as seen by grading: final score, status, risky outcomes and stats.

    ``risky_outcomes`` maps slug -> occurred. Slugs absent from the mapping
    are not yet known. ``stats`` holds counters prop picks settle against
    (``corners``, ``cards``, ``first_to_score``).
    """

    match_id: int
    home_score: int
    away_score: int
    status: MatchStatus = MatchStatus.COMPLETED
    finalized_at: Optional[datetime] = None
    start_at: Optional[datetime] = None
    risky_outcomes: Mapping[str, bool] = field(default_factory=dict)
    stats: Mapping[str, Any] = field(default_factory=dict)


# ─────────────────────────────────────────────────────────────────────────────
# Results
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ScoringResult:
    """Base points from the rules engine and the breakdown behind them."""

    base_points: Decimal
    details: Dict[str, Any]


@dataclass(frozen=True)
class TimingResult:
    multiplier: Decimal
    tier: str
    lead_hours: Decimal


@dataclass(frozen=True)
class GradeComputation:
    """Every factor that produced a ledger row's points."""

    base_points: Decimal
    time_coefficient: Decimal
    timing_tier: str
    streak_multiplier: Decimal
    final_points: Decimal
    successful: bool
    details: Dict[str, Any]


class LeaderboardRow(TypedDict):
    rank: int
    user_id: int
    total_points: Decimal
    current_streak: int
    max_streak: int
    multiplier: Decimal


class UserRankRow(TypedDict):
    rank: int
    total_points: Decimal
    current_streak: int
    max_streak: int


class TeamStandingRow(TypedDict):
    rank: int
    team_id: int
    total_points: Decimal
    members: int


__all__ = [
    "DECIMAL_PLACES",
    "ZERO",
    "ScoringError",
    "InvalidInput",
    "ValidationError",
    "InvalidSelection",
    "NotFound",
    "InvalidRules",
    "Conflict",
    "Transient",
    "ContestClosed",
    "InconsistentState",
    "ScorePayload",
    "RiskyPayload",
    "WinnerPayload",
    "OverUnderPayload",
    "PropPick",
    "PropsPayload",
    "PredictionPayload",
    "MatchResult",
    "ScoringResult",
    "TimingResult",
    "GradeComputation",
    "LeaderboardRow",
    "UserRankRow",
    "TeamStandingRow",
]
