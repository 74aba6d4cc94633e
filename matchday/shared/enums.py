from __future__ import annotations

from enum import Enum


class ContestType(str, Enum):
    STANDARD = "standard"
    RISKY = "risky"
    TOTALIZATOR = "totalizator"
    RELAY = "relay"


class ContestStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ComputedContestStatus(str, Enum):
    """Status as seen by a caller at a given instant."""

    DRAFT = "draft"
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"


class GradingState(str, Enum):
    NOT_STARTED = "not_started"
    GRADING_STARTED = "grading_started"
    GRADING_COMPLETE = "grading_complete"


class PredictionStatus(str, Enum):
    SUBMITTED = "submitted"
    PENDING = "pending"
    GRADABLE = "gradable"
    SCORED = "scored"
    VOIDED = "voided"
    SKIPPED = "skipped"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    SKIPPED = "skipped"
    DEAD = "dead"


class LedgerEntryKind(str, Enum):
    GRADE = "grade"
    COMPENSATION = "compensation"


class Outcome(str, Enum):
    HOME = "home"
    DRAW = "draw"
    AWAY = "away"


TERMINAL_PREDICTION_STATUSES = frozenset(
    {PredictionStatus.SCORED, PredictionStatus.VOIDED, PredictionStatus.SKIPPED}
)
VOID_MATCH_STATUSES = frozenset({MatchStatus.CANCELLED, MatchStatus.POSTPONED})


__all__ = [
    "ContestType",
    "ContestStatus",
    "ComputedContestStatus",
    "MatchStatus",
    "GradingState",
    "PredictionStatus",
    "TaskStatus",
    "LedgerEntryKind",
    "Outcome",
    "TERMINAL_PREDICTION_STATUSES",
    "VOID_MATCH_STATUSES",
]
