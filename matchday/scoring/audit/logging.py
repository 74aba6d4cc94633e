"""Structured audit logging for grading operations."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional


def _num(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


class ScoringAuditLogger:
    """Structured logger for the grading audit trail.

    Every ledger mutation (grade, corrective re-grade, void) and every
    projection repair is recorded with a hash of what produced it.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("matchday.audit")

    def log_grade(
        self,
        prediction_id: int,
        user_id: int,
        contest_id: int,
        factors: Dict[str, Decimal],
        grade_hash: str,
    ) -> None:
        self.logger.info({
            "event": "grade",
            "prediction_id": prediction_id,
            "user_id": user_id,
            "contest_id": contest_id,
            "base_points": _num(factors.get("base_points")),
            "time_coefficient": _num(factors.get("time_coefficient")),
            "streak_multiplier": _num(factors.get("streak_multiplier")),
            "final_points": _num(factors.get("final_points")),
            "grade_hash": grade_hash[:16] + "...",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def log_corrective_regrade(
        self,
        prediction_id: int,
        contest_id: int,
        old_points: Decimal,
        new_points: Decimal,
        reason: str,
        grade_hash: str,
    ) -> None:
        """Points of an existing ledger row were rewritten."""
        self.logger.warning({
            "event": "corrective_regrade",
            "corrective": True,
            "prediction_id": prediction_id,
            "contest_id": contest_id,
            "old_points": str(old_points),
            "new_points": str(new_points),
            "delta": str(new_points - old_points),
            "reason": reason,
            "grade_hash": grade_hash[:16] + "...",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def log_void(
        self,
        prediction_id: int,
        contest_id: int,
        compensated_points: Decimal | None,
        reason: str,
    ) -> None:
        self.logger.info({
            "event": "void",
            "prediction_id": prediction_id,
            "contest_id": contest_id,
            "compensated_points": _num(compensated_points),
            "reason": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def log_drift(
        self,
        contest_id: int,
        drifted_users: int,
        details: Dict[str, Any],
    ) -> None:
        self.logger.warning({
            "event": "projection_drift",
            "contest_id": contest_id,
            "drifted_users": drifted_users,
            "details": details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def log_reconcile(
        self,
        contest_id: int,
        source: str,
        entries: int,
        standings_hash: str,
    ) -> None:
        """Log a projection rebuild; ``source`` is ``durable`` or ``ledger``."""
        self.logger.info({
            "event": "reconcile",
            "contest_id": contest_id,
            "source": source,
            "entries": entries,
            "standings_hash": standings_hash,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })


# Default instance
_audit_logger: Optional[ScoringAuditLogger] = None


def get_audit_logger() -> ScoringAuditLogger:
    """Get or create the default audit logger."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = ScoringAuditLogger()
    return _audit_logger


__all__ = [
    "ScoringAuditLogger",
    "get_audit_logger",
]
