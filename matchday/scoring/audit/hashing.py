"""Deterministic hashes of grading inputs and outputs.

A grade hash pins down everything that produced a ledger row so a later
re-grade or reconciliation can show exactly what changed.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Tuple

from ..determinism import compute_hash


def compute_grade_hash(
    prediction_id: int,
    contest_id: int,
    user_id: int,
    payload: Dict[str, Any],
    home_score: int,
    away_score: int,
    factors: Dict[str, Decimal],
    stats: Mapping[str, Any] | None = None,
) -> str:
    """Hash of one grade: inputs (payload, result) plus every factor.

    Match stats are included only when some were recorded.
    """
    data = {
        "prediction_id": prediction_id,
        "contest_id": contest_id,
        "user_id": user_id,
        "payload": payload,
        "result": f"{home_score}:{away_score}",
        "factors": factors,
    }
    if stats:
        data["stats"] = dict(stats)
    return compute_hash(data)


def compute_rules_hash(rules: Dict[str, Any]) -> str:
    return compute_hash({"rules": rules})


def compute_standings_hash(
    contest_id: int,
    as_of: datetime,
    totals: Iterable[Tuple[int, Decimal]],
) -> str:
    """Hash of a contest's (user, total) pairs, sorted by user id."""
    ordered = sorted(totals, key=lambda t: t[0])
    return compute_hash({
        "contest_id": contest_id,
        "as_of": as_of,
        "totals": [[user_id, total] for user_id, total in ordered],
    })


__all__ = [
    "compute_grade_hash",
    "compute_rules_hash",
    "compute_standings_hash",
]
