"""Read-only ledger snapshots for analytics.

Only grade rows of predictions that were not voided count as
predictions; compensation rows exist to keep totals right, not to be
counted twice.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping

from sqlalchemy import func, select

from matchday.scoring.determinism import as_utc
from matchday.shared.enums import LedgerEntryKind, PredictionStatus

from ..dbm import DBM
from ..schema import Match, Prediction, Score


def _graded(stmt, since: datetime | None):
    stmt = stmt.where(Score.entry_kind == LedgerEntryKind.GRADE).where(
        Prediction.status != PredictionStatus.VOIDED
    )
    if since is not None:
        stmt = stmt.where(Score.scored_at >= as_utc(since))
    return stmt


async def user_ledger_rows(dbm: DBM, user_id: int, since: datetime | None) -> List[Mapping[str, Any]]:
    """One row per graded prediction of the user, oldest first."""
    stmt = (
        select(
            Score.points.label("points"),
            Score.scored_at.label("scored_at"),
            func.coalesce(Match.sport, "unknown").label("sport"),
            Match.league_id.label("league_id"),
            Match.league_name.label("league_name"),
            Prediction.prediction_type.label("prediction_type"),
        )
        .select_from(Score)
        .join(Prediction, Prediction.id == Score.prediction_id)
        .outerjoin(Match, Match.id == Prediction.match_id)
        .where(Score.user_id == user_id)
        .order_by(Score.scored_at, Score.id)
    )
    return await dbm.read(_graded(stmt, since))


async def platform_ledger_rows(dbm: DBM, since: datetime | None) -> List[Mapping[str, Any]]:
    stmt = (
        select(Score.user_id.label("user_id"), Score.points.label("points"))
        .select_from(Score)
        .join(Prediction, Prediction.id == Score.prediction_id)
    )
    return await dbm.read(_graded(stmt, since))


__all__ = ["user_ledger_rows", "platform_ledger_rows"]
