"""Prediction storage and status transitions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.scoring.determinism import as_utc, utcnow
from matchday.shared.enums import TERMINAL_PREDICTION_STATUSES, PredictionStatus

from ..dbm import DBM
from ..schema import Prediction


async def upsert_prediction(
    dbm: DBM,
    *,
    user_id: int,
    contest_id: int,
    match_id: int,
    payload: Dict[str, Any],
    prediction_type: str,
    submitted_at: datetime,
    status: PredictionStatus = PredictionStatus.PENDING,
) -> int | None:
    """Insert or replace the user's prediction for a match.

    The latest submission wins while the prediction is still open.
    Returns the prediction id, or None if the existing prediction has
    already reached a terminal state.
    """
    now = utcnow()
    stmt = dbm.insert(Prediction).values(
        user_id=user_id,
        contest_id=contest_id,
        match_id=match_id,
        payload=payload,
        prediction_type=prediction_type,
        submitted_at=as_utc(submitted_at),
        status=status,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Prediction.user_id, Prediction.contest_id, Prediction.match_id],
        set_={
            "payload": stmt.excluded.payload,
            "prediction_type": stmt.excluded.prediction_type,
            "submitted_at": stmt.excluded.submitted_at,
            "status": stmt.excluded.status,
            "updated_at": now,
        },
        where=Prediction.status.not_in(list(TERMINAL_PREDICTION_STATUSES)),
    ).returning(Prediction.id)
    async with dbm.transaction() as session:
        return (await session.execute(stmt)).scalar_one_or_none()


async def get_prediction(session: AsyncSession, prediction_id: int) -> Prediction | None:
    return await session.get(Prediction, prediction_id)


async def list_open_for_match(session: AsyncSession, match_id: int) -> List[Prediction]:
    """Predictions on the match that have not reached a terminal state."""
    stmt = (
        select(Prediction)
        .where(Prediction.match_id == match_id)
        .where(Prediction.status.not_in(list(TERMINAL_PREDICTION_STATUSES)))
        .order_by(Prediction.submitted_at, Prediction.id)
    )
    return list((await session.execute(stmt)).scalars().all())


async def list_scored_for_match(session: AsyncSession, match_id: int) -> List[Prediction]:
    stmt = (
        select(Prediction)
        .where(Prediction.match_id == match_id, Prediction.status == PredictionStatus.SCORED)
        .order_by(Prediction.id)
    )
    return list((await session.execute(stmt)).scalars().all())


async def set_prediction_status(
    session: AsyncSession,
    prediction_id: int,
    status: PredictionStatus,
    reason: str | None = None,
) -> None:
    await session.execute(
        update(Prediction)
        .where(Prediction.id == prediction_id)
        .values(status=status, status_reason=reason, updated_at=utcnow())
    )


async def mark_gradable(session: AsyncSession, prediction_ids: List[int]) -> None:
    if not prediction_ids:
        return
    await session.execute(
        update(Prediction)
        .where(Prediction.id.in_(prediction_ids))
        .where(Prediction.status.not_in(list(TERMINAL_PREDICTION_STATUSES)))
        .values(status=PredictionStatus.GRADABLE, updated_at=utcnow())
    )


__all__ = [
    "upsert_prediction",
    "get_prediction",
    "list_open_for_match",
    "list_scored_for_match",
    "set_prediction_status",
    "mark_gradable",
]
