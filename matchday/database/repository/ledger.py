"""Score ledger access.

The ledger is append-keyed on (user, contest, prediction, entry_kind):
inserting an existing key writes nothing and raises ``Conflict``, which
callers treat as "already recorded"; that is what makes grading idempotent. Points are REAL in storage and ``Decimal`` everywhere else.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.scoring.determinism import as_utc, from_stored, round2, to_decimal
from matchday.scoring.types import Conflict
from matchday.shared.enums import LedgerEntryKind

from ..dbm import DBM
from ..schema import Score


def _json_safe(details: Dict[str, Any]) -> Dict[str, Any]:
    def conv(v: Any) -> Any:
        if isinstance(v, Decimal):
            return str(v)
        if isinstance(v, dict):
            return {k: conv(x) for k, x in v.items()}
        if isinstance(v, (list, tuple)):
            return [conv(x) for x in v]
        return v

    return conv(details)


async def get_entry(
    session: AsyncSession,
    prediction_id: int,
    kind: LedgerEntryKind = LedgerEntryKind.GRADE,
) -> Score | None:
    stmt = select(Score).where(Score.prediction_id == prediction_id, Score.entry_kind == kind)
    return (await session.execute(stmt)).scalar_one_or_none()


async def insert_entry(
    dbm: DBM,
    session: AsyncSession,
    *,
    user_id: int,
    contest_id: int,
    prediction_id: int,
    points: Decimal,
    base_points: Decimal,
    time_coefficient: Decimal,
    streak_multiplier: Decimal,
    timing_tier: str | None,
    details: Dict[str, Any],
    scored_at: datetime,
    kind: LedgerEntryKind = LedgerEntryKind.GRADE,
) -> None:
    """Insert a ledger row.

    Raises:
        Conflict: the composite key already exists
    """
    stmt = dbm.insert(Score).values(
        user_id=user_id,
        contest_id=contest_id,
        prediction_id=prediction_id,
        entry_kind=kind,
        points=float(round2(points)),
        base_points=float(base_points),
        time_coefficient=float(time_coefficient),
        streak_multiplier=float(streak_multiplier),
        timing_tier=timing_tier,
        details=_json_safe(details),
        scored_at=as_utc(scored_at),
    )
    stmt = stmt.on_conflict_do_nothing(
        index_elements=[Score.user_id, Score.contest_id, Score.prediction_id, Score.entry_kind],
    )
    result = await session.execute(stmt)
    if not result.rowcount:
        raise Conflict(
            f"ledger already holds a {LedgerEntryKind(kind).value} entry for prediction {prediction_id}"
        )


async def rewrite_points(
    session: AsyncSession,
    entry_id: int,
    *,
    points: Decimal,
    base_points: Decimal,
    details: Dict[str, Any],
    corrected_at: datetime,
    reason: str,
) -> None:
    """Corrective re-grade; ``scored_at`` is left untouched."""
    await session.execute(
        update(Score)
        .where(Score.id == entry_id)
        .values(
            points=float(round2(points)),
            base_points=float(base_points),
            details=_json_safe(details),
            corrected_at=as_utc(corrected_at),
            correction_reason=reason,
        )
    )


async def totals_by_user(dbm: DBM, contest_id: int) -> Dict[int, Decimal]:
    """Ledger sum per user. Summed in Decimal from per-row two-place values."""
    stmt = select(Score.user_id, Score.points).where(Score.contest_id == contest_id)
    totals: Dict[int, Decimal] = {}
    async with dbm.session() as session:
        for user_id, points in (await session.execute(stmt)).all():
            totals[user_id] = totals.get(user_id, Decimal("0")) + from_stored(points)
    return {u: round2(t) for u, t in totals.items()}


async def first_scored_by_user(dbm: DBM, contest_id: int) -> Dict[int, datetime]:
    stmt = (
        select(Score.user_id, func.min(Score.scored_at))
        .where(Score.contest_id == contest_id, Score.entry_kind == LedgerEntryKind.GRADE)
        .group_by(Score.user_id)
    )
    async with dbm.session() as session:
        return {u: as_utc(ts) for u, ts in (await session.execute(stmt)).all()}


async def count_entries(dbm: DBM, contest_id: int | None = None) -> int:
    stmt = select(func.count()).select_from(Score)
    if contest_id is not None:
        stmt = stmt.where(Score.contest_id == contest_id)
    async with dbm.session() as session:
        return int((await session.execute(stmt)).scalar_one())


async def entries_for_prediction(dbm: DBM, prediction_id: int) -> List[Score]:
    stmt = select(Score).where(Score.prediction_id == prediction_id).order_by(Score.id)
    async with dbm.session() as session:
        return list((await session.execute(stmt)).scalars().all())


def entry_points(entry: Score) -> Decimal:
    return from_stored(entry.points)


def entry_factors(entry: Score) -> Dict[str, Decimal]:
    return {
        "base_points": to_decimal(entry.base_points),
        "time_coefficient": to_decimal(entry.time_coefficient),
        "streak_multiplier": to_decimal(entry.streak_multiplier),
        "final_points": from_stored(entry.points),
    }


__all__ = [
    "get_entry",
    "insert_entry",
    "rewrite_points",
    "totals_by_user",
    "first_scored_by_user",
    "count_entries",
    "entries_for_prediction",
    "entry_points",
    "entry_factors",
]
