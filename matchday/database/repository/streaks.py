"""User streak storage."""

from __future__ import annotations

from typing import Dict, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.scoring.determinism import utcnow
from matchday.scoring.streak import StreakState

from ..dbm import DBM
from ..schema import UserStreak


def _state(row: UserStreak | None) -> StreakState:
    if row is None:
        return StreakState()
    return StreakState(
        current_streak=row.current_streak,
        max_streak=row.max_streak,
        last_prediction_id=row.last_prediction_id,
        last_correct=row.last_correct,
    )


async def get_streak(session: AsyncSession, user_id: int, contest_id: int) -> StreakState:
    stmt = select(UserStreak).where(UserStreak.user_id == user_id, UserStreak.contest_id == contest_id)
    return _state((await session.execute(stmt)).scalar_one_or_none())


async def load_streak(dbm: DBM, user_id: int, contest_id: int) -> StreakState:
    async with dbm.session() as session:
        return await get_streak(session, user_id, contest_id)


async def save_streak(dbm: DBM, session: AsyncSession, user_id: int, contest_id: int, state: StreakState) -> None:
    now = utcnow()
    values = {
        "current_streak": state.current_streak,
        "max_streak": state.max_streak,
        "last_prediction_id": state.last_prediction_id,
        "last_correct": state.last_correct,
        "updated_at": now,
    }
    stmt = dbm.insert(UserStreak).values(user_id=user_id, contest_id=contest_id, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[UserStreak.user_id, UserStreak.contest_id],
        set_=values,
    )
    await session.execute(stmt)


async def streaks_for_users(dbm: DBM, contest_id: int, user_ids: Iterable[int]) -> Dict[int, StreakState]:
    """Streak state for each requested user; users without a row get a zero state."""
    ids = list(set(user_ids))
    if not ids:
        return {}
    stmt = select(UserStreak).where(UserStreak.contest_id == contest_id, UserStreak.user_id.in_(ids))
    async with dbm.session() as session:
        rows = {row.user_id: _state(row) for row in (await session.execute(stmt)).scalars().all()}
    return {u: rows.get(u, StreakState()) for u in ids}


__all__ = ["get_streak", "load_streak", "save_streak", "streaks_for_users"]
