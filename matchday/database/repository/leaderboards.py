"""Durable leaderboard table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from sqlalchemy import bindparam, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.scoring.determinism import as_utc, from_stored, utcnow

from ..dbm import DBM
from ..schema import LeaderboardEntry, TeamMember


@dataclass(frozen=True)
class DurableTotal:
    user_id: int
    total_points: Decimal
    rank: int | None
    first_scored_at: datetime | None


def _total(row: LeaderboardEntry) -> DurableTotal:
    return DurableTotal(
        user_id=row.user_id,
        total_points=from_stored(row.total_points),
        rank=row.rank,
        first_scored_at=as_utc(row.first_scored_at),
    )


async def apply_delta(
    dbm: DBM,
    session: AsyncSession,
    *,
    contest_id: int,
    user_id: int,
    delta: Decimal,
    scored_at: datetime | None,
) -> None:
    """``total_points += delta``; the first grade in the contest pins ``first_scored_at``."""
    now = utcnow()
    stmt = dbm.insert(LeaderboardEntry).values(
        contest_id=contest_id,
        user_id=user_id,
        total_points=float(delta),
        first_scored_at=as_utc(scored_at),
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[LeaderboardEntry.contest_id, LeaderboardEntry.user_id],
        set_={
            "total_points": LeaderboardEntry.total_points + stmt.excluded.total_points,
            "first_scored_at": func.coalesce(LeaderboardEntry.first_scored_at, stmt.excluded.first_scored_at),
            "updated_at": now,
        },
    )
    await session.execute(stmt)


async def get_total(dbm: DBM, contest_id: int, user_id: int) -> DurableTotal | None:
    stmt = select(LeaderboardEntry).where(
        LeaderboardEntry.contest_id == contest_id, LeaderboardEntry.user_id == user_id
    )
    async with dbm.session() as session:
        row = (await session.execute(stmt)).scalar_one_or_none()
    return _total(row) if row is not None else None


async def list_totals(dbm: DBM, contest_id: int) -> List[DurableTotal]:
    stmt = select(LeaderboardEntry).where(LeaderboardEntry.contest_id == contest_id)
    async with dbm.session() as session:
        return [_total(r) for r in (await session.execute(stmt)).scalars().all()]


async def first_scored_for_users(dbm: DBM, contest_id: int, user_ids: Iterable[int]) -> Dict[int, datetime | None]:
    ids = list(set(user_ids))
    if not ids:
        return {}
    stmt = select(LeaderboardEntry.user_id, LeaderboardEntry.first_scored_at).where(
        LeaderboardEntry.contest_id == contest_id, LeaderboardEntry.user_id.in_(ids)
    )
    async with dbm.session() as session:
        rows = {u: as_utc(ts) for u, ts in (await session.execute(stmt)).all()}
    return {u: rows.get(u) for u in ids}


async def write_ranks(dbm: DBM, contest_id: int, ranks: Sequence[Tuple[int, int]]) -> None:
    """Rewrite ranks for a contest in one pass; ``ranks`` is (user_id, rank)."""
    if not ranks:
        return
    table = LeaderboardEntry.__table__
    stmt = (
        update(table)
        .where(table.c.contest_id == bindparam("b_contest"))
        .where(table.c.user_id == bindparam("b_user"))
        .values(rank=bindparam("b_rank"))
    )
    params = [{"b_contest": contest_id, "b_user": u, "b_rank": r} for u, r in ranks]
    async with dbm.transaction() as session:
        await session.execute(stmt, params)


async def replace_totals(
    dbm: DBM,
    contest_id: int,
    totals: Mapping[int, Decimal],
    first_scored: Mapping[int, datetime],
) -> None:
    """Rebuild the durable table for a contest from ledger aggregates."""
    now = utcnow()
    async with dbm.transaction() as session:
        await session.execute(delete(LeaderboardEntry).where(LeaderboardEntry.contest_id == contest_id))
        for user_id, total in sorted(totals.items()):
            session.add(
                LeaderboardEntry(
                    contest_id=contest_id,
                    user_id=user_id,
                    total_points=float(total),
                    first_scored_at=first_scored.get(user_id),
                    updated_at=now,
                )
            )


async def team_totals(dbm: DBM, contest_id: int) -> List[Tuple[int, Decimal, int]]:
    """(team_id, summed member total, member count) for a relay contest."""
    stmt = (
        select(TeamMember.team_id, TeamMember.user_id, LeaderboardEntry.total_points)
        .select_from(TeamMember)
        .outerjoin(
            LeaderboardEntry,
            (LeaderboardEntry.contest_id == TeamMember.contest_id)
            & (LeaderboardEntry.user_id == TeamMember.user_id),
        )
        .where(TeamMember.contest_id == contest_id)
    )
    sums: Dict[int, Decimal] = {}
    members: Dict[int, int] = {}
    async with dbm.session() as session:
        for team_id, _user_id, total in (await session.execute(stmt)).all():
            sums[team_id] = sums.get(team_id, Decimal("0")) + from_stored(total)
            members[team_id] = members.get(team_id, 0) + 1
    return [(t, sums[t], members[t]) for t in sums]


__all__ = [
    "DurableTotal",
    "apply_delta",
    "get_total",
    "list_totals",
    "first_scored_for_users",
    "write_ranks",
    "replace_totals",
    "team_totals",
]
