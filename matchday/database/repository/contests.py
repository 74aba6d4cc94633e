"""Contests, matches and relay team membership."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.scoring.contest import Contest
from matchday.scoring.determinism import as_utc
from matchday.scoring.rules import RulesDocument, parse_rules
from matchday.scoring.types import InvalidInput, MatchResult, NotFound
from matchday.shared.enums import ContestStatus, GradingState, MatchStatus

from ..dbm import DBM
from ..schema import (
    Contest as ContestRecord,
    GradingTask,
    LeaderboardEntry,
    Match,
    Prediction,
    Score,
    TeamMember,
    UserStreak,
)


def _to_entity(row: ContestRecord) -> Contest:
    return Contest(
        id=row.id,
        title=row.title,
        status=ContestStatus(row.status),
        starts_at=as_utc(row.starts_at),
        ends_at=as_utc(row.ends_at),
        rules=parse_rules(row.rules),
    )


def match_result(row: Match) -> MatchResult:
    return MatchResult(
        match_id=row.id,
        home_score=row.home_score if row.home_score is not None else 0,
        away_score=row.away_score if row.away_score is not None else 0,
        status=MatchStatus(row.status),
        finalized_at=as_utc(row.finalized_at),
        start_at=as_utc(row.start_at),
        risky_outcomes=dict(row.risky_outcomes or {}),
        stats=dict(row.stats or {}),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Contests
# ─────────────────────────────────────────────────────────────────────────────


async def insert_contest(
    dbm: DBM,
    *,
    title: str,
    starts_at: datetime,
    ends_at: datetime,
    rules: RulesDocument,
    status: ContestStatus = ContestStatus.DRAFT,
) -> Contest:
    if not title.strip():
        raise InvalidInput("title cannot be empty")
    if as_utc(ends_at) < as_utc(starts_at):
        raise InvalidInput("end date must be after start date")
    record = ContestRecord(
        title=title,
        status=status,
        contest_type=rules.type,
        starts_at=as_utc(starts_at),
        ends_at=as_utc(ends_at),
        rules=rules.to_dict(),
    )
    async with dbm.transaction() as session:
        session.add(record)
        await session.flush()
        contest_id = record.id
    return Contest(
        id=contest_id,
        title=title,
        status=status,
        starts_at=as_utc(starts_at),
        ends_at=as_utc(ends_at),
        rules=rules,
    )


async def get_contest(session: AsyncSession, contest_id: int) -> Contest | None:
    row = await session.get(ContestRecord, contest_id)
    return _to_entity(row) if row is not None else None


async def load_contest(dbm: DBM, contest_id: int) -> Contest:
    async with dbm.session() as session:
        contest = await get_contest(session, contest_id)
    if contest is None:
        raise NotFound(f"contest {contest_id} not found")
    return contest


async def save_contest_status(dbm: DBM, contest_id: int, status: ContestStatus) -> None:
    stmt = update(ContestRecord).where(ContestRecord.id == contest_id).values(status=status)
    async with dbm.transaction() as session:
        await session.execute(stmt)


async def list_contest_ids(dbm: DBM, statuses: List[ContestStatus] | None = None) -> List[int]:
    stmt = select(ContestRecord.id).order_by(ContestRecord.id)
    if statuses:
        stmt = stmt.where(ContestRecord.status.in_(statuses))
    async with dbm.session() as session:
        return list((await session.execute(stmt)).scalars().all())


async def delete_contest(dbm: DBM, contest_id: int) -> None:
    """Delete a contest and its derived state.

    Raises:
        NotFound: unknown contest
        InvalidInput: ledger rows still reference the contest
    """
    async with dbm.transaction() as session:
        if await session.get(ContestRecord, contest_id) is None:
            raise NotFound(f"contest {contest_id} not found")
        n_scores = (
            await session.execute(select(func.count()).select_from(Score).where(Score.contest_id == contest_id))
        ).scalar_one()
        if n_scores:
            raise InvalidInput(
                f"contest {contest_id} has {n_scores} ledger rows and cannot be deleted",
                reason="contest_has_scores",
            )
        pred_ids = select(Prediction.id).where(Prediction.contest_id == contest_id)
        await session.execute(delete(GradingTask).where(GradingTask.prediction_id.in_(pred_ids)))
        await session.execute(delete(Prediction).where(Prediction.contest_id == contest_id))
        await session.execute(delete(TeamMember).where(TeamMember.contest_id == contest_id))
        await session.execute(delete(LeaderboardEntry).where(LeaderboardEntry.contest_id == contest_id))
        await session.execute(delete(UserStreak).where(UserStreak.contest_id == contest_id))
        await session.execute(delete(ContestRecord).where(ContestRecord.id == contest_id))


# ─────────────────────────────────────────────────────────────────────────────
# Matches
# ─────────────────────────────────────────────────────────────────────────────


async def upsert_match(
    dbm: DBM,
    *,
    match_id: int,
    start_at: datetime,
    sport: str = "football",
    league_id: int | None = None,
    league_name: str | None = None,
    home_team: str | None = None,
    away_team: str | None = None,
    status: MatchStatus = MatchStatus.SCHEDULED,
) -> None:
    values: Dict[str, Any] = {
        "id": match_id,
        "sport": sport,
        "league_id": league_id,
        "league_name": league_name,
        "home_team": home_team,
        "away_team": away_team,
        "start_at": as_utc(start_at),
        "status": status,
        "risky_outcomes": {},
        "stats": {},
        "grading_state": GradingState.NOT_STARTED,
    }
    stmt = dbm.insert(Match).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Match.id],
        set_={
            "sport": sport,
            "league_id": league_id,
            "league_name": league_name,
            "home_team": home_team,
            "away_team": away_team,
            "start_at": as_utc(start_at),
        },
    )
    async with dbm.transaction() as session:
        await session.execute(stmt)


async def get_match(session: AsyncSession, match_id: int) -> Match | None:
    return await session.get(Match, match_id)


async def record_match_result(
    session: AsyncSession,
    match_id: int,
    *,
    home_score: int | None,
    away_score: int | None,
    status: MatchStatus,
    finalized_at: datetime,
    risky_outcomes: Mapping[str, bool] | None = None,
    stats: Mapping[str, Any] | None = None,
) -> Match:
    row = await session.get(Match, match_id)
    if row is None:
        raise NotFound(f"match {match_id} not found")
    row.home_score = home_score
    row.away_score = away_score
    row.status = status
    row.finalized_at = as_utc(finalized_at)
    if risky_outcomes is not None:
        merged = dict(row.risky_outcomes or {})
        merged.update({str(k): bool(v) for k, v in risky_outcomes.items()})
        row.risky_outcomes = merged
    if stats is not None:
        merged_stats = dict(row.stats or {})
        merged_stats.update({str(k): v for k, v in stats.items()})
        row.stats = merged_stats
    await session.flush()
    return row


async def set_grading_state(session: AsyncSession, match_id: int, state: GradingState) -> None:
    await session.execute(update(Match).where(Match.id == match_id).values(grading_state=state))


# ─────────────────────────────────────────────────────────────────────────────
# Relay teams
# ─────────────────────────────────────────────────────────────────────────────


async def assign_team_member(dbm: DBM, *, contest_id: int, team_id: int, user_id: int) -> None:
    stmt = dbm.insert(TeamMember).values(contest_id=contest_id, team_id=team_id, user_id=user_id)
    stmt = stmt.on_conflict_do_update(
        index_elements=[TeamMember.contest_id, TeamMember.user_id],
        set_={"team_id": team_id},
    )
    async with dbm.transaction() as session:
        await session.execute(stmt)


async def team_sizes(dbm: DBM, contest_id: int) -> Dict[int, int]:
    stmt = (
        select(TeamMember.team_id, func.count())
        .where(TeamMember.contest_id == contest_id)
        .group_by(TeamMember.team_id)
    )
    async with dbm.session() as session:
        return {team_id: n for team_id, n in (await session.execute(stmt)).all()}


async def team_of(dbm: DBM, contest_id: int, user_id: int) -> int | None:
    stmt = select(TeamMember.team_id).where(
        TeamMember.contest_id == contest_id, TeamMember.user_id == user_id
    )
    async with dbm.session() as session:
        return (await session.execute(stmt)).scalar_one_or_none()


__all__ = [
    "match_result",
    "insert_contest",
    "get_contest",
    "load_contest",
    "save_contest_status",
    "list_contest_ids",
    "delete_contest",
    "upsert_match",
    "get_match",
    "record_match_result",
    "set_grading_state",
    "assign_team_member",
    "team_sizes",
    "team_of",
]
