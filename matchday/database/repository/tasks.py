"""Durable grading tasks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.scoring.determinism import as_utc, utcnow
from matchday.shared.enums import TaskStatus

from ..dbm import DBM
from ..schema import GradingTask

TERMINAL_TASK_STATUSES = (TaskStatus.DONE, TaskStatus.SKIPPED, TaskStatus.DEAD)


@dataclass(frozen=True)
class TaskRecord:
    prediction_id: int
    match_id: int
    status: TaskStatus
    attempts: int
    ledger_written: bool
    projection_applied: bool
    event_emitted: bool
    available_at: datetime | None


def _record(row: GradingTask) -> TaskRecord:
    return TaskRecord(
        prediction_id=row.prediction_id,
        match_id=row.match_id,
        status=TaskStatus(row.status),
        attempts=row.attempts,
        ledger_written=row.ledger_written,
        projection_applied=row.projection_applied,
        event_emitted=row.event_emitted,
        available_at=as_utc(row.available_at),
    )


async def publish(dbm: DBM, session: AsyncSession, items: Sequence[Tuple[int, int]]) -> None:
    """Create one pending task per (prediction_id, match_id).

    Re-publishing keeps live tasks as they are and revives dead-lettered ones.
    """
    now = utcnow()
    for prediction_id, match_id in items:
        stmt = dbm.insert(GradingTask).values(
            prediction_id=prediction_id,
            match_id=match_id,
            status=TaskStatus.PENDING,
            attempts=0,
            available_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[GradingTask.prediction_id],
            set_={"status": TaskStatus.PENDING, "attempts": 0, "last_error": None, "updated_at": now},
            where=GradingTask.status == TaskStatus.DEAD,
        )
        await session.execute(stmt)


async def get_task(session: AsyncSession, prediction_id: int) -> TaskRecord | None:
    stmt = select(GradingTask).where(GradingTask.prediction_id == prediction_id)
    row = (await session.execute(stmt)).scalar_one_or_none()
    return _record(row) if row is not None else None


async def load_task(dbm: DBM, prediction_id: int) -> TaskRecord | None:
    async with dbm.session() as session:
        return await get_task(session, prediction_id)


async def set_flags(session: AsyncSession, prediction_id: int, **flags: bool) -> None:
    """Record completed side effects (ledger_written, projection_applied, event_emitted)."""
    allowed = {"ledger_written", "projection_applied", "event_emitted"}
    unknown = set(flags) - allowed
    if unknown:
        raise ValueError(f"unknown task flags: {sorted(unknown)}")
    await session.execute(
        update(GradingTask)
        .where(GradingTask.prediction_id == prediction_id)
        .values(updated_at=utcnow(), **flags)
    )


async def update_flags(dbm: DBM, prediction_id: int, **flags: bool) -> None:
    async with dbm.transaction() as session:
        await set_flags(session, prediction_id, **flags)


async def finish(
    dbm: DBM,
    prediction_id: int,
    status: TaskStatus,
    error: str | None = None,
) -> None:
    async with dbm.transaction() as session:
        await session.execute(
            update(GradingTask)
            .where(GradingTask.prediction_id == prediction_id)
            .values(status=status, last_error=error[:1024] if error else None, updated_at=utcnow())
        )


async def record_attempt(
    dbm: DBM,
    prediction_id: int,
    *,
    error: str,
    available_at: datetime,
) -> None:
    async with dbm.transaction() as session:
        await session.execute(
            update(GradingTask)
            .where(GradingTask.prediction_id == prediction_id)
            .values(
                attempts=GradingTask.attempts + 1,
                last_error=error[:1024],
                available_at=as_utc(available_at),
                updated_at=utcnow(),
            )
        )


async def list_pending(dbm: DBM, limit: int | None = None) -> List[TaskRecord]:
    stmt = (
        select(GradingTask)
        .where(GradingTask.status.in_([TaskStatus.PENDING, TaskStatus.RUNNING]))
        .order_by(GradingTask.available_at, GradingTask.id)
    )
    if limit:
        stmt = stmt.limit(limit)
    async with dbm.session() as session:
        return [_record(r) for r in (await session.execute(stmt)).scalars().all()]


async def all_terminal(session: AsyncSession, match_id: int) -> bool:
    stmt = (
        select(func.count())
        .select_from(GradingTask)
        .where(GradingTask.match_id == match_id)
        .where(GradingTask.status.not_in(list(TERMINAL_TASK_STATUSES)))
    )
    return int((await session.execute(stmt)).scalar_one()) == 0


async def prediction_ids_for_match(dbm: DBM, match_id: int, statuses: Iterable[TaskStatus]) -> List[int]:
    stmt = (
        select(GradingTask.prediction_id)
        .where(GradingTask.match_id == match_id, GradingTask.status.in_(list(statuses)))
        .order_by(GradingTask.id)
    )
    async with dbm.session() as session:
        return list((await session.execute(stmt)).scalars().all())


__all__ = [
    "TERMINAL_TASK_STATUSES",
    "TaskRecord",
    "publish",
    "get_task",
    "load_task",
    "set_flags",
    "update_flags",
    "finish",
    "record_attempt",
    "list_pending",
    "all_terminal",
    "prediction_ids_for_match",
]
