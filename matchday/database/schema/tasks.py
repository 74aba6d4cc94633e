"""Durable grading tasks with side-effect progress flags."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from matchday.shared.enums import TaskStatus

from .base import Base, task_status_enum


class GradingTask(Base):
    __tablename__ = "grading_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prediction_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    match_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TaskStatus] = mapped_column(
        task_status_enum,
        nullable=False,
        default=TaskStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ledger_written: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    projection_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    event_emitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_error: Mapped[str | None] = mapped_column(String(1024))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_grading_tasks_match_status", "match_id", "status"),
        {"comment": "At-least-once grading tasks, one per prediction"},
    )


__all__ = ["GradingTask"]
