"""Per-(user, contest) streak state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class UserStreak(Base):
    __tablename__ = "user_streaks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contest_id: Mapped[int] = mapped_column(Integer, nullable=False)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_prediction_id: Mapped[int | None] = mapped_column(Integer)
    last_correct: Mapped[bool | None] = mapped_column(Boolean)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("user_id", "contest_id", name="uq_user_streaks_user_contest"),
        CheckConstraint("current_streak <= max_streak", name="current_le_max"),
        CheckConstraint("current_streak >= 0", name="current_non_negative"),
        {"comment": "Consecutive-success streaks, mutated only by grading"},
    )


__all__ = ["UserStreak"]
