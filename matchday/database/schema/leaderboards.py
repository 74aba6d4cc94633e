"""Durable leaderboard projection."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class LeaderboardEntry(Base):
    __tablename__ = "leaderboards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    total_points: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rank: Mapped[int | None] = mapped_column(
        Integer,
        comment="Written by rank recomputation; NULL until the first pass",
    )
    first_scored_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        comment="Tie-break: earliest graded prediction in the contest",
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("contest_id", "user_id", name="uq_leaderboards_contest_user"),
        Index("ix_leaderboards_contest_total", "contest_id", "total_points"),
        {"comment": "Per-contest totals; rebuildable from the scores ledger"},
    )


__all__ = ["LeaderboardEntry"]
