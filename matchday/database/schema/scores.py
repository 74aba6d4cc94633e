"""Score ledger: the write-authoritative record of graded predictions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from matchday.shared.enums import LedgerEntryKind

from .base import Base, JSONType, ledger_entry_kind_enum


class Score(Base):
    __tablename__ = "scores"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Internal surrogate primary key",
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contest_id: Mapped[int] = mapped_column(
        ForeignKey("contests.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Contests cannot be deleted while ledger rows reference them",
    )
    prediction_id: Mapped[int] = mapped_column(ForeignKey("predictions.id"), nullable=False)
    entry_kind: Mapped[LedgerEntryKind] = mapped_column(
        ledger_entry_kind_enum,
        nullable=False,
        default=LedgerEntryKind.GRADE,
        comment="grade, or compensation written when a scored prediction is voided",
    )
    points: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="final = round2(base * time_coefficient * streak_multiplier)",
    )
    base_points: Mapped[float] = mapped_column(Float, nullable=False)
    time_coefficient: Mapped[float] = mapped_column(Float, nullable=False)
    timing_tier: Mapped[str | None] = mapped_column(String(32))
    streak_multiplier: Mapped[float] = mapped_column(Float, nullable=False)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    scored_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    corrected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        comment="Set when a corrective re-grade rewrote points",
    )
    correction_reason: Mapped[str | None] = mapped_column(String(255))

    __table_args__ = (
        UniqueConstraint(
            "user_id", "contest_id", "prediction_id", "entry_kind",
            name="uq_scores_user_contest_prediction_kind",
        ),
        Index("ix_scores_contest_user", "contest_id", "user_id"),
        Index("ix_scores_user_scored_at", "user_id", "scored_at"),
        {"comment": "Per-prediction ledger rows; source of truth for totals"},
    )


__all__ = ["Score"]
