"""Contests, matches, predictions and relay team membership."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from matchday.shared.enums import (
    ContestStatus,
    ContestType,
    GradingState,
    MatchStatus,
    PredictionStatus,
)

from .base import (
    Base,
    JSONType,
    contest_status_enum,
    contest_type_enum,
    grading_state_enum,
    match_status_enum,
    prediction_status_enum,
)


class Contest(Base):
    __tablename__ = "contests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[ContestStatus] = mapped_column(
        contest_status_enum,
        nullable=False,
        default=ContestStatus.DRAFT,
        comment="Stored lifecycle status; draft -> active -> completed|cancelled",
    )
    contest_type: Mapped[ContestType] = mapped_column(
        contest_type_enum,
        nullable=False,
        default=ContestType.STANDARD,
        comment="Mirror of rules.type for filtering",
    )
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rules: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Validated rules document",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_contests_status", "status"),
        {"comment": "Prediction contests and their embedded rules"},
    )


class Match(Base):
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=False,
        comment="Match identifier assigned by the sports-data synchronizer",
    )
    sport: Mapped[str] = mapped_column(String(64), nullable=False, default="football")
    league_id: Mapped[int | None] = mapped_column(Integer)
    league_name: Mapped[str | None] = mapped_column(String(255))
    home_team: Mapped[str | None] = mapped_column(String(255))
    away_team: Mapped[str | None] = mapped_column(String(255))
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[MatchStatus] = mapped_column(
        match_status_enum,
        nullable=False,
        default=MatchStatus.SCHEDULED,
    )
    home_score: Mapped[int | None] = mapped_column(Integer)
    away_score: Mapped[int | None] = mapped_column(Integer)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    risky_outcomes: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="slug -> occurred, recorded by an administrator; absent = unknown",
    )
    stats: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="match statistics used by prop picks: corners, cards, first_to_score",
    )
    grading_state: Mapped[GradingState] = mapped_column(
        grading_state_enum,
        nullable=False,
        default=GradingState.NOT_STARTED,
    )

    __table_args__ = (
        Index("ix_matches_status", "status"),
        {"comment": "Matches as consumed by grading"},
    )


class Prediction(Base):
    __tablename__ = "predictions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contest_id: Mapped[int] = mapped_column(ForeignKey("contests.id"), nullable=False)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id"), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    prediction_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="score | any_other | risky",
    )
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[PredictionStatus] = mapped_column(
        prediction_status_enum,
        nullable=False,
        default=PredictionStatus.SUBMITTED,
    )
    status_reason: Mapped[str | None] = mapped_column(String(255))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("user_id", "contest_id", "match_id", name="uq_predictions_scope"),
        Index("ix_predictions_match_id", "match_id"),
        Index("ix_predictions_contest_user", "contest_id", "user_id"),
        {"comment": "One prediction per (user, contest, match); latest submission wins"},
    )


class TeamMember(Base):
    __tablename__ = "team_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(ForeignKey("contests.id", ondelete="CASCADE"), nullable=False)
    team_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("contest_id", "user_id", name="uq_team_members_contest_user"),
        Index("ix_team_members_contest_team", "contest_id", "team_id"),
        {"comment": "Relay contest team membership"},
    )


__all__ = ["Contest", "Match", "Prediction", "TeamMember"]
