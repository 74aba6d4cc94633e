"""Shared SQLAlchemy base definitions and enums."""

from __future__ import annotations

from sqlalchemy import JSON, Enum as SAEnum, MetaData
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

from matchday.shared.enums import (
    ContestStatus,
    ContestType,
    GradingState,
    LedgerEntryKind,
    MatchStatus,
    PredictionStatus,
    TaskStatus,
)


naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=naming_convention)


class Base(DeclarativeBase):
    metadata = metadata


# JSONB on postgres, plain JSON (TEXT) on sqlite
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _values(enum_cls):
    return [member.value for member in enum_cls]


# SQLAlchemy Enum instances bound to shared metadata; values (not names) are stored
contest_status_enum = SAEnum(ContestStatus, name="contest_status", metadata=metadata, values_callable=_values)
contest_type_enum = SAEnum(ContestType, name="contest_type", metadata=metadata, values_callable=_values)
match_status_enum = SAEnum(MatchStatus, name="match_status", metadata=metadata, values_callable=_values)
grading_state_enum = SAEnum(GradingState, name="grading_state", metadata=metadata, values_callable=_values)
prediction_status_enum = SAEnum(PredictionStatus, name="prediction_status", metadata=metadata, values_callable=_values)
task_status_enum = SAEnum(TaskStatus, name="task_status", metadata=metadata, values_callable=_values)
ledger_entry_kind_enum = SAEnum(LedgerEntryKind, name="ledger_entry_kind", metadata=metadata, values_callable=_values)


__all__ = [
    "Base",
    "metadata",
    "JSONType",
    "contest_status_enum",
    "contest_type_enum",
    "match_status_enum",
    "grading_state_enum",
    "prediction_status_enum",
    "task_status_enum",
    "ledger_entry_kind_enum",
]
