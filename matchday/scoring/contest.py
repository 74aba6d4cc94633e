"""Contest entity: lifecycle transitions and computed status."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from matchday.shared.enums import ComputedContestStatus, ContestStatus, ContestType

from .determinism import as_utc, utcnow
from .rules import RulesDocument
from .types import InvalidInput

# Stored status -> statuses it may move to. Terminal statuses have no exits.
ALLOWED_TRANSITIONS: dict[ContestStatus, frozenset[ContestStatus]] = {
    ContestStatus.DRAFT: frozenset({ContestStatus.ACTIVE, ContestStatus.CANCELLED}),
    ContestStatus.ACTIVE: frozenset({ContestStatus.COMPLETED, ContestStatus.CANCELLED}),
    ContestStatus.COMPLETED: frozenset(),
    ContestStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class Contest:
    id: int
    title: str
    status: ContestStatus
    starts_at: datetime
    ends_at: datetime
    rules: RulesDocument

    def __post_init__(self) -> None:
        if as_utc(self.ends_at) < as_utc(self.starts_at):
            raise InvalidInput("end date must be after start date")

    @property
    def contest_type(self) -> ContestType:
        return self.rules.type

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]

    def status_at(self, instant: datetime | None = None) -> ComputedContestStatus:
        """Status a caller should see at ``instant`` (defaults to now).

        Draft and the terminal statuses are respected as stored; an active
        contest takes its status from the date window.
        """
        if self.status == ContestStatus.DRAFT:
            return ComputedContestStatus.DRAFT
        if self.status == ContestStatus.CANCELLED:
            return ComputedContestStatus.CANCELLED
        if self.status == ContestStatus.COMPLETED:
            return ComputedContestStatus.COMPLETED
        now = as_utc(instant) if instant is not None else utcnow()
        if now < as_utc(self.starts_at):
            return ComputedContestStatus.UPCOMING
        if now > as_utc(self.ends_at):
            return ComputedContestStatus.COMPLETED
        return ComputedContestStatus.ACTIVE

    def is_active_at(self, instant: datetime | None) -> bool:
        return self.status_at(instant) == ComputedContestStatus.ACTIVE

    def transition(self, target: ContestStatus) -> "Contest":
        if target == self.status:
            return self
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidInput(
                f"contest {self.id} cannot move from {self.status.value} to {target.value}",
                reason="invalid_transition",
            )
        return replace(self, status=target)


__all__ = ["ALLOWED_TRANSITIONS", "Contest"]
