"""Prediction intake: validate a submission and store it for grading."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

from matchday.database import DBM
from matchday.database.repository import contests, predictions
from matchday.scoring.determinism import as_utc, utcnow
from matchday.scoring.engine import RulesEngine
from matchday.scoring.types import (
    ContestClosed,
    InvalidInput,
    NotFound,
    OverUnderPayload,
    PredictionPayload,
    PropsPayload,
    RiskyPayload,
    ScorePayload,
    WinnerPayload,
)
from matchday.scoring.validation import parse_payload
from matchday.shared.enums import MatchStatus, PredictionStatus

logger = logging.getLogger(__name__)


def prediction_type(payload: PredictionPayload) -> str:
    if isinstance(payload, RiskyPayload):
        return "risky"
    if isinstance(payload, WinnerPayload):
        return "winner"
    if isinstance(payload, OverUnderPayload):
        return "over_under"
    if isinstance(payload, PropsPayload):
        return "props"
    if isinstance(payload, ScorePayload) and payload.any_other:
        return "any_other"
    return "score"


class PredictionIntake:
    def __init__(self, dbm: DBM):
        self.dbm = dbm

    async def submit(
        self,
        user_id: int,
        contest_id: int,
        match_id: int,
        payload: Mapping[str, Any] | PredictionPayload,
        submitted_at: datetime | None = None,
    ) -> int:
        """Store (or replace) the user's prediction and return its id.

        Raises:
            NotFound: unknown contest or match
            ContestClosed: contest not active at ``submitted_at``
            InvalidInput: match already started or final, bad payload,
                or a prediction that was already graded
        """
        submitted_at = as_utc(submitted_at) or utcnow()
        contest = await contests.load_contest(self.dbm, contest_id)
        if not contest.is_active_at(submitted_at):
            raise ContestClosed(
                f"contest {contest_id} is {contest.status_at(submitted_at).value}",
                reason="contest_closed",
            )

        async with self.dbm.session() as session:
            match = await contests.get_match(session, match_id)
        if match is None:
            raise NotFound(f"match {match_id} not found")
        if MatchStatus(match.status) != MatchStatus.SCHEDULED:
            raise InvalidInput(f"match {match_id} is {match.status}", reason="match_closed")
        if submitted_at >= as_utc(match.start_at):
            raise InvalidInput(f"match {match_id} has already started", reason="match_started")

        typed = parse_payload(payload, contest.contest_type)
        RulesEngine(contest.rules).validate_payload(typed)

        prediction_id = await predictions.upsert_prediction(
            self.dbm,
            user_id=user_id,
            contest_id=contest_id,
            match_id=match_id,
            payload=typed.to_dict(),
            prediction_type=prediction_type(typed),
            submitted_at=submitted_at,
            status=PredictionStatus.PENDING,
        )
        if prediction_id is None:
            raise InvalidInput("prediction has already been graded", reason="prediction_final")
        logger.debug("Stored prediction %s (user=%s contest=%s match=%s)", prediction_id, user_id, contest_id, match_id)
        return prediction_id


__all__ = ["PredictionIntake", "prediction_type"]
