from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

from matchday.events.event import Event


class ScoringEvent(Event):
    """Base grading event keyed by prediction; one event of each type per prediction."""

    def __init__(self, *, event_type: str, prediction_id: int, payload: Dict[str, Any], id_suffix: str = ""):
        super().__init__(
            event_id=Event.make_id(event_type, prediction_id, id_suffix),
            event_type=event_type,
            event_data={"prediction_id": prediction_id, **payload},
        )

    @property
    def prediction_id(self) -> int:
        return self.event_data["prediction_id"]


class PredictionScored(ScoringEvent):
    def __init__(
        self,
        *,
        user_id: int,
        contest_id: int,
        prediction_id: int,
        base_points: Decimal,
        time_coefficient: Decimal,
        streak_multiplier: Decimal,
        final_points: Decimal,
        new_total: Decimal | None,
        new_rank: int | None,
        rank_delta: int | None,
    ):
        super().__init__(
            event_type="scoring.prediction_scored",
            prediction_id=prediction_id,
            payload={
                "user_id": user_id,
                "contest_id": contest_id,
                "base_points": base_points,
                "time_coefficient": time_coefficient,
                "streak_multiplier": streak_multiplier,
                "final_points": final_points,
                "new_total": new_total,
                "new_rank": new_rank,
                "rank_delta": rank_delta,
            },
        )


class SkippedContestClosed(ScoringEvent):
    def __init__(self, *, user_id: int, contest_id: int, prediction_id: int, contest_status: str):
        super().__init__(
            event_type="scoring.skipped_contest_closed",
            prediction_id=prediction_id,
            payload={"user_id": user_id, "contest_id": contest_id, "contest_status": contest_status},
        )


class PredictionVoided(ScoringEvent):
    def __init__(
        self,
        *,
        user_id: int,
        contest_id: int,
        prediction_id: int,
        reason: str,
        compensated_points: Decimal | None,
    ):
        super().__init__(
            event_type="scoring.prediction_voided",
            prediction_id=prediction_id,
            payload={
                "user_id": user_id,
                "contest_id": contest_id,
                "reason": reason,
                "compensated_points": compensated_points,
            },
        )


class PredictionRegraded(ScoringEvent):
    def __init__(
        self,
        *,
        user_id: int,
        contest_id: int,
        prediction_id: int,
        old_points: Decimal,
        new_points: Decimal,
        reason: str,
    ):
        super().__init__(
            event_type="scoring.prediction_regraded",
            prediction_id=prediction_id,
            payload={
                "user_id": user_id,
                "contest_id": contest_id,
                "old_points": old_points,
                "new_points": new_points,
                "reason": reason,
            },
            # a prediction may be corrected more than once
            id_suffix=f"{old_points}->{new_points}",
        )


class GradingTaskDeadLettered(ScoringEvent):
    def __init__(self, *, prediction_id: int, match_id: int, error: str):
        super().__init__(
            event_type="scoring.task_dead_lettered",
            prediction_id=prediction_id,
            payload={"match_id": match_id, "error": error},
        )
