"""Grading coordinator.

The only writer of the score ledger, streak state and leaderboard
projection for a prediction.

Flow for one grading task:
1. Load prediction, match and contest; a ledger row already present
   means the task has been done before
2. Void predictions on cancelled/postponed matches; skip those whose
   contest was not active when the match finalized
3. Under the (user, contest) lock: base points, timing coefficient,
   streak advance and multiplier, final points
4. One transaction: ledger row (ON CONFLICT DO NOTHING), streak state,
   prediction status, durable leaderboard total, task flag
5. Sorted set increment under the contest write lock
6. ``PredictionScored`` event

Steps 1-3 may be cancelled freely. Once step 4 has started the work runs
to completion; a cancellation arriving then is logged and ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from matchday.config.core import Settings
from matchday.config.scoring_params import ScoringParams, get_scoring_params
from matchday.database import DBM
from matchday.database.repository import contests, ledger, predictions, streaks, tasks
from matchday.events import (
    EventSink,
    GradingTaskDeadLettered,
    LoggingEventSink,
    PredictionRegraded,
    PredictionScored,
    PredictionVoided,
    SkippedContestClosed,
)
from matchday.handlers.leaderboard.projection import LeaderboardProjection, ProjectionUpdate
from matchday.scoring.audit import ScoringAuditLogger, compute_grade_hash, get_audit_logger
from matchday.scoring.determinism import as_utc, round2, to_decimal, utcnow
from matchday.scoring.engine import RulesEngine
from matchday.scoring.streak import advance, is_successful, streak_multiplier
from matchday.scoring.timing import timing_coefficient
from matchday.scoring.types import (
    Conflict,
    GradeComputation,
    InvalidInput,
    MatchResult,
    NotFound,
)
from matchday.scoring.validation import parse_payload
from matchday.shared.enums import (
    TERMINAL_PREDICTION_STATUSES,
    VOID_MATCH_STATUSES,
    GradingState,
    LedgerEntryKind,
    MatchStatus,
    PredictionStatus,
    TaskStatus,
)
from matchday.worker.locks import KeyedLock
from matchday.worker.pool import TaskRef

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class GradeOutcome:
    """What a grading call did. ``status`` is one of scored, duplicate, skipped, voided, regraded."""

    prediction_id: int
    status: str
    computation: Optional[GradeComputation] = None
    update: Optional[ProjectionUpdate] = None


async def run_to_completion(work: Awaitable[T], what: str) -> T:
    """Await ``work`` so that cancelling the caller cannot interrupt it."""
    future = asyncio.ensure_future(work)
    while True:
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            if future.cancelled():
                raise
            logger.warning("Cancellation ignored while %s is committing", what)
            current = asyncio.current_task()
            if current is not None:
                current.uncancel()


class GradingCoordinator:
    def __init__(
        self,
        dbm: DBM,
        projection: LeaderboardProjection,
        sink: EventSink | None = None,
        settings: Settings | None = None,
        *,
        params: ScoringParams | None = None,
        audit: ScoringAuditLogger | None = None,
        user_locks: KeyedLock | None = None,
    ):
        self.dbm = dbm
        self.projection = projection
        self.sink = sink or LoggingEventSink()
        self.strict_risky = settings.streak.strict_risky if settings is not None else False
        self.params = params or get_scoring_params()
        self.audit = audit or get_audit_logger()
        self.user_locks = user_locks or KeyedLock()

    # ── grading ─────────────────────────────────────────────────────────────

    async def grade(self, task: TaskRef) -> GradeOutcome:
        """Grade one prediction. Safe to call any number of times per task."""
        pid = task.prediction_id
        async with self.dbm.session() as session:
            pred = await predictions.get_prediction(session, pid)
            if pred is None:
                raise NotFound(f"prediction {pid} not found")
            existing = await ledger.get_entry(session, pid)
            match = await contests.get_match(session, pred.match_id)
            contest = await contests.get_contest(session, pred.contest_id)

        if existing is not None:
            return await self._replayed(task)
        if PredictionStatus(pred.status) in TERMINAL_PREDICTION_STATUSES:
            await self._finish(task, TaskStatus.DONE)
            return GradeOutcome(pid, "duplicate")
        if match is None:
            raise NotFound(f"match {pred.match_id} not found")
        if contest is None:
            raise NotFound(f"contest {pred.contest_id} not found")

        result = contests.match_result(match)
        if result.status in VOID_MATCH_STATUSES:
            return await self._void_unscored(task, pred.user_id, pred.contest_id, f"match_{result.status.value}")
        if result.status != MatchStatus.COMPLETED or result.finalized_at is None:
            raise InvalidInput(f"match {result.match_id} is not final", reason="match_not_final")

        if not contest.is_active_at(result.finalized_at):
            computed = contest.status_at(result.finalized_at)
            async with self.dbm.transaction() as session:
                await predictions.set_prediction_status(
                    session, pid, PredictionStatus.SKIPPED, f"contest_{computed.value}"
                )
            await self._emit(SkippedContestClosed(
                user_id=pred.user_id,
                contest_id=pred.contest_id,
                prediction_id=pid,
                contest_status=computed.value,
            ), pid)
            await self._finish(task, TaskStatus.SKIPPED)
            logger.info("Prediction %s skipped: contest %s was %s", pid, contest.id, computed.value)
            return GradeOutcome(pid, "skipped")

        user_id, contest_id = pred.user_id, pred.contest_id
        async with self.user_locks.hold((user_id, contest_id)):
            engine = RulesEngine(contest.rules, self.params)
            payload = parse_payload(pred.payload, contest.contest_type)
            scoring = engine.score(payload, result)
            timing = timing_coefficient(pred.submitted_at, result.start_at, self.params.timing)

            state = await streaks.load_streak(self.dbm, user_id, contest_id)
            successful = is_successful(
                scoring.base_points, risky=contest.rules.is_risky, strict_risky=self.strict_risky
            )
            new_state = advance(state, pid, successful)
            multiplier = streak_multiplier(new_state.current_streak, self.params.streak)
            final = round2(scoring.base_points * timing.multiplier * multiplier)

            computation = GradeComputation(
                base_points=scoring.base_points,
                time_coefficient=timing.multiplier,
                timing_tier=timing.tier,
                streak_multiplier=multiplier,
                final_points=final,
                successful=successful,
                details={**scoring.details, "timing_tier": timing.tier, "lead_hours": str(round2(timing.lead_hours))},
            )

            async def write(session: AsyncSession):
                scored_at = utcnow()
                try:
                    await ledger.insert_entry(
                        self.dbm,
                        session,
                        user_id=user_id,
                        contest_id=contest_id,
                        prediction_id=pid,
                        points=final,
                        base_points=scoring.base_points,
                        time_coefficient=timing.multiplier,
                        streak_multiplier=multiplier,
                        timing_tier=timing.tier,
                        details=computation.details,
                        scored_at=scored_at,
                    )
                except Conflict:
                    return None
                await streaks.save_streak(self.dbm, session, user_id, contest_id, new_state)
                await predictions.set_prediction_status(session, pid, PredictionStatus.SCORED)
                await tasks.set_flags(session, pid, ledger_written=True)
                return final, scored_at

            outcome = await run_to_completion(
                self._settle_grade(task, user_id, contest_id, pred.payload, result, computation, write),
                f"grade of prediction {pid}",
            )
        return outcome

    async def _settle_grade(
        self,
        task: TaskRef,
        user_id: int,
        contest_id: int,
        payload: Dict[str, Any],
        result: MatchResult,
        computation: GradeComputation,
        write: Callable[[AsyncSession], Awaitable[Any]],
    ) -> GradeOutcome:
        pid = task.prediction_id
        update = await self.projection.commit(contest_id, user_id, write)
        if update is None:
            logger.debug("Prediction %s already in the ledger", pid)
            await self._finish(task, TaskStatus.DONE)
            return GradeOutcome(pid, "duplicate")

        factors = {
            "base_points": computation.base_points,
            "time_coefficient": computation.time_coefficient,
            "streak_multiplier": computation.streak_multiplier,
            "final_points": computation.final_points,
        }
        self.audit.log_grade(
            pid,
            user_id,
            contest_id,
            factors,
            compute_grade_hash(
                pid, contest_id, user_id, payload, result.home_score, result.away_score, factors, result.stats
            ),
        )

        if update.hot_applied:
            await tasks.update_flags(self.dbm, pid, projection_applied=True)
            await self._emit(PredictionScored(
                user_id=user_id,
                contest_id=contest_id,
                prediction_id=pid,
                base_points=computation.base_points,
                time_coefficient=computation.time_coefficient,
                streak_multiplier=computation.streak_multiplier,
                final_points=computation.final_points,
                new_total=update.new_total,
                new_rank=update.new_rank,
                rank_delta=update.rank_delta,
            ), pid)
        else:
            logger.warning("Prediction %s graded but sorted set not updated; event suppressed", pid)
        await self._finish(task, TaskStatus.DONE)
        return GradeOutcome(pid, "scored", computation, update)

    async def _replayed(self, task: TaskRef) -> GradeOutcome:
        """A ledger row exists: finish whatever the earlier run left undone."""
        record = await tasks.load_task(self.dbm, task.prediction_id)
        if record is not None and record.ledger_written and not record.projection_applied:
            async with self.dbm.session() as session:
                pred = await predictions.get_prediction(session, task.prediction_id)
            logger.info("Prediction %s was graded without its sorted set update; rebuilding", task.prediction_id)
            self.projection.mark_dirty(pred.contest_id)
        await self._finish(task, TaskStatus.DONE)
        return GradeOutcome(task.prediction_id, "duplicate")

    async def _void_unscored(self, task: TaskRef, user_id: int, contest_id: int, reason: str) -> GradeOutcome:
        pid = task.prediction_id
        async with self.dbm.transaction() as session:
            await predictions.set_prediction_status(session, pid, PredictionStatus.VOIDED, reason)
        self.audit.log_void(pid, contest_id, None, reason)
        await self._emit(PredictionVoided(
            user_id=user_id, contest_id=contest_id, prediction_id=pid, reason=reason, compensated_points=None
        ), pid)
        await self._finish(task, TaskStatus.SKIPPED)
        return GradeOutcome(pid, "voided")

    async def _finish(self, task: TaskRef, status: TaskStatus, error: str | None = None) -> None:
        await tasks.finish(self.dbm, task.prediction_id, status, error)
        async with self.dbm.transaction() as session:
            if await tasks.all_terminal(session, task.match_id):
                await contests.set_grading_state(session, task.match_id, GradingState.GRADING_COMPLETE)

    async def _emit(self, event, prediction_id: int) -> None:
        try:
            await self.sink.emit(event)
        except Exception:
            logger.exception("Event sink failed for %s", event.event_type)
            return
        await tasks.update_flags(self.dbm, prediction_id, event_emitted=True)

    # ── administration ──────────────────────────────────────────────────────

    async def void(self, prediction_id: int, reason: str) -> GradeOutcome:
        """Void a prediction. A graded one gets a compensating ledger row."""
        async with self.dbm.session() as session:
            pred = await predictions.get_prediction(session, prediction_id)
            if pred is None:
                raise NotFound(f"prediction {prediction_id} not found")
            entry = await ledger.get_entry(session, prediction_id)

        if PredictionStatus(pred.status) == PredictionStatus.VOIDED:
            return GradeOutcome(prediction_id, "duplicate")
        task = TaskRef(prediction_id, pred.match_id)
        if entry is None:
            return await self._void_unscored(task, pred.user_id, pred.contest_id, reason)

        user_id, contest_id = pred.user_id, pred.contest_id
        async with self.user_locks.hold((user_id, contest_id)):
            factors = ledger.entry_factors(entry)
            compensation = -factors["final_points"]

            async def write(session: AsyncSession):
                try:
                    await ledger.insert_entry(
                        self.dbm,
                        session,
                        user_id=user_id,
                        contest_id=contest_id,
                        prediction_id=prediction_id,
                        points=compensation,
                        base_points=-factors["base_points"],
                        time_coefficient=factors["time_coefficient"],
                        streak_multiplier=factors["streak_multiplier"],
                        timing_tier=entry.timing_tier,
                        details={"compensates": entry.id, "reason": reason},
                        scored_at=utcnow(),
                        kind=LedgerEntryKind.COMPENSATION,
                    )
                except Conflict:
                    return None
                await predictions.set_prediction_status(session, prediction_id, PredictionStatus.VOIDED, reason)
                return compensation, None

            update = await run_to_completion(
                self.projection.commit(contest_id, user_id, write),
                f"void of prediction {prediction_id}",
            )

        if update is None:
            return GradeOutcome(prediction_id, "duplicate")
        self.audit.log_void(prediction_id, contest_id, compensation, reason)
        await self._emit(PredictionVoided(
            user_id=user_id,
            contest_id=contest_id,
            prediction_id=prediction_id,
            reason=reason,
            compensated_points=compensation,
        ), prediction_id)
        return GradeOutcome(prediction_id, "voided", update=update)

    async def regrade(self, prediction_id: int, result: MatchResult, reason: str) -> GradeOutcome:
        """Re-score a graded prediction against a corrected result.

        The timing coefficient and streak multiplier recorded at grading
        time are kept; only base points change.
        """
        async with self.dbm.session() as session:
            pred = await predictions.get_prediction(session, prediction_id)
            if pred is None:
                raise NotFound(f"prediction {prediction_id} not found")
            entry = await ledger.get_entry(session, prediction_id)
            contest = await contests.get_contest(session, pred.contest_id)
        if entry is None:
            raise InvalidInput(f"prediction {prediction_id} has not been graded", reason="not_graded")
        if PredictionStatus(pred.status) == PredictionStatus.VOIDED:
            raise InvalidInput(f"prediction {prediction_id} is voided", reason="prediction_voided")
        if contest is None:
            raise NotFound(f"contest {pred.contest_id} not found")

        user_id, contest_id = pred.user_id, pred.contest_id
        async with self.user_locks.hold((user_id, contest_id)):
            scoring = RulesEngine(contest.rules, self.params).score(
                parse_payload(pred.payload, contest.contest_type), result
            )
            factors = ledger.entry_factors(entry)
            old_points = factors["final_points"]
            new_points = round2(scoring.base_points * factors["time_coefficient"] * factors["streak_multiplier"])
            if new_points == old_points and to_decimal(entry.base_points) == scoring.base_points:
                return GradeOutcome(prediction_id, "duplicate")
            details = {**scoring.details, "timing_tier": entry.timing_tier, "corrected_from": str(old_points)}

            async def write(session: AsyncSession):
                await ledger.rewrite_points(
                    session,
                    entry.id,
                    points=new_points,
                    base_points=scoring.base_points,
                    details=details,
                    corrected_at=utcnow(),
                    reason=reason,
                )
                return new_points - old_points, as_utc(entry.scored_at)

            update = await run_to_completion(
                self.projection.commit(contest_id, user_id, write),
                f"regrade of prediction {prediction_id}",
            )

        new_factors = {**factors, "base_points": scoring.base_points, "final_points": new_points}
        self.audit.log_corrective_regrade(
            prediction_id,
            contest_id,
            old_points,
            new_points,
            reason,
            compute_grade_hash(
                prediction_id,
                contest_id,
                user_id,
                pred.payload,
                result.home_score,
                result.away_score,
                new_factors,
                result.stats,
            ),
        )
        await self._emit(PredictionRegraded(
            user_id=user_id,
            contest_id=contest_id,
            prediction_id=prediction_id,
            old_points=old_points,
            new_points=new_points,
            reason=reason,
        ), prediction_id)
        computation = GradeComputation(
            base_points=scoring.base_points,
            time_coefficient=factors["time_coefficient"],
            timing_tier=entry.timing_tier or "",
            streak_multiplier=factors["streak_multiplier"],
            final_points=new_points,
            successful=new_points > Decimal("0"),
            details=details,
        )
        return GradeOutcome(prediction_id, "regraded", computation, update)

    # ── worker pool hooks ───────────────────────────────────────────────────

    async def on_requeue(self, task: TaskRef, error: BaseException, delay: float) -> None:
        await tasks.record_attempt(
            self.dbm,
            task.prediction_id,
            error=f"{error.__class__.__name__}: {error}",
            available_at=utcnow() + timedelta(seconds=delay),
        )

    async def on_dead_letter(self, task: TaskRef, error: BaseException) -> None:
        message = f"{error.__class__.__name__}: {error}"
        await self._finish(task, TaskStatus.DEAD, message)
        await self._emit(
            GradingTaskDeadLettered(prediction_id=task.prediction_id, match_id=task.match_id, error=message),
            task.prediction_id,
        )


__all__ = ["GradingCoordinator", "GradeOutcome", "run_to_completion"]
