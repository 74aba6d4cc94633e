"""Scoring service facade.

Owns the database manager, the leaderboard cache, the worker pool and the
handlers, and exposes the request/response operations. Request-boundary
errors (``InvalidInput``, ``InvalidRules``, ``ContestClosed``) come back as
``rejected(reason)`` dictionaries; ``Transient`` propagates so callers
can retry.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping

from matchday.cache import LeaderboardCache
from matchday.config.core import Settings, get_settings
from matchday.database import DBM
from matchday.database.repository import contests, predictions, streaks
from matchday.events import EventSink
from matchday.handlers.handlers import Handlers
from matchday.handlers.ingest.result_ingress import check_final_score
from matchday.handlers.leaderboard.projection import ReconcileReport
from matchday.scoring.audit import compute_rules_hash
from matchday.scoring.determinism import as_utc
from matchday.scoring.rules import RulesDocument, parse_rules
from matchday.scoring.streak import streak_multiplier
from matchday.scoring.types import (
    ContestClosed,
    InvalidInput,
    InvalidRules,
    LeaderboardRow,
    MatchResult,
    TeamStandingRow,
    Transient,
    UserRankRow,
)
from matchday.shared.enums import ContestStatus, ContestType, MatchStatus
from matchday.worker.pool import WorkerPool

logger = logging.getLogger(__name__)

_REJECTABLE = (InvalidInput, InvalidRules, ContestClosed)


def rejected(reason: str, message: str = "") -> Dict[str, Any]:
    return {"accepted": False, "reason": reason, "message": message}


def _rejection(err: Exception) -> Dict[str, Any]:
    return rejected(getattr(err, "reason", "invalid_input"), str(err))


class ScoringService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dbm: DBM | None = None,
        cache: LeaderboardCache | None = None,
        sink: EventSink | None = None,
    ):
        self.settings = settings or get_settings()
        self.dbm = dbm or DBM(self.settings.database)
        self.cache = cache or LeaderboardCache.from_settings(self.settings.cache)
        self.handlers = Handlers(self.dbm, self.cache, self.settings, sink, submit=self._submit)
        self.projection = self.handlers.leaderboard_projection
        self.coordinator = self.handlers.grading_coordinator
        self.pool = WorkerPool(
            self.coordinator.grade,
            self.settings.worker,
            on_dead_letter=self.coordinator.on_dead_letter,
            on_requeue=self.coordinator.on_requeue,
        )
        self._started = False

    def _submit(self, task) -> bool:
        return self.pool.submit(task)

    # ── lifecycle ───────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start workers, reconcile every contest and re-queue unfinished tasks."""
        if self._started:
            return
        self._started = True
        self.pool.start()
        for contest_id in await contests.list_contest_ids(self.dbm):
            try:
                await self.projection.reconcile(contest_id)
            except Transient as e:
                logger.warning("Reconcile of contest %s deferred at start: %s", contest_id, e)
        await self.handlers.result_ingress.republish_pending()
        logger.info("Scoring service started")

    async def drain(self) -> None:
        """Wait until every queued grading task has finished."""
        await self.pool.join()

    async def shutdown(self) -> None:
        """Stop accepting tasks, drain in-flight work, then close the stores."""
        await self.pool.shutdown()
        await self.projection.close()
        await self.cache.close()
        await self.dbm.dispose()
        self._started = False
        logger.info("Scoring service stopped")

    # ── contests ────────────────────────────────────────────────────────────

    async def create_contest(
        self,
        title: str,
        starts_at: datetime,
        ends_at: datetime,
        rules: Any = None,
        status: ContestStatus = ContestStatus.DRAFT,
    ) -> Dict[str, Any]:
        try:
            doc: RulesDocument = parse_rules(rules)
            contest = await contests.insert_contest(
                self.dbm, title=title, starts_at=starts_at, ends_at=ends_at, rules=doc, status=status
            )
        except _REJECTABLE as e:
            return _rejection(e)
        rules_doc = doc.to_dict()
        return {
            "accepted": True,
            "contest_id": contest.id,
            "rules": rules_doc,
            "rules_hash": compute_rules_hash(rules_doc),
        }

    async def set_contest_status(self, contest_id: int, status: ContestStatus) -> Dict[str, Any]:
        try:
            contest = await contests.load_contest(self.dbm, contest_id)
            updated = contest.transition(status)
        except _REJECTABLE as e:
            return _rejection(e)
        await contests.save_contest_status(self.dbm, contest_id, updated.status)
        return {"accepted": True, "contest_id": contest_id, "status": updated.status.value}

    async def get_contest_status(self, contest_id: int, at: datetime | None = None) -> Dict[str, Any]:
        try:
            contest = await contests.load_contest(self.dbm, contest_id)
        except _REJECTABLE as e:
            return _rejection(e)
        return {
            "contest_id": contest_id,
            "status": contest.status.value,
            "computed_status": contest.status_at(at).value,
        }

    async def delete_contest(self, contest_id: int) -> Dict[str, Any]:
        try:
            await contests.delete_contest(self.dbm, contest_id)
        except _REJECTABLE as e:
            return _rejection(e)
        await self.cache.drop(contest_id)
        return {"accepted": True, "contest_id": contest_id}

    async def assign_team_member(self, contest_id: int, team_id: int, user_id: int) -> Dict[str, Any]:
        """Put a user on a relay team, honouring team size and the reassign flag."""
        try:
            contest = await contests.load_contest(self.dbm, contest_id)
        except _REJECTABLE as e:
            return _rejection(e)
        relay = contest.rules.relay
        if contest.contest_type != ContestType.RELAY or relay is None:
            return rejected("not_relay", f"contest {contest_id} is not a relay contest")
        current = await contests.team_of(self.dbm, contest_id, user_id)
        if current == team_id:
            return {"accepted": True, "contest_id": contest_id, "team_id": team_id}
        if current is not None and not relay.allow_reassign:
            return rejected("reassign_not_allowed", f"user {user_id} is already on team {current}")
        sizes = await contests.team_sizes(self.dbm, contest_id)
        if sizes.get(team_id, 0) >= relay.team_size:
            return rejected("team_full", f"team {team_id} already has {relay.team_size} members")
        await contests.assign_team_member(self.dbm, contest_id=contest_id, team_id=team_id, user_id=user_id)
        return {"accepted": True, "contest_id": contest_id, "team_id": team_id}

    # ── predictions and results ─────────────────────────────────────────────

    async def submit_prediction(
        self,
        user_id: int,
        contest_id: int,
        match_id: int,
        payload: Mapping[str, Any],
        submitted_at: datetime | None = None,
    ) -> Dict[str, Any]:
        try:
            prediction_id = await self.handlers.prediction_intake.submit(
                user_id, contest_id, match_id, payload, submitted_at
            )
        except _REJECTABLE as e:
            return _rejection(e)
        return {"accepted": True, "prediction_id": prediction_id}

    async def finalize_match(
        self,
        match_id: int,
        home_score: int | None,
        away_score: int | None,
        finalized_at: datetime | None = None,
        *,
        status: MatchStatus = MatchStatus.COMPLETED,
        risky_outcomes: Mapping[str, bool] | None = None,
        stats: Mapping[str, Any] | None = None,
    ) -> Dict[str, Any]:
        try:
            report = await self.handlers.result_ingress.finalize_match(
                match_id,
                home_score,
                away_score,
                finalized_at,
                status=status,
                risky_outcomes=risky_outcomes,
                stats=stats,
            )
        except _REJECTABLE as e:
            return _rejection(e)
        return {"accepted": True, "match_id": match_id, "published": report.published, "queued": report.submitted}

    async def correct_match_result(
        self,
        match_id: int,
        home_score: int,
        away_score: int,
        reason: str,
        risky_outcomes: Mapping[str, bool] | None = None,
        stats: Mapping[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Fix a finalized score and re-grade every prediction scored against it."""
        try:
            check_final_score(home_score, away_score)
        except InvalidInput as e:
            return _rejection(e)
        async with self.dbm.transaction() as session:
            row = await contests.get_match(session, match_id)
            if row is None or row.finalized_at is None:
                return rejected("not_found", f"no finalized match {match_id}")
            updated = await contests.record_match_result(
                session,
                match_id,
                home_score=home_score,
                away_score=away_score,
                status=MatchStatus.COMPLETED,
                finalized_at=as_utc(row.finalized_at),
                risky_outcomes=risky_outcomes,
                stats=stats,
            )
            result = contests.match_result(updated)
            scored = [p.id for p in await predictions.list_scored_for_match(session, match_id)]

        regraded = 0
        for prediction_id in scored:
            try:
                outcome = await self.coordinator.regrade(prediction_id, result, reason)
            except _REJECTABLE as e:
                logger.warning("Prediction %s not re-graded: %s", prediction_id, e)
                continue
            if outcome.status == "regraded":
                regraded += 1
        return {"accepted": True, "match_id": match_id, "regraded": regraded, "checked": len(scored)}

    async def regrade_prediction(self, prediction_id: int, result: MatchResult, reason: str) -> Dict[str, Any]:
        try:
            outcome = await self.coordinator.regrade(prediction_id, result, reason)
        except _REJECTABLE as e:
            return _rejection(e)
        return {"accepted": True, "prediction_id": prediction_id, "status": outcome.status}

    async def void_prediction(self, prediction_id: int, reason: str) -> Dict[str, Any]:
        try:
            outcome = await self.coordinator.void(prediction_id, reason)
        except _REJECTABLE as e:
            return _rejection(e)
        return {"accepted": True, "prediction_id": prediction_id, "status": outcome.status}

    # ── queries ─────────────────────────────────────────────────────────────

    async def get_leaderboard(self, contest_id: int, top_n: int | None = None) -> List[LeaderboardRow]:
        return await self.projection.top_n(contest_id, top_n)

    async def get_user_rank(self, contest_id: int, user_id: int) -> UserRankRow | None:
        """None means the user is not ranked in the contest."""
        return await self.projection.user_rank(contest_id, user_id)

    async def get_user_streak(self, contest_id: int, user_id: int) -> Dict[str, Any]:
        state = await streaks.load_streak(self.dbm, user_id, contest_id)
        return {
            "current_streak": state.current_streak,
            "max_streak": state.max_streak,
            "multiplier": streak_multiplier(state.current_streak, self.coordinator.params.streak),
        }

    async def get_team_standings(self, contest_id: int) -> List[TeamStandingRow]:
        return await self.projection.team_standings(contest_id)

    async def get_user_analytics(self, user_id: int, time_range: str | None = None) -> Dict[str, Any]:
        try:
            return await self.handlers.analytics_view.user_analytics(user_id, time_range)
        except _REJECTABLE as e:
            return _rejection(e)

    async def export_analytics(self, user_id: int, time_range: str | None = None) -> Dict[str, Any]:
        try:
            filename, data = await self.handlers.analytics_view.export_csv(user_id, time_range)
        except _REJECTABLE as e:
            return _rejection(e)
        return {"accepted": True, "filename": filename, "data": data}

    # ── administration ──────────────────────────────────────────────────────

    async def update_leaderboard(self, contest_id: int) -> Dict[str, Any]:
        ranked = await self.projection.recompute_ranks(contest_id)
        return {"contest_id": contest_id, "ranked": ranked}

    async def reconcile(self, contest_id: int | None = None) -> List[ReconcileReport]:
        ids = [contest_id] if contest_id is not None else await contests.list_contest_ids(self.dbm)
        return [await self.projection.reconcile(cid) for cid in ids]


__all__ = ["ScoringService", "rejected"]
