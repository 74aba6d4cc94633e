"""Result ingress: finalized matches become grading tasks.

Flow:
1. Record the final score (or cancellation) on the match
2. Collect every prediction on the match that is not yet terminal
3. Mark them gradable and publish one durable task each
4. Set the match to ``grading_started`` (``grading_complete`` when there
   is nothing to grade) and hand the tasks to the worker pool

Everything in steps 1-4 happens in one transaction, so a crash leaves
either no tasks or all of them. Publication is idempotent: grading is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Mapping

from matchday.database import DBM
from matchday.database.repository import contests, predictions, tasks
from matchday.scoring.determinism import as_utc, utcnow
from matchday.scoring.types import InvalidInput, NotFound
from matchday.shared.enums import VOID_MATCH_STATUSES, GradingState, MatchStatus
from matchday.worker.pool import TaskRef

logger = logging.getLogger(__name__)

Submit = Callable[[TaskRef], bool]


@dataclass(frozen=True)
class IngressReport:
    match_id: int
    status: MatchStatus
    published: int
    submitted: int


def check_final_score(home_score: Any, away_score: Any) -> None:
    for name, value in (("home_score", home_score), ("away_score", away_score)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidInput(f"{name} must be a non-negative integer")


class ResultIngress:
    def __init__(self, dbm: DBM, submit: Submit | None = None):
        self.dbm = dbm
        self.submit = submit

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
    ) -> IngressReport:
        """Record a final result and publish grading tasks for the match.

        Raises:
            InvalidInput: scores missing or negative for a completed match,
                a non-final status, or a different score for a match that
                was already finalized
            NotFound: unknown match
        """
        if status == MatchStatus.COMPLETED:
            check_final_score(home_score, away_score)
        elif status not in VOID_MATCH_STATUSES:
            raise InvalidInput(f"match status {status.value} is not final", reason="match_not_final")
        finalized_at = as_utc(finalized_at) or utcnow()

        async with self.dbm.transaction() as session:
            row = await contests.get_match(session, match_id)
            if row is None:
                raise NotFound(f"match {match_id} not found")
            if row.finalized_at is not None and MatchStatus(row.status) == MatchStatus.COMPLETED:
                if (row.home_score, row.away_score) != (home_score, away_score) or status != MatchStatus.COMPLETED:
                    raise InvalidInput(
                        f"match {match_id} is already final at {row.home_score}:{row.away_score}; "
                        "use a result correction",
                        reason="already_finalized",
                    )
                # same result again: keep the first finalization instant
                finalized_at = as_utc(row.finalized_at)

            await contests.record_match_result(
                session,
                match_id,
                home_score=home_score,
                away_score=away_score,
                status=status,
                finalized_at=finalized_at,
                risky_outcomes=risky_outcomes,
                stats=stats,
            )
            open_ids: List[int] = [p.id for p in await predictions.list_open_for_match(session, match_id)]
            await predictions.mark_gradable(session, open_ids)
            await tasks.publish(self.dbm, session, [(pid, match_id) for pid in open_ids])
            state = GradingState.GRADING_STARTED if open_ids else GradingState.GRADING_COMPLETE
            await contests.set_grading_state(session, match_id, state)

        submitted = self._submit_all(TaskRef(pid, match_id) for pid in open_ids)
        logger.info(
            "Match %s finalized as %s: %d grading tasks published, %d queued",
            match_id,
            status.value,
            len(open_ids),
            submitted,
        )
        return IngressReport(match_id=match_id, status=status, published=len(open_ids), submitted=submitted)

    async def republish_pending(self) -> int:
        """Queue every durable task that has not finished (service start)."""
        pending = await tasks.list_pending(self.dbm)
        submitted = self._submit_all(TaskRef(t.prediction_id, t.match_id) for t in pending)
        if pending:
            logger.info("Recovered %d pending grading tasks (%d queued)", len(pending), submitted)
        return submitted

    def _submit_all(self, refs) -> int:
        if self.submit is None:
            return 0
        return sum(1 for ref in refs if self.submit(ref))


__all__ = ["ResultIngress", "IngressReport", "check_final_score"]
