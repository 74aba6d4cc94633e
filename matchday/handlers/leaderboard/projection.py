"""Leaderboard projection.

Two derived views of the score ledger per contest:
- the durable ``leaderboards`` table, updated in the same transaction as
  the ledger row it reflects
- the Redis sorted set, incremented after that transaction commits

Reads go to the sorted set; a failed read is answered from the durable
table. Once the cache reports ``degraded`` (``max_consecutive_timeouts``
failures in a row), or the set turns out to be missing, the contest is
marked dirty: reads stay on the durable table and a rebuild is scheduled.
A failed increment is retried as an absolute write of the durable total
until the cache degrades. Reconciliation replays the durable table into the set and,
if the durable totals disagree with the ledger, rebuilds them first.

Ranking is a total order: total points desc, max streak desc, first
scored asc, user id asc. ``rank`` is the 1-based position in that order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from matchday.cache import LeaderboardCache
from matchday.config.core import LeaderboardSettings
from matchday.config.scoring_params import StreakParams, get_scoring_params
from matchday.database import DBM
from matchday.database.repository import leaderboards, ledger, streaks
from matchday.scoring.audit import ScoringAuditLogger, compute_standings_hash, get_audit_logger
from matchday.scoring.determinism import round2, utcnow
from matchday.scoring.streak import StreakState, streak_multiplier
from matchday.scoring.types import (
    ZERO,
    InconsistentState,
    LeaderboardRow,
    TeamStandingRow,
    Transient,
    UserRankRow,
)
from matchday.worker.locks import KeyedReadWriteLock

logger = logging.getLogger(__name__)

_NEVER = datetime.max.replace(tzinfo=timezone.utc)

# A ledger write run inside the projection's transaction. Returns the
# points delta and the grade instant, or None when nothing was written.
LedgerWrite = Callable[[AsyncSession], Awaitable[Optional[Tuple[Decimal, Optional[datetime]]]]]


@dataclass(frozen=True)
class Standing:
    user_id: int
    total_points: Decimal
    max_streak: int
    first_scored_at: datetime | None

    def sort_key(self) -> tuple:
        return (-self.total_points, -self.max_streak, self.first_scored_at or _NEVER, self.user_id)


@dataclass(frozen=True)
class ProjectionUpdate:
    delta: Decimal
    new_total: Decimal
    old_rank: int | None
    new_rank: int | None
    hot_applied: bool

    @property
    def rank_delta(self) -> int | None:
        """Places gained (positive) or lost since before the update."""
        if self.old_rank is None or self.new_rank is None:
            return None
        return self.old_rank - self.new_rank


@dataclass(frozen=True)
class ReconcileReport:
    contest_id: int
    entries: int
    drifted_users: int
    source: str
    hot_rebuilt: bool


class LeaderboardProjection:
    def __init__(
        self,
        dbm: DBM,
        cache: LeaderboardCache,
        settings: LeaderboardSettings | None = None,
        *,
        locks: KeyedReadWriteLock | None = None,
        streak_params: StreakParams | None = None,
        audit: ScoringAuditLogger | None = None,
    ):
        self.dbm = dbm
        self.cache = cache
        self.settings = settings or LeaderboardSettings()
        self.locks = locks or KeyedReadWriteLock()
        self.streak_params = streak_params or get_scoring_params().streak
        self.audit = audit or get_audit_logger()
        self.dirty: set[int] = set()
        self._rebuilds: Dict[int, asyncio.Task] = {}

    # ── writes ──────────────────────────────────────────────────────────────

    async def commit(self, contest_id: int, user_id: int, write: LedgerWrite) -> ProjectionUpdate | None:
        """Run ``write`` and the durable total update in one transaction, then
        increment the sorted set. Holds the contest write lock throughout.

        Returns None when ``write`` reports that nothing changed.
        """
        async with self.locks[contest_id].write():
            old = await self._rank_of(contest_id, user_id)
            async with self.dbm.transaction() as session:
                change = await write(session)
                if change is None:
                    return None
                delta, scored_at = change
                await leaderboards.apply_delta(
                    self.dbm,
                    session,
                    contest_id=contest_id,
                    user_id=user_id,
                    delta=delta,
                    scored_at=scored_at,
                )

            hot_applied = await self._incr_hot(contest_id, user_id, delta)
            if self.settings.rank_mode == "eager":
                await self._write_ranks(contest_id)
            new = await self._rank_of(contest_id, user_id)

        if new is not None:
            new_total = new["total_points"]
        else:
            durable = await leaderboards.get_total(self.dbm, contest_id, user_id)
            new_total = durable.total_points if durable is not None else round2(delta)
        return ProjectionUpdate(
            delta=round2(delta),
            new_total=new_total,
            old_rank=old["rank"] if old is not None else None,
            new_rank=new["rank"] if new is not None else None,
            hot_applied=hot_applied,
        )

    async def _incr_hot(self, contest_id: int, user_id: int, delta: Decimal) -> bool:
        if contest_id in self.dirty:
            # the pending rebuild replays the durable table, which already has this delta
            return False
        try:
            await self.cache.incr(contest_id, user_id, delta)
            return True
        except Transient:
            pass
        # the increment may or may not have landed; only the absolute durable total is safe to retry
        while not self.cache.degraded:
            durable = await leaderboards.get_total(self.dbm, contest_id, user_id)
            try:
                await self.cache.set_score(contest_id, user_id, durable.total_points)
                return True
            except Transient:
                continue
        logger.warning("Sorted set for contest %s unreachable; marking dirty", contest_id)
        self.mark_dirty(contest_id)
        return False

    def _note_read_failure(self, contest_id: int) -> None:
        """A failed read is served from the durable table; repeated failures mark the set dirty."""
        if self.cache.degraded:
            self.mark_dirty(contest_id)

    def mark_dirty(self, contest_id: int) -> None:
        """Serve ``contest_id`` from the durable table until the sorted set is rebuilt."""
        if contest_id not in self.dirty:
            logger.info("Leaderboard for contest %s marked dirty", contest_id)
        self.dirty.add(contest_id)
        self.schedule_rebuild(contest_id)

    def schedule_rebuild(self, contest_id: int) -> None:
        pending = self._rebuilds.get(contest_id)
        if pending is not None and not pending.done():
            return
        self._rebuilds[contest_id] = asyncio.create_task(
            self._rebuild_later(contest_id), name=f"rebuild-{contest_id}"
        )

    async def _rebuild_later(self, contest_id: int) -> None:
        await asyncio.sleep(self.settings.rebuild_delay_sec)
        try:
            await self.reconcile(contest_id)
        except Transient as e:
            logger.warning("Rebuild of contest %s deferred: %s", contest_id, e)
        finally:
            self._rebuilds.pop(contest_id, None)

    async def wait_rebuilds(self) -> None:
        pending = [t for t in self._rebuilds.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._rebuilds.values()):
            task.cancel()
        await asyncio.gather(*self._rebuilds.values(), return_exceptions=True)
        self._rebuilds.clear()

    # ── reads ───────────────────────────────────────────────────────────────

    def clamp_top_n(self, top_n: int | None) -> int:
        if top_n is None or top_n <= 0 or top_n > self.settings.max_top_n:
            return self.settings.default_top_n
        return top_n

    async def top_n(self, contest_id: int, top_n: int | None = None) -> List[LeaderboardRow]:
        n = self.clamp_top_n(top_n)
        async with self.locks[contest_id].read():
            standings = await self._ordered(contest_id, n)
        return await self._rows(contest_id, standings[:n])

    async def user_rank(self, contest_id: int, user_id: int) -> UserRankRow | None:
        """Rank and total of one user, or None when the user has no points row."""
        async with self.locks[contest_id].read():
            return await self._rank_of(contest_id, user_id)

    async def _ordered(self, contest_id: int, n: int) -> List[Standing]:
        """At least the first ``n`` standings in rank order (all when fewer exist)."""
        if contest_id not in self.dirty:
            try:
                return await self._ordered_hot(contest_id, n)
            except Transient:
                self._note_read_failure(contest_id)
        else:
            self.schedule_rebuild(contest_id)
        return await self._ordered_durable(contest_id)

    async def _ordered_hot(self, contest_id: int, n: int) -> List[Standing]:
        head = await self.cache.top(contest_id, n)
        if not head:
            if await leaderboards.list_totals(self.dbm, contest_id):
                # cache lost the set (restart, eviction)
                self.mark_dirty(contest_id)
                raise Transient(f"sorted set for contest {contest_id} is missing")
            return []
        totals: Dict[int, Decimal] = dict(head)
        if len(head) == n:
            boundary = head[-1][1]
            for user_id in await self.cache.members_at(contest_id, boundary):
                totals.setdefault(user_id, boundary)
        return await self._standings(contest_id, totals)

    async def _ordered_durable(self, contest_id: int) -> List[Standing]:
        rows = await leaderboards.list_totals(self.dbm, contest_id)
        return await self._standings(
            contest_id,
            {r.user_id: r.total_points for r in rows},
            {r.user_id: r.first_scored_at for r in rows},
        )

    async def _standings(
        self,
        contest_id: int,
        totals: Dict[int, Decimal],
        first_scored: Dict[int, datetime | None] | None = None,
    ) -> List[Standing]:
        if not totals:
            return []
        states = await streaks.streaks_for_users(self.dbm, contest_id, totals)
        if first_scored is None:
            first_scored = await leaderboards.first_scored_for_users(self.dbm, contest_id, totals)
        standings = [
            Standing(
                user_id=u,
                total_points=t,
                max_streak=states.get(u, StreakState()).max_streak,
                first_scored_at=first_scored.get(u),
            )
            for u, t in totals.items()
        ]
        standings.sort(key=Standing.sort_key)
        return standings

    async def _rank_of(self, contest_id: int, user_id: int) -> UserRankRow | None:
        if contest_id not in self.dirty:
            try:
                return await self._rank_hot(contest_id, user_id)
            except Transient:
                self._note_read_failure(contest_id)
        else:
            self.schedule_rebuild(contest_id)
        return await self._rank_durable(contest_id, user_id)

    async def _rank_hot(self, contest_id: int, user_id: int) -> UserRankRow | None:
        total = await self.cache.score(contest_id, user_id)
        if total is None:
            if await leaderboards.get_total(self.dbm, contest_id, user_id) is not None:
                self.mark_dirty(contest_id)
                raise Transient(f"sorted set for contest {contest_id} is missing user {user_id}")
            return None
        above = await self.cache.count_above(contest_id, total)
        tied = await self.cache.members_at(contest_id, total)
        group = await self._standings(contest_id, {u: total for u in tied})
        position = next(i for i, s in enumerate(group) if s.user_id == user_id)
        return await self._rank_row(contest_id, user_id, above + position + 1, total)

    async def _rank_durable(self, contest_id: int, user_id: int) -> UserRankRow | None:
        for position, standing in enumerate(await self._ordered_durable(contest_id), start=1):
            if standing.user_id == user_id:
                return await self._rank_row(contest_id, user_id, position, standing.total_points)
        return None

    async def _rank_row(self, contest_id: int, user_id: int, rank: int, total: Decimal) -> UserRankRow:
        state = (await streaks.streaks_for_users(self.dbm, contest_id, [user_id]))[user_id]
        return {
            "rank": rank,
            "total_points": total,
            "current_streak": state.current_streak,
            "max_streak": state.max_streak,
        }

    async def _rows(self, contest_id: int, standings: List[Standing]) -> List[LeaderboardRow]:
        states = await streaks.streaks_for_users(self.dbm, contest_id, [s.user_id for s in standings])
        rows: List[LeaderboardRow] = []
        for rank, s in enumerate(standings, start=1):
            state = states.get(s.user_id, StreakState())
            rows.append({
                "rank": rank,
                "user_id": s.user_id,
                "total_points": s.total_points,
                "current_streak": state.current_streak,
                "max_streak": state.max_streak,
                "multiplier": streak_multiplier(state.current_streak, self.streak_params),
            })
        return rows

    # ── ranks and repair ────────────────────────────────────────────────────

    async def recompute_ranks(self, contest_id: int) -> int:
        """Rewrite durable ranks for the whole contest in one pass."""
        async with self.locks[contest_id].write():
            return await self._write_ranks(contest_id)

    async def _write_ranks(self, contest_id: int) -> int:
        standings = await self._ordered(contest_id, 0)
        await leaderboards.write_ranks(
            self.dbm, contest_id, [(s.user_id, rank) for rank, s in enumerate(standings, start=1)]
        )
        logger.debug("Rewrote %d ranks for contest %s", len(standings), contest_id)
        return len(standings)

    async def verify(self, contest_id: int) -> None:
        """Compare durable totals with the ledger sums.

        Raises:
            InconsistentState: at least one user's durable total differs
        """
        async with self.locks[contest_id].read():
            await self._verify(contest_id, await ledger.totals_by_user(self.dbm, contest_id))

    async def _verify(self, contest_id: int, ledger_totals: Dict[int, Decimal]) -> Dict[int, Decimal]:
        durable = {r.user_id: r.total_points for r in await leaderboards.list_totals(self.dbm, contest_id)}
        drifted = {
            u: {"ledger": str(ledger_totals.get(u, ZERO)), "durable": str(durable.get(u, ZERO))}
            for u in set(ledger_totals) | set(durable)
            if round2(ledger_totals.get(u, ZERO)) != round2(durable.get(u, ZERO))
        }
        if drifted:
            raise InconsistentState(
                f"contest {contest_id}: {len(drifted)} durable totals differ from the ledger", drifted=drifted
            )
        return durable

    async def reconcile(self, contest_id: int) -> ReconcileReport:
        """Bring both views back in line with the ledger.

        Durable totals are compared with the ledger sums; any difference
        rebuilds the durable table from the ledger. The sorted set is then
        replaced from the durable table and ranks are rewritten.
        """
        async with self.locks[contest_id].write():
            ledger_totals = await ledger.totals_by_user(self.dbm, contest_id)
            source = "durable"
            drifted: Dict[int, Dict[str, str]] = {}
            try:
                durable = await self._verify(contest_id, ledger_totals)
            except InconsistentState as e:
                drifted = e.drifted
                self.audit.log_drift(contest_id, len(drifted), {str(u): d for u, d in sorted(drifted.items())})
                first_scored = await ledger.first_scored_by_user(self.dbm, contest_id)
                await leaderboards.replace_totals(self.dbm, contest_id, ledger_totals, first_scored)
                durable = dict(ledger_totals)
                source = "ledger"

            hot_rebuilt = True
            try:
                await self.cache.replace(contest_id, durable)
            except Transient:
                logger.warning("Sorted set rebuild failed for contest %s; serving durable totals", contest_id)
                self.dirty.add(contest_id)
                hot_rebuilt = False
            else:
                self.dirty.discard(contest_id)

            await self._write_ranks(contest_id)

        self.audit.log_reconcile(
            contest_id,
            source,
            len(durable),
            compute_standings_hash(contest_id, utcnow(), durable.items()),
        )
        return ReconcileReport(
            contest_id=contest_id,
            entries=len(durable),
            drifted_users=len(drifted),
            source=source,
            hot_rebuilt=hot_rebuilt,
        )

    # ── relay teams ─────────────────────────────────────────────────────────

    async def team_standings(self, contest_id: int) -> List[TeamStandingRow]:
        """Relay standings: member totals summed per team, ties to the lower team id."""
        teams = await leaderboards.team_totals(self.dbm, contest_id)
        teams.sort(key=lambda t: (-t[1], t[0]))
        return [
            {"rank": rank, "team_id": team_id, "total_points": round2(total), "members": members}
            for rank, (team_id, total, members) in enumerate(teams, start=1)
        ]


__all__ = [
    "LeaderboardProjection",
    "ProjectionUpdate",
    "ReconcileReport",
    "Standing",
]
