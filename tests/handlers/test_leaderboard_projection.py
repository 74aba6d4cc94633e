"""Tests for the leaderboard projection: ordering, fallback and repair."""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import CONTEST_START, Stack, grade_all, make_contest, make_match, make_prediction
from matchday.database.repository import contests, leaderboards
from matchday.database.repository import streaks as streak_repo
from matchday.scoring.streak import StreakState
from matchday.scoring.types import InconsistentState

T0 = CONTEST_START + timedelta(days=10)


async def seed(stack, contest_id, rows):
    """rows: (user_id, total, max_streak, first_scored_at)"""
    totals = {u: Decimal(t) for u, t, _, _ in rows}
    await leaderboards.replace_totals(stack.dbm, contest_id, totals, {u: f for u, _, _, f in rows})
    async with stack.dbm.transaction() as session:
        for user_id, _, max_streak, _ in rows:
            await streak_repo.save_streak(
                stack.dbm, session, user_id, contest_id, StreakState(current_streak=0, max_streak=max_streak)
            )
    await stack.cache.replace(contest_id, totals)


class TestOrdering:
    @pytest.mark.asyncio
    async def test_tie_broken_by_max_streak(self, stack):
        """Should rank the longer best streak first on equal totals."""
        contest = await make_contest(stack.dbm)
        await seed(stack, contest.id, [(1, "20.00", 5, T0), (2, "20.00", 7, T0 + timedelta(hours=1))])

        rows = await stack.projection.top_n(contest.id)
        assert [(r["rank"], r["user_id"]) for r in rows] == [(1, 2), (2, 1)]
        assert (await stack.projection.user_rank(contest.id, 1))["rank"] == 2
        assert (await stack.projection.user_rank(contest.id, 2))["rank"] == 1

    @pytest.mark.asyncio
    async def test_tie_broken_by_first_scored_then_user(self, stack):
        contest = await make_contest(stack.dbm)
        await seed(stack, contest.id, [
            (4, "20.00", 7, T0),
            (3, "20.00", 7, T0),
            (2, "20.00", 7, T0 + timedelta(hours=1)),
            (1, "25.00", 0, T0 + timedelta(days=3)),
        ])
        rows = await stack.projection.top_n(contest.id)
        assert [r["user_id"] for r in rows] == [1, 3, 4, 2]
        assert [r["rank"] for r in rows] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_top_n_pulls_whole_tie_group(self, stack):
        """Should pick the right user for a cut that falls inside a tie."""
        contest = await make_contest(stack.dbm)
        await seed(stack, contest.id, [
            (1, "20.00", 1, T0),
            (2, "20.00", 1, T0),
            (3, "20.00", 9, T0),
        ])
        [row] = await stack.projection.top_n(contest.id, 1)
        assert row["user_id"] == 3
        assert row["max_streak"] == 9
        assert row["multiplier"] == Decimal("1.00")

    @pytest.mark.asyncio
    async def test_empty_and_unknown(self, stack):
        contest = await make_contest(stack.dbm)
        assert await stack.projection.top_n(contest.id) == []
        assert await stack.projection.user_rank(contest.id, 1) is None

    def test_clamp_top_n(self, stack):
        projection = stack.projection
        default = projection.settings.default_top_n
        assert projection.clamp_top_n(None) == default
        assert projection.clamp_top_n(0) == default
        assert projection.clamp_top_n(-3) == default
        assert projection.clamp_top_n(projection.settings.max_top_n + 1) == default
        assert projection.clamp_top_n(10) == 10


class TestFallback:
    @pytest.mark.asyncio
    async def test_redis_down_serves_durable(self, stack):
        contest = await make_contest(stack.dbm)
        await seed(stack, contest.id, [(1, "5.00", 1, T0), (2, "8.00", 1, T0)])
        stack.redis.down = True

        rows = await stack.projection.top_n(contest.id)
        assert [r["user_id"] for r in rows] == [2, 1]
        assert (await stack.projection.user_rank(contest.id, 1))["rank"] == 2
        assert contest.id not in stack.projection.dirty

        # third failure in a row: max_consecutive_timeouts reached
        await stack.projection.top_n(contest.id)
        assert stack.cache.degraded
        await stack.projection.wait_rebuilds()
        assert contest.id in stack.projection.dirty

        stack.redis.down = False
        await stack.projection.top_n(contest.id)
        await stack.projection.wait_rebuilds()
        assert contest.id not in stack.projection.dirty
        assert await stack.cache.score(contest.id, 2) == Decimal("8.00")

    @pytest.mark.asyncio
    async def test_single_read_failure_keeps_set(self, stack):
        """Should answer one failed read from the durable table without dirtying the set."""
        contest = await make_contest(stack.dbm)
        await seed(stack, contest.id, [(1, "5.00", 1, T0), (2, "8.00", 1, T0)])
        stack.redis.fail_next["zrevrange"] = 1

        assert [r["user_id"] for r in await stack.projection.top_n(contest.id)] == [2, 1]
        assert contest.id not in stack.projection.dirty
        assert [r["user_id"] for r in await stack.projection.top_n(contest.id)] == [2, 1]
        assert stack.cache.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_failed_increment_retried_with_durable_total(self, stack):
        """Should write the absolute durable total when ZINCRBY fails once."""
        contest = await make_contest(stack.dbm)
        await make_match(stack.dbm, 1)
        await make_prediction(stack.dbm, 1, contest.id, 1, {"home_score": 2, "away_score": 1})
        stack.redis.fail_next["zincrby"] = 1

        [outcome] = await grade_all(stack, 1, 2, 1)

        assert outcome.update.hot_applied is True
        assert contest.id not in stack.projection.dirty
        assert "zadd" in stack.redis.calls
        assert await stack.cache.score(contest.id, 1) == Decimal("10.00")
        assert len(stack.sink.of_type("scoring.prediction_scored")) == 1

    @pytest.mark.asyncio
    async def test_increment_gives_up_once_degraded(self, stack):
        contest = await make_contest(stack.dbm)
        await make_match(stack.dbm, 1)
        await make_prediction(stack.dbm, 1, contest.id, 1, {"home_score": 2, "away_score": 1})
        stack.redis.fail_next.update({"zincrby": 1, "zadd": 5})

        [outcome] = await grade_all(stack, 1, 2, 1)

        assert outcome.update.hot_applied is False
        assert stack.redis.calls.count("zadd") == 2
        assert contest.id in stack.projection.dirty
        await stack.projection.wait_rebuilds()
        assert contest.id not in stack.projection.dirty
        assert await stack.cache.score(contest.id, 1) == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_lost_sorted_set_rebuilt(self, stack):
        """Should notice an evicted set and rebuild it from the durable table."""
        contest = await make_contest(stack.dbm)
        await seed(stack, contest.id, [(1, "5.00", 1, T0), (2, "8.00", 1, T0)])
        stack.redis.sets.clear()

        assert (await stack.projection.user_rank(contest.id, 1))["rank"] == 2
        assert [r["user_id"] for r in await stack.projection.top_n(contest.id)] == [2, 1]
        await stack.projection.wait_rebuilds()
        assert contest.id not in stack.projection.dirty
        assert await stack.cache.score(contest.id, 1) == Decimal("5.00")


class TestReconcile:
    @pytest.mark.asyncio
    async def test_clean(self, stack):
        contest = await make_contest(stack.dbm)
        await make_match(stack.dbm, 1)
        await make_prediction(stack.dbm, 1, contest.id, 1, {"home_score": 2, "away_score": 1})
        await grade_all(stack, 1, 2, 1)

        report = await stack.projection.reconcile(contest.id)
        assert report.source == "durable"
        assert report.drifted_users == 0
        assert report.hot_rebuilt is True
        assert (await leaderboards.get_total(stack.dbm, contest.id, 1)).rank == 1

    @pytest.mark.asyncio
    async def test_drift_rebuilds_from_ledger(self, stack):
        """Should trust the ledger when the durable totals disagree with it."""
        contest = await make_contest(stack.dbm)
        await make_match(stack.dbm, 1)
        await make_prediction(stack.dbm, 1, contest.id, 1, {"home_score": 2, "away_score": 1})
        await grade_all(stack, 1, 2, 1)
        async with stack.dbm.transaction() as session:
            await leaderboards.apply_delta(
                stack.dbm, session, contest_id=contest.id, user_id=1, delta=Decimal("5"), scored_at=None
            )

        with pytest.raises(InconsistentState) as exc:
            await stack.projection.verify(contest.id)
        assert exc.value.drifted == {1: {"ledger": "10.00", "durable": "15.00"}}

        report = await stack.projection.reconcile(contest.id)
        assert report.source == "ledger"
        assert report.drifted_users == 1
        assert (await leaderboards.get_total(stack.dbm, contest.id, 1)).total_points == Decimal("10.00")
        await stack.projection.verify(contest.id)
        assert await stack.cache.score(contest.id, 1) == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_cache_down(self, stack):
        contest = await make_contest(stack.dbm)
        await seed(stack, contest.id, [(1, "5.00", 1, T0)])
        stack.redis.down = True
        report = await stack.projection.reconcile(contest.id)
        assert report.hot_rebuilt is False
        assert contest.id in stack.projection.dirty


class TestRanks:
    @pytest.mark.asyncio
    async def test_lazy_mode_leaves_ranks_until_recompute(self, stack):
        contest = await make_contest(stack.dbm)
        await make_match(stack.dbm, 1)
        await make_prediction(stack.dbm, 1, contest.id, 1, {"home_score": 2, "away_score": 1})
        await make_prediction(stack.dbm, 2, contest.id, 1, {"home_score": 1, "away_score": 0})
        await grade_all(stack, 1, 2, 1)

        assert (await leaderboards.get_total(stack.dbm, contest.id, 1)).rank is None
        assert await stack.projection.recompute_ranks(contest.id) == 2
        assert (await leaderboards.get_total(stack.dbm, contest.id, 1)).rank == 1
        assert (await leaderboards.get_total(stack.dbm, contest.id, 2)).rank == 2

    @pytest.mark.asyncio
    async def test_eager_mode_writes_ranks(self, dbm, fake_redis):
        stack = Stack(dbm, fake_redis, rank_mode="eager")
        try:
            contest = await make_contest(dbm)
            await make_match(dbm, 1)
            await make_prediction(dbm, 1, contest.id, 1, {"home_score": 1, "away_score": 0})
            await make_prediction(dbm, 2, contest.id, 1, {"home_score": 2, "away_score": 1})
            await grade_all(stack, 1, 2, 1)
            assert (await leaderboards.get_total(dbm, contest.id, 2)).rank == 1
            assert (await leaderboards.get_total(dbm, contest.id, 1)).rank == 2
        finally:
            await stack.projection.close()

    @pytest.mark.asyncio
    async def test_rank_delta_reported(self, stack):
        """Should report places gained when a grade overtakes another user."""
        contest = await make_contest(stack.dbm)
        await seed(stack, contest.id, [(1, "4.00", 1, T0), (2, "8.00", 1, T0)])
        await make_match(stack.dbm, 1)
        await make_prediction(stack.dbm, 1, contest.id, 1, {"home_score": 2, "away_score": 1})
        [outcome] = await grade_all(stack, 1, 2, 1)
        assert outcome.update.old_rank == 2
        assert outcome.update.new_rank == 1
        assert outcome.update.rank_delta == 1
        assert outcome.update.new_total == Decimal("14.00")


class TestTeams:
    @pytest.mark.asyncio
    async def test_team_standings(self, stack):
        contest = await make_contest(stack.dbm, {"type": "relay"})
        for team_id, user_id in ((10, 1), (10, 2), (20, 3), (30, 4)):
            await contests.assign_team_member(stack.dbm, contest_id=contest.id, team_id=team_id, user_id=user_id)
        await seed(stack, contest.id, [(1, "5.00", 1, T0), (2, "3.00", 1, T0), (3, "8.00", 1, T0)])

        rows = await stack.projection.team_standings(contest.id)
        assert [(r["rank"], r["team_id"], r["total_points"], r["members"]) for r in rows] == [
            (1, 10, Decimal("8.00"), 2),
            (2, 20, Decimal("8.00"), 1),
            (3, 30, Decimal("0.00"), 1),
        ]
