"""Shared fixtures: a sqlite database per test, an in-memory sorted-set
store standing in for Redis, and factories for contests, matches and
predictions."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

os.environ.setdefault("MATCHDAY_TEST_MODE", "true")

from matchday.cache import LeaderboardCache  # noqa: E402
from matchday.config.core import CacheSettings, LeaderboardSettings  # noqa: E402
from matchday.database import DBM, create_all  # noqa: E402
from matchday.database.repository import contests, predictions, tasks  # noqa: E402
from matchday.events import MemoryEventSink  # noqa: E402
from matchday.handlers.grade.coordinator import GradingCoordinator  # noqa: E402
from matchday.handlers.ingest.result_ingress import ResultIngress  # noqa: E402
from matchday.handlers.leaderboard.projection import LeaderboardProjection  # noqa: E402
from matchday.scoring.audit import ScoringAuditLogger  # noqa: E402
from matchday.scoring.rules import parse_rules  # noqa: E402
from matchday.shared.enums import ContestStatus, MatchStatus, PredictionStatus, TaskStatus  # noqa: E402
from matchday.worker.pool import TaskRef  # noqa: E402


UTC = timezone.utc
CONTEST_START = datetime(2024, 1, 1, tzinfo=UTC)
CONTEST_END = datetime(2024, 12, 31, 23, 59, tzinfo=UTC)
KICKOFF = datetime(2024, 6, 8, 18, 0, tzinfo=UTC)
FINAL_WHISTLE = KICKOFF + timedelta(hours=2)


class FakeRedis:
    """Sorted sets, ``delete`` and transactional pipelines in memory.

    Scores come back as floats the way redis-py returns them with
    ``decode_responses=True``. Set ``down`` to make every command fail, or
    ``fail_next[op]`` to fail the next few calls of one command.
    """

    def __init__(self) -> None:
        self.sets: Dict[str, Dict[str, float]] = {}
        self.down = False
        self.closed = False
        self.calls: List[str] = []
        # op name -> number of upcoming calls that fail
        self.fail_next: Dict[str, int] = {}

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if self.down:
            raise RedisConnectionError("connection refused")
        if self.fail_next.get(op):
            self.fail_next[op] -= 1
            raise RedisConnectionError(f"{op} dropped")

    async def ping(self) -> bool:
        self._check("ping")
        return True

    async def zincrby(self, key: str, amount: float, member: str) -> float:
        self._check("zincrby")
        zset = self.sets.setdefault(key, {})
        zset[member] = zset.get(member, 0.0) + float(amount)
        return zset[member]

    async def zscore(self, key: str, member: str) -> float | None:
        self._check("zscore")
        return self.sets.get(key, {}).get(member)

    def _desc(self, key: str) -> List[Tuple[str, float]]:
        return sorted(self.sets.get(key, {}).items(), key=lambda kv: (-kv[1], kv[0]))

    async def zrevrange(self, key: str, start: int, end: int, withscores: bool = False):
        self._check("zrevrange")
        rows = self._desc(key)
        rows = rows[start:] if end == -1 else rows[start:end + 1]
        return rows if withscores else [m for m, _ in rows]

    @staticmethod
    def _bound(raw: Any) -> Tuple[float, bool]:
        text = str(raw)
        if text == "+inf":
            return float("inf"), False
        if text == "-inf":
            return float("-inf"), False
        if text.startswith("("):
            return float(text[1:]), True
        return float(text), False

    def _in_range(self, key: str, low: Any, high: Any) -> List[Tuple[str, float]]:
        lo, lo_open = self._bound(low)
        hi, hi_open = self._bound(high)
        out = []
        for member, score in sorted(self.sets.get(key, {}).items(), key=lambda kv: (kv[1], kv[0])):
            if score < lo or (lo_open and score == lo):
                continue
            if score > hi or (hi_open and score == hi):
                continue
            out.append((member, score))
        return out

    async def zcount(self, key: str, low: Any, high: Any) -> int:
        self._check("zcount")
        return len(self._in_range(key, low, high))

    async def zrangebyscore(self, key: str, low: Any, high: Any) -> List[str]:
        self._check("zrangebyscore")
        return [m for m, _ in self._in_range(key, low, high)]

    async def zcard(self, key: str) -> int:
        self._check("zcard")
        return len(self.sets.get(key, {}))

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        self._check("zadd")
        zset = self.sets.setdefault(key, {})
        added = sum(1 for m in mapping if m not in zset)
        zset.update({m: float(s) for m, s in mapping.items()})
        return added

    async def delete(self, key: str) -> int:
        self._check("delete")
        return 1 if self.sets.pop(key, None) is not None else 0

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def aclose(self) -> None:
        self.closed = True


class FakePipeline:
    def __init__(self, client: FakeRedis) -> None:
        self.client = client
        self.ops: List[Tuple[str, tuple]] = []

    def delete(self, key: str) -> "FakePipeline":
        self.ops.append(("delete", (key,)))
        return self

    def zadd(self, key: str, mapping: Dict[str, float]) -> "FakePipeline":
        self.ops.append(("zadd", (key, dict(mapping))))
        return self

    async def execute(self) -> List[Any]:
        self.client._check("exec")
        results = []
        for op, args in self.ops:
            if op == "delete":
                results.append(1 if self.client.sets.pop(args[0], None) is not None else 0)
            else:
                key, mapping = args
                self.client.sets.setdefault(key, {}).update({m: float(s) for m, s in mapping.items()})
                results.append(len(mapping))
        self.ops.clear()
        return results


class Stack:
    """Projection, coordinator and ingress wired to one database and one fake Redis."""

    def __init__(self, dbm: DBM, redis: FakeRedis, rank_mode: str = "lazy"):
        self.dbm = dbm
        self.redis = redis
        self.cache = LeaderboardCache(redis, CacheSettings(op_timeout_sec=1.0))
        self.sink = MemoryEventSink()
        self.audit = ScoringAuditLogger()
        self.projection = LeaderboardProjection(
            dbm,
            self.cache,
            LeaderboardSettings(rank_mode=rank_mode, rebuild_delay_sec=0),
            audit=self.audit,
        )
        self.coordinator = GradingCoordinator(dbm, self.projection, self.sink, audit=self.audit)
        self.ingress = ResultIngress(dbm)


@pytest_asyncio.fixture
async def dbm(tmp_path):
    manager = DBM(url=f"sqlite+aiosqlite:///{tmp_path / 'matchday.db'}")
    await create_all(manager)
    yield manager
    await manager.dispose()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def stack(dbm, fake_redis):
    s = Stack(dbm, fake_redis)
    yield s
    await s.projection.close()


async def make_contest(
    dbm: DBM,
    rules: Any = None,
    *,
    title: str = "Euro 2024",
    status: ContestStatus = ContestStatus.ACTIVE,
    starts_at: datetime = CONTEST_START,
    ends_at: datetime = CONTEST_END,
):
    return await contests.insert_contest(
        dbm,
        title=title,
        starts_at=starts_at,
        ends_at=ends_at,
        rules=parse_rules(rules),
        status=status,
    )


async def make_match(
    dbm: DBM,
    match_id: int,
    *,
    start_at: datetime = KICKOFF,
    sport: str = "football",
    league_id: int | None = None,
    league_name: str | None = None,
) -> int:
    await contests.upsert_match(
        dbm,
        match_id=match_id,
        start_at=start_at,
        sport=sport,
        league_id=league_id,
        league_name=league_name,
        home_team="Home",
        away_team="Away",
    )
    return match_id


async def make_prediction(
    dbm: DBM,
    user_id: int,
    contest_id: int,
    match_id: int,
    payload: Dict[str, Any],
    *,
    submitted_at: datetime | None = None,
    prediction_type: str = "score",
) -> int:
    """Store a prediction directly, bypassing intake checks."""
    return await predictions.upsert_prediction(
        dbm,
        user_id=user_id,
        contest_id=contest_id,
        match_id=match_id,
        payload=payload,
        prediction_type=prediction_type,
        submitted_at=submitted_at or KICKOFF - timedelta(hours=200),
        status=PredictionStatus.PENDING,
    )


async def grade_all(stack: Stack, match_id: int, home: int, away: int, **kwargs):
    """Finalize a match and run every published task through the coordinator."""
    status = kwargs.pop("status", MatchStatus.COMPLETED)
    finalized_at = kwargs.pop("finalized_at", FINAL_WHISTLE)
    await stack.ingress.finalize_match(match_id, home, away, finalized_at, status=status, **kwargs)
    outcomes = []
    for pid in await tasks.prediction_ids_for_match(stack.dbm, match_id, [TaskStatus.PENDING]):
        outcomes.append(await stack.coordinator.grade(TaskRef(pid, match_id)))
    return outcomes
