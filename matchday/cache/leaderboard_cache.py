"""Hot leaderboard store: one Redis sorted set per contest.

Members are user ids; scores are total points in integer hundredths so
``ZINCRBY`` stays exact. Every call is bounded by ``op_timeout_sec``;
timeouts and Redis errors surface as ``Transient`` and count towards
``degraded``.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Dict, List, Mapping, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from matchday.config.core import CacheSettings
from matchday.scoring.determinism import from_cents, to_cents
from matchday.scoring.types import Transient

logger = logging.getLogger(__name__)


class LeaderboardCache:
    def __init__(self, client: Any, settings: CacheSettings | None = None):
        self.client = client
        self.settings = settings or CacheSettings()
        self.consecutive_failures = 0

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> "LeaderboardCache":
        client = Redis.from_url(
            settings.url,
            decode_responses=True,
            socket_connect_timeout=settings.connect_timeout_sec,
            socket_timeout=settings.op_timeout_sec,
        )
        return cls(client, settings)

    @property
    def degraded(self) -> bool:
        return self.consecutive_failures >= self.settings.max_consecutive_timeouts

    def key(self, contest_id: int) -> str:
        return self.settings.key_template.format(contest_id=contest_id)

    async def _run(self, op: str, awaitable: Awaitable[Any]) -> Any:
        try:
            result = await asyncio.wait_for(awaitable, timeout=self.settings.op_timeout_sec)
        except (asyncio.TimeoutError, RedisError, OSError) as e:
            self.consecutive_failures += 1
            logger.warning(
                "cache %s failed (%s consecutive): %s",
                op,
                self.consecutive_failures,
                e.__class__.__name__,
            )
            raise Transient(f"cache {op} failed: {e!r}") from e
        self.consecutive_failures = 0
        return result

    async def ping(self) -> bool:
        return bool(await self._run("ping", self.client.ping()))

    async def incr(self, contest_id: int, user_id: int, delta: Decimal) -> Decimal:
        """Add ``delta`` to the user's score (adding the member if absent); returns the new total."""
        new_score = await self._run(
            "zincrby",
            self.client.zincrby(self.key(contest_id), to_cents(delta), str(user_id)),
        )
        return from_cents(new_score)

    async def set_score(self, contest_id: int, user_id: int, total: Decimal) -> None:
        """Overwrite the user's score with an absolute total."""
        await self._run("zadd", self.client.zadd(self.key(contest_id), {str(user_id): to_cents(total)}))

    async def score(self, contest_id: int, user_id: int) -> Decimal | None:
        raw = await self._run("zscore", self.client.zscore(self.key(contest_id), str(user_id)))
        return None if raw is None else from_cents(raw)

    async def top(self, contest_id: int, n: int) -> List[Tuple[int, Decimal]]:
        """Top ``n`` members by descending score (``n <= 0`` means all)."""
        end = n - 1 if n > 0 else -1
        rows = await self._run(
            "zrevrange",
            self.client.zrevrange(self.key(contest_id), 0, end, withscores=True),
        )
        return [(int(member), from_cents(score)) for member, score in rows]

    async def count_above(self, contest_id: int, total: Decimal) -> int:
        """Members with a strictly higher score."""
        return int(
            await self._run(
                "zcount",
                self.client.zcount(self.key(contest_id), f"({to_cents(total)}", "+inf"),
            )
        )

    async def members_at(self, contest_id: int, total: Decimal) -> List[int]:
        cents = to_cents(total)
        members = await self._run(
            "zrangebyscore",
            self.client.zrangebyscore(self.key(contest_id), cents, cents),
        )
        return [int(m) for m in members]

    async def size(self, contest_id: int) -> int:
        return int(await self._run("zcard", self.client.zcard(self.key(contest_id))))

    async def replace(self, contest_id: int, totals: Mapping[int, Decimal]) -> None:
        """Atomically swap the sorted set for ``totals``."""
        key = self.key(contest_id)
        mapping: Dict[str, int] = {str(u): to_cents(t) for u, t in totals.items()}
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(key)
        if mapping:
            pipe.zadd(key, mapping)
        await self._run("replace", pipe.execute())

    async def drop(self, contest_id: int) -> None:
        await self._run("delete", self.client.delete(self.key(contest_id)))

    async def close(self) -> None:
        await self.client.aclose()


__all__ = ["LeaderboardCache"]
