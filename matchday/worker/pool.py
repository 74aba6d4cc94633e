"""Grading worker pool.

N asyncio workers drain a bounded in-memory queue of grading tasks.
The queue is a view over the durable ``grading_tasks`` table: a task
dropped from memory stays pending on disk and is re-published by
recovery.

Failure policy per task:
- ``Transient``: retried in place with capped exponential backoff; after
  ``max_attempts`` the task goes back to the queue tail after a delay
  that grows with each round.
- ``InvalidInput`` / ``InvalidRules``: dead-lettered (administrator alert).
- anything else: logged with traceback and dead-lettered.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Deque, List, Optional

from matchday.config.core import WorkerSettings
from matchday.scoring.types import InvalidInput, InvalidRules, Transient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskRef:
    """A queued grading task; ``rounds`` counts trips back to the queue tail."""

    prediction_id: int
    match_id: int
    rounds: int = 0


Handler = Callable[[TaskRef], Awaitable[Any]]
DeadLetterHook = Callable[[TaskRef, BaseException], Awaitable[None]]
RequeueHook = Callable[[TaskRef, BaseException, float], Awaitable[None]]


def next_backoff_delay(current: float, *, factor: float, max_delay: float) -> float:
    """Compute next backoff delay with a cap."""
    if current <= 0:
        return max_delay
    return min(max_delay, current * factor)


@dataclass
class WorkerSlot:
    """Tracking info for a worker task slot."""
    worker_id: str
    task: Optional[asyncio.Task] = None
    processed: int = 0


class WorkerPool:
    """Bounded queue + fixed set of asyncio workers.

    Saturation drops the OLDEST queued task so fresh work keeps flowing.
    """

    def __init__(
        self,
        handler: Handler,
        settings: WorkerSettings | None = None,
        *,
        on_dead_letter: DeadLetterHook | None = None,
        on_requeue: RequeueHook | None = None,
    ):
        self.handler = handler
        self.settings = settings or WorkerSettings()
        self.on_dead_letter = on_dead_letter
        self.on_requeue = on_requeue

        self._queue: Deque[TaskRef] = deque()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._in_flight = 0
        self._delayed: set[asyncio.TimerHandle] = set()
        self._accepting = False
        self._running = False
        self.workers: List[WorkerSlot] = [
            WorkerSlot(worker_id=f"grader-{i}") for i in range(self.settings.pool_size)
        ]
        self.dropped = 0
        self.dead_lettered = 0

    # ── queue ───────────────────────────────────────────────────────────────

    @property
    def accepting(self) -> bool:
        return self._accepting

    def qsize(self) -> int:
        return len(self._queue)

    def submit(self, task: TaskRef) -> bool:
        """Enqueue a task. Returns False once shutdown has begun."""
        if not self._accepting:
            logger.debug("Pool not accepting; task for prediction %s stays durable", task.prediction_id)
            return False
        if len(self._queue) >= self.settings.queue_size:
            oldest = self._queue.popleft()
            self.dropped += 1
            logger.warning(
                "Grading queue full (%d); dropped oldest task for prediction %s",
                self.settings.queue_size,
                oldest.prediction_id,
            )
        self._queue.append(task)
        self._idle.clear()
        self._wakeup.set()
        return True

    def _submit_later(self, task: TaskRef, delay: float) -> None:
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def fire() -> None:
            self._delayed.discard(handle)
            if not self.submit(task):
                self._maybe_idle()

        handle = loop.call_later(delay, fire)
        self._delayed.add(handle)
        self._idle.clear()

    def _maybe_idle(self) -> None:
        if not self._queue and self._in_flight == 0 and not self._delayed:
            self._idle.set()

    # ── lifecycle ───────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._accepting = True
        for slot in self.workers:
            slot.task = asyncio.create_task(self._worker(slot), name=slot.worker_id)
        logger.info("Started %d grading workers (queue_size=%d)", len(self.workers), self.settings.queue_size)

    async def join(self) -> None:
        """Wait until the queue is empty, nothing is in flight and no retry is scheduled."""
        await self._idle.wait()

    async def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting, drain queued and in-flight work, then stop workers.

        Scheduled re-queues are cancelled; those tasks remain pending in the
        durable table.
        """
        timeout = self.settings.shutdown_timeout_sec if timeout is None else timeout
        self._accepting = False
        for handle in list(self._delayed):
            handle.cancel()
        self._delayed.clear()
        self._maybe_idle()

        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Grading pool drain timed out after %.1fs (%d queued, %d in flight)",
                timeout,
                len(self._queue),
                self._in_flight,
            )

        self._running = False
        self._wakeup.set()
        tasks = [slot.task for slot in self.workers if slot.task is not None]
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Grading pool stopped (dropped=%d, dead_lettered=%d)", self.dropped, self.dead_lettered)

    # ── workers ─────────────────────────────────────────────────────────────

    async def _worker(self, slot: WorkerSlot) -> None:
        while True:
            if not self._queue:
                if not self._running:
                    return
                self._wakeup.clear()
                await self._wakeup.wait()
                continue
            task = self._queue.popleft()
            self._in_flight += 1
            try:
                await self._run(task)
                slot.processed += 1
            finally:
                self._in_flight -= 1
                self._maybe_idle()

    async def _run(self, task: TaskRef) -> None:
        delay = self.settings.initial_backoff_sec
        attempt = 0
        while True:
            attempt += 1
            try:
                await self.handler(task)
                return
            except Transient as e:
                if attempt < self.settings.max_attempts:
                    logger.info(
                        "Transient failure grading prediction %s (attempt %d/%d): %s",
                        task.prediction_id,
                        attempt,
                        self.settings.max_attempts,
                        e,
                    )
                    await asyncio.sleep(delay)
                    delay = next_backoff_delay(delay, factor=2.0, max_delay=self.settings.max_backoff_sec)
                    continue
                await self._requeue(task, e)
                return
            except (InvalidInput, InvalidRules) as e:
                await self._dead_letter(task, e)
                return
            except Exception as e:
                logger.exception("Unexpected error grading prediction %s", task.prediction_id)
                await self._dead_letter(task, e)
                return

    async def _requeue(self, task: TaskRef, error: BaseException) -> None:
        rounds = task.rounds + 1
        requeue_delay = self.settings.requeue_delay_sec * (2 ** (rounds - 1))
        logger.warning(
            "Prediction %s still failing after %d attempts; re-queued in %.1fs",
            task.prediction_id,
            self.settings.max_attempts,
            requeue_delay,
        )
        if self.on_requeue is not None:
            await self.on_requeue(task, error, requeue_delay)
        if self._accepting:
            self._submit_later(replace(task, rounds=rounds), requeue_delay)

    async def _dead_letter(self, task: TaskRef, error: BaseException) -> None:
        self.dead_lettered += 1
        logger.error(
            "Dead-lettered grading task for prediction %s: %s: %s",
            task.prediction_id,
            error.__class__.__name__,
            error,
        )
        if self.on_dead_letter is not None:
            await self.on_dead_letter(task, error)


__all__ = ["TaskRef", "WorkerSlot", "WorkerPool", "next_backoff_delay"]
