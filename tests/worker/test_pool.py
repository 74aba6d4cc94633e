"""Tests for the grading worker pool."""

import asyncio

import pytest

from matchday.config.core import WorkerSettings
from matchday.scoring.types import InvalidInput, Transient
from matchday.worker.pool import TaskRef, WorkerPool, next_backoff_delay


def _settings(**overrides):
    values = dict(
        pool_size=2,
        queue_size=100,
        max_attempts=3,
        initial_backoff_sec=0,
        max_backoff_sec=0,
        requeue_delay_sec=0.01,
        shutdown_timeout_sec=2,
    )
    values.update(overrides)
    return WorkerSettings(**values)


class TestNextBackoffDelay:
    def test_doubles_with_cap(self):
        assert next_backoff_delay(0.25, factor=2.0, max_delay=5) == 0.5
        assert next_backoff_delay(4, factor=2.0, max_delay=5) == 5

    def test_zero_jumps_to_max(self):
        assert next_backoff_delay(0, factor=2.0, max_delay=5) == 5


class TestWorkerPool:
    @pytest.mark.asyncio
    async def test_processes_all(self):
        """Should hand every submitted task to the handler."""
        seen = []

        async def handler(task):
            seen.append(task.prediction_id)

        pool = WorkerPool(handler, _settings())
        pool.start()
        for pid in range(10):
            assert pool.submit(TaskRef(pid, 1))
        await pool.join()
        assert sorted(seen) == list(range(10))
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_transient_retried_in_place(self):
        calls = []

        async def handler(task):
            calls.append(task)
            if len(calls) < 3:
                raise Transient("db busy")

        pool = WorkerPool(handler, _settings())
        pool.start()
        pool.submit(TaskRef(1, 1))
        await pool.join()
        assert len(calls) == 3
        assert all(c.rounds == 0 for c in calls)
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_requeued_after_max_attempts(self):
        """Should send a still-failing task to the queue tail with a round count."""
        calls = []
        requeued = []

        async def handler(task):
            calls.append(task)
            if task.rounds == 0:
                raise Transient("cache down")

        async def on_requeue(task, error, delay):
            requeued.append((task, delay))

        pool = WorkerPool(handler, _settings(), on_requeue=on_requeue)
        pool.start()
        pool.submit(TaskRef(1, 1))
        await pool.join()
        assert [c.rounds for c in calls] == [0, 0, 0, 1]
        assert requeued == [(TaskRef(1, 1), 0.01)]
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_input_dead_lettered(self):
        dead = []

        async def handler(task):
            raise InvalidInput("bad payload")

        async def on_dead_letter(task, error):
            dead.append((task.prediction_id, type(error)))

        pool = WorkerPool(handler, _settings(), on_dead_letter=on_dead_letter)
        pool.start()
        pool.submit(TaskRef(4, 1))
        await pool.join()
        assert dead == [(4, InvalidInput)]
        assert pool.dead_lettered == 1
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_unexpected_error_dead_lettered(self):
        async def handler(task):
            raise RuntimeError("boom")

        pool = WorkerPool(handler, _settings())
        pool.start()
        pool.submit(TaskRef(1, 1))
        await pool.join()
        assert pool.dead_lettered == 1
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        """Should drop the oldest queued task when saturated."""
        pool = WorkerPool(lambda task: asyncio.sleep(0), _settings(pool_size=1, queue_size=100))
        pool._accepting = True
        for pid in range(101):
            pool.submit(TaskRef(pid, 1))
        assert pool.qsize() == 100
        assert pool.dropped == 1
        assert pool._queue[0].prediction_id == 1

    @pytest.mark.asyncio
    async def test_rejects_after_shutdown(self):
        async def handler(task):
            pass

        pool = WorkerPool(handler, _settings())
        pool.start()
        await pool.shutdown()
        assert not pool.accepting
        assert pool.submit(TaskRef(1, 1)) is False

    @pytest.mark.asyncio
    async def test_shutdown_drains_in_flight(self):
        """Should let queued and running tasks finish before stopping."""
        done = []

        async def handler(task):
            await asyncio.sleep(0.01)
            done.append(task.prediction_id)

        pool = WorkerPool(handler, _settings(pool_size=1))
        pool.start()
        for pid in range(3):
            pool.submit(TaskRef(pid, 1))
        await pool.shutdown()
        assert done == [0, 1, 2]
        assert all(slot.task.done() for slot in pool.workers)


class TestWorkerSettings:
    def test_queue_floor(self):
        """Should require queue_size >= max(100, 20 * pool_size)."""
        with pytest.raises(ValueError):
            WorkerSettings(pool_size=10, queue_size=150)
        assert WorkerSettings(pool_size=10, queue_size=200).queue_size == 200
