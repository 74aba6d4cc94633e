"""Tests for keyed and read/write locks."""

import asyncio

import pytest

from matchday.worker.locks import KeyedLock, KeyedReadWriteLock, ReadWriteLock


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_serialises_same_key(self):
        """Should run holders of one key one at a time."""
        lock = KeyedLock()
        order = []

        async def worker(name):
            async with lock.hold(("u", 1)):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_different_keys_overlap(self):
        lock = KeyedLock()
        inside = asyncio.Event()
        release = asyncio.Event()

        async def first():
            async with lock.hold(1):
                inside.set()
                await release.wait()

        task = asyncio.create_task(first())
        await inside.wait()
        async with lock.hold(2):
            assert lock.locked(1)
        release.set()
        await task

    @pytest.mark.asyncio
    async def test_entries_released(self):
        """Should drop a key's lock once no one holds it."""
        lock = KeyedLock()
        async with lock.hold("k"):
            assert len(lock) == 1
        assert len(lock) == 0
        assert not lock.locked("k")


class TestReadWriteLock:
    @pytest.mark.asyncio
    async def test_readers_share(self):
        rw = ReadWriteLock()
        active = 0
        peak = 0

        async def reader():
            nonlocal active, peak
            async with rw.read():
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(reader() for _ in range(3)))
        assert peak == 3

    @pytest.mark.asyncio
    async def test_writer_excludes_readers(self):
        rw = ReadWriteLock()
        log = []

        async def writer():
            async with rw.write():
                log.append("w-in")
                await asyncio.sleep(0.02)
                log.append("w-out")

        async def reader():
            await asyncio.sleep(0.005)
            async with rw.read():
                log.append("r")

        await asyncio.gather(writer(), reader())
        assert log == ["w-in", "w-out", "r"]

    @pytest.mark.asyncio
    async def test_waiting_writer_blocks_new_readers(self):
        """Should let a queued writer go before readers that arrive after it."""
        rw = ReadWriteLock()
        log = []
        first_in = asyncio.Event()

        async def long_reader():
            async with rw.read():
                first_in.set()
                await asyncio.sleep(0.02)
                log.append("r1")

        async def writer():
            await first_in.wait()
            async with rw.write():
                log.append("w")

        async def late_reader():
            await first_in.wait()
            await asyncio.sleep(0.005)
            async with rw.read():
                log.append("r2")

        await asyncio.gather(long_reader(), writer(), late_reader())
        assert log == ["r1", "w", "r2"]

    @pytest.mark.asyncio
    async def test_cancelled_writer_unblocks_readers(self):
        rw = ReadWriteLock()
        first_in = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with rw.read():
                first_in.set()
                await release.wait()

        async def writer():
            async with rw.write():
                pass

        hold = asyncio.create_task(holder())
        await first_in.wait()
        w = asyncio.create_task(writer())
        await asyncio.sleep(0)
        w.cancel()
        with pytest.raises(asyncio.CancelledError):
            await w
        async with rw.read():
            pass
        release.set()
        await hold


class TestKeyedReadWriteLock:
    def test_one_lock_per_key(self):
        locks = KeyedReadWriteLock()
        assert locks[1] is locks[1]
        assert locks[1] is not locks[2]
