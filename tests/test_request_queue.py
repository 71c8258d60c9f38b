"""Tests for the async request queue."""

import asyncio
import threading
import time

import pytest

from smartpromptiq.core.request_queue import (
    HIGH_LOAD_THRESHOLD,
    QueueJobError,
    QueueTimeoutError,
    RequestQueue,
    get_request_queue,
)


def _queue(**kwargs) -> RequestQueue:
    kwargs.setdefault("backoff_seconds", 0)
    return RequestQueue(**kwargs)


async def _settle() -> None:
    """Let freshly created tasks reach their wait point."""
    for _ in range(10):
        await asyncio.sleep(0)


class TestSubmit:
    """Tests for RequestQueue.submit."""

    @pytest.mark.asyncio
    async def test_coroutine_result(self):
        queue = _queue()

        async def job(x):
            return x * 2

        assert await queue.submit(job, 21) == 42
        assert queue.get_status()["completed"] == 1

    @pytest.mark.asyncio
    async def test_sync_callable_runs_in_thread(self):
        queue = _queue()
        assert await queue.submit(sum, [1, 2, 3]) == 6

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        queue = _queue(max_retries=3)
        calls = {"n": 0}

        async def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise RuntimeError("boom")
            return "ok"

        assert await queue.submit(flaky) == "ok"
        assert calls["n"] == 3
        assert queue.get_status()["retries"] == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_job_error(self):
        queue = _queue(max_retries=2)

        async def always_fails():
            raise ValueError("nope")

        with pytest.raises(QueueJobError) as exc_info:
            await queue.submit(always_fails)

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert queue.get_status()["failed"] == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        queue = _queue()

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(QueueTimeoutError) as exc_info:
            await queue.submit(slow, timeout=0.05)

        assert exc_info.value.code == "GENERATION_TIMEOUT"
        assert queue.get_status()["timed_out"] == 1
        assert queue.active_count == 0


class TestConcurrency:
    """Tests for the concurrency cap and ordering."""

    @pytest.mark.asyncio
    async def test_never_exceeds_cap(self):
        queue = _queue(max_concurrent=2)
        running = {"now": 0, "peak": 0}

        async def job():
            running["now"] += 1
            running["peak"] = max(running["peak"], running["now"])
            await asyncio.sleep(0.01)
            running["now"] -= 1

        await asyncio.gather(*(queue.submit(job) for _ in range(8)))

        assert running["peak"] == 2
        assert queue.get_status()["completed"] == 8

    @pytest.mark.asyncio
    async def test_timed_out_thread_keeps_its_slot(self):
        """A sync job that outlives its timeout still counts against the cap."""
        queue = _queue(max_concurrent=1)
        lock = threading.Lock()
        running = {"now": 0, "peak": 0}

        def blocking(seconds):
            with lock:
                running["now"] += 1
                running["peak"] = max(running["peak"], running["now"])
            time.sleep(seconds)
            with lock:
                running["now"] -= 1
            return seconds

        with pytest.raises(QueueTimeoutError):
            await queue.submit(blocking, 0.4, timeout=0.1)

        assert queue.active_count == 1
        assert await queue.submit(blocking, 0.01, timeout=5) == 0.01

        assert running["peak"] == 1
        assert queue.active_count == 0

    @pytest.mark.asyncio
    async def test_priority_then_fifo(self):
        queue = _queue(max_concurrent=1)
        order = []
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()

        async def job(name):
            order.append(name)

        first = asyncio.create_task(queue.submit(blocker))
        await _settle()
        tasks = [
            asyncio.create_task(queue.submit(job, "normal-1")),
            asyncio.create_task(queue.submit(job, "normal-2")),
            asyncio.create_task(queue.submit(job, "high", priority=1)),
        ]
        await _settle()
        assert queue.queue_length == 3

        gate.set()
        await asyncio.gather(first, *tasks)

        assert order == ["high", "normal-1", "normal-2"]

    @pytest.mark.asyncio
    async def test_raising_cap_starts_waiters(self):
        queue = _queue(max_concurrent=1)
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()

        tasks = [asyncio.create_task(queue.submit(blocker)) for _ in range(3)]
        await _settle()
        assert queue.active_count == 1
        assert queue.queue_length == 2

        queue.set_max_concurrent(3)
        assert queue.active_count == 3
        assert queue.queue_length == 0

        gate.set()
        await asyncio.gather(*tasks)


class TestStatus:
    """Tests for get_status and management."""

    def test_initial_status(self):
        status = _queue(max_concurrent=4).get_status()
        assert status == {
            "queue_length": 0,
            "active_count": 0,
            "max_concurrent": 4,
            "completed": 0,
            "failed": 0,
            "timed_out": 0,
            "retries": 0,
            "health": "healthy",
        }

    def test_high_load(self):
        queue = _queue()
        queue._active = HIGH_LOAD_THRESHOLD
        assert queue.get_status()["health"] == "high_load"

    def test_invalid_max_concurrent(self):
        with pytest.raises(ValueError):
            _queue().set_max_concurrent(0)
        with pytest.raises(ValueError):
            RequestQueue(max_concurrent=0)

    @pytest.mark.asyncio
    async def test_clear_stats(self):
        queue = _queue()

        async def job():
            return 1

        await queue.submit(job)
        queue.clear_stats()
        assert queue.get_status()["completed"] == 0

    def test_global_queue_from_config(self):
        queue = get_request_queue()
        assert queue.max_concurrent == 3
        assert queue.max_retries == 3
        assert get_request_queue() is queue
