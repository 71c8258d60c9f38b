"""In-process generation request queue.

A bounded worker pool over asyncio. Jobs wait in a priority heap (lower
number first, FIFO within a priority) until one of max_concurrent slots
frees up. Failing jobs are retried with exponential backoff.

Usage:
    queue = get_request_queue()
    result = await queue.submit(generate, request, priority=1, timeout=30)
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import time
from typing import Any, Callable

import structlog

from smartpromptiq.config.app_config import load_app_config

logger = structlog.get_logger(__name__)

# Priority used by the generation routes
PRIORITY_NORMAL = 5

# Queued + active jobs at which the queue reports high load
HIGH_LOAD_THRESHOLD = 100


class QueueError(Exception):
    """Error in the request queue."""

    pass


class QueueJobError(QueueError):
    """A job failed on every attempt."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class QueueTimeoutError(QueueError):
    """A job did not finish in time."""

    code = "GENERATION_TIMEOUT"


class RequestQueue:
    """Priority queue with a concurrency cap, retries and timeouts."""

    def __init__(
        self,
        max_concurrent: int = 3,
        max_retries: int = 3,
        backoff_seconds: float = 2.0,
        default_timeout: float | None = 30.0,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        self.max_concurrent = max_concurrent
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.default_timeout = default_timeout

        self._waiting: list[tuple[int, int, asyncio.Future]] = []
        self._counter = itertools.count()
        self._active = 0
        self._completed = 0
        self._failed = 0
        self._timed_out = 0
        self._retries = 0

    # -------------------------------------------------------------------------
    # Slots
    # -------------------------------------------------------------------------

    def _dispatch(self) -> None:
        """Hand free slots to the highest-priority waiters."""
        while self._waiting and self._active < self.max_concurrent:
            _, _, waiter = heapq.heappop(self._waiting)
            if waiter.done():
                continue
            self._active += 1
            waiter.set_result(True)

    def _release(self) -> None:
        self._active -= 1
        self._dispatch()

    def _release_abandoned(self, job: asyncio.Future) -> None:
        """Free the slot held by a worker thread whose caller gave up."""
        if not job.cancelled() and job.exception() is not None:
            logger.warning("queue_abandoned_job_failed", error=str(job.exception()))
        logger.debug("queue_abandoned_job_finished")
        self._release()

    async def _acquire(self, priority: int) -> None:
        waiter = asyncio.get_running_loop().create_future()
        heapq.heappush(self._waiting, (priority, next(self._counter), waiter))
        self._dispatch()
        try:
            await waiter
        except asyncio.CancelledError:
            # Granted a slot just before cancellation
            if waiter.done() and not waiter.cancelled():
                self._release()
            raise

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    async def _call(self, func: Callable[..., Any], args: tuple) -> Any:
        if inspect.iscoroutinefunction(func):
            return await func(*args)
        thread_job = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            result = await asyncio.shield(thread_job)
        except asyncio.CancelledError:
            # Threads can't be interrupted: the slot stays taken until it returns
            self._active += 1
            thread_job.add_done_callback(self._release_abandoned)
            raise
        if inspect.isawaitable(result):
            return await result
        return result

    async def _execute(self, func: Callable[..., Any], args: tuple) -> Any:
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                result = await self._call(func, args)
            except Exception as e:
                last_error = e
                logger.warning(
                    "queue_job_attempt_failed",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=str(e),
                )
                if attempt < self.max_retries:
                    self._retries += 1
                    await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))
                continue

            self._completed += 1
            return result

        self._failed += 1
        logger.error("queue_job_failed", attempts=self.max_retries, error=str(last_error))
        raise QueueJobError(
            f"Job failed after {self.max_retries} attempts: {last_error}",
            attempts=self.max_retries,
        ) from last_error

    async def _run(self, func: Callable[..., Any], args: tuple, priority: int) -> Any:
        await self._acquire(priority)
        try:
            return await self._execute(func, args)
        finally:
            self._release()

    async def submit(
        self,
        func: Callable[..., Any],
        *args: Any,
        priority: int = PRIORITY_NORMAL,
        timeout: float | None = None,
    ) -> Any:
        """Queue a job and wait for its result.

        Coroutine functions are awaited on the event loop; plain callables
        run in a worker thread.

        Args:
            func: Job callable
            *args: Arguments for func
            priority: Lower runs first
            timeout: Seconds for queueing plus execution (default from config)

        Returns:
            The job's return value

        Raises:
            QueueJobError: If every attempt failed
            QueueTimeoutError: If the job did not finish in time
        """
        if timeout is None:
            timeout = self.default_timeout

        start = time.monotonic()
        try:
            result = await asyncio.wait_for(self._run(func, args, priority), timeout)
        except asyncio.TimeoutError:
            self._timed_out += 1
            logger.warning("queue_job_timeout", timeout=timeout, priority=priority)
            raise QueueTimeoutError(
                f"Generation request timed out after {timeout}s"
            ) from None

        logger.debug(
            "queue_job_completed",
            priority=priority,
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )
        return result

    # -------------------------------------------------------------------------
    # Management
    # -------------------------------------------------------------------------

    @property
    def queue_length(self) -> int:
        return sum(1 for _, _, waiter in self._waiting if not waiter.done())

    @property
    def active_count(self) -> int:
        return self._active

    def get_status(self) -> dict[str, Any]:
        """Current queue load and counters."""
        waiting = self.queue_length
        return {
            "queue_length": waiting,
            "active_count": self._active,
            "max_concurrent": self.max_concurrent,
            "completed": self._completed,
            "failed": self._failed,
            "timed_out": self._timed_out,
            "retries": self._retries,
            "health": "healthy" if waiting + self._active < HIGH_LOAD_THRESHOLD else "high_load",
        }

    def set_max_concurrent(self, max_concurrent: int) -> None:
        """Change the concurrency cap. Raising it starts waiting jobs now."""
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        old = self.max_concurrent
        self.max_concurrent = max_concurrent
        logger.info("queue_max_concurrent_updated", old=old, new=max_concurrent)
        self._dispatch()

    def clear_stats(self) -> None:
        """Reset completed/failed/timeout counters."""
        self._completed = 0
        self._failed = 0
        self._timed_out = 0
        self._retries = 0


# Global queue instance
_request_queue: RequestQueue | None = None


def get_request_queue() -> RequestQueue:
    """Get the global request queue, configured from app config."""
    global _request_queue
    if _request_queue is None:
        config = load_app_config().queue
        _request_queue = RequestQueue(
            max_concurrent=config.max_concurrent,
            max_retries=config.max_retries,
            backoff_seconds=config.backoff_seconds,
            default_timeout=config.timeout_seconds,
        )
    return _request_queue


def reset_request_queue() -> None:
    """Reset the global queue (for testing)."""
    global _request_queue
    _request_queue = None
