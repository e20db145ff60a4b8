# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Queue worker: runs a job handler with bounded concurrency and retries.

The worker owns the retry policy so handlers stay straight-line:

- handler returns: job ``completed``;
- :class:`RetryableJobError`: job rescheduled after ``2 ** attempts_made``
  seconds (times ``backoff_base``) until it runs out of attempts, then
  ``failed`` and ``on_exhausted`` is awaited;
- :class:`UnrecoverableJobError`: job ``failed`` immediately;
- anything else: logged with traceback, job ``failed``.

A global limiter bounds job starts per time window across every sender.
Jobs over the limit wait for the next window instead of being rejected.

Jobs left active by a dead worker are taken back once their lease expires:
on :meth:`QueueWorker.start` and then every ``recovery_interval`` seconds.

Example:
    Registering a handler::

        worker = QueueWorker(
            queue,
            consumer.process,
            concurrency=10,
            limiter=LimiterConfig(max=80, duration_ms=1000),
            on_exhausted=consumer.on_exhausted,
        )
        await worker.start()
        ...
        await worker.stop()
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .errors import RetryableJobError, UnrecoverableJobError
from .logger import get_logger
from .queue import JobQueue, QueuedJob
from .rate_limit import RateLimiter

Handler = Callable[[QueuedJob], Awaitable[Any]]
ExhaustedHook = Callable[[QueuedJob, RetryableJobError], Awaitable[None]]

GLOBAL_LIMITER_KEY = "__global__"


@dataclass(frozen=True)
class LimiterConfig:
    """At most ``max`` job starts per ``duration_ms`` milliseconds."""

    max: int = 80
    duration_ms: int = 1000


def backoff_delay(attempts_made: int, base: float = 1.0) -> float:
    """Exponential backoff in seconds: 1, 2, 4, 8... for base 1."""
    return base * (2 ** max(0, int(attempts_made)))


class GlobalLimiter:
    """Blocking wrapper over a single-key :class:`RateLimiter`."""

    def __init__(self, config: LimiterConfig, clock: Callable[[], float] | None = None):
        self.config = config
        self._limiter = RateLimiter(max_calls=config.max, window_ms=config.duration_ms, clock=clock)

    async def acquire(self) -> None:
        """Wait until a start is admitted in the current or a later window."""
        while not await self._limiter.admit(GLOBAL_LIMITER_KEY):
            await asyncio.sleep(max(self._limiter.seconds_until_reset(GLOBAL_LIMITER_KEY), 0.001))


class QueueWorker:
    """Background dispatcher for one :class:`JobQueue`."""

    def __init__(
        self,
        queue: JobQueue,
        handler: Handler,
        *,
        concurrency: int = 10,
        limiter: LimiterConfig | None = None,
        max_attempts: int | None = None,
        on_exhausted: ExhaustedHook | None = None,
        poll_interval: float = 0.5,
        backoff_base: float = 1.0,
        shutdown_timeout: float = 30.0,
        recovery_interval: float | None = None,
        metrics=None,
        logger=None,
    ):
        """Initialize the worker.

        Args:
            queue: Queue to claim jobs from.
            handler: Coroutine function run once per attempt.
            concurrency: Maximum attempts running at once.
            limiter: Global start limiter; ``LimiterConfig()`` when omitted.
            max_attempts: Optional cap on attempts, applied on top of the
                value stored with each job.
            on_exhausted: Awaited when a retryable failure hits the cap.
            poll_interval: Seconds to sleep when no job is ready.
            backoff_base: Multiplier of the exponential retry delay.
            shutdown_timeout: Seconds :meth:`stop` waits for running attempts.
            recovery_interval: Seconds between sweeps for expired leases;
                half the queue lease when omitted.
            metrics: Optional object with ``set_in_flight(int)``.
            logger: Logger; ``get_logger("QueueWorker")`` by default.
        """
        if int(concurrency) < 1:
            raise ValueError("concurrency must be at least 1")
        if max_attempts is not None and int(max_attempts) < 1:
            raise ValueError("max_attempts must be at least 1")
        self.queue = queue
        self.handler = handler
        self.concurrency = int(concurrency)
        self.limiter = GlobalLimiter(limiter or LimiterConfig())
        self.max_attempts = int(max_attempts) if max_attempts is not None else None
        self.on_exhausted = on_exhausted
        self.poll_interval = float(poll_interval)
        self.backoff_base = float(backoff_base)
        self.shutdown_timeout = float(shutdown_timeout)
        self.recovery_interval = float(recovery_interval) if recovery_interval is not None else None
        self.metrics = metrics
        self.logger = logger or get_logger("QueueWorker")

        self._stop = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()
        self._next_recovery = 0.0

    # ----------------------------------------------------------------- lifecycle
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self) -> None:
        """Recover stalled jobs and start the dispatch loop."""
        if self.running:
            return
        self._stop.clear()
        await self._recover_stalled()
        self._task = asyncio.create_task(self._dispatch_loop(), name=f"queue-dispatch-{self.queue.name}")
        self.logger.info(
            "Queue worker started on '%s' (concurrency=%d, limiter=%d/%dms)",
            self.queue.name,
            self.concurrency,
            self.limiter.config.max,
            self.limiter.config.duration_ms,
        )

    async def stop(self) -> None:
        """Stop claiming, then wait for running attempts up to ``shutdown_timeout``.

        Attempts still running at the deadline are cancelled and their jobs
        released back to ``waiting`` without counting an attempt.
        """
        self._stop.set()
        self._wake_event.set()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._in_flight:
            self.logger.info("Waiting for %d in-flight job(s)", len(self._in_flight))
            _, pending = await asyncio.wait(set(self._in_flight), timeout=self.shutdown_timeout)
            if pending:
                self.logger.warning(
                    "Cancelling %d job(s) still running after %.1fs", len(pending), self.shutdown_timeout
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        self.logger.info("Queue worker stopped on '%s'", self.queue.name)

    def wake(self) -> None:
        """Skip the current idle wait, e.g. right after an enqueue."""
        self._wake_event.set()

    async def drain(self) -> None:
        """Process jobs until none is ready and none is running.

        Runs in the caller's task instead of the background loop; used by
        one-shot runs and tests.
        """
        while True:
            progressed = await self._dispatch_cycle()
            while self._in_flight:
                await asyncio.wait(set(self._in_flight))
                progressed = True
            if not progressed:
                return

    # ------------------------------------------------------------ dispatching
    async def _dispatch_loop(self) -> None:
        self.logger.debug("Dispatch loop started")
        while not self._stop.is_set():
            try:
                if asyncio.get_running_loop().time() >= self._next_recovery:
                    await self._recover_stalled()
                progressed = await self._dispatch_cycle()
            except Exception as exc:  # pragma: no cover - defensive
                self.logger.exception("Unhandled error in dispatch loop: %s", exc)
                progressed = False
            if not progressed:
                await self._wait_for_wakeup(self.poll_interval)

    async def _dispatch_cycle(self) -> bool:
        """Claim jobs for the free slots and spawn their attempts.

        Returns:
            True if the loop should run again without idling.
        """
        capacity = self.concurrency - len(self._in_flight)
        if capacity <= 0:
            await asyncio.wait(set(self._in_flight), return_when=asyncio.FIRST_COMPLETED)
            return True
        jobs = await self.queue.claim(capacity)
        for job in jobs:
            if self.max_attempts is not None:
                job.max_attempts = min(job.max_attempts, self.max_attempts)
            task = asyncio.create_task(self._run_job(job), name=f"job-{job.id}")
            self._in_flight.add(task)
            task.add_done_callback(self._on_task_done)
        self._report_in_flight()
        return bool(jobs)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        self._report_in_flight()
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Job task %s crashed: %s", task.get_name(), exc, exc_info=exc)

    def _report_in_flight(self) -> None:
        if self.metrics is not None:
            self.metrics.set_in_flight(len(self._in_flight))

    async def _recover_stalled(self) -> None:
        interval = self.recovery_interval or self.queue.lease_seconds / 2
        self._next_recovery = asyncio.get_running_loop().time() + interval
        recovered = await self.queue.requeue_stalled()
        if recovered:
            self.logger.warning("Returned %d stalled job(s) to queue '%s'", recovered, self.queue.name)

    async def _run_job(self, job: QueuedJob) -> None:
        try:
            await self.limiter.acquire()
            await self.handler(job)
        except asyncio.CancelledError:
            await self.queue.release(job)
            raise
        except RetryableJobError as exc:
            await self._handle_retryable(job, exc)
        except UnrecoverableJobError as exc:
            self.logger.warning("Job %s failed permanently: [%s] %s", job.id, exc.code, exc.message)
            self._check_owned(job, await self.queue.fail(job, self._describe(exc)))
        except Exception as exc:
            self.logger.exception("Job %s failed with unexpected error: %s", job.id, exc)
            self._check_owned(job, await self.queue.fail(job, f"{type(exc).__name__}: {exc}"))
        else:
            self._check_owned(job, await self.queue.complete(job))

    async def _handle_retryable(self, job: QueuedJob, exc: RetryableJobError) -> None:
        attempt = job.attempts_made + 1
        if attempt >= job.max_attempts:
            self.logger.warning(
                "Job %s exhausted %d attempt(s): [%s] %s", job.id, job.max_attempts, exc.code, exc.message
            )
            # The message record is written before the job leaves active.
            if self.on_exhausted is not None:
                await self.on_exhausted(job, exc)
            self._check_owned(job, await self.queue.fail(job, self._describe(exc)))
            return
        delay = backoff_delay(job.attempts_made, self.backoff_base)
        self.logger.info(
            "Job %s attempt %d/%d deferred %.1fs: [%s] %s",
            job.id,
            attempt,
            job.max_attempts,
            delay,
            exc.code,
            exc.message,
        )
        self._check_owned(job, await self.queue.retry(job, delay, self._describe(exc)))

    def _check_owned(self, job: QueuedJob, resolved: bool) -> None:
        if not resolved:
            self.logger.warning(
                "Job %s was no longer held by this worker when resolving (lease expired?)", job.id
            )

    @staticmethod
    def _describe(exc: Exception) -> str:
        code = getattr(exc, "code", None)
        return f"[{code}] {exc}" if code is not None else str(exc)

    async def _wait_for_wakeup(self, timeout: float | None) -> None:
        """Pause the dispatch loop until timeout or wake event.

        Args:
            timeout: Maximum seconds to wait. None or infinity waits indefinitely.
        """
        if self._stop.is_set():
            return
        if timeout is None or math.isinf(float(timeout)):
            await self._wake_event.wait()
            self._wake_event.clear()
            return
        timeout = max(0.0, float(timeout))
        if timeout == 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._wake_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return
        self._wake_event.clear()


__all__ = ["GlobalLimiter", "LimiterConfig", "QueueWorker", "backoff_delay"]
