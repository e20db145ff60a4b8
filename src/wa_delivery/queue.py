# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Durable job queue stored in the ``jobs`` table.

A job moves ``waiting -> active`` when a worker claims it and leaves
``active`` when the attempt resolves: ``completed``, ``failed``, or back to
``waiting`` with a later ``ready_at`` for a retry. Claiming is a guarded
UPDATE, so a job is held by at most one attempt at a time even with several
worker processes polling the same table.

Each :class:`JobQueue` instance has its own ``owner`` id and claims jobs with
a lease of ``lease_seconds``. Resolving requires ownership, and
:meth:`JobQueue.requeue_stalled` only takes back jobs whose lease expired, so
a worker starting up never steals an attempt another live worker is running.
The lease must outlast the longest attempt.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .entities import JobsTable
from .entities.job import JOB_COMPLETED, JOB_FAILED, JOB_WAITING

DEFAULT_QUEUE_NAME = "message-queue"
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_LEASE_SECONDS = 60.0


@dataclass
class QueuedJob:
    """A claimed job as handed to a worker handler.

    ``attempts_made`` counts attempts resolved before the current one.
    """

    id: str
    queue: str
    payload: dict[str, Any]
    attempts_made: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    last_error: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> QueuedJob:
        payload = row.get("payload")
        return cls(
            id=row["id"],
            queue=row["queue"],
            payload=payload if isinstance(payload, dict) else {},
            attempts_made=int(row.get("attempts_made") or 0),
            max_attempts=int(row.get("max_attempts") or DEFAULT_MAX_ATTEMPTS),
            last_error=row.get("last_error"),
        )


class JobQueue:
    """Named queue over a :class:`JobsTable`."""

    def __init__(
        self,
        jobs: JobsTable,
        name: str = DEFAULT_QUEUE_NAME,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time,
        *,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        owner: str | None = None,
    ):
        if int(default_max_attempts) < 1:
            raise ValueError("default_max_attempts must be at least 1")
        if float(lease_seconds) <= 0:
            raise ValueError("lease_seconds must be positive")
        self.jobs = jobs
        self.name = name
        self.default_max_attempts = int(default_max_attempts)
        self.lease_seconds = float(lease_seconds)
        self.owner = owner or uuid.uuid4().hex
        self._clock = clock

    async def enqueue(
        self,
        payload: dict[str, Any],
        *,
        job_id: str | None = None,
        max_attempts: int | None = None,
        delay: float = 0,
    ) -> str:
        """Add a job; return its id."""
        job_id = job_id or uuid.uuid4().hex
        attempts = self.default_max_attempts if max_attempts is None else int(max_attempts)
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        await self.jobs.add(
            {
                "id": job_id,
                "queue": self.name,
                "payload": payload,
                "max_attempts": attempts,
                "ready_at": self._clock() + max(0.0, float(delay)),
            }
        )
        return job_id

    async def get(self, job_id: str) -> dict[str, Any] | None:
        return await self.jobs.get(job_id)

    async def claim(self, limit: int) -> list[QueuedJob]:
        """Claim up to ``limit`` ready jobs, oldest first."""
        if limit <= 0:
            return []
        now = self._clock()
        rows = await self.jobs.fetch_ready(self.name, now, limit)
        claimed: list[QueuedJob] = []
        for row in rows:
            if await self.jobs.claim(row["id"], self.owner, now + self.lease_seconds):
                claimed.append(QueuedJob.from_row(row))
        return claimed

    async def complete(self, job: QueuedJob) -> bool:
        return await self.jobs.resolve(job.id, self.owner, JOB_COMPLETED)

    async def retry(self, job: QueuedJob, delay: float, error: str | None = None) -> bool:
        """Return ``job`` to waiting, claimable again after ``delay`` seconds."""
        return await self.jobs.resolve(
            job.id,
            self.owner,
            JOB_WAITING,
            ready_at=self._clock() + max(0.0, float(delay)),
            error=error,
        )

    async def fail(self, job: QueuedJob, error: str | None = None) -> bool:
        return await self.jobs.resolve(job.id, self.owner, JOB_FAILED, error=error)

    async def release(self, job: QueuedJob) -> bool:
        """Give back a claimed job whose attempt was abandoned, e.g. cancelled at shutdown."""
        return await self.jobs.release(job.id, self.owner)

    async def requeue_stalled(self) -> int:
        """Return jobs whose lease expired (their worker died) to waiting."""
        return await self.jobs.requeue_expired(self.name, self._clock())

    async def counts(self) -> dict[str, int]:
        return await self.jobs.count_by_status(self.name)


__all__ = ["DEFAULT_LEASE_SECONDS", "DEFAULT_MAX_ATTEMPTS", "DEFAULT_QUEUE_NAME", "JobQueue", "QueuedJob"]
