# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Jobs table manager backing the durable job queue."""

from __future__ import annotations

from typing import Any

from ...sql import Table

JOB_WAITING = "waiting"
JOB_ACTIVE = "active"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"


class JobsTable(Table):
    """Queue storage: one row per job, across all attempts.

    ``attempts_made`` counts resolved attempts. ``ready_at`` is an epoch
    timestamp (seconds, fractional) before which a waiting job is not
    claimed, which is how retry backoff is scheduled.

    An active job is owned by the worker that claimed it (``claimed_by``)
    until ``lease_until``. Only the owner can resolve it, and only an expired
    lease lets another worker take it back.
    """

    name = "jobs"
    json_columns = ("payload",)

    def configure(self) -> None:
        self.column("id", "TEXT PRIMARY KEY")
        self.column("queue", "TEXT NOT NULL")
        self.column("payload", "TEXT NOT NULL")
        self.column("status", "TEXT NOT NULL DEFAULT 'waiting'")
        self.column("attempts_made", "INTEGER NOT NULL DEFAULT 0")
        self.column("max_attempts", "INTEGER NOT NULL")
        self.column("ready_at", "DOUBLE PRECISION NOT NULL")
        self.column("last_error", "TEXT")
        self.column("claimed_by", "TEXT")
        self.column("lease_until", "DOUBLE PRECISION")
        self.column("created_at", "TEXT DEFAULT CURRENT_TIMESTAMP")
        self.column("updated_at", "TEXT DEFAULT CURRENT_TIMESTAMP")
        self.indexes.append(
            "CREATE INDEX IF NOT EXISTS idx_jobs_ready ON jobs (queue, status, ready_at)"
        )

    async def add(self, job: dict[str, Any]) -> None:
        record = self._encode_json_fields(job)
        await self.execute(
            """
            INSERT INTO jobs (id, queue, payload, status, attempts_made, max_attempts, ready_at)
            VALUES (:id, :queue, :payload, 'waiting', 0, :max_attempts, :ready_at)
            """,
            {
                "id": record["id"],
                "queue": record["queue"],
                "payload": record["payload"],
                "max_attempts": int(record["max_attempts"]),
                "ready_at": float(record["ready_at"]),
            },
        )

    async def get(self, job_id: str) -> dict[str, Any] | None:
        return await self.fetch_one(
            """
            SELECT id, queue, payload, status, attempts_made, max_attempts, ready_at, last_error,
                   claimed_by, lease_until
            FROM jobs WHERE id = :id
            """,
            {"id": job_id},
        )

    async def fetch_ready(self, queue: str, now: float, limit: int) -> list[dict[str, Any]]:
        """Return waiting jobs whose ``ready_at`` has passed, oldest first."""
        return await self.fetch_all(
            """
            SELECT id, queue, payload, status, attempts_made, max_attempts, ready_at, last_error,
                   claimed_by, lease_until
            FROM jobs
            WHERE queue = :queue AND status = 'waiting' AND ready_at <= :now
            ORDER BY ready_at ASC, created_at ASC, id ASC
            LIMIT :limit
            """,
            {"queue": queue, "now": now, "limit": int(limit)},
        )

    async def claim(self, job_id: str, owner: str, lease_until: float) -> bool:
        """Move a waiting job to active under ``owner``.

        False when another worker got it first.
        """
        changed = await self.execute(
            """
            UPDATE jobs
            SET status = 'active', claimed_by = :owner, lease_until = :lease_until,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :id AND status = 'waiting'
            """,
            {"id": job_id, "owner": owner, "lease_until": float(lease_until)},
        )
        return changed > 0

    async def resolve(
        self,
        job_id: str,
        owner: str,
        status: str,
        *,
        ready_at: float | None = None,
        error: str | None = None,
    ) -> bool:
        """Close ``owner``'s active attempt: bump ``attempts_made`` and set the new status."""
        changed = await self.execute(
            """
            UPDATE jobs
            SET status = :status,
                attempts_made = attempts_made + 1,
                ready_at = COALESCE(:ready_at, ready_at),
                last_error = :error,
                claimed_by = NULL,
                lease_until = NULL,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :id AND status = 'active' AND claimed_by = :owner
            """,
            {"id": job_id, "owner": owner, "status": status, "ready_at": ready_at, "error": error},
        )
        return changed > 0

    async def release(self, job_id: str, owner: str) -> bool:
        """Hand ``owner``'s active job back to waiting without counting an attempt."""
        changed = await self.execute(
            """
            UPDATE jobs
            SET status = 'waiting', claimed_by = NULL, lease_until = NULL,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :id AND status = 'active' AND claimed_by = :owner
            """,
            {"id": job_id, "owner": owner},
        )
        return changed > 0

    async def requeue_expired(self, queue: str, now: float) -> int:
        """Return active jobs whose lease has run out (owner died) to waiting."""
        return await self.execute(
            """
            UPDATE jobs
            SET status = 'waiting', claimed_by = NULL, lease_until = NULL,
                updated_at = CURRENT_TIMESTAMP
            WHERE queue = :queue AND status = 'active'
              AND (lease_until IS NULL OR lease_until < :now)
            """,
            {"queue": queue, "now": float(now)},
        )

    async def count_by_status(self, queue: str) -> dict[str, int]:
        rows = await self.fetch_all(
            "SELECT status, COUNT(*) AS cnt FROM jobs WHERE queue = :queue GROUP BY status",
            {"queue": queue},
        )
        return {row["status"]: int(row["cnt"]) for row in rows}


__all__ = ["JOB_ACTIVE", "JOB_COMPLETED", "JOB_FAILED", "JOB_WAITING", "JobsTable"]
