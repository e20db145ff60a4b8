# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SQLite adapter on aiosqlite, for single-host deployments and tests."""

from __future__ import annotations

from typing import Any

import aiosqlite

from .base import DbAdapter

# Concurrent writers wait on the file lock instead of failing fast.
BUSY_TIMEOUT_SECONDS = 30.0


class SqliteAdapter(DbAdapter):
    """Opens a connection per statement and commits immediately.

    A single statement (an ``INSERT ... ON CONFLICT DO UPDATE`` or a guarded
    ``UPDATE``) is therefore atomic with respect to concurrent workers. An
    in-memory database does not survive between statements; use a file path.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path or ":memory:"

    async def connect(self) -> None:
        """No-op: connections are per statement."""

    async def close(self) -> None:
        """No-op: connections are per statement."""

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path, timeout=BUSY_TIMEOUT_SECONDS)

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        async with self._connect() as db:
            cursor = await db.execute(query, params or {})
            await db.commit()
            return cursor.rowcount

    async def _select(self, query: str, params: dict[str, Any] | None, limit: int | None) -> list[dict[str, Any]]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params or {}) as cursor:
                rows = await cursor.fetchmany(limit) if limit else await cursor.fetchall()
        return [dict(row) for row in rows]

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        rows = await self._select(query, params, limit=1)
        return rows[0] if rows else None

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self._select(query, params, limit=None)
