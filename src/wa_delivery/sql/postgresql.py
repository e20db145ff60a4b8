# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""PostgreSQL adapter on a psycopg3 connection pool.

Used when several worker processes share one queue and one relational
store. Statements are written with ``:name`` placeholders and rewritten to
psycopg's ``%(name)s`` form before execution.
"""

from __future__ import annotations

import re
from contextlib import asynccontextmanager
from typing import Any

from .base import DbAdapter

_PLACEHOLDER = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


class PostgresAdapter(DbAdapter):
    """Pooled PostgreSQL backend. ``connect()`` must run before any query."""

    def __init__(self, dsn: str, pool_size: int = 10):
        try:
            import psycopg  # noqa: F401
        except ImportError as e:
            raise ImportError(
                "PostgreSQL support requires psycopg. "
                "Install with: pip install wa-delivery-worker[postgresql]"
            ) from e
        self.dsn = dsn
        self.pool_size = pool_size
        self._pool: Any = None

    @staticmethod
    def _convert_placeholders(query: str) -> str:
        """Rewrite ``:name`` to ``%(name)s``, leaving ``::type`` casts alone."""
        return _PLACEHOLDER.sub(r"%(\1)s", query)

    async def connect(self) -> None:
        if self._pool is not None:
            return
        from psycopg_pool import AsyncConnectionPool

        self._pool = AsyncConnectionPool(self.dsn, min_size=1, max_size=self.pool_size, open=False)
        await self._pool.open()

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def _cursor(self, query: str, params: dict[str, Any] | None, *, rows: bool):
        if self._pool is None:
            raise RuntimeError("PostgresAdapter used before connect()")
        from psycopg.rows import dict_row

        async with self._pool.connection() as conn:
            cursor_kwargs = {"row_factory": dict_row} if rows else {}
            async with conn.cursor(**cursor_kwargs) as cur:
                await cur.execute(self._convert_placeholders(query), params or {})
                yield cur
                if not rows:
                    await conn.commit()

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        async with self._cursor(query, params, rows=False) as cur:
            return cur.rowcount

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        async with self._cursor(query, params, rows=True) as cur:
            return await cur.fetchone()

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        async with self._cursor(query, params, rows=True) as cur:
            return await cur.fetchall()
