# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Table base class with hook-based schema definition (async version)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .sqldb import SqlDb


class Table:
    """Base class for async table managers.

    Subclasses define columns via the configure() hook and implement
    domain-specific operations with raw SQL using :name placeholders.

    Attributes:
        name: Table name in database.
        db: SqlDb instance reference.
        columns: Column definitions as (name, SQL definition) pairs.
        constraints: Table-level constraints (UNIQUE, FOREIGN KEY).
        indexes: CREATE INDEX statements run after the table is created.
        json_columns: Columns stored as JSON text and decoded on read.
    """

    name: str
    json_columns: tuple[str, ...] = ()

    def __init__(self, db: SqlDb) -> None:
        self.db = db
        if not hasattr(self, "name") or not self.name:
            raise ValueError(f"{type(self).__name__} must define 'name'")

        self.columns: list[tuple[str, str]] = []
        self.constraints: list[str] = []
        self.indexes: list[str] = []
        self.configure()

    def configure(self) -> None:
        """Override to define columns. Called during __init__."""
        pass

    def column(self, name: str, definition: str) -> None:
        """Register a column, e.g. ``column("status", "TEXT NOT NULL")``."""
        self.columns.append((name, definition))

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def create_table_sql(self) -> str:
        """Generate CREATE TABLE IF NOT EXISTS statement."""
        col_defs = [f"{name} {definition}" for name, definition in self.columns]
        col_defs.extend(self.constraints)
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n    " + ",\n    ".join(col_defs) + "\n)"

    async def create_schema(self) -> None:
        """Create table and indexes if not exists."""
        await self.db.adapter.execute(self.create_table_sql())
        for statement in self.indexes:
            await self.db.adapter.execute(statement)

    # -------------------------------------------------------------------------
    # JSON Encoding/Decoding
    # -------------------------------------------------------------------------

    def _encode_json_fields(self, data: dict[str, Any]) -> dict[str, Any]:
        """Encode JSON fields for storage."""
        result = dict(data)
        for col_name in self.json_columns:
            if col_name in result and result[col_name] is not None:
                result[col_name] = json.dumps(result[col_name])
        return result

    def _decode_json_fields(self, row: dict[str, Any]) -> dict[str, Any]:
        """Decode JSON fields from storage."""
        result = dict(row)
        for col_name in self.json_columns:
            value = result.get(col_name)
            if isinstance(value, str):
                result[col_name] = json.loads(value)
        return result

    # -------------------------------------------------------------------------
    # Raw Query
    # -------------------------------------------------------------------------

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute raw query, return single row."""
        row = await self.db.adapter.fetch_one(query, params)
        return self._decode_json_fields(row) if row else None

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute raw query, return all rows."""
        rows = await self.db.adapter.fetch_all(query, params)
        return [self._decode_json_fields(row) for row in rows]

    async def execute(
        self, query: str, params: dict[str, Any] | None = None
    ) -> int:
        """Execute raw query, return affected row count."""
        return await self.db.adapter.execute(query, params)


__all__ = ["Table"]
