# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Usage records table manager for per-day billing attribution."""

from __future__ import annotations

from typing import Any

from ...sql import Table


class UsageRecordsTable(Table):
    """One row per (tenant, phone number, calendar day).

    Increments go through a single ``INSERT ... ON CONFLICT DO UPDATE``
    statement, so concurrent bookings for the same key are serialised by
    the database and none is lost.
    """

    name = "usage_records"

    def configure(self) -> None:
        self.column("tenant_id", "TEXT NOT NULL")
        self.column("phone_number_id", "TEXT NOT NULL")
        self.column("usage_date", "TEXT NOT NULL")
        self.column("message_count", "INTEGER NOT NULL DEFAULT 0")
        self.column("cost_cents", "INTEGER NOT NULL DEFAULT 0")
        self.column("updated_at", "TEXT DEFAULT CURRENT_TIMESTAMP")
        self.constraints.append("PRIMARY KEY (tenant_id, phone_number_id, usage_date)")

    async def increment(self, tenant_id: str, phone_number_id: str, usage_date: str, cost_cents: int) -> None:
        """Add one message and ``cost_cents`` to the row, creating it if missing."""
        await self.execute(
            """
            INSERT INTO usage_records (tenant_id, phone_number_id, usage_date, message_count, cost_cents)
            VALUES (:tenant_id, :phone_number_id, :usage_date, 1, :cost_cents)
            ON CONFLICT (tenant_id, phone_number_id, usage_date) DO UPDATE SET
                message_count = usage_records.message_count + 1,
                cost_cents = usage_records.cost_cents + excluded.cost_cents,
                updated_at = CURRENT_TIMESTAMP
            """,
            {
                "tenant_id": tenant_id,
                "phone_number_id": phone_number_id,
                "usage_date": usage_date,
                "cost_cents": int(cost_cents),
            },
        )

    async def get(self, tenant_id: str, phone_number_id: str, usage_date: str) -> dict[str, Any] | None:
        return await self.fetch_one(
            """
            SELECT tenant_id, phone_number_id, usage_date, message_count, cost_cents
            FROM usage_records
            WHERE tenant_id = :tenant_id AND phone_number_id = :phone_number_id
              AND usage_date = :usage_date
            """,
            {"tenant_id": tenant_id, "phone_number_id": phone_number_id, "usage_date": usage_date},
        )

    async def list_usage(self, tenant_id: str | None = None, usage_date: str | None = None) -> list[dict[str, Any]]:
        query = """
            SELECT tenant_id, phone_number_id, usage_date, message_count, cost_cents
            FROM usage_records
        """
        clauses = []
        params: dict[str, Any] = {}
        if tenant_id:
            clauses.append("tenant_id = :tenant_id")
            params["tenant_id"] = tenant_id
        if usage_date:
            clauses.append("usage_date = :usage_date")
            params["usage_date"] = usage_date
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY usage_date DESC, tenant_id, phone_number_id"
        return await self.fetch_all(query, params)


__all__ = ["UsageRecordsTable"]
