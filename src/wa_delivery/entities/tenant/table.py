# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tenants table manager."""

from __future__ import annotations

from typing import Any

from ...sql import Table


class TenantsTable(Table):
    """Tenant records owned by the portal's API layer.

    The worker only reads them, to obtain the bearer credential used
    against the provider for every phone number the tenant owns.
    """

    name = "tenants"

    def configure(self) -> None:
        self.column("id", "TEXT PRIMARY KEY")
        self.column("name", "TEXT")
        self.column("meta_app_secret", "TEXT")
        self.column("created_at", "TEXT DEFAULT CURRENT_TIMESTAMP")

    async def add(self, tenant: dict[str, Any]) -> None:
        """Insert or replace a tenant."""
        await self.execute(
            """
            INSERT INTO tenants (id, name, meta_app_secret)
            VALUES (:id, :name, :meta_app_secret)
            ON CONFLICT (id) DO UPDATE SET
                name = excluded.name,
                meta_app_secret = excluded.meta_app_secret
            """,
            {
                "id": tenant["id"],
                "name": tenant.get("name"),
                "meta_app_secret": tenant.get("meta_app_secret"),
            },
        )

    async def get(self, tenant_id: str) -> dict[str, Any] | None:
        return await self.fetch_one(
            "SELECT id, name, meta_app_secret, created_at FROM tenants WHERE id = :id",
            {"id": tenant_id},
        )


__all__ = ["TenantsTable"]
