# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Phone numbers (sender identities) table manager."""

from __future__ import annotations

from typing import Any

from ...sql import Table


class PhoneNumbersTable(Table):
    """Sender identities registered with the provider.

    ``whatsapp_business_phone_number_id`` is the provider-side id used to
    build the gateway URL; the credential lives on the owning tenant.
    """

    name = "phone_numbers"

    def configure(self) -> None:
        self.column("id", "TEXT PRIMARY KEY")
        self.column("tenant_id", "TEXT NOT NULL")
        self.column("whatsapp_business_phone_number_id", "TEXT NOT NULL")
        self.column("display_phone_number", "TEXT")
        self.column("created_at", "TEXT DEFAULT CURRENT_TIMESTAMP")
        self.constraints.append("FOREIGN KEY (tenant_id) REFERENCES tenants(id)")

    async def add(self, phone: dict[str, Any]) -> None:
        """Insert or replace a phone number."""
        await self.execute(
            """
            INSERT INTO phone_numbers (id, tenant_id, whatsapp_business_phone_number_id, display_phone_number)
            VALUES (:id, :tenant_id, :whatsapp_business_phone_number_id, :display_phone_number)
            ON CONFLICT (id) DO UPDATE SET
                tenant_id = excluded.tenant_id,
                whatsapp_business_phone_number_id = excluded.whatsapp_business_phone_number_id,
                display_phone_number = excluded.display_phone_number
            """,
            {
                "id": phone["id"],
                "tenant_id": phone["tenant_id"],
                "whatsapp_business_phone_number_id": phone["whatsapp_business_phone_number_id"],
                "display_phone_number": phone.get("display_phone_number"),
            },
        )

    async def get_with_tenant(self, phone_number_id: str) -> dict[str, Any] | None:
        """Return the phone number joined with its tenant's credential, or None."""
        return await self.fetch_one(
            """
            SELECT p.id, p.tenant_id, p.whatsapp_business_phone_number_id,
                   p.display_phone_number, t.meta_app_secret
            FROM phone_numbers p
            JOIN tenants t ON t.id = p.tenant_id
            WHERE p.id = :id
            """,
            {"id": phone_number_id},
        )


__all__ = ["PhoneNumbersTable"]
