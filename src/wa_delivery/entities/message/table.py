# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Messages table manager: durable delivery lifecycle of outbound messages."""

from __future__ import annotations

from typing import Any

from ...sql import Table

STATUS_QUEUED = "queued"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"
MESSAGE_STATUSES = (STATUS_QUEUED, STATUS_SENT, STATUS_FAILED)


class MessagesTable(Table):
    """Message records, one per logical outbound send.

    Status writes are single guarded UPDATE statements: once a row is
    ``sent`` neither transition touches it again, so two resolutions of the
    same message racing each other cannot leave it ``failed``.
    """

    name = "messages"
    json_columns = ("content",)

    def configure(self) -> None:
        self.column("id", "TEXT PRIMARY KEY")
        self.column("tenant_id", "TEXT")
        self.column("phone_number_id", "TEXT NOT NULL")
        self.column("to_address", "TEXT NOT NULL")
        self.column("type", "TEXT NOT NULL")
        self.column("content", "TEXT")
        self.column("status", "TEXT NOT NULL DEFAULT 'queued'")
        self.column("whatsapp_message_id", "TEXT")
        self.column("error_code", "TEXT")
        self.column("error_message", "TEXT")
        self.column("created_at", "TEXT DEFAULT CURRENT_TIMESTAMP")
        self.column("sent_at", "TEXT")
        self.column("updated_at", "TEXT DEFAULT CURRENT_TIMESTAMP")
        self.indexes.append(
            "CREATE INDEX IF NOT EXISTS idx_messages_status ON messages (status)"
        )

    async def add(self, message: dict[str, Any]) -> None:
        """Insert a new message in ``queued`` state."""
        record = self._encode_json_fields(
            {
                "id": message["id"],
                "tenant_id": message.get("tenant_id"),
                "phone_number_id": message["phone_number_id"],
                "to_address": message["to_address"],
                "type": message["type"],
                "content": message.get("content"),
            }
        )
        await self.execute(
            """
            INSERT INTO messages (id, tenant_id, phone_number_id, to_address, type, content, status)
            VALUES (:id, :tenant_id, :phone_number_id, :to_address, :type, :content, 'queued')
            """,
            record,
        )

    async def get(self, message_id: str) -> dict[str, Any] | None:
        return await self.fetch_one(
            """
            SELECT id, tenant_id, phone_number_id, to_address, type, content, status,
                   whatsapp_message_id, error_code, error_message, created_at, sent_at, updated_at
            FROM messages WHERE id = :id
            """,
            {"id": message_id},
        )

    async def list_messages(self, status: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        query = """
            SELECT id, tenant_id, phone_number_id, to_address, type, status,
                   whatsapp_message_id, error_code, error_message, created_at, sent_at
            FROM messages
        """
        params: dict[str, Any] = {"limit": int(limit)}
        if status:
            query += " WHERE status = :status"
            params["status"] = status
        query += " ORDER BY created_at DESC, id DESC LIMIT :limit"
        return await self.fetch_all(query, params)

    async def mark_sent(self, message_id: str, whatsapp_message_id: str, sent_at: str) -> bool:
        """Set ``sent`` unless already sent. Returns True when the row changed.

        Clears the error fields left by earlier failed attempts.
        """
        changed = await self.execute(
            """
            UPDATE messages
            SET status = 'sent', whatsapp_message_id = :whatsapp_message_id, sent_at = :sent_at,
                error_code = NULL, error_message = NULL, updated_at = CURRENT_TIMESTAMP
            WHERE id = :id AND status <> 'sent'
            """,
            {"id": message_id, "whatsapp_message_id": whatsapp_message_id, "sent_at": sent_at},
        )
        return changed > 0

    async def mark_failed(self, message_id: str, error_code: str, error_message: str) -> bool:
        """Set ``failed`` with the latest error unless already sent."""
        changed = await self.execute(
            """
            UPDATE messages
            SET status = 'failed', error_code = :error_code, error_message = :error_message,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :id AND status <> 'sent'
            """,
            {"id": message_id, "error_code": error_code, "error_message": error_message},
        )
        return changed > 0

    async def count_by_status(self) -> dict[str, int]:
        rows = await self.fetch_all("SELECT status, COUNT(*) AS cnt FROM messages GROUP BY status")
        return {row["status"]: int(row["cnt"]) for row in rows}


__all__ = ["MESSAGE_STATUSES", "MessagesTable", "STATUS_FAILED", "STATUS_QUEUED", "STATUS_SENT"]
