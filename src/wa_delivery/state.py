# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery state machine for message records.

``queued -> sent`` or ``queued -> failed``; a ``failed`` record may still
become ``sent`` on a later retry, but ``sent`` is final. Both transitions
are guarded in the UPDATE itself, which keeps them safe when two attempts
of the same message ever overlap.
"""

from __future__ import annotations

from datetime import datetime, timezone

from .entities import MessagesTable
from .logger import get_logger


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class DeliveryStateMachine:
    """Only writer of message status fields."""

    def __init__(self, messages: MessagesTable, logger=None):
        self.messages = messages
        self.logger = logger or get_logger("DeliveryStateMachine")

    async def mark_sent(
        self,
        message_id: str,
        provider_message_id: str,
        sent_at: datetime | str | None = None,
    ) -> bool:
        """Record a successful send.

        Returns:
            False when the message was already ``sent`` (the stored id and
            timestamp are kept) or does not exist.
        """
        if sent_at is None:
            sent_ts = _utc_now_iso()
        elif isinstance(sent_at, datetime):
            sent_ts = sent_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        else:
            sent_ts = sent_at
        applied = await self.messages.mark_sent(message_id, provider_message_id, sent_ts)
        if not applied:
            self.logger.warning(
                "mark_sent ignored for message %s: already sent or missing", message_id
            )
        return applied

    async def mark_failed(self, message_id: str, error_code: int | str, error_message: str) -> bool:
        """Record the latest failure, overwriting any previous one.

        Returns:
            False when the message is already ``sent`` or does not exist.
        """
        applied = await self.messages.mark_failed(message_id, str(error_code), error_message)
        if not applied:
            self.logger.warning(
                "mark_failed ignored for message %s: already sent or missing", message_id
            )
        return applied


__all__ = ["DeliveryStateMachine"]
