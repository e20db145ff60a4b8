# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Producer side: persist a queued message record and enqueue its job."""

from __future__ import annotations

import uuid
from typing import Any

from .delivery_db import DeliveryDb
from .errors import SenderNotFoundError
from .models import MessageJob
from .queue import JobQueue


async def submit_message(
    db: DeliveryDb,
    queue: JobQueue,
    *,
    phone_number_id: str,
    to: str,
    type: str,
    content: dict[str, Any],
    message_id: str | None = None,
    max_attempts: int | None = None,
) -> tuple[MessageJob, str]:
    """Create a ``queued`` message record and enqueue its delivery job.

    The payload is validated before anything is written, so an invalid
    message never reaches the queue.

    Returns:
        The validated job and the id of the queued job row.

    Raises:
        pydantic.ValidationError: If ``type``/``content`` do not match.
        SenderNotFoundError: If ``phone_number_id`` is not registered.
    """
    message_job = MessageJob.model_validate(
        {
            "messageId": message_id or uuid.uuid4().hex,
            "phoneNumberId": phone_number_id,
            "to": to,
            "type": type,
            "content": content,
        }
    )
    sender = await db.phone_numbers.get_with_tenant(phone_number_id)
    if sender is None:
        raise SenderNotFoundError(phone_number_id)

    await db.messages.add(
        {
            "id": message_job.message_id,
            "tenant_id": sender["tenant_id"],
            "phone_number_id": phone_number_id,
            "to_address": message_job.to,
            "type": message_job.type.value,
            "content": message_job.content_dict(),
        }
    )
    job_id = await queue.enqueue(message_job.to_payload(), max_attempts=max_attempts)
    return message_job, job_id


__all__ = ["submit_message"]
