# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Message job consumer: one delivery attempt per call.

:meth:`MessageJobConsumer.process` is the handler registered with the
:class:`~wa_delivery.worker.QueueWorker`. Each call parses the job, resolves
the sender, asks the per-sender limiter for admission, calls the provider
once and records the outcome. Retry scheduling is left to the worker, which
reacts to the exception branch raised here.

Every failure, local throttling included, is written to the message record
before the retry decision, so the record always shows the latest error even
while the job is still being retried.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from .classifier import ErrorKind, classify
from .delivery_db import DeliveryDb
from .entities.message import STATUS_SENT
from .errors import (
    InvalidJobError,
    LocallyThrottledError,
    MessageNotFoundError,
    PermanentDeliveryError,
    ProviderThrottledError,
    RetryableJobError,
    SenderNotFoundError,
)
from .gateway import GatewayClient, GatewayError
from .logger import get_logger
from .models import MessageJob, SenderIdentity
from .queue import QueuedJob
from .rate_limit import RateLimiter
from .state import DeliveryStateMachine
from .usage import UsageRecorder

EXHAUSTED_MESSAGE = "Max attempts exhausted"


def _validation_summary(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "payload"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def _payload_message_id(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    value = payload.get("messageId") or payload.get("message_id")
    return value if isinstance(value, str) and value else None


class MessageJobConsumer:
    """Per-attempt orchestrator for outbound message jobs.

    Attributes:
        db: Relational store with messages, phone numbers and tenants.
        rate_limiter: Per-sender admission gate; any object with ``admit()``.
        gateway: Provider client.
        usage_recorder: Billing recorder, called once per successful send.
        state_machine: Writer of message status transitions.
        metrics: Optional :class:`~wa_delivery.prometheus.DeliveryMetrics`.
        log_delivery_activity: Log every attempt at INFO level.
    """

    def __init__(
        self,
        db: DeliveryDb,
        rate_limiter: RateLimiter,
        gateway: GatewayClient,
        usage_recorder: UsageRecorder,
        state_machine: DeliveryStateMachine,
        metrics=None,
        logger=None,
        log_delivery_activity: bool = False,
    ):
        self.db = db
        self.rate_limiter = rate_limiter
        self.gateway = gateway
        self.usage_recorder = usage_recorder
        self.state_machine = state_machine
        self.metrics = metrics
        self.logger = logger or get_logger("MessageJobConsumer")
        self.log_delivery_activity = log_delivery_activity

    async def process(self, job: QueuedJob) -> dict[str, Any]:
        """Run one delivery attempt for ``job``.

        Returns:
            ``{"success": True, "whatsapp_message_id": ...}`` on success.

        Raises:
            RetryableJobError: Local or provider throttling.
            UnrecoverableJobError: Invalid payload, unknown sender or message,
                or a permanent provider rejection.
        """
        message_job = await self._parse(job)
        message_id = message_job.message_id
        phone_number_id = message_job.phone_number_id

        sender = await self._load_sender(message_job)

        record = await self.db.messages.get(message_id)
        if record is None:
            self.logger.error("Message %s not found for job %s", message_id, job.id)
            raise MessageNotFoundError(message_id)
        if record["status"] == STATUS_SENT:
            self.logger.info("Message %s already sent, skipping job %s", message_id, job.id)
            return {"success": True, "whatsapp_message_id": record.get("whatsapp_message_id")}

        if not await self.rate_limiter.admit(phone_number_id):
            self.logger.warning(
                "Rate limit exceeded for phone number %s, deferring message %s", phone_number_id, message_id
            )
            error = LocallyThrottledError(phone_number_id)
            await self.state_machine.mark_failed(message_id, error.code, error.message)
            if self.metrics is not None:
                self.metrics.inc_rate_limited(phone_number_id)
            self._count_retry(job, phone_number_id)
            raise error

        if self.log_delivery_activity:
            self.logger.info(
                "Attempting delivery of message %s to %s via %s (attempt %d/%d)",
                message_id,
                message_job.to,
                phone_number_id,
                job.attempts_made + 1,
                job.max_attempts,
            )

        try:
            provider_message_id = await self.gateway.send(message_job, sender)
        except GatewayError as exc:
            raise await self._failure_from_gateway(job, message_job, exc) from exc

        applied = await self.state_machine.mark_sent(message_id, provider_message_id)
        if applied:
            await self.usage_recorder.record_usage(sender.tenant_id, sender.id)
            if self.metrics is not None:
                self.metrics.inc_sent(phone_number_id)
                self.metrics.add_usage_cost(sender.tenant_id, self.usage_recorder.cost_per_message)
        if self.log_delivery_activity:
            self.logger.info("Message %s sent, provider id %s", message_id, provider_message_id)
        return {"success": True, "whatsapp_message_id": provider_message_id}

    async def on_exhausted(self, job: QueuedJob, error: RetryableJobError) -> None:
        """Mark the message failed once its job has no attempts left."""
        message_id = _payload_message_id(job.payload)
        if message_id is None:
            return
        message = f"{EXHAUSTED_MESSAGE} ({job.max_attempts}): {error.message}"
        await self.state_machine.mark_failed(message_id, error.code, message)
        self.logger.error(
            "Message %s failed permanently after %d attempt(s): [%s] %s",
            message_id,
            job.max_attempts,
            error.code,
            error.message,
        )

    # ------------------------------------------------------------------ helpers
    async def _parse(self, job: QueuedJob) -> MessageJob:
        try:
            return MessageJob.model_validate(job.payload)
        except ValidationError as exc:
            summary = _validation_summary(exc)
            message_id = _payload_message_id(job.payload)
            self.logger.error("Invalid payload for job %s: %s", job.id, summary)
            error = InvalidJobError(f"Invalid job payload: {summary}")
            if message_id is not None:
                await self.state_machine.mark_failed(message_id, error.code, error.message)
            if self.metrics is not None:
                self.metrics.inc_failed("", str(error.code))
            raise error from exc

    async def _load_sender(self, message_job: MessageJob) -> SenderIdentity:
        row = await self.db.phone_numbers.get_with_tenant(message_job.phone_number_id)
        if row is None:
            error = SenderNotFoundError(message_job.phone_number_id)
            self.logger.error(
                "Phone number %s not found for message %s", message_job.phone_number_id, message_job.message_id
            )
            await self.state_machine.mark_failed(message_job.message_id, error.code, error.message)
            if self.metrics is not None:
                self.metrics.inc_failed(message_job.phone_number_id, str(error.code))
            raise error
        return SenderIdentity.from_row(row)

    async def _failure_from_gateway(
        self, job: QueuedJob, message_job: MessageJob, exc: GatewayError
    ) -> RetryableJobError | PermanentDeliveryError:
        """Persist a provider failure and build the job error to raise."""
        kind = classify(exc)
        await self.state_machine.mark_failed(message_job.message_id, exc.code, exc.message)
        self.logger.warning(
            "Delivery of message %s via %s failed (code=%s, kind=%s): %s",
            message_job.message_id,
            message_job.phone_number_id,
            exc.code,
            kind.value,
            exc.message,
        )
        if self.metrics is not None:
            self.metrics.inc_failed(message_job.phone_number_id, kind.value)
        if kind is ErrorKind.RETRYABLE_THROTTLED:
            self._count_retry(job, message_job.phone_number_id)
            return ProviderThrottledError(exc.message, code=exc.code)
        return PermanentDeliveryError(exc.message, code=exc.code, kind=kind)

    def _count_retry(self, job: QueuedJob, phone_number_id: str) -> None:
        if self.metrics is not None and job.attempts_made + 1 < job.max_attempts:
            self.metrics.inc_retried(phone_number_id)


__all__ = ["EXHAUSTED_MESSAGE", "MessageJobConsumer"]
