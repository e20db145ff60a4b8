# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exception taxonomy shared by the job consumer and the queue worker.

The queue worker only looks at the two branches of the hierarchy:

- :class:`RetryableJobError` - the attempt is rescheduled with exponential
  backoff until the job runs out of attempts.
- :class:`UnrecoverableJobError` - the job fails immediately.

Any other exception escaping a handler is an infrastructure error: it is
logged with its traceback and the job fails without retry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .classifier import ErrorKind


class JobError(Exception):
    """Base class for errors raised deliberately by job handlers."""

    default_code = "JOB_ERROR"

    def __init__(self, message: str, *, code: str | int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code


class RetryableJobError(JobError):
    """The attempt may succeed later; reschedule with backoff."""


class UnrecoverableJobError(JobError):
    """The job must not be attempted again."""


class LocallyThrottledError(RetryableJobError):
    """The per-sender rate limiter refused the attempt."""

    default_code = "RATE_LIMITED"

    def __init__(self, phone_number_id: str):
        super().__init__(f"Rate limit exceeded for phone number {phone_number_id}")
        self.phone_number_id = phone_number_id


class ProviderThrottledError(RetryableJobError):
    """The provider answered with a throttling error code."""

    default_code = "PROVIDER_THROTTLED"


class InvalidJobError(UnrecoverableJobError):
    """The job payload cannot be parsed into a message job."""

    default_code = "INVALID_PAYLOAD"


class SenderNotFoundError(UnrecoverableJobError):
    """The job references a phone number that does not exist."""

    default_code = "SENDER_NOT_FOUND"

    def __init__(self, phone_number_id: str):
        super().__init__(f"Phone number {phone_number_id} not found")
        self.phone_number_id = phone_number_id


class MessageNotFoundError(UnrecoverableJobError):
    """The job references a message record that does not exist."""

    default_code = "MESSAGE_NOT_FOUND"

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id


class PermanentDeliveryError(UnrecoverableJobError):
    """The provider rejected the message for a reason retrying cannot fix."""

    def __init__(self, message: str, *, code: str | int | None, kind: ErrorKind):
        super().__init__(message, code=code)
        self.kind = kind


__all__ = [
    "InvalidJobError",
    "JobError",
    "LocallyThrottledError",
    "MessageNotFoundError",
    "PermanentDeliveryError",
    "ProviderThrottledError",
    "RetryableJobError",
    "SenderNotFoundError",
    "UnrecoverableJobError",
]
