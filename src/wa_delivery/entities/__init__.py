# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Table managers for the delivery worker's storage."""

from .job import JobsTable
from .message import MessagesTable
from .phone_number import PhoneNumbersTable
from .tenant import TenantsTable
from .usage_record import UsageRecordsTable

__all__ = [
    "JobsTable",
    "MessagesTable",
    "PhoneNumbersTable",
    "TenantsTable",
    "UsageRecordsTable",
]
