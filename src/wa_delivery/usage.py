# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Billable usage attribution, one unit per successfully dispatched message."""

from __future__ import annotations

from datetime import date, datetime, timezone

from .entities import UsageRecordsTable

DEFAULT_COST_PER_MESSAGE = 12  # minor currency units


def today_key() -> str:
    """Current UTC calendar day as ``YYYY-MM-DD``."""
    return datetime.now(timezone.utc).date().isoformat()


class UsageRecorder:
    """Book usage rows keyed by (tenant, phone number, day).

    Errors from the store propagate: a lost booking must be visible to the
    caller rather than silently under-billing.
    """

    def __init__(self, usage_records: UsageRecordsTable, cost_per_message: int = DEFAULT_COST_PER_MESSAGE):
        if int(cost_per_message) < 0:
            raise ValueError("cost_per_message must not be negative")
        self.usage_records = usage_records
        self.cost_per_message = int(cost_per_message)

    async def record_usage(
        self,
        tenant_id: str,
        phone_number_id: str,
        date_key: str | date | None = None,
    ) -> None:
        if date_key is None:
            date_key = today_key()
        elif isinstance(date_key, date):
            date_key = date_key.isoformat()
        await self.usage_records.increment(tenant_id, phone_number_id, date_key, self.cost_per_message)


__all__ = ["DEFAULT_COST_PER_MESSAGE", "UsageRecorder", "today_key"]
