import asyncio
from datetime import date
from unittest.mock import MagicMock

import pytest

from wa_delivery.usage import UsageRecorder, today_key


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(db):
    recorder = UsageRecorder(db.usage_records, cost_per_message=12)

    await asyncio.gather(
        *(recorder.record_usage("tenant-1", "pn-1", "2025-01-31") for _ in range(25))
    )

    row = await db.usage_records.get("tenant-1", "pn-1", "2025-01-31")
    assert row["message_count"] == 25
    assert row["cost_cents"] == 25 * 12


@pytest.mark.asyncio
async def test_rows_are_keyed_by_tenant_sender_and_day(db):
    recorder = UsageRecorder(db.usage_records, cost_per_message=5)

    await recorder.record_usage("tenant-1", "pn-1", "2025-01-30")
    await recorder.record_usage("tenant-1", "pn-1", date(2025, 1, 31))
    await recorder.record_usage("tenant-1", "pn-2", "2025-01-31")
    await recorder.record_usage("tenant-2", "pn-3", "2025-01-31")

    assert len(await db.usage_records.list_usage()) == 4
    day = await db.usage_records.list_usage(usage_date="2025-01-31")
    assert {row["phone_number_id"] for row in day} == {"pn-1", "pn-2", "pn-3"}
    tenant = await db.usage_records.list_usage(tenant_id="tenant-1")
    assert sum(row["cost_cents"] for row in tenant) == 15


@pytest.mark.asyncio
async def test_default_date_is_today_utc(db):
    recorder = UsageRecorder(db.usage_records)

    await recorder.record_usage("tenant-1", "pn-1")

    row = await db.usage_records.get("tenant-1", "pn-1", today_key())
    assert row["message_count"] == 1
    assert row["cost_cents"] == 12


def test_negative_cost_rejected():
    with pytest.raises(ValueError):
        UsageRecorder(MagicMock(), cost_per_message=-1)
