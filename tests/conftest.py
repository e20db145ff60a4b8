"""Shared fixtures: SQLite stores under tmp_path and scripted collaborators."""

import pytest
import pytest_asyncio

from wa_delivery.delivery_db import DeliveryDb, QueueDb
from wa_delivery.queue import JobQueue


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ScriptedGateway:
    """Gateway double returning provider ids or raising errors in order.

    The last outcome repeats once the script is exhausted.
    """

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.closed = False

    async def send(self, job, sender):
        self.calls.append((job, sender))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def scripted_gateway():
    return ScriptedGateway


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "wa_delivery.db")


@pytest_asyncio.fixture
async def db(db_path):
    database = DeliveryDb(db_path)
    await database.init_db()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def queue_db(db_path):
    database = QueueDb(db_path)
    await database.init_db()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def queue(queue_db):
    return JobQueue(queue_db.jobs, name="message-queue", default_max_attempts=5)


@pytest_asyncio.fixture
async def sender(db):
    """Tenant ``tenant-1`` owning phone number ``pn-1``."""
    await db.tenants.add({"id": "tenant-1", "name": "Tenant One", "meta_app_secret": "secret-token"})
    await db.phone_numbers.add(
        {
            "id": "pn-1",
            "tenant_id": "tenant-1",
            "whatsapp_business_phone_number_id": "1234567890",
            "display_phone_number": "+15550000000",
        }
    )
    return await db.phone_numbers.get_with_tenant("pn-1")
