"""Delivery attempts end to end: consumer + worker + SQLite stores."""

import pytest

from wa_delivery.consumer import EXHAUSTED_MESSAGE, MessageJobConsumer
from wa_delivery.errors import InvalidJobError, LocallyThrottledError, MessageNotFoundError
from wa_delivery.gateway import GatewayClient, GatewayError
from wa_delivery.prometheus import DeliveryMetrics
from wa_delivery.queue import QueuedJob
from wa_delivery.rate_limit import RateLimiter
from wa_delivery.state import DeliveryStateMachine
from wa_delivery.submit import submit_message
from wa_delivery.usage import UsageRecorder, today_key
from wa_delivery.worker import QueueWorker


def build_consumer(db, gateway, rate_limiter=None, metrics=None):
    return MessageJobConsumer(
        db,
        rate_limiter or RateLimiter(),
        gateway,
        UsageRecorder(db.usage_records, cost_per_message=12),
        DeliveryStateMachine(db.messages),
        metrics=metrics,
        log_delivery_activity=True,
    )


def build_worker(queue, consumer):
    return QueueWorker(queue, consumer.process, on_exhausted=consumer.on_exhausted, backoff_base=0)


async def submit_text(db, queue, message_id="msg-1", phone_number_id="pn-1", max_attempts=None):
    await submit_message(
        db,
        queue,
        phone_number_id=phone_number_id,
        to="+15551234567",
        type="text",
        content={"text": "hello"},
        message_id=message_id,
        max_attempts=max_attempts,
    )


@pytest.mark.asyncio
async def test_throttled_twice_then_sent(db, queue, sender, scripted_gateway):
    gateway = scripted_gateway(
        [
            GatewayError(130429, "Throughput exceeded", 429),
            GatewayError(130429, "Throughput exceeded", 429),
            "wamid.THIRD",
        ]
    )
    metrics = DeliveryMetrics()
    consumer = build_consumer(db, gateway, metrics=metrics)
    await submit_text(db, queue)

    await build_worker(queue, consumer).drain()

    assert len(gateway.calls) == 3
    record = await db.messages.get("msg-1")
    assert record["status"] == "sent"
    assert record["whatsapp_message_id"] == "wamid.THIRD"
    assert record["error_code"] is None
    usage = await db.usage_records.get("tenant-1", "pn-1", today_key())
    assert usage["message_count"] == 1
    assert usage["cost_cents"] == 12
    assert await queue.counts() == {"completed": 1}

    sample = metrics.registry.get_sample_value
    assert sample("wad_sent_total", {"phone_number_id": "pn-1"}) == 1.0
    assert sample("wad_retried_total", {"phone_number_id": "pn-1"}) == 2.0
    assert sample("wad_usage_cost_cents_total", {"tenant_id": "tenant-1"}) == 12.0


@pytest.mark.asyncio
async def test_recipient_unavailable_fails_after_one_attempt(db, queue, sender, scripted_gateway):
    gateway = scripted_gateway([GatewayError(131021, "Recipient not available", 400)])
    consumer = build_consumer(db, gateway)
    await submit_text(db, queue)

    await build_worker(queue, consumer).drain()

    assert len(gateway.calls) == 1
    record = await db.messages.get("msg-1")
    assert record["status"] == "failed"
    assert record["error_code"] == "131021"
    assert record["error_message"] == "Recipient not available"
    assert await db.usage_records.list_usage() == []
    assert await queue.counts() == {"failed": 1}


@pytest.mark.asyncio
async def test_template_invalid_is_permanent(db, queue, sender, scripted_gateway):
    gateway = scripted_gateway([GatewayError("132001", "Template does not exist", 404)])
    consumer = build_consumer(db, gateway)
    await submit_text(db, queue)

    await build_worker(queue, consumer).drain()

    assert len(gateway.calls) == 1
    assert (await db.messages.get("msg-1"))["error_code"] == "132001"


@pytest.mark.asyncio
async def test_exhausted_retries_mark_message_failed(db, queue, sender, scripted_gateway):
    gateway = scripted_gateway([GatewayError(131056, "Pair rate limit hit", 400)])
    consumer = build_consumer(db, gateway)
    await submit_text(db, queue, max_attempts=3)

    await build_worker(queue, consumer).drain()

    assert len(gateway.calls) == 3
    record = await db.messages.get("msg-1")
    assert record["status"] == "failed"
    assert record["error_code"] == "131056"
    assert record["error_message"].startswith(EXHAUSTED_MESSAGE)
    assert await queue.counts() == {"failed": 1}


@pytest.mark.asyncio
async def test_unknown_sender_fails_without_provider_call(db, queue, sender, scripted_gateway):
    gateway = scripted_gateway(["wamid.never"])
    consumer = build_consumer(db, gateway)
    await db.messages.add(
        {
            "id": "msg-9",
            "tenant_id": "tenant-1",
            "phone_number_id": "pn-missing",
            "to_address": "+15551234567",
            "type": "text",
            "content": {"text": "hello"},
        }
    )
    await queue.enqueue(
        {"messageId": "msg-9", "phoneNumberId": "pn-missing", "to": "+15551234567", "type": "text",
         "content": {"text": "hello"}}
    )

    await build_worker(queue, consumer).drain()

    assert gateway.calls == []
    record = await db.messages.get("msg-9")
    assert record["status"] == "failed"
    assert record["error_code"] == "SENDER_NOT_FOUND"
    assert await queue.counts() == {"failed": 1}


@pytest.mark.asyncio
async def test_local_throttle_marks_record_failed_before_retry(db, queue, sender, scripted_gateway, fake_clock):
    gateway = scripted_gateway(["wamid.1"])
    limiter = RateLimiter(max_calls=1, window_ms=1000, clock=fake_clock)
    metrics = DeliveryMetrics()
    consumer = build_consumer(db, gateway, rate_limiter=limiter, metrics=metrics)
    await submit_text(db, queue, message_id="msg-1")
    await submit_text(db, queue, message_id="msg-2")
    first, second = await queue.claim(2)

    await consumer.process(first)
    with pytest.raises(LocallyThrottledError) as excinfo:
        await consumer.process(second)

    assert excinfo.value.code == "RATE_LIMITED"
    assert len(gateway.calls) == 1
    assert (await db.messages.get(first.payload["messageId"]))["status"] == "sent"
    throttled = await db.messages.get(second.payload["messageId"])
    assert throttled["status"] == "failed"
    assert throttled["error_code"] == "RATE_LIMITED"
    assert throttled["error_message"] == "Rate limit exceeded for phone number pn-1"
    assert metrics.registry.get_sample_value("wad_rate_limited_total", {"phone_number_id": "pn-1"}) == 1.0

    fake_clock.advance(1.5)
    await consumer.process(second)
    assert (await db.messages.get(second.payload["messageId"]))["status"] == "sent"


@pytest.mark.asyncio
async def test_exhausted_local_throttle_uses_rate_limited_code(db, queue, sender, scripted_gateway):
    consumer = build_consumer(db, scripted_gateway(["wamid.1"]))
    await submit_text(db, queue)
    job = (await queue.claim(1))[0]

    await consumer.on_exhausted(job, LocallyThrottledError("pn-1"))

    record = await db.messages.get("msg-1")
    assert record["status"] == "failed"
    assert record["error_code"] == "RATE_LIMITED"


@pytest.mark.asyncio
async def test_invalid_payload_marks_message_failed(db, sender, scripted_gateway):
    consumer = build_consumer(db, scripted_gateway(["wamid.1"]))
    await db.messages.add(
        {"id": "msg-bad", "phone_number_id": "pn-1", "to_address": "+1555", "type": "text"}
    )
    job = QueuedJob(id="job-1", queue="message-queue", payload={"messageId": "msg-bad", "type": "text"})

    with pytest.raises(InvalidJobError):
        await consumer.process(job)

    record = await db.messages.get("msg-bad")
    assert record["status"] == "failed"
    assert record["error_code"] == "INVALID_PAYLOAD"


@pytest.mark.asyncio
async def test_missing_message_record_is_unrecoverable(db, sender, scripted_gateway):
    gateway = scripted_gateway(["wamid.1"])
    consumer = build_consumer(db, gateway)
    job = QueuedJob(
        id="job-1",
        queue="message-queue",
        payload={"messageId": "ghost", "phoneNumberId": "pn-1", "to": "+1555", "type": "text",
                 "content": {"text": "hi"}},
    )

    with pytest.raises(MessageNotFoundError):
        await consumer.process(job)
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_already_sent_message_is_not_sent_again(db, queue, sender, scripted_gateway):
    gateway = scripted_gateway(["wamid.again"])
    consumer = build_consumer(db, gateway)
    await submit_text(db, queue)
    await db.messages.mark_sent("msg-1", "wamid.first", "2025-01-31T12:00:00Z")

    await build_worker(queue, consumer).drain()

    assert gateway.calls == []
    assert (await db.messages.get("msg-1"))["whatsapp_message_id"] == "wamid.first"
    assert await db.usage_records.list_usage() == []


class DummyResponse:
    def __init__(self, body):
        self.status = 200
        self._body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):
        return self._body


class DummySession:
    def __init__(self):
        self.posted = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posted.append((url, json, headers))
        return DummyResponse({"messaging_product": "whatsapp", "messages": [{"id": "wamid.ABC"}]})

    async def close(self):
        pass


@pytest.mark.asyncio
async def test_end_to_end_text_delivery(db, queue, sender):
    session = DummySession()
    gateway = GatewayClient(session, base_url="https://graph.facebook.com", api_version="v18.0")
    consumer = build_consumer(db, gateway)
    await submit_text(db, queue)

    await build_worker(queue, consumer).drain()

    url, body, headers = session.posted[0]
    assert url == "https://graph.facebook.com/v18.0/1234567890/messages"
    assert body == {
        "messaging_product": "whatsapp",
        "to": "+15551234567",
        "type": "text",
        "text": {"body": "hello"},
    }
    assert headers["Authorization"] == "Bearer secret-token"
    record = await db.messages.get("msg-1")
    assert record["status"] == "sent"
    assert record["whatsapp_message_id"] == "wamid.ABC"
