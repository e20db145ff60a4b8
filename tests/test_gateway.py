import json

import aiohttp
import pytest

from wa_delivery.gateway import (
    NETWORK_ERROR_CODE,
    UNKNOWN_ERROR_CODE,
    GatewayClient,
    GatewayError,
)
from wa_delivery.models import MessageJob, MessageType, SenderIdentity

SENDER = SenderIdentity(
    id="pn-1",
    tenant_id="tenant-1",
    provider_phone_number_id="1234567890",
    access_token="secret-token",
)


class DummyResponse:
    def __init__(self, status=200, body=None, raw=None, error=None):
        self.status = status
        self._body = body
        self._raw = raw
        self._error = error

    async def __aenter__(self):
        if self._error is not None:
            raise self._error
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type="application/json"):
        if self._raw is not None:
            return json.loads(self._raw)
        return self._body


class DummySession:
    def __init__(self, response):
        self.response = response
        self.posted = []
        self.closed = False

    def post(self, url, json=None, headers=None, timeout=None):
        self.posted.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return self.response

    async def close(self):
        self.closed = True


def make_job(message_type="text", content=None):
    return MessageJob.model_validate(
        {
            "messageId": "msg-1",
            "phoneNumberId": "pn-1",
            "to": "+15551234567",
            "type": message_type,
            "content": content or {"text": "hello"},
        }
    )


def test_build_payload_text():
    assert GatewayClient.build_payload(make_job()) == {
        "messaging_product": "whatsapp",
        "to": "+15551234567",
        "type": "text",
        "text": {"body": "hello"},
    }


def test_build_payload_template_passthrough():
    template = {"name": "welcome", "language": {"code": "en_US"}, "components": []}
    payload = GatewayClient.build_payload(make_job("template", {"template": template}))
    assert payload["type"] == "template"
    assert payload["template"] == template


def test_build_payload_media_with_and_without_caption():
    with_caption = GatewayClient.build_payload(
        make_job("media", {"mediaType": "image", "mediaUrl": "https://cdn.example.com/a.png", "caption": "Look"})
    )
    assert with_caption["type"] == "image"
    assert with_caption["image"] == {"link": "https://cdn.example.com/a.png", "caption": "Look"}

    without_caption = GatewayClient.build_payload(
        make_job("media", {"media_type": "document", "media_url": "https://cdn.example.com/a.pdf"})
    )
    assert without_caption["type"] == "document"
    assert without_caption["document"] == {"link": "https://cdn.example.com/a.pdf"}


def test_build_payload_rejects_content_of_another_type():
    job = make_job().model_copy(update={"type": MessageType.TEMPLATE})
    with pytest.raises(ValueError, match="TextContent does not match message type 'template'"):
        GatewayClient.build_payload(job)


@pytest.mark.asyncio
async def test_send_text_posts_expected_request():
    session = DummySession(DummyResponse(200, {"messages": [{"id": "wamid.ABC"}]}))
    client = GatewayClient(session, base_url="https://graph.example.com/", api_version="v18.0")

    provider_id = await client.send(make_job(), SENDER)

    assert provider_id == "wamid.ABC"
    request = session.posted[0]
    assert request["url"] == "https://graph.example.com/v18.0/1234567890/messages"
    assert request["headers"]["Authorization"] == "Bearer secret-token"
    assert request["headers"]["Content-Type"] == "application/json"
    assert request["json"] == {
        "messaging_product": "whatsapp",
        "to": "+15551234567",
        "type": "text",
        "text": {"body": "hello"},
    }


@pytest.mark.asyncio
async def test_provider_error_carries_code_and_status():
    body = {"error": {"code": 131026, "message": "Message undeliverable"}}
    client = GatewayClient(DummySession(DummyResponse(400, body)))

    with pytest.raises(GatewayError) as excinfo:
        await client.send(make_job(), SENDER)

    assert excinfo.value.code == 131026
    assert excinfo.value.message == "Message undeliverable"
    assert excinfo.value.http_status == 400


@pytest.mark.asyncio
async def test_non_json_error_body_is_unknown_error():
    client = GatewayClient(DummySession(DummyResponse(502, raw="<html>Bad gateway</html>")))

    with pytest.raises(GatewayError) as excinfo:
        await client.send(make_job(), SENDER)

    assert excinfo.value.code == UNKNOWN_ERROR_CODE
    assert excinfo.value.http_status == 502


@pytest.mark.asyncio
async def test_success_without_message_id_is_unknown_error():
    client = GatewayClient(DummySession(DummyResponse(200, {"messages": []})))

    with pytest.raises(GatewayError) as excinfo:
        await client.send(make_job(), SENDER)

    assert excinfo.value.code == UNKNOWN_ERROR_CODE


@pytest.mark.asyncio
async def test_transport_error_is_network_error():
    response = DummyResponse(error=aiohttp.ClientConnectionError("connection refused"))
    client = GatewayClient(DummySession(response))

    with pytest.raises(GatewayError) as excinfo:
        await client.send(make_job(), SENDER)

    assert excinfo.value.code == NETWORK_ERROR_CODE
    assert excinfo.value.http_status is None


@pytest.mark.asyncio
async def test_injected_session_is_not_closed():
    session = DummySession(DummyResponse())
    client = GatewayClient(session)

    await client.close()

    assert session.closed is False
