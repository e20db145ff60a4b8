# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""HTTP client for the WhatsApp Cloud API messages endpoint.

The client translates a :class:`~wa_delivery.models.MessageJob` into the
provider's JSON body and performs exactly one authenticated POST per call.
Retry decisions belong to the caller.

Request::

    POST {base_url}/{api_version}/{provider_phone_number_id}/messages
    Authorization: Bearer <tenant credential>

    {"messaging_product": "whatsapp", "to": "+15551234567",
     "type": "text", "text": {"body": "hello"}}

Responses are ``{"messages": [{"id": "wamid..."}]}`` on success and
``{"error": {"code": 131026, "message": "..."}}`` on failure.

Example:
    Sending a job::

        async with GatewayClient() as gateway:
            wamid = await gateway.send(job, sender)
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp

from .logger import get_logger
from .models import MediaContent, MessageJob, MessageType, SenderIdentity, TemplateContent, TextContent

DEFAULT_BASE_URL = "https://graph.facebook.com"
DEFAULT_API_VERSION = "v18.0"
DEFAULT_TIMEOUT = 30.0

UNKNOWN_ERROR_CODE = "UNKNOWN_ERROR"
UNKNOWN_ERROR_MESSAGE = "Unknown error from provider"
NETWORK_ERROR_CODE = "NETWORK_ERROR"


class GatewayError(RuntimeError):
    """A provider call did not return a message id.

    Attributes:
        code: Provider numeric error code, or ``UNKNOWN_ERROR`` /
            ``NETWORK_ERROR`` when the provider gave none.
        message: Human-readable reason.
        http_status: HTTP status of the response, None for transport errors.
    """

    def __init__(self, code: int | str, message: str, http_status: int | None = None):
        super().__init__(f"{message} (code {code})")
        self.code = code
        self.message = message
        self.http_status = http_status


class GatewayClient:
    """Single-attempt sender for the provider's messages endpoint.

    The aiohttp session can be injected (shared with other components); when
    omitted it is created on first use and released by :meth:`close`.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        logger=None,
    ):
        self._session = session
        self._owns_session = session is None
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = float(timeout)
        self.logger = logger or get_logger("GatewayClient")

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def messages_url(self, sender: SenderIdentity) -> str:
        return f"{self.base_url}/{self.api_version}/{sender.provider_phone_number_id}/messages"

    @staticmethod
    def build_payload(job: MessageJob) -> dict[str, Any]:
        """Build the provider request body for ``job``."""
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "to": job.to,
        }
        match job.content:
            case TextContent(text=body) if job.type == MessageType.TEXT:
                payload["type"] = "text"
                payload["text"] = {"body": body}
            case TemplateContent(template=template) if job.type == MessageType.TEMPLATE:
                payload["type"] = "template"
                payload["template"] = template
            case MediaContent() as content if job.type == MessageType.MEDIA:
                media_type = content.media_type.value
                media: dict[str, Any] = {"link": content.media_url}
                if content.caption is not None:
                    media["caption"] = content.caption
                payload["type"] = media_type
                payload[media_type] = media
            case other:
                raise ValueError(
                    f"{type(other).__name__} does not match message type '{job.type.value}'"
                )
        return payload

    @staticmethod
    def _headers(sender: SenderIdentity) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {sender.access_token}",
            "Content-Type": "application/json",
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def send(self, job: MessageJob, sender: SenderIdentity) -> str:
        """Send ``job`` on behalf of ``sender``; return the provider message id.

        Raises:
            GatewayError: On any non-success outcome.
        """
        url = self.messages_url(sender)
        payload = self.build_payload(job)
        session = await self._get_session()
        self.logger.debug("POST %s for message %s", url, job.message_id)
        try:
            async with session.post(
                url,
                json=payload,
                headers=self._headers(sender),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                status = response.status
                body = await self._read_json(response)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise GatewayError(NETWORK_ERROR_CODE, str(exc) or type(exc).__name__) from exc

        if 200 <= status < 300:
            provider_id = self._extract_message_id(body)
            if provider_id:
                return provider_id
            raise GatewayError(UNKNOWN_ERROR_CODE, "Provider response has no message id", status)
        raise self._error_from_body(body, status)

    @staticmethod
    async def _read_json(response: aiohttp.ClientResponse) -> Any:
        try:
            return await response.json(content_type=None)
        except (aiohttp.ContentTypeError, json.JSONDecodeError, ValueError):
            return None

    @staticmethod
    def _extract_message_id(body: Any) -> str | None:
        if not isinstance(body, dict):
            return None
        messages = body.get("messages")
        if isinstance(messages, list) and messages:
            first = messages[0]
        else:
            first = messages
        if isinstance(first, dict) and first.get("id"):
            return str(first["id"])
        return None

    @staticmethod
    def _error_from_body(body: Any, status: int) -> GatewayError:
        error = body.get("error") if isinstance(body, dict) else None
        if not isinstance(error, dict):
            return GatewayError(UNKNOWN_ERROR_CODE, f"{UNKNOWN_ERROR_MESSAGE} (HTTP {status})", status)
        code = error.get("code")
        message = error.get("message") or UNKNOWN_ERROR_MESSAGE
        return GatewayError(code if code is not None else UNKNOWN_ERROR_CODE, str(message), status)


__all__ = [
    "DEFAULT_API_VERSION",
    "DEFAULT_BASE_URL",
    "GatewayClient",
    "GatewayError",
    "NETWORK_ERROR_CODE",
    "UNKNOWN_ERROR_CODE",
]
