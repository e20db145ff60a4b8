# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for outbound message jobs.

Models:
    - TextContent: body of a plain-text message
    - TemplateContent: pre-approved template reference and parameters
    - MediaContent: media attachment (image, video, document, audio)
    - MessageJob: payload of one queued delivery job

Job payloads are produced by the portal's API layer with camelCase keys
(``messageId``, ``phoneNumberId``, ``mediaType``...); snake_case names are
accepted too.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MessageType(str, Enum):
    """Kinds of outbound message.

    Attributes:
        TEXT: Plain text body.
        TEMPLATE: Provider-approved template.
        MEDIA: Media attachment with optional caption.
    """

    TEXT = "text"
    TEMPLATE = "template"
    MEDIA = "media"


class MediaType(str, Enum):
    """Media discriminators accepted by the provider."""

    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    AUDIO = "audio"


class TextContent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: Annotated[str, Field(min_length=1, description="Message body")]


class TemplateContent(BaseModel):
    """Template reference passed through to the provider as given."""

    model_config = ConfigDict(extra="forbid")

    template: Annotated[
        dict[str, Any],
        Field(description="Template object: name, language, components")
    ]


class MediaContent(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    media_type: Annotated[MediaType, Field(alias="mediaType")]
    media_url: Annotated[str, Field(alias="mediaUrl", min_length=1)]
    caption: str | None = None


CONTENT_MODELS: dict[str, type[BaseModel]] = {
    MessageType.TEXT.value: TextContent,
    MessageType.TEMPLATE.value: TemplateContent,
    MessageType.MEDIA.value: MediaContent,
}


class MessageJob(BaseModel):
    """Payload of a queued delivery job.

    Attributes:
        message_id: Id of the persisted message record.
        phone_number_id: Sender identity (phone number record id).
        to: Recipient address in E.164 form.
        type: Message type, selects the content model.
        content: Type-specific content.
    """

    model_config = ConfigDict(populate_by_name=True)

    message_id: Annotated[str, Field(alias="messageId", min_length=1)]
    phone_number_id: Annotated[str, Field(alias="phoneNumberId", min_length=1)]
    to: Annotated[str, Field(min_length=1)]
    type: MessageType
    content: TextContent | TemplateContent | MediaContent

    @model_validator(mode="after")
    def _check_content_matches_type(self) -> MessageJob:
        # Content models forbid extra keys, so the union picks at most one.
        expected = CONTENT_MODELS[self.type.value]
        if not isinstance(self.content, expected):
            raise ValueError(f"content does not match message type '{self.type.value}'")
        return self

    def to_payload(self) -> dict[str, Any]:
        """Serialise as a queue payload (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def content_dict(self) -> dict[str, Any]:
        return self.content.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class SenderIdentity:
    """Phone number record joined with its tenant's provider credential."""

    id: str
    tenant_id: str
    provider_phone_number_id: str
    access_token: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SenderIdentity:
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            provider_phone_number_id=row["whatsapp_business_phone_number_id"],
            access_token=row.get("meta_app_secret") or "",
        )


__all__ = [
    "CONTENT_MODELS",
    "MediaContent",
    "MediaType",
    "MessageJob",
    "MessageType",
    "SenderIdentity",
    "TemplateContent",
    "TextContent",
]
