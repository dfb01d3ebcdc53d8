"""Pydantic schemas for Message API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from domain.entities.message import (
    ChannelType,
    EventType,
    Message,
    MessageDirection,
    MessageStatus,
    RecipientStatus,
    RecipientType,
    payload_to_dict,
)


class MessageContentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject: str | None = None
    body_text: str | None = None
    body_html: str | None = None


class MessageRecipientResponse(BaseModel):
    """One address of a message with its engagement."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    address: str
    recipient_type: RecipientType
    name: str | None = None
    status: RecipientStatus
    delivered_at: datetime | None = None
    opened_at: datetime | None = None
    clicked_at: datetime | None = None
    bounced_at: datetime | None = None
    open_count: int
    click_count: int


class MessageResponse(BaseModel):
    """Schema for Message response."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "01927c3e-5a10-7000-8000-000000000001",
                "channel": "email",
                "status": "delivered",
                "direction": "outbound",
                "messenger_stamp_id": "stamp-7f3a",
                "retry_count": 0,
                "payload": {"subject": "Your invoice"},
                "recipients": [],
            }
        },
    )

    id: UUID
    channel: ChannelType
    status: MessageStatus
    direction: MessageDirection
    transport_name: str | None = None
    messenger_stamp_id: str | None = None
    content_fingerprint: str | None = None
    notification_id: UUID | None = None
    retry_count: int
    failure_reason: str | None = None
    scheduled_at: datetime | None = None
    schedule_override: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    content: MessageContentResponse | None = None
    recipients: list[MessageRecipientResponse] = []
    created_at: datetime
    updated_at: datetime
    sent_at: datetime | None = None

    @classmethod
    def from_entity(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            channel=message.channel,
            status=message.status,
            direction=message.direction,
            transport_name=message.transport_name,
            messenger_stamp_id=message.messenger_stamp_id,
            content_fingerprint=message.content_fingerprint,
            notification_id=message.notification_id,
            retry_count=message.retry_count,
            failure_reason=message.failure_reason,
            scheduled_at=message.scheduled_at,
            schedule_override=message.schedule_override,
            payload=payload_to_dict(message.payload) if message.payload else {},
            metadata=message.metadata,
            content=MessageContentResponse.model_validate(message.content) if message.content else None,
            recipients=[MessageRecipientResponse.model_validate(r) for r in message.recipients],
            created_at=message.created_at,
            updated_at=message.updated_at,
            sent_at=message.sent_at,
        )


class MessageDetailResponse(BaseModel):
    """Schema for single Message response."""

    data: MessageResponse


class MessageEventResponse(BaseModel):
    """One entry of a message timeline."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    message_id: UUID
    recipient_id: UUID | None = None
    event_type: EventType
    event_data: dict[str, Any]
    previous_status: MessageStatus | None = None
    resulting_status: MessageStatus | None = None
    occurred_at: datetime


class MessageEventListResponse(BaseModel):
    data: list[MessageEventResponse]
    meta: dict[str, Any] = Field(default_factory=dict)


class LatestEventResponse(BaseModel):
    data: MessageEventResponse | None


class EngagementResponse(BaseModel):
    """Recipient engagement for a message."""

    model_config = ConfigDict(from_attributes=True)

    message_id: UUID
    total_recipients: int
    delivered: int
    opened: int
    clicked: int
    bounced: int
    total_opens: int
    total_clicks: int


class EngagementDetailResponse(BaseModel):
    data: EngagementResponse


class CancelMessageRequest(BaseModel):
    """Schema for cancelling a message."""

    reason: str | None = Field(None, max_length=500)
