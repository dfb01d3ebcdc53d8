"""Pydantic schemas for the signal ingestion API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from api.v1.schemas.message import MessageEventResponse, MessageResponse
from domain.entities.message import ChannelType
from domain.entities.signal import Signal, SignalContent, SignalKind


class SignalContentRequest(BaseModel):
    """Content a fingerprint is derived from when none is supplied."""

    subject: str | None = Field(None, max_length=500)
    body: str | None = None
    sender: str | None = Field(None, max_length=255)
    recipients: list[str] = Field(default_factory=list)


class SignalRequest(BaseModel):
    """Schema for reporting one transport observation."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "kind": "transport-success",
                "channel": "email",
                "stamp_id": "stamp-7f3a",
                "recipient_address": "ada@example.com",
                "transport_name": "smtp",
                "payload": {"subject": "Your invoice"},
            }
        },
    )

    kind: SignalKind
    channel: ChannelType
    stamp_id: str | None = Field(None, min_length=1, max_length=255)
    fingerprint: str | None = Field(None, pattern="^[0-9a-f]{64}$")
    recipient_address: str | None = Field(None, max_length=320)
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime | None = None
    notification_id: UUID | None = None
    transport_name: str | None = Field(None, max_length=100)
    content: SignalContentRequest | None = None
    failure_reason: str | None = None
    scheduled_at: datetime | None = None
    schedule_override: bool = False

    def to_signal(self, now: datetime) -> Signal:
        content = None
        if self.content is not None:
            content = SignalContent(
                subject=self.content.subject,
                body=self.content.body,
                sender=self.content.sender,
                recipients=tuple(self.content.recipients),
            )
        return Signal(
            kind=self.kind,
            channel=self.channel,
            stamp_id=self.stamp_id,
            fingerprint=self.fingerprint,
            recipient_address=self.recipient_address,
            payload=self.payload,
            occurred_at=self.occurred_at or now,
            notification_id=self.notification_id,
            transport_name=self.transport_name,
            content=content,
            failure_reason=self.failure_reason,
            scheduled_at=self.scheduled_at,
            schedule_override=self.schedule_override,
        )


class SignalResultResponse(BaseModel):
    """Outcome of a signal: the message it landed on and the recorded event."""

    message: MessageResponse
    event: MessageEventResponse
    conflict: bool
    conflict_reason: str | None = None
    duplicate: bool
    created: bool


class SignalResultDetailResponse(BaseModel):
    data: SignalResultResponse
