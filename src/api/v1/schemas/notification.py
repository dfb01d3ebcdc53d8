"""Pydantic schemas for Notification API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from api.v1.schemas.message import MessageResponse
from domain.entities.message import ChannelType
from domain.entities.notification import (
    Importance,
    Notification,
    NotificationDirection,
    NotificationRecipient,
    NotificationStatus,
)
from domain.entities.preference import BlockReason


class NotificationRecipientSchema(BaseModel):
    """A contact and its address on each channel."""

    model_config = ConfigDict(from_attributes=True)

    contact_id: str = Field(..., min_length=1, max_length=255)
    addresses: dict[str, str] = Field(default_factory=dict)
    name: str | None = Field(None, max_length=255)

    def to_entity(self) -> NotificationRecipient:
        return NotificationRecipient(
            contact_id=self.contact_id,
            addresses=dict(self.addresses),
            name=self.name,
        )


class NotificationCreate(BaseModel):
    """Schema for creating a Notification."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "invoice.issued",
                "importance": "high",
                "subject": "Your invoice",
                "body": "Invoice #42 is ready.",
                "category": "billing",
                "channels": ["email"],
                "recipients": [
                    {"contact_id": "c-1", "addresses": {"email": "ada@example.com"}}
                ],
            }
        },
    )

    type: str = Field(..., min_length=1, max_length=100)
    importance: Importance = Importance.NORMAL
    subject: str | None = Field(None, max_length=500)
    body: str | None = None
    category: str | None = Field(None, max_length=100)
    sender: str | None = Field(None, max_length=255)
    channels: list[ChannelType] = Field(..., min_length=1)
    recipients: list[NotificationRecipientSchema] = Field(..., min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationUpdate(BaseModel):
    """Schema for updating a Notification (all fields optional)."""

    type: str | None = Field(None, min_length=1, max_length=100)
    importance: Importance | None = None
    subject: str | None = Field(None, max_length=500)
    body: str | None = None
    category: str | None = Field(None, max_length=100)
    sender: str | None = Field(None, max_length=255)
    channels: list[ChannelType] | None = Field(None, min_length=1)
    recipients: list[NotificationRecipientSchema] | None = Field(None, min_length=1)
    context: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class NotificationScheduleRequest(BaseModel):
    scheduled_at: datetime


class NotificationResponse(BaseModel):
    """Schema for Notification response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    importance: Importance
    status: NotificationStatus
    direction: NotificationDirection
    subject: str | None = None
    body: str | None = None
    category: str | None = None
    sender: str | None = None
    channels: list[ChannelType]
    recipients: list[NotificationRecipientSchema]
    context: dict[str, Any]
    metadata: dict[str, Any]
    scheduled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    sent_at: datetime | None = None

    @classmethod
    def from_entity(cls, notification: Notification) -> "NotificationResponse":
        return cls.model_validate(notification)


class NotificationDetailResponse(BaseModel):
    """Schema for single Notification response."""

    data: NotificationResponse


class GatedTargetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    contact_id: str
    channel: ChannelType
    address: str
    reason: BlockReason


class UnsentTargetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    contact_id: str
    channel: ChannelType
    address: str
    error: str


class DispatchResponse(BaseModel):
    """Result of dispatching a notification."""

    notification: NotificationResponse
    messages: list[MessageResponse]
    gated: list[GatedTargetResponse]
    unsent: list[UnsentTargetResponse] = []


class DispatchDetailResponse(BaseModel):
    data: DispatchResponse


class NotificationStatsResponse(BaseModel):
    """Delivery and engagement roll-up (rates in percent)."""

    model_config = ConfigDict(from_attributes=True)

    notification_id: UUID
    message_stats: dict[str, int]
    total_recipients: int
    unique_recipients: int
    opened_recipients: int
    clicked_recipients: int
    total_opens: int
    total_clicks: int
    delivery_rate: float
    open_rate: float
    click_rate: float
    click_through_rate: float


class NotificationStatsDetailResponse(BaseModel):
    data: NotificationStatsResponse
