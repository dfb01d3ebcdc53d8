"""Notification domain entities."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from core.clock import utcnow
from core.ids import new_id
from domain.entities.message import ChannelType


class NotificationStatus(StrEnum):
    """Lifecycle states of a Notification."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NotificationDirection(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    DRAFT = "draft"


class Importance(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# Importance expressed as a preference priority token
IMPORTANCE_PRIORITY: dict[Importance, str] = {
    Importance.LOW: "low",
    Importance.NORMAL: "medium",
    Importance.HIGH: "high",
    Importance.URGENT: "high",
}


@dataclass
class NotificationRecipient:
    """A contact addressed by a Notification, with one address per channel."""

    contact_id: str
    addresses: dict[str, str] = field(default_factory=dict)
    name: str | None = None

    def address_for(self, channel: ChannelType) -> str | None:
        return self.addresses.get(str(channel))


@dataclass
class Notification:
    """Domain entity for a logical intent to notify."""

    type: str
    id: UUID = field(default_factory=new_id)
    importance: Importance = Importance.NORMAL
    status: NotificationStatus = NotificationStatus.DRAFT
    direction: NotificationDirection = NotificationDirection.DRAFT
    subject: str | None = None
    body: str | None = None
    category: str | None = None
    sender: str | None = None
    channels: list[ChannelType] = field(default_factory=list)
    recipients: list[NotificationRecipient] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    scheduled_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    sent_at: datetime | None = None

    @property
    def priority(self) -> str:
        return IMPORTANCE_PRIORITY[self.importance]


@dataclass(frozen=True, slots=True)
class NotificationStats:
    """Read-only roll-up of a notification's messages."""

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
