"""Message domain entities.

A Message is one send over one channel. Channel specifics live in a
``payload`` whose concrete type is chosen by ``channel``.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from core.clock import utcnow
from core.ids import new_id


class MessageStatus(StrEnum):
    """Lifecycle states of a Message."""

    PENDING = "pending"
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"
    CANCELLED = "cancelled"
    RETRYING = "retrying"


class ChannelType(StrEnum):
    """Delivery channels a Message can travel over."""

    EMAIL = "email"
    SMS = "sms"
    CHAT = "chat"
    PUSH = "push"
    WEBHOOK = "webhook"


class MessageDirection(StrEnum):
    """Whether the message leaves or enters the system."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"
    DRAFT = "draft"


class RecipientType(StrEnum):
    TO = "to"
    CC = "cc"
    BCC = "bcc"


class RecipientStatus(StrEnum):
    """Per-recipient delivery state."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    UNSUBSCRIBED = "unsubscribed"
    FAILED = "failed"


class EventType(StrEnum):
    """Kinds of entries in a Message timeline."""

    QUEUED = "queued"
    ACCEPTED = "accepted"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    UNSUBSCRIBED = "unsubscribed"
    FAILED = "failed"
    RETRIED = "retried"
    CANCELLED = "cancelled"


# --- Channel payloads ---


@dataclass
class EmailPayload:
    subject: str | None = None
    from_email: str | None = None
    from_name: str | None = None
    reply_to: str | None = None


@dataclass
class SmsPayload:
    from_number: str | None = None
    segments: int = 1


@dataclass
class ChatPayload:
    platform: str | None = None
    channel_name: str | None = None
    thread_id: str | None = None


@dataclass
class PushPayload:
    title: str | None = None
    device_token: str | None = None
    badge: int | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookPayload:
    url: str | None = None
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)


ChannelPayload = EmailPayload | SmsPayload | ChatPayload | PushPayload | WebhookPayload

PAYLOAD_TYPES: dict[ChannelType, type] = {
    ChannelType.EMAIL: EmailPayload,
    ChannelType.SMS: SmsPayload,
    ChannelType.CHAT: ChatPayload,
    ChannelType.PUSH: PushPayload,
    ChannelType.WEBHOOK: WebhookPayload,
}


def payload_from_dict(channel: ChannelType, data: dict[str, Any] | None) -> ChannelPayload:
    """Build the payload variant for ``channel``, ignoring unknown keys."""
    payload_type = PAYLOAD_TYPES[ChannelType(channel)]
    known = payload_type.__dataclass_fields__
    return payload_type(**{k: v for k, v in (data or {}).items() if k in known})  # type: ignore[no-any-return]


def payload_to_dict(payload: ChannelPayload) -> dict[str, Any]:
    return asdict(payload)


# --- Entities ---


@dataclass
class MessageContent:
    """Body of a message (zero or one per Message)."""

    message_id: UUID
    id: UUID = field(default_factory=new_id)
    subject: str | None = None
    body_text: str | None = None
    body_html: str | None = None


@dataclass
class MessageRecipient:
    """One address a Message is sent to."""

    message_id: UUID
    address: str
    id: UUID = field(default_factory=new_id)
    recipient_type: RecipientType = RecipientType.TO
    name: str | None = None
    status: RecipientStatus = RecipientStatus.PENDING
    delivered_at: datetime | None = None
    opened_at: datetime | None = None
    clicked_at: datetime | None = None
    bounced_at: datetime | None = None
    open_count: int = 0
    click_count: int = 0


@dataclass(frozen=True)
class MessageEvent:
    """Immutable timeline entry for a Message."""

    message_id: UUID
    event_type: EventType
    id: UUID = field(default_factory=new_id)
    recipient_id: UUID | None = None
    event_data: dict[str, Any] = field(default_factory=dict)
    previous_status: MessageStatus | None = None
    resulting_status: MessageStatus | None = None
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass
class Message:
    """Domain entity for a single tracked send."""

    channel: ChannelType
    id: UUID = field(default_factory=new_id)
    status: MessageStatus = MessageStatus.PENDING
    direction: MessageDirection = MessageDirection.OUTBOUND
    transport_name: str | None = None
    messenger_stamp_id: str | None = None
    content_fingerprint: str | None = None
    notification_id: UUID | None = None
    retry_count: int = 0
    failure_reason: str | None = None
    scheduled_at: datetime | None = None
    schedule_override: bool = False
    payload: ChannelPayload | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    content: MessageContent | None = None
    recipients: list[MessageRecipient] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    sent_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.payload is None:
            self.payload = PAYLOAD_TYPES[self.channel]()

    def effective_scheduled_at(self, notification_scheduled_at: datetime | None) -> datetime | None:
        """Message schedule wins over the notification's only when overridden."""
        if self.schedule_override and self.scheduled_at is not None:
            return self.scheduled_at
        return notification_scheduled_at if notification_scheduled_at else self.scheduled_at

    def find_recipient(self, address: str | None) -> MessageRecipient | None:
        if not address:
            return None
        wanted = address.strip().lower()
        for recipient in self.recipients:
            if recipient.address.strip().lower() == wanted:
                return recipient
        return None
