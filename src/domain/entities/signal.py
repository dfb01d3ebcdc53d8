"""Signals observed from the transport layer and the outcome of handling them."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from core.clock import utcnow
from domain.entities.message import ChannelType, EventType, Message, MessageEvent


class SignalKind(StrEnum):
    """What the transport layer saw happen to a send."""

    QUEUED = "queued"
    TRANSPORT_ACCEPTED = "transport-accepted"
    TRANSPORT_SUCCESS = "transport-success"
    TRANSPORT_FAILURE = "transport-failure"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    UNSUBSCRIBED = "unsubscribed"


SIGNAL_EVENT_TYPES: dict[SignalKind, EventType] = {
    SignalKind.QUEUED: EventType.QUEUED,
    SignalKind.TRANSPORT_ACCEPTED: EventType.ACCEPTED,
    SignalKind.TRANSPORT_SUCCESS: EventType.SENT,
    SignalKind.TRANSPORT_FAILURE: EventType.FAILED,
    SignalKind.DELIVERED: EventType.DELIVERED,
    SignalKind.OPENED: EventType.OPENED,
    SignalKind.CLICKED: EventType.CLICKED,
    SignalKind.BOUNCED: EventType.BOUNCED,
    SignalKind.COMPLAINED: EventType.COMPLAINED,
    SignalKind.UNSUBSCRIBED: EventType.UNSUBSCRIBED,
}


@dataclass(frozen=True)
class SignalContent:
    """Message content carried by a signal, used to derive a fingerprint."""

    subject: str | None = None
    body: str | None = None
    sender: str | None = None
    recipients: tuple[str, ...] = ()


@dataclass(frozen=True)
class Signal:
    """One at-least-once observation of a send attempt."""

    kind: SignalKind
    channel: ChannelType
    stamp_id: str | None = None
    fingerprint: str | None = None
    recipient_address: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)
    notification_id: UUID | None = None
    transport_name: str | None = None
    content: SignalContent | None = None
    failure_reason: str | None = None
    scheduled_at: datetime | None = None
    schedule_override: bool = False


@dataclass(frozen=True)
class SignalResult:
    """Outcome of handling one signal.

    ``conflict`` is set when the implied status change was refused; the event
    is still recorded. ``duplicate`` is set when the signal attached to an
    existing Message rather than creating one.
    """

    message: Message
    event: MessageEvent
    conflict: bool = False
    duplicate: bool = False
    created: bool = False
    conflict_reason: str | None = None
