"""SQLAlchemy ORM models."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from core.clock import utcnow
from core.ids import new_id


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class NotificationModel(Base):
    """Notification model: the logical intent to notify."""

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=new_id,
    )
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    importance: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", index=True)
    direction: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    subject: Mapped[str | None] = mapped_column(String(500))
    body: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(String(100))
    sender: Mapped[str | None] = mapped_column(String(255))
    channels: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    recipients: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)
    context: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    # Relationships
    messages: Mapped[list["MessageModel"]] = relationship(
        "MessageModel",
        back_populates="notification",
    )


class MessageModel(Base):
    """Message model: one tracked send over one channel."""

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_fingerprint_created", "content_fingerprint", "created_at"),)

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=new_id,
    )
    notification_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("notifications.id", ondelete="SET NULL"),
        index=True,
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    direction: Mapped[str] = mapped_column(String(20), nullable=False, default="outbound")
    transport_name: Mapped[str | None] = mapped_column(String(100))
    messenger_stamp_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    content_fingerprint: Mapped[str | None] = mapped_column(String(64))
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    schedule_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    # Relationships
    notification: Mapped["NotificationModel | None"] = relationship(
        "NotificationModel",
        back_populates="messages",
    )
    content: Mapped["MessageContentModel | None"] = relationship(
        "MessageContentModel",
        back_populates="message",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )
    recipients: Mapped[list["MessageRecipientModel"]] = relationship(
        "MessageRecipientModel",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageRecipientModel.id",
        lazy="selectin",
    )


class MessageContentModel(Base):
    """Message body model (zero or one per message)."""

    __tablename__ = "message_contents"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=new_id,
    )
    message_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    subject: Mapped[str | None] = mapped_column(String(500))
    body_text: Mapped[str | None] = mapped_column(Text)
    body_html: Mapped[str | None] = mapped_column(Text)

    # Relationships
    message: Mapped["MessageModel"] = relationship("MessageModel", back_populates="content")


class MessageRecipientModel(Base):
    """Per-address delivery and engagement model."""

    __tablename__ = "message_recipients"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=new_id,
    )
    message_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    address: Mapped[str] = mapped_column(String(320), nullable=False)
    recipient_type: Mapped[str] = mapped_column(String(10), nullable=False, default="to")
    name: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    clicked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    bounced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    open_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    click_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    message: Mapped["MessageModel"] = relationship("MessageModel", back_populates="recipients")


class MessageEventModel(Base):
    """Append-only message timeline model."""

    __tablename__ = "message_events"
    __table_args__ = (Index("ix_message_events_timeline", "message_id", "occurred_at", "id"),)

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=new_id,
    )
    message_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
    )
    recipient_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("message_recipients.id", ondelete="SET NULL"),
    )
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    event_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    previous_status: Mapped[str | None] = mapped_column(String(20))
    resulting_status: Mapped[str | None] = mapped_column(String(20))
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ChannelPreferenceModel(Base):
    """Contact channel preference model."""

    __tablename__ = "channel_preferences"
    __table_args__ = (UniqueConstraint("contact_id", "channel"),)

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=new_id,
    )
    contact_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    allow_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_transactional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_marketing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allow_promotional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="immediate")
    minimum_priority: Mapped[str] = mapped_column(String(20), nullable=False, default="all")
    quiet_hours: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)
    allowed_categories: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    blocked_categories: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    allowed_senders: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    blocked_senders: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    max_per_hour: Mapped[int | None] = mapped_column(Integer)
    max_per_day: Mapped[int | None] = mapped_column(Integer)
    max_per_week: Mapped[int | None] = mapped_column(Integer)
    messages_this_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    messages_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    messages_this_week: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_opt_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_opt_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    opt_out_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
