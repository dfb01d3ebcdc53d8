"""SQLAlchemy implementation of Message repository."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import ensure_utc
from domain.entities.message import (
    ChannelType,
    EventType,
    Message,
    MessageContent,
    MessageDirection,
    MessageEvent,
    MessageRecipient,
    MessageStatus,
    RecipientStatus,
    RecipientType,
    payload_from_dict,
    payload_to_dict,
)
from infrastructure.database.models import (
    MessageContentModel,
    MessageEventModel,
    MessageModel,
    MessageRecipientModel,
)


class SQLAlchemyMessageRepository:
    """SQLAlchemy implementation of IMessageRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # --- Messages ---

    async def get(self, message_id: UUID, for_update: bool = False) -> Message | None:
        """Get a message by ID."""
        model = await self._fetch_one(select(MessageModel).where(MessageModel.id == message_id), for_update)
        return self._to_entity(model) if model else None

    async def find_by_stamp_id(self, stamp_id: str, for_update: bool = False) -> Message | None:
        """Get the message registered under a messenger stamp id."""
        stmt = select(MessageModel).where(MessageModel.messenger_stamp_id == stamp_id)
        model = await self._fetch_one(stmt, for_update)
        return self._to_entity(model) if model else None

    async def find_recent_by_fingerprint(self, fingerprint: str, since: datetime) -> list[Message]:
        """Get messages sharing a content fingerprint, oldest first."""
        stmt = (
            select(MessageModel)
            .where(
                MessageModel.content_fingerprint == fingerprint,
                MessageModel.created_at >= since,
            )
            .order_by(MessageModel.created_at, MessageModel.id)
        )
        result = await self._session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars()]

    async def create(self, message: Message) -> Message:
        """Create a message with its content and recipients."""
        model = self._to_model(message)
        self._session.add(model)
        await self._session.flush()
        return self._to_entity(model)

    async def save(self, message: Message) -> Message:
        """Persist changes to an existing message."""
        model = await self._fetch_one(select(MessageModel).where(MessageModel.id == message.id), False)
        if not model:
            raise ValueError(f"Message {message.id} not found")

        model.status = str(message.status)
        model.direction = str(message.direction)
        model.transport_name = message.transport_name
        model.messenger_stamp_id = message.messenger_stamp_id
        model.content_fingerprint = message.content_fingerprint
        model.retry_count = message.retry_count
        model.failure_reason = message.failure_reason
        model.scheduled_at = message.scheduled_at
        model.schedule_override = message.schedule_override
        model.payload = payload_to_dict(message.payload) if message.payload else {}
        model.metadata_ = message.metadata
        model.sent_at = message.sent_at
        model.updated_at = message.updated_at

        if message.content is not None:
            if model.content is None:
                model.content = self._content_to_model(message.content)
            else:
                model.content.subject = message.content.subject
                model.content.body_text = message.content.body_text
                model.content.body_html = message.content.body_html

        existing = {r.id: r for r in model.recipients}
        for recipient in message.recipients:
            row = existing.get(recipient.id)
            if row is None:
                model.recipients.append(self._recipient_to_model(recipient))
                continue
            row.status = str(recipient.status)
            row.name = recipient.name
            row.delivered_at = recipient.delivered_at
            row.opened_at = recipient.opened_at
            row.clicked_at = recipient.clicked_at
            row.bounced_at = recipient.bounced_at
            row.open_count = recipient.open_count
            row.click_count = recipient.click_count

        await self._session.flush()
        return self._to_entity(model)

    async def list_for_notification(self, notification_id: UUID) -> list[Message]:
        """Get all messages dispatched for a notification."""
        stmt = (
            select(MessageModel)
            .where(MessageModel.notification_id == notification_id)
            .order_by(MessageModel.created_at, MessageModel.id)
        )
        result = await self._session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars()]

    async def _fetch_one(self, stmt: Select[tuple[MessageModel]], for_update: bool) -> MessageModel | None:
        if for_update:
            # SQLite ignores FOR UPDATE; Postgres takes a row lock
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    # --- Events ---

    async def append_event(self, event: MessageEvent) -> MessageEvent:
        """Append an event to a message timeline."""
        model = MessageEventModel(
            id=event.id,
            message_id=event.message_id,
            recipient_id=event.recipient_id,
            event_type=str(event.event_type),
            event_data=event.event_data,
            previous_status=str(event.previous_status) if event.previous_status else None,
            resulting_status=str(event.resulting_status) if event.resulting_status else None,
            occurred_at=event.occurred_at,
        )
        self._session.add(model)
        await self._session.flush()
        return self._event_to_entity(model)

    async def list_events(self, message_id: UUID, limit: int | None = None) -> list[MessageEvent]:
        """Get a message timeline, newest first."""
        stmt = (
            select(MessageEventModel)
            .where(MessageEventModel.message_id == message_id)
            .order_by(MessageEventModel.occurred_at.desc(), MessageEventModel.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [self._event_to_entity(model) for model in result.scalars()]

    async def get_latest_event(self, message_id: UUID) -> MessageEvent | None:
        """Get the newest event of a message."""
        events = await self.list_events(message_id, limit=1)
        return events[0] if events else None

    # --- Conversion methods ---

    def _to_entity(self, model: MessageModel) -> Message:
        """Convert MessageModel to domain entity."""
        channel = ChannelType(model.channel)
        content = model.content
        return Message(
            id=model.id,
            channel=channel,
            status=MessageStatus(model.status),
            direction=MessageDirection(model.direction),
            transport_name=model.transport_name,
            messenger_stamp_id=model.messenger_stamp_id,
            content_fingerprint=model.content_fingerprint,
            notification_id=model.notification_id,
            retry_count=model.retry_count,
            failure_reason=model.failure_reason,
            scheduled_at=ensure_utc(model.scheduled_at),
            schedule_override=model.schedule_override,
            payload=payload_from_dict(channel, model.payload),
            metadata=dict(model.metadata_ or {}),
            content=(
                MessageContent(
                    id=content.id,
                    message_id=content.message_id,
                    subject=content.subject,
                    body_text=content.body_text,
                    body_html=content.body_html,
                )
                if content
                else None
            ),
            recipients=[self._recipient_to_entity(r) for r in model.recipients],
            created_at=ensure_utc(model.created_at),  # type: ignore[arg-type]
            updated_at=ensure_utc(model.updated_at),  # type: ignore[arg-type]
            sent_at=ensure_utc(model.sent_at),
        )

    def _to_model(self, entity: Message) -> MessageModel:
        """Convert Message domain entity to ORM model."""
        model = MessageModel(
            id=entity.id,
            notification_id=entity.notification_id,
            channel=str(entity.channel),
            status=str(entity.status),
            direction=str(entity.direction),
            transport_name=entity.transport_name,
            messenger_stamp_id=entity.messenger_stamp_id,
            content_fingerprint=entity.content_fingerprint,
            retry_count=entity.retry_count,
            failure_reason=entity.failure_reason,
            scheduled_at=entity.scheduled_at,
            schedule_override=entity.schedule_override,
            payload=payload_to_dict(entity.payload) if entity.payload else {},
            metadata_=entity.metadata,
            sent_at=entity.sent_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )
        model.content = self._content_to_model(entity.content) if entity.content else None
        model.recipients = [self._recipient_to_model(r) for r in entity.recipients]
        return model

    def _content_to_model(self, content: MessageContent) -> MessageContentModel:
        return MessageContentModel(
            id=content.id,
            message_id=content.message_id,
            subject=content.subject,
            body_text=content.body_text,
            body_html=content.body_html,
        )

    def _recipient_to_entity(self, model: MessageRecipientModel) -> MessageRecipient:
        return MessageRecipient(
            id=model.id,
            message_id=model.message_id,
            address=model.address,
            recipient_type=RecipientType(model.recipient_type),
            name=model.name,
            status=RecipientStatus(model.status),
            delivered_at=ensure_utc(model.delivered_at),
            opened_at=ensure_utc(model.opened_at),
            clicked_at=ensure_utc(model.clicked_at),
            bounced_at=ensure_utc(model.bounced_at),
            open_count=model.open_count,
            click_count=model.click_count,
        )

    def _recipient_to_model(self, entity: MessageRecipient) -> MessageRecipientModel:
        return MessageRecipientModel(
            id=entity.id,
            message_id=entity.message_id,
            address=entity.address,
            recipient_type=str(entity.recipient_type),
            name=entity.name,
            status=str(entity.status),
            delivered_at=entity.delivered_at,
            opened_at=entity.opened_at,
            clicked_at=entity.clicked_at,
            bounced_at=entity.bounced_at,
            open_count=entity.open_count,
            click_count=entity.click_count,
        )

    def _event_to_entity(self, model: MessageEventModel) -> MessageEvent:
        return MessageEvent(
            id=model.id,
            message_id=model.message_id,
            recipient_id=model.recipient_id,
            event_type=EventType(model.event_type),
            event_data=dict(model.event_data or {}),
            previous_status=MessageStatus(model.previous_status) if model.previous_status else None,
            resulting_status=MessageStatus(model.resulting_status) if model.resulting_status else None,
            occurred_at=ensure_utc(model.occurred_at),  # type: ignore[arg-type]
        )
