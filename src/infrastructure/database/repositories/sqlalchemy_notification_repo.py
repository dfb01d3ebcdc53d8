"""SQLAlchemy implementation of Notification repository."""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import ensure_utc
from domain.entities.message import ChannelType
from domain.entities.notification import (
    Importance,
    Notification,
    NotificationDirection,
    NotificationRecipient,
    NotificationStatus,
)
from infrastructure.database.models import NotificationModel


class SQLAlchemyNotificationRepository:
    """SQLAlchemy implementation of INotificationRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        """Create a new notification."""
        model = self._to_model(notification)
        self._session.add(model)
        await self._session.flush()
        await self._session.refresh(model)
        return self._to_entity(model)

    async def get(self, notification_id: UUID, for_update: bool = False) -> Notification | None:
        """Get a notification by ID."""
        stmt = select(NotificationModel).where(NotificationModel.id == notification_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def save(self, notification: Notification) -> Notification:
        """Persist changes to an existing notification."""
        stmt = select(NotificationModel).where(NotificationModel.id == notification.id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()

        if not model:
            raise ValueError(f"Notification {notification.id} not found")

        model.type = notification.type
        model.importance = str(notification.importance)
        model.status = str(notification.status)
        model.direction = str(notification.direction)
        model.subject = notification.subject
        model.body = notification.body
        model.category = notification.category
        model.sender = notification.sender
        model.channels = [str(c) for c in notification.channels]
        model.recipients = [self._recipient_to_dict(r) for r in notification.recipients]
        model.context = notification.context
        model.metadata_ = notification.metadata
        model.scheduled_at = notification.scheduled_at
        model.sent_at = notification.sent_at
        model.updated_at = notification.updated_at

        await self._session.flush()
        await self._session.refresh(model)
        return self._to_entity(model)

    # --- Conversion methods ---

    @staticmethod
    def _recipient_to_dict(recipient: NotificationRecipient) -> dict[str, Any]:
        return {
            "contact_id": recipient.contact_id,
            "addresses": dict(recipient.addresses),
            "name": recipient.name,
        }

    def _to_entity(self, model: NotificationModel) -> Notification:
        """Convert NotificationModel to domain entity."""
        return Notification(
            id=model.id,
            type=model.type,
            importance=Importance(model.importance),
            status=NotificationStatus(model.status),
            direction=NotificationDirection(model.direction),
            subject=model.subject,
            body=model.body,
            category=model.category,
            sender=model.sender,
            channels=[ChannelType(c) for c in model.channels or []],
            recipients=[
                NotificationRecipient(
                    contact_id=r["contact_id"],
                    addresses=dict(r.get("addresses") or {}),
                    name=r.get("name"),
                )
                for r in model.recipients or []
            ],
            context=dict(model.context or {}),
            metadata=dict(model.metadata_ or {}),
            scheduled_at=ensure_utc(model.scheduled_at),
            created_at=ensure_utc(model.created_at),  # type: ignore[arg-type]
            updated_at=ensure_utc(model.updated_at),  # type: ignore[arg-type]
            sent_at=ensure_utc(model.sent_at),
        )

    def _to_model(self, entity: Notification) -> NotificationModel:
        """Convert Notification domain entity to ORM model."""
        return NotificationModel(
            id=entity.id,
            type=entity.type,
            importance=str(entity.importance),
            status=str(entity.status),
            direction=str(entity.direction),
            subject=entity.subject,
            body=entity.body,
            category=entity.category,
            sender=entity.sender,
            channels=[str(c) for c in entity.channels],
            recipients=[self._recipient_to_dict(r) for r in entity.recipients],
            context=entity.context,
            metadata_=entity.metadata,
            scheduled_at=entity.scheduled_at,
            sent_at=entity.sent_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )
