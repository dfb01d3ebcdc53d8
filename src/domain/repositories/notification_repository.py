"""Notification repository protocol."""

from typing import Protocol
from uuid import UUID

from domain.entities.notification import Notification


class INotificationRepository(Protocol):
    """Repository interface for Notification entities."""

    async def create(self, notification: Notification) -> Notification:
        """Create a new notification."""
        ...

    async def get(self, notification_id: UUID, for_update: bool = False) -> Notification | None:
        """Get a notification by ID."""
        ...

    async def save(self, notification: Notification) -> Notification:
        """Persist changes to an existing notification."""
        ...
