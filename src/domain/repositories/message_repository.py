"""Message repository protocol."""

from datetime import datetime
from typing import Protocol
from uuid import UUID

from domain.entities.message import Message, MessageEvent


class IMessageRepository(Protocol):
    """Repository interface for Message entities and their timelines."""

    # --- Messages ---

    async def get(self, message_id: UUID, for_update: bool = False) -> Message | None:
        """Get a message (with content and recipients) by ID."""
        ...

    async def find_by_stamp_id(self, stamp_id: str, for_update: bool = False) -> Message | None:
        """Get the message registered under a messenger stamp id."""
        ...

    async def find_recent_by_fingerprint(self, fingerprint: str, since: datetime) -> list[Message]:
        """Get messages with this fingerprint created at or after ``since``, oldest first."""
        ...

    async def create(self, message: Message) -> Message:
        """Create a message together with its content and recipients."""
        ...

    async def save(self, message: Message) -> Message:
        """Persist status, counters and recipient changes of an existing message."""
        ...

    async def list_for_notification(self, notification_id: UUID) -> list[Message]:
        """Get all messages dispatched for a notification."""
        ...

    # --- Events ---

    async def append_event(self, event: MessageEvent) -> MessageEvent:
        """Append an immutable event to a message timeline."""
        ...

    async def list_events(self, message_id: UUID, limit: int | None = None) -> list[MessageEvent]:
        """Get a message timeline, newest first by (occurred_at, id)."""
        ...

    async def get_latest_event(self, message_id: UUID) -> MessageEvent | None:
        """Get the newest event; equal timestamps are broken by the higher id."""
        ...
