"""In-memory repositories for exercising services without a database.

Each unit of work stages its writes and publishes them on commit, so an
uncommitted unit leaves the store untouched. Returned entities are copies,
the way rows loaded by a fresh session would be.
"""

import asyncio
import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from core.clock import ensure_utc
from domain.entities.message import Message, MessageEvent
from domain.entities.notification import Notification
from domain.entities.preference import ChannelPreference


@dataclass
class InMemoryStore:
    """Committed state shared by every unit of work of a test."""

    messages: dict[UUID, Message] = field(default_factory=dict)
    events: list[MessageEvent] = field(default_factory=list)
    notifications: dict[UUID, Notification] = field(default_factory=dict)
    preferences: dict[tuple[str, str], ChannelPreference] = field(default_factory=dict)
    commits: int = 0
    # Messages another worker commits just before our next insert
    race_winners: list[Message] = field(default_factory=list)


@dataclass
class _Pending:
    messages: dict[UUID, Message] = field(default_factory=dict)
    events: list[MessageEvent] = field(default_factory=list)
    notifications: dict[UUID, Notification] = field(default_factory=dict)
    preferences: dict[tuple[str, str], ChannelPreference] = field(default_factory=dict)

    def clear(self) -> None:
        self.messages.clear()
        self.events.clear()
        self.notifications.clear()
        self.preferences.clear()


def _unique_violation(column: str) -> IntegrityError:
    return IntegrityError("INSERT", {}, Exception(f"UNIQUE constraint failed: {column}"))


class InMemoryMessageRepository:
    def __init__(self, store: InMemoryStore, pending: _Pending) -> None:
        self._store = store
        self._pending = pending

    def _visible(self) -> dict[UUID, Message]:
        return {**self._store.messages, **self._pending.messages}

    async def get(self, message_id: UUID, for_update: bool = False) -> Message | None:
        await asyncio.sleep(0)
        message = self._visible().get(message_id)
        return copy.deepcopy(message) if message else None

    async def find_by_stamp_id(self, stamp_id: str, for_update: bool = False) -> Message | None:
        await asyncio.sleep(0)
        for message in self._visible().values():
            if message.messenger_stamp_id == stamp_id:
                return copy.deepcopy(message)
        return None

    async def find_recent_by_fingerprint(self, fingerprint: str, since: datetime) -> list[Message]:
        matches = [
            m
            for m in self._visible().values()
            if m.content_fingerprint == fingerprint and ensure_utc(m.created_at) >= since  # type: ignore[operator]
        ]
        matches.sort(key=lambda m: (m.created_at, m.id))
        return copy.deepcopy(matches)

    async def create(self, message: Message) -> Message:
        if self._store.race_winners:
            winner = self._store.race_winners.pop(0)
            self._store.messages[winner.id] = winner
            raise _unique_violation("messages.messenger_stamp_id")
        if message.messenger_stamp_id and any(
            m.messenger_stamp_id == message.messenger_stamp_id for m in self._visible().values()
        ):
            raise _unique_violation("messages.messenger_stamp_id")
        self._pending.messages[message.id] = copy.deepcopy(message)
        return copy.deepcopy(message)

    async def save(self, message: Message) -> Message:
        if message.id not in self._visible():
            raise KeyError(message.id)
        self._pending.messages[message.id] = copy.deepcopy(message)
        return copy.deepcopy(message)

    async def list_for_notification(self, notification_id: UUID) -> list[Message]:
        found = [m for m in self._visible().values() if m.notification_id == notification_id]
        found.sort(key=lambda m: (m.created_at, m.id))
        return copy.deepcopy(found)

    async def append_event(self, event: MessageEvent) -> MessageEvent:
        self._pending.events.append(event)
        return event

    async def list_events(self, message_id: UUID, limit: int | None = None) -> list[MessageEvent]:
        events = [e for e in self._store.events + self._pending.events if e.message_id == message_id]
        events.sort(key=lambda e: (e.occurred_at, e.id), reverse=True)
        return events[:limit] if limit is not None else events

    async def get_latest_event(self, message_id: UUID) -> MessageEvent | None:
        events = await self.list_events(message_id, limit=1)
        return events[0] if events else None


class InMemoryNotificationRepository:
    def __init__(self, store: InMemoryStore, pending: _Pending) -> None:
        self._store = store
        self._pending = pending

    async def create(self, notification: Notification) -> Notification:
        self._pending.notifications[notification.id] = copy.deepcopy(notification)
        return copy.deepcopy(notification)

    async def get(self, notification_id: UUID, for_update: bool = False) -> Notification | None:
        found = self._pending.notifications.get(notification_id) or self._store.notifications.get(
            notification_id
        )
        return copy.deepcopy(found) if found else None

    async def save(self, notification: Notification) -> Notification:
        self._pending.notifications[notification.id] = copy.deepcopy(notification)
        return copy.deepcopy(notification)


class InMemoryPreferenceRepository:
    def __init__(self, store: InMemoryStore, pending: _Pending) -> None:
        self._store = store
        self._pending = pending

    async def get_for_channel(
        self, contact_id: str, channel: str, for_update: bool = False
    ) -> ChannelPreference | None:
        await asyncio.sleep(0)
        key = (contact_id, channel)
        found = self._pending.preferences.get(key) or self._store.preferences.get(key)
        return copy.deepcopy(found) if found else None

    async def list_for_contact(self, contact_id: str) -> list[ChannelPreference]:
        merged = {**self._store.preferences, **self._pending.preferences}
        return [copy.deepcopy(p) for (cid, _), p in sorted(merged.items()) if cid == contact_id]

    async def upsert(self, preference: ChannelPreference) -> ChannelPreference:
        key = (preference.contact_id, preference.channel)
        existing = self._pending.preferences.get(key) or self._store.preferences.get(key)
        stored = copy.deepcopy(preference)
        if existing is not None:
            stored.id = existing.id
            stored.created_at = existing.created_at
        self._pending.preferences[key] = stored
        return copy.deepcopy(stored)


class InMemoryUnitOfWork:
    """Unit of Work over an :class:`InMemoryStore`."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store
        self._pending = _Pending()
        self.messages = InMemoryMessageRepository(store, self._pending)
        self.notifications = InMemoryNotificationRepository(store, self._pending)
        self.preferences = InMemoryPreferenceRepository(store, self._pending)

    async def commit(self) -> None:
        self._store.messages.update(self._pending.messages)
        self._store.events.extend(self._pending.events)
        self._store.notifications.update(self._pending.notifications)
        self._store.preferences.update(self._pending.preferences)
        self._store.commits += 1
        self._pending.clear()

    async def rollback(self) -> None:
        self._pending.clear()

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.rollback()
