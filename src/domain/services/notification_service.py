"""Notification service layer: drafting, scheduling and dispatching."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog

from core.clock import Clock, ensure_utc, utcnow
from core.exceptions import (
    InvalidTransitionError,
    NotificationNotDueError,
    NotificationNotEditableError,
    NotificationNotFoundError,
    SignalConflictError,
)
from core.ids import IdGenerator, new_id
from core.locks import KeyedLock
from domain.entities.message import ChannelType, Message, MessageStatus
from domain.entities.notification import (
    Importance,
    Notification,
    NotificationDirection,
    NotificationRecipient,
    NotificationStats,
    NotificationStatus,
)
from domain.entities.preference import BlockReason
from domain.entities.signal import Signal, SignalContent, SignalKind
from domain.repositories.unit_of_work import IUnitOfWork
from domain.services.delivery_tracker import DeliveryTracker, engagement_for
from domain.services.fingerprint import fingerprint_for
from domain.services.preference_service import PreferenceService
from domain.services.status_machine import LifecycleKind, StatusMachine, status_machine

logger = structlog.get_logger()

_UNSET: Any = object()


@dataclass(frozen=True, slots=True)
class GatedTarget:
    """A channel/recipient pair refused by its preference."""

    contact_id: str
    channel: ChannelType
    address: str
    reason: BlockReason


@dataclass(frozen=True, slots=True)
class UnsentTarget:
    """An allowed target whose Message could not be stored."""

    contact_id: str
    channel: ChannelType
    address: str
    error: str


@dataclass
class DispatchResult:
    notification: Notification
    messages: list[Message] = field(default_factory=list)
    gated: list[GatedTarget] = field(default_factory=list)
    unsent: list[UnsentTarget] = field(default_factory=list)


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


class NotificationService:
    """Service layer for Notification lifecycle operations."""

    def __init__(
        self,
        uow_factory: Callable[[], IUnitOfWork],
        tracker: DeliveryTracker,
        preferences: PreferenceService,
        machine: StatusMachine = status_machine,
        clock: Clock = utcnow,
        id_generator: IdGenerator = new_id,
    ) -> None:
        self._uow_factory = uow_factory
        self._tracker = tracker
        self._preferences = preferences
        self._machine = machine
        self._clock = clock
        self._new_id = id_generator
        self._locks = KeyedLock()

    async def create(
        self,
        type: str,
        channels: list[ChannelType],
        recipients: list[NotificationRecipient],
        importance: Importance = Importance.NORMAL,
        subject: str | None = None,
        body: str | None = None,
        category: str | None = None,
        sender: str | None = None,
        context: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Create a notification in ``draft``."""
        now = self._clock()
        notification = Notification(
            type=type,
            id=self._new_id(),
            importance=importance,
            subject=subject,
            body=body,
            category=category,
            sender=sender,
            channels=list(channels),
            recipients=list(recipients),
            context=context or {},
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        async with self._uow_factory() as uow:
            created = await uow.notifications.create(notification)
            await uow.commit()

        logger.info("notification_created", notification_id=str(created.id), type=type)
        return created

    async def get(self, notification_id: UUID) -> Notification:
        async with self._uow_factory() as uow:
            notification = await uow.notifications.get(notification_id)
            if not notification:
                raise NotificationNotFoundError(str(notification_id))
            return notification

    async def update(
        self,
        notification_id: UUID,
        type: str | None = None,
        importance: Importance | None = None,
        subject: Any = _UNSET,
        body: Any = _UNSET,
        category: Any = _UNSET,
        sender: Any = _UNSET,
        channels: list[ChannelType] | None = None,
        recipients: list[NotificationRecipient] | None = None,
        context: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Partially update a notification that is still editable."""
        async with self._uow_factory() as uow:
            notification = await self._load(uow, notification_id, for_update=True)
            if not self._machine.is_editable(notification.status):
                raise NotificationNotEditableError(str(notification_id), str(notification.status))

            if type is not None:
                notification.type = type
            if importance is not None:
                notification.importance = Importance(importance)
            if subject is not _UNSET:
                notification.subject = subject
            if body is not _UNSET:
                notification.body = body
            if category is not _UNSET:
                notification.category = category
            if sender is not _UNSET:
                notification.sender = sender
            if channels is not None:
                notification.channels = list(channels)
            if recipients is not None:
                notification.recipients = list(recipients)
            if context is not None:
                notification.context = context
            if metadata is not None:
                notification.metadata = metadata

            notification.updated_at = self._clock()
            saved = await uow.notifications.save(notification)
            await uow.commit()
            return saved

    async def schedule(self, notification_id: UUID, scheduled_at: datetime) -> Notification:
        """Schedule a draft, or move the time of an already scheduled notification."""
        async with self._uow_factory() as uow:
            notification = await self._load(uow, notification_id, for_update=True)
            if notification.status != NotificationStatus.SCHEDULED:
                self._machine.ensure_transition(
                    LifecycleKind.NOTIFICATION, notification.status, NotificationStatus.SCHEDULED
                )
            notification.status = NotificationStatus.SCHEDULED
            notification.scheduled_at = ensure_utc(scheduled_at)
            notification.updated_at = self._clock()
            saved = await uow.notifications.save(notification)
            await uow.commit()

        logger.info(
            "notification_scheduled",
            notification_id=str(notification_id),
            scheduled_at=saved.scheduled_at.isoformat() if saved.scheduled_at else None,
        )
        return saved

    async def dispatch(self, notification_id: UUID) -> DispatchResult:
        """Fan a notification out into one tracked Message per allowed target.

        Each channel and recipient pair is gated by the recipient's channel
        preference; allowed targets are enqueued through the tracker under a
        fresh stamp id and counted against the preference once their Message
        exists. A target whose Message cannot be stored is reported in
        ``unsent`` and not counted. With no Message at all the notification
        fails, so it can be resent.

        Raises:
            NotificationNotFoundError: unknown notification.
            InvalidTransitionError: not in a sendable state.
            NotificationNotDueError: scheduled for later.
        """
        async with self._locks.hold(f"notification:{notification_id}"):
            now = self._clock()
            notification = await self.get(notification_id)
            self._ensure_dispatchable(notification, now)

            allowed: list[tuple[ChannelType, NotificationRecipient, str]] = []
            gated: list[GatedTarget] = []
            for channel in notification.channels:
                for recipient in notification.recipients:
                    address = recipient.address_for(channel)
                    if not address:
                        continue
                    reason = await self._preferences.explain(
                        recipient.contact_id,
                        str(channel),
                        category=notification.category,
                        priority=notification.priority,
                        sender=notification.sender,
                        send_at=now,
                    )
                    if reason is None:
                        allowed.append((channel, recipient, address))
                    else:
                        logger.info(
                            "send_gated",
                            notification_id=str(notification_id),
                            contact_id=recipient.contact_id,
                            channel=str(channel),
                            reason=str(reason),
                        )
                        gated.append(GatedTarget(recipient.contact_id, channel, address, reason))

            target_status = NotificationStatus.QUEUED if allowed else NotificationStatus.FAILED
            notification = await self._move(notification_id, target_status, now)

            messages: list[Message] = []
            unsent: list[UnsentTarget] = []
            for channel, recipient, address in allowed:
                try:
                    message = await self._enqueue(notification, channel, address, now)
                except SignalConflictError as exc:
                    logger.warning(
                        "dispatch_target_unsent",
                        notification_id=str(notification_id),
                        contact_id=recipient.contact_id,
                        channel=str(channel),
                        error=exc.message,
                    )
                    unsent.append(UnsentTarget(recipient.contact_id, channel, address, exc.message))
                    continue
                await self._preferences.record_send(recipient.contact_id, str(channel))
                messages.append(message)

            if allowed and not messages:
                notification = await self._move(notification_id, NotificationStatus.FAILED, self._clock())

        logger.info(
            "notification_dispatched",
            notification_id=str(notification_id),
            status=str(notification.status),
            messages=len(messages),
            gated=len(gated),
            unsent=len(unsent),
        )
        return DispatchResult(notification=notification, messages=messages, gated=gated, unsent=unsent)

    async def _move(self, notification_id: UUID, target: NotificationStatus, now: datetime) -> Notification:
        async with self._uow_factory() as uow:
            current = await self._load(uow, notification_id, for_update=True)
            # A failed resend that is gated again simply stays failed
            if current.status != target:
                self._machine.ensure_transition(LifecycleKind.NOTIFICATION, current.status, target)
            current.status = target
            current.direction = NotificationDirection.OUTBOUND
            current.updated_at = now
            saved = await uow.notifications.save(current)
            await uow.commit()
        return saved

    async def _enqueue(
        self, notification: Notification, channel: ChannelType, address: str, now: datetime
    ) -> Message:
        content = SignalContent(
            subject=notification.subject,
            body=notification.body,
            sender=notification.sender,
            recipients=(address,),
        )
        stamp_id = str(self._new_id())
        result = await self._tracker.on_signal(
            Signal(
                kind=SignalKind.QUEUED,
                channel=channel,
                stamp_id=stamp_id,
                # Scoped to this send so a resend never folds into an earlier Message
                fingerprint=fingerprint_for(content, salt=f"{notification.id}:{stamp_id}"),
                recipient_address=address,
                notification_id=notification.id,
                content=content,
                payload={"subject": notification.subject} if channel == ChannelType.EMAIL else {},
                occurred_at=now,
            )
        )
        return result.message

    def _ensure_dispatchable(self, notification: Notification, now: datetime) -> None:
        if not self._machine.is_sendable(notification.status):
            raise InvalidTransitionError(
                str(LifecycleKind.NOTIFICATION),
                str(notification.status),
                str(NotificationStatus.QUEUED),
            )
        scheduled_at = ensure_utc(notification.scheduled_at)
        if notification.status == NotificationStatus.SCHEDULED and scheduled_at and scheduled_at > now:
            raise NotificationNotDueError(str(notification.id), scheduled_at.isoformat())

    async def cancel(self, notification_id: UUID) -> Notification:
        """Cancel a notification and every message that can still be cancelled."""
        async with self._uow_factory() as uow:
            notification = await self._load(uow, notification_id, for_update=True)
            self._machine.ensure_transition(
                LifecycleKind.NOTIFICATION, notification.status, NotificationStatus.CANCELLED
            )
            notification.status = NotificationStatus.CANCELLED
            notification.updated_at = self._clock()
            saved = await uow.notifications.save(notification)
            messages = await uow.messages.list_for_notification(notification_id)
            await uow.commit()

        cancelled = 0
        for message in messages:
            if self._machine.can_transition(LifecycleKind.MESSAGE, message.status, MessageStatus.CANCELLED):
                await self._tracker.cancel_message(message.id, reason="notification_cancelled")
                cancelled += 1

        logger.info(
            "notification_cancelled",
            notification_id=str(notification_id),
            messages_cancelled=cancelled,
        )
        return saved

    async def stats(self, notification_id: UUID) -> NotificationStats:
        async with self._uow_factory() as uow:
            await self._load(uow, notification_id)
            messages = await uow.messages.list_for_notification(notification_id)

        message_stats = {str(status): 0 for status in MessageStatus}
        for message in messages:
            message_stats[str(message.status)] += 1
        message_stats["total"] = len(messages)

        engagement = [engagement_for(m) for m in messages]
        opened = sum(e.opened for e in engagement)
        clicked = sum(e.clicked for e in engagement)
        unique = {r.address.strip().lower() for m in messages for r in m.recipients}
        delivered = message_stats[MessageStatus.DELIVERED] + message_stats[MessageStatus.SENT]

        return NotificationStats(
            notification_id=notification_id,
            message_stats=message_stats,
            total_recipients=sum(e.total_recipients for e in engagement),
            unique_recipients=len(unique),
            opened_recipients=opened,
            clicked_recipients=clicked,
            total_opens=sum(e.total_opens for e in engagement),
            total_clicks=sum(e.total_clicks for e in engagement),
            delivery_rate=_percent(delivered, len(messages)),
            open_rate=_percent(opened, delivered),
            click_rate=_percent(clicked, opened),
            click_through_rate=_percent(clicked, delivered),
        )

    async def _load(self, uow: IUnitOfWork, notification_id: UUID, for_update: bool = False) -> Notification:
        notification = await uow.notifications.get(notification_id, for_update=for_update)
        if not notification:
            raise NotificationNotFoundError(str(notification_id))
        return notification
