"""Deduplicated delivery tracking.

Every transport signal lands on exactly one Message. The lookup and the
status update for a signal run as one unit: an in-process lock keyed by stamp
id and fingerprint, one database transaction, and a unique stamp id column
that turns a lost race into an ``IntegrityError`` which is retried.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError

from core.clock import Clock, utcnow
from core.config import settings
from core.exceptions import MessageNotFoundError, RetryLimitExceededError, SignalConflictError
from core.ids import IdGenerator, new_id
from core.locks import KeyedLock
from domain.entities.message import (
    EventType,
    Message,
    MessageContent,
    MessageEvent,
    MessageRecipient,
    MessageStatus,
    RecipientStatus,
    payload_from_dict,
)
from domain.entities.notification import Notification, NotificationStatus
from domain.entities.signal import SIGNAL_EVENT_TYPES, Signal, SignalKind, SignalResult
from domain.repositories.unit_of_work import IUnitOfWork
from domain.services.dedup_index import DedupIndex
from domain.services.fingerprint import fingerprint_for
from domain.services.status_machine import LifecycleKind, StatusMachine, status_machine

logger = structlog.get_logger()

# Target status implied by each lifecycle signal; engagement signals have none
SIGNAL_TARGETS: dict[SignalKind, MessageStatus] = {
    SignalKind.QUEUED: MessageStatus.QUEUED,
    SignalKind.TRANSPORT_ACCEPTED: MessageStatus.SENDING,
    SignalKind.TRANSPORT_SUCCESS: MessageStatus.SENT,
    SignalKind.TRANSPORT_FAILURE: MessageStatus.FAILED,
    SignalKind.DELIVERED: MessageStatus.DELIVERED,
}

# Failure and cancellation must be observed, never inferred on the way elsewhere
_NEVER_IMPLIED = (MessageStatus.FAILED, MessageStatus.CANCELLED)

_RECIPIENT_STATUS: dict[SignalKind, RecipientStatus] = {
    SignalKind.TRANSPORT_SUCCESS: RecipientStatus.SENT,
    SignalKind.TRANSPORT_FAILURE: RecipientStatus.FAILED,
    SignalKind.DELIVERED: RecipientStatus.DELIVERED,
    SignalKind.OPENED: RecipientStatus.OPENED,
    SignalKind.CLICKED: RecipientStatus.CLICKED,
    SignalKind.BOUNCED: RecipientStatus.BOUNCED,
    SignalKind.COMPLAINED: RecipientStatus.COMPLAINED,
    SignalKind.UNSUBSCRIBED: RecipientStatus.UNSUBSCRIBED,
}

CONFLICT_INVALID_TRANSITION = "invalid_transition"
CONFLICT_RETRY_LIMIT = "retry_limit"


@dataclass(frozen=True, slots=True)
class EngagementStats:
    """Recipient engagement for one Message."""

    message_id: UUID
    total_recipients: int
    delivered: int
    opened: int
    clicked: int
    bounced: int
    total_opens: int
    total_clicks: int


class DeliveryTracker:
    """Service that folds transport signals into Message records."""

    def __init__(
        self,
        uow_factory: Callable[[], IUnitOfWork],
        dedup_index: DedupIndex | None = None,
        machine: StatusMachine = status_machine,
        clock: Clock = utcnow,
        id_generator: IdGenerator = new_id,
        max_retries: int = settings.max_message_retries,
        store_attempts: int = settings.signal_store_retries,
        locks: KeyedLock | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._dedup = dedup_index or DedupIndex(settings.fingerprint_window_seconds)
        self._machine = machine
        self._clock = clock
        self._new_id = id_generator
        self._max_retries = max_retries
        self._store_attempts = max(1, store_attempts)
        self._locks = locks or KeyedLock()

    # --- Signals ---

    async def on_signal(self, signal: Signal) -> SignalResult:
        """Attach a signal to its Message, creating the Message if needed.

        Refused status changes are reported through ``SignalResult.conflict``;
        the event is recorded regardless.

        Raises:
            SignalConflictError: storage contention outlasted every attempt.
        """
        fingerprint = signal.fingerprint
        if fingerprint is None and signal.content is not None:
            fingerprint = fingerprint_for(signal.content)

        async with self._locks.hold(*self._dedup.lock_keys(signal.stamp_id, fingerprint)):
            for attempt in range(1, self._store_attempts + 1):
                try:
                    async with self._uow_factory() as uow:
                        result = await self._apply_signal(uow, signal, fingerprint)
                        await uow.commit()
                except IntegrityError as exc:
                    # Another worker created the Message first; look it up again
                    logger.warning(
                        "signal_store_conflict",
                        stamp_id=signal.stamp_id,
                        attempt=attempt,
                        error=str(exc.orig),
                    )
                    continue
                if result.conflict:
                    logger.warning(
                        "signal_conflict",
                        message_id=str(result.message.id),
                        signal=str(signal.kind),
                        status=str(result.message.status),
                        reason=result.conflict_reason,
                    )
                return result

        raise SignalConflictError(signal.stamp_id, self._store_attempts)

    async def _apply_signal(
        self,
        uow: IUnitOfWork,
        signal: Signal,
        fingerprint: str | None,
    ) -> SignalResult:
        now = self._clock()
        match = await self._dedup.lookup(uow.messages, signal.stamp_id, fingerprint, now)

        if match is None:
            message = self._new_message(signal, fingerprint, now)
        else:
            message = match.message
            if match.adopt_stamp:
                message.messenger_stamp_id = signal.stamp_id
            if message.content_fingerprint is None and fingerprint:
                message.content_fingerprint = fingerprint

        previous = message.status
        path: list[Any] = []
        conflict_reason: str | None = None
        target = SIGNAL_TARGETS.get(signal.kind)
        if target is not None:
            implied = self._machine.implied_path(
                LifecycleKind.MESSAGE, previous, target, never_through=_NEVER_IMPLIED
            )
            if implied is None:
                conflict_reason = CONFLICT_INVALID_TRANSITION
            elif MessageStatus.RETRYING in implied and message.retry_count >= self._max_retries:
                conflict_reason = CONFLICT_RETRY_LIMIT
            else:
                path = implied

        self._walk(message, path, signal)
        recipient = self._resolve_recipient(message, signal)
        if recipient is not None and conflict_reason is None:
            self._touch_recipient(recipient, signal)
        if signal.transport_name and not message.transport_name:
            message.transport_name = signal.transport_name
        message.updated_at = now

        if match is None:
            message = await uow.messages.create(message)
            logger.info(
                "message_created",
                message_id=str(message.id),
                stamp_id=message.messenger_stamp_id,
                channel=str(message.channel),
            )
        else:
            message = await uow.messages.save(message)

        event_data: dict[str, Any] = {"signal": str(signal.kind), "payload": signal.payload}
        if signal.stamp_id:
            event_data["stamp_id"] = signal.stamp_id
        if match is not None and match.matched_on == "fingerprint":
            event_data["matched_on"] = match.matched_on
        if MessageStatus.RETRYING in path:
            event_data["retry_attempt"] = True
        if conflict_reason:
            event_data["conflict"] = conflict_reason
        event = await uow.messages.append_event(
            MessageEvent(
                message_id=message.id,
                event_type=SIGNAL_EVENT_TYPES[signal.kind],
                id=self._new_id(),
                recipient_id=recipient.id if recipient else None,
                event_data=event_data,
                previous_status=previous,
                resulting_status=message.status,
                occurred_at=signal.occurred_at,
            )
        )

        if path and message.notification_id:
            await self._roll_up_notification(uow, message.notification_id, now)

        return SignalResult(
            message=message,
            event=event,
            conflict=conflict_reason is not None,
            duplicate=match is not None,
            created=match is None,
            conflict_reason=conflict_reason,
        )

    def _new_message(self, signal: Signal, fingerprint: str | None, now: datetime) -> Message:
        message = Message(
            channel=signal.channel,
            id=self._new_id(),
            messenger_stamp_id=signal.stamp_id,
            content_fingerprint=fingerprint,
            notification_id=signal.notification_id,
            transport_name=signal.transport_name,
            payload=payload_from_dict(signal.channel, signal.payload),
            scheduled_at=signal.scheduled_at,
            schedule_override=signal.schedule_override,
            created_at=now,
            updated_at=now,
        )
        addresses: list[str] = []
        if signal.recipient_address:
            addresses.append(signal.recipient_address)
        if signal.content is not None:
            addresses.extend(signal.content.recipients)
            message.content = MessageContent(
                message_id=message.id,
                id=self._new_id(),
                subject=signal.content.subject,
                body_text=signal.content.body,
            )
        seen: set[str] = set()
        for address in addresses:
            key = address.strip().lower()
            if key and key not in seen:
                seen.add(key)
                message.recipients.append(
                    MessageRecipient(message_id=message.id, address=address.strip(), id=self._new_id())
                )
        return message

    def _walk(self, message: Message, path: list[Any], signal: Signal) -> None:
        for hop in path:
            if not self._machine.can_transition(LifecycleKind.MESSAGE, message.status, hop):
                raise RuntimeError(f"implied path left the lifecycle at {message.status}->{hop}")
            message.status = MessageStatus(hop)
            if hop == MessageStatus.FAILED:
                message.retry_count += 1
                message.failure_reason = signal.failure_reason or signal.payload.get("error")
            elif hop == MessageStatus.SENT:
                message.sent_at = signal.occurred_at

    def _resolve_recipient(self, message: Message, signal: Signal) -> MessageRecipient | None:
        recipient = message.find_recipient(signal.recipient_address)
        if recipient is None and len(message.recipients) == 1 and not signal.recipient_address:
            recipient = message.recipients[0]
        return recipient

    def _touch_recipient(self, recipient: MessageRecipient, signal: Signal) -> None:
        at = signal.occurred_at
        kind = signal.kind
        if kind == SignalKind.OPENED:
            recipient.open_count += 1
            recipient.opened_at = recipient.opened_at or at
        elif kind == SignalKind.CLICKED:
            recipient.click_count += 1
            recipient.clicked_at = recipient.clicked_at or at
        elif kind == SignalKind.DELIVERED:
            recipient.delivered_at = recipient.delivered_at or at
        elif kind == SignalKind.BOUNCED:
            recipient.bounced_at = recipient.bounced_at or at

        new_status = _RECIPIENT_STATUS.get(kind)
        # Opens never demote a recipient that already clicked
        if new_status is not None and not (
            new_status == RecipientStatus.OPENED and recipient.status == RecipientStatus.CLICKED
        ):
            recipient.status = new_status

    async def _roll_up_notification(self, uow: IUnitOfWork, notification_id: UUID, now: datetime) -> None:
        notification = await uow.notifications.get(notification_id, for_update=True)
        if notification is None:
            return
        messages = await uow.messages.list_for_notification(notification_id)
        if not messages:
            return

        statuses = {m.status for m in messages}
        in_flight = {MessageStatus.SENDING, MessageStatus.SENT, MessageStatus.DELIVERED}
        finished = {MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.CANCELLED}

        changed = False
        if statuses & in_flight and self._advance_notification(notification, NotificationStatus.SENDING):
            changed = True
        if (
            statuses <= finished
            and statuses & {MessageStatus.SENT, MessageStatus.DELIVERED}
            and self._advance_notification(notification, NotificationStatus.SENT)
        ):
            notification.sent_at = now
            changed = True
        if changed:
            notification.updated_at = now
            await uow.notifications.save(notification)
            logger.info(
                "notification_status_rolled_up",
                notification_id=str(notification_id),
                status=str(notification.status),
            )

    def _advance_notification(self, notification: Notification, target: NotificationStatus) -> bool:
        if not self._machine.can_transition(LifecycleKind.NOTIFICATION, notification.status, target):
            return False
        notification.status = target
        return True

    # --- Explicit operations ---

    async def get_message(self, message_id: UUID) -> Message:
        async with self._uow_factory() as uow:
            message = await uow.messages.get(message_id)
            if not message:
                raise MessageNotFoundError(str(message_id))
            return message

    async def effective_scheduled_at(self, message: Message) -> datetime | None:
        """Schedule that applies to ``message`` given its notification."""
        notification_schedule = None
        if message.notification_id:
            async with self._uow_factory() as uow:
                notification = await uow.notifications.get(message.notification_id)
                if notification:
                    notification_schedule = notification.scheduled_at
        return message.effective_scheduled_at(notification_schedule)

    async def cancel_message(self, message_id: UUID, reason: str | None = None) -> Message:
        """Cancel a message from any state that allows it.

        Raises:
            MessageNotFoundError: unknown message.
            InvalidTransitionError: the current state cannot be cancelled.
        """
        return await self._operate(message_id, self._cancel, reason)

    async def retry_message(self, message_id: UUID) -> Message:
        """Move a failed message to ``retrying``.

        Raises:
            MessageNotFoundError: unknown message.
            InvalidTransitionError: the message is not failed.
            RetryLimitExceededError: the retry ceiling is reached.
        """
        return await self._operate(message_id, self._retry, None)

    async def _operate(
        self,
        message_id: UUID,
        action: Callable[[Message, str | None], tuple[EventType, dict[str, Any]]],
        reason: str | None,
    ) -> Message:
        known = await self.get_message(message_id)
        keys = self._dedup.lock_keys(known.messenger_stamp_id, known.content_fingerprint)
        async with self._locks.hold(*keys, f"message:{message_id}"):
            async with self._uow_factory() as uow:
                message = await uow.messages.get(message_id, for_update=True)
                if not message:
                    raise MessageNotFoundError(str(message_id))
                previous = message.status
                event_type, event_data = action(message, reason)
                now = self._clock()
                message.updated_at = now
                message = await uow.messages.save(message)
                await uow.messages.append_event(
                    MessageEvent(
                        message_id=message.id,
                        event_type=event_type,
                        id=self._new_id(),
                        event_data=event_data,
                        previous_status=previous,
                        resulting_status=message.status,
                        occurred_at=now,
                    )
                )
                if message.notification_id:
                    await self._roll_up_notification(uow, message.notification_id, now)
                await uow.commit()

        logger.info(
            "message_status_changed",
            message_id=str(message_id),
            previous=str(previous),
            status=str(message.status),
        )
        return message

    def _cancel(self, message: Message, reason: str | None) -> tuple[EventType, dict[str, Any]]:
        self._machine.ensure_transition(LifecycleKind.MESSAGE, message.status, MessageStatus.CANCELLED)
        message.status = MessageStatus.CANCELLED
        return EventType.CANCELLED, {"reason": reason} if reason else {}

    def _retry(self, message: Message, _: str | None) -> tuple[EventType, dict[str, Any]]:
        self._machine.ensure_transition(LifecycleKind.MESSAGE, message.status, MessageStatus.RETRYING)
        if message.retry_count >= self._max_retries:
            raise RetryLimitExceededError(str(message.id), message.retry_count, self._max_retries)
        message.status = MessageStatus.RETRYING
        return EventType.RETRIED, {"retry_count": message.retry_count}

    # --- Read accessors ---

    async def list_events(self, message_id: UUID, limit: int | None = None) -> list[MessageEvent]:
        async with self._uow_factory() as uow:
            if not await uow.messages.get(message_id):
                raise MessageNotFoundError(str(message_id))
            return await uow.messages.list_events(message_id, limit=limit)

    async def latest_event(self, message_id: UUID) -> MessageEvent | None:
        async with self._uow_factory() as uow:
            if not await uow.messages.get(message_id):
                raise MessageNotFoundError(str(message_id))
            return await uow.messages.get_latest_event(message_id)

    async def engagement_stats(self, message_id: UUID) -> EngagementStats:
        message = await self.get_message(message_id)
        return engagement_for(message)


def engagement_for(message: Message) -> EngagementStats:
    recipients = message.recipients
    return EngagementStats(
        message_id=message.id,
        total_recipients=len(recipients),
        delivered=sum(1 for r in recipients if r.delivered_at is not None),
        opened=sum(1 for r in recipients if r.open_count > 0 or r.opened_at is not None),
        clicked=sum(1 for r in recipients if r.click_count > 0 or r.clicked_at is not None),
        bounced=sum(1 for r in recipients if r.bounced_at is not None),
        total_opens=sum(r.open_count for r in recipients),
        total_clicks=sum(r.click_count for r in recipients),
    )
