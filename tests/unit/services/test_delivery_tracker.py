"""Unit tests for the delivery tracker."""

import asyncio
import itertools
from collections.abc import Callable
from datetime import timedelta

import pytest

from core.exceptions import (
    InvalidTransitionError,
    MessageNotFoundError,
    RetryLimitExceededError,
    SignalConflictError,
)
from core.ids import new_id
from core.locks import KeyedLock
from domain.entities.message import ChannelType, EventType, Message, MessageStatus, RecipientStatus
from domain.entities.notification import Notification
from domain.entities.signal import Signal, SignalContent, SignalKind
from domain.services.dedup_index import DedupIndex
from domain.services.delivery_tracker import (
    CONFLICT_INVALID_TRANSITION,
    CONFLICT_RETRY_LIMIT,
    DeliveryTracker,
)
from tests.unit.conftest import FakeClock
from tests.unit.fakes import InMemoryStore, InMemoryUnitOfWork

INVOICE = SignalContent(
    subject="Your invoice",
    body="Amount due: 42 EUR",
    sender="billing@acme.io",
    recipients=("ada@example.com",),
)

FORWARD = ("queued", "transport-accepted", "transport-success", "delivered")


@pytest.fixture
def tracker(uow_factory: Callable[[], InMemoryUnitOfWork], clock: FakeClock) -> DeliveryTracker:
    return DeliveryTracker(
        uow_factory,
        dedup_index=DedupIndex(3600),
        clock=clock,
        max_retries=2,
        store_attempts=3,
    )


def _signal(kind: str, stamp: str | None = "s-1", clock: FakeClock | None = None, **kwargs: object) -> Signal:
    kwargs.setdefault("channel", ChannelType.EMAIL)
    if clock is not None:
        kwargs.setdefault("occurred_at", clock.now)
    return Signal(kind=SignalKind(kind), stamp_id=stamp, **kwargs)  # type: ignore[arg-type]


class TestSignalLifecycle:
    @pytest.mark.asyncio
    async def test_first_signal_creates_message(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        result = await tracker.on_signal(
            _signal("queued", clock=clock, content=INVOICE, recipient_address="Ada@example.com")
        )

        assert result.created is True
        assert result.duplicate is False
        message = result.message
        assert message.status == MessageStatus.QUEUED
        assert message.messenger_stamp_id == "s-1"
        assert message.content is not None
        assert message.content.subject == "Your invoice"
        assert [r.address for r in message.recipients] == ["Ada@example.com"]
        assert message.content_fingerprint is not None
        assert result.event.previous_status == MessageStatus.PENDING
        assert result.event.resulting_status == MessageStatus.QUEUED
        assert len(store.messages) == 1

    @pytest.mark.asyncio
    async def test_full_forward_scenario(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        first = await tracker.on_signal(_signal("queued", clock=clock, content=INVOICE))
        clock.advance(seconds=1)
        await tracker.on_signal(_signal("transport-accepted", clock=clock))
        clock.advance(seconds=1)
        sent = await tracker.on_signal(_signal("transport-success", clock=clock))
        clock.advance(seconds=30)
        delivered = await tracker.on_signal(_signal("delivered", clock=clock))

        assert sent.message.status == MessageStatus.SENT
        assert sent.message.sent_at == first.message.created_at + timedelta(seconds=2)
        assert delivered.message.id == first.message.id
        assert delivered.message.status == MessageStatus.DELIVERED
        assert delivered.duplicate is True
        recipient = delivered.message.recipients[0]
        assert recipient.status == RecipientStatus.DELIVERED
        assert recipient.delivered_at == clock.now
        assert len(store.messages) == 1
        assert len(store.events) == 4

    @pytest.mark.asyncio
    async def test_engagement_counts_without_changing_status(
        self, tracker: DeliveryTracker, clock: FakeClock
    ) -> None:
        for kind in FORWARD:
            await tracker.on_signal(_signal(kind, clock=clock, content=INVOICE))

        await tracker.on_signal(_signal("opened", clock=clock))
        await tracker.on_signal(_signal("opened", clock=clock))
        await tracker.on_signal(_signal("clicked", clock=clock))
        last = await tracker.on_signal(_signal("opened", clock=clock))

        recipient = last.message.recipients[0]
        assert last.message.status == MessageStatus.DELIVERED
        assert recipient.open_count == 3
        assert recipient.click_count == 1
        # Opens never demote a click
        assert recipient.status == RecipientStatus.CLICKED

    @pytest.mark.asyncio
    async def test_late_signal_infers_skipped_steps(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        result = await tracker.on_signal(_signal("delivered", stamp="s-late", clock=clock))

        assert result.created is True
        assert result.conflict is False
        assert result.message.status == MessageStatus.DELIVERED
        assert result.message.sent_at == clock.now

    @pytest.mark.asyncio
    async def test_stale_signal_is_a_recorded_conflict(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        await tracker.on_signal(_signal("delivered", clock=clock))

        result = await tracker.on_signal(_signal("queued", clock=clock))

        assert result.conflict is True
        assert result.conflict_reason == CONFLICT_INVALID_TRANSITION
        assert result.message.status == MessageStatus.DELIVERED
        assert result.event.event_type == EventType.QUEUED
        assert result.event.event_data["conflict"] == CONFLICT_INVALID_TRANSITION
        assert len(store.events) == 2

    @pytest.mark.asyncio
    async def test_repeated_signal_is_idempotent(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        first = await tracker.on_signal(_signal("transport-accepted", clock=clock))
        again = await tracker.on_signal(_signal("transport-accepted", clock=clock))

        assert again.message.id == first.message.id
        assert again.message.status == MessageStatus.SENDING
        assert again.duplicate is True
        assert again.conflict is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order", list(itertools.permutations(FORWARD)))
    async def test_any_arrival_order_ends_delivered(self, order: tuple[str, ...], clock: FakeClock) -> None:
        store = InMemoryStore()
        tracker = DeliveryTracker(lambda: InMemoryUnitOfWork(store), clock=clock)

        for kind in order:
            await tracker.on_signal(_signal(kind, stamp="s-perm", clock=clock))

        (message,) = store.messages.values()
        assert message.status == MessageStatus.DELIVERED
        assert len(store.events) == len(FORWARD)


class TestFailuresAndRetries:
    @pytest.mark.asyncio
    async def test_failure_counts_and_records_reason(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        await tracker.on_signal(_signal("queued", clock=clock))

        result = await tracker.on_signal(
            _signal("transport-failure", clock=clock, failure_reason="mailbox full")
        )

        assert result.message.status == MessageStatus.FAILED
        assert result.message.retry_count == 1
        assert result.message.failure_reason == "mailbox full"

    @pytest.mark.asyncio
    async def test_failure_reason_falls_back_to_payload(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        result = await tracker.on_signal(
            _signal("transport-failure", clock=clock, payload={"error": "550 no such user"})
        )

        assert result.message.failure_reason == "550 no such user"

    @pytest.mark.asyncio
    async def test_resend_goes_through_retrying(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        await tracker.on_signal(_signal("transport-failure", clock=clock))

        result = await tracker.on_signal(_signal("queued", clock=clock))

        assert result.message.status == MessageStatus.QUEUED
        assert result.event.event_data["retry_attempt"] is True
        assert result.conflict is False

    @pytest.mark.asyncio
    async def test_requeue_after_failure_keeps_one_message(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        await tracker.on_signal(_signal("queued", stamp="S1", clock=clock))
        failed = await tracker.on_signal(_signal("transport-failure", stamp="S1", clock=clock))

        requeued = await tracker.on_signal(_signal("queued", stamp="S1", clock=clock))

        assert failed.message.retry_count == 1
        assert requeued.message.id == failed.message.id
        assert requeued.message.status == MessageStatus.QUEUED
        assert requeued.message.retry_count == 1
        assert requeued.event.previous_status == MessageStatus.FAILED
        assert requeued.event.event_data["retry_attempt"] is True
        assert len(store.messages) == 1
        assert len(store.events) == 3

    @pytest.mark.asyncio
    async def test_resend_refused_at_retry_ceiling(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        await tracker.on_signal(_signal("transport-failure", clock=clock))
        await tracker.on_signal(_signal("queued", clock=clock))
        await tracker.on_signal(_signal("transport-failure", clock=clock))

        result = await tracker.on_signal(_signal("queued", clock=clock))

        assert result.conflict is True
        assert result.conflict_reason == CONFLICT_RETRY_LIMIT
        assert result.message.status == MessageStatus.FAILED
        assert result.message.retry_count == 2

    @pytest.mark.asyncio
    async def test_explicit_retry(self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock) -> None:
        created = await tracker.on_signal(_signal("transport-failure", clock=clock))

        message = await tracker.retry_message(created.message.id)

        assert message.status == MessageStatus.RETRYING
        latest = await tracker.latest_event(message.id)
        assert latest is not None
        assert latest.event_type == EventType.RETRIED
        assert latest.event_data == {"retry_count": 1}

    @pytest.mark.asyncio
    async def test_explicit_retry_at_ceiling_raises(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        created = await tracker.on_signal(_signal("transport-failure", clock=clock))
        await tracker.retry_message(created.message.id)
        await tracker.on_signal(_signal("queued", clock=clock))
        await tracker.on_signal(_signal("transport-failure", clock=clock))

        with pytest.raises(RetryLimitExceededError) as exc_info:
            await tracker.retry_message(created.message.id)

        assert exc_info.value.details["retry_count"] == 2

    @pytest.mark.asyncio
    async def test_retry_requires_failed(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        created = await tracker.on_signal(_signal("queued", clock=clock))

        with pytest.raises(InvalidTransitionError):
            await tracker.retry_message(created.message.id)


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_records_reason(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        created = await tracker.on_signal(_signal("queued", clock=clock))

        message = await tracker.cancel_message(created.message.id, reason="customer request")

        assert message.status == MessageStatus.CANCELLED
        events = await tracker.list_events(message.id)
        assert events[0].event_type == EventType.CANCELLED
        assert events[0].event_data == {"reason": "customer request"}
        assert events[0].previous_status == MessageStatus.QUEUED

    @pytest.mark.asyncio
    async def test_cannot_cancel_sent(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        created = await tracker.on_signal(_signal("transport-success", clock=clock))

        with pytest.raises(InvalidTransitionError):
            await tracker.cancel_message(created.message.id)

    @pytest.mark.asyncio
    async def test_signal_after_cancel_is_a_conflict(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        created = await tracker.on_signal(_signal("queued", clock=clock))
        await tracker.cancel_message(created.message.id)

        result = await tracker.on_signal(_signal("transport-success", clock=clock))

        assert result.conflict is True
        assert result.message.status == MessageStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_unknown_message(self, tracker: DeliveryTracker) -> None:
        with pytest.raises(MessageNotFoundError):
            await tracker.cancel_message(new_id())
        with pytest.raises(MessageNotFoundError):
            await tracker.list_events(new_id())


class TestFingerprintDedup:
    @pytest.mark.asyncio
    async def test_unstamped_resend_attaches_by_content(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        first = await tracker.on_signal(_signal("queued", stamp=None, clock=clock, content=INVOICE))
        clock.advance(minutes=5)
        reshuffled = SignalContent(
            subject="Your  invoice",
            body="Amount due:\n42 EUR",
            sender="Billing@acme.io",
            recipients=("ADA@example.com",),
        )

        second = await tracker.on_signal(_signal("transport-accepted", stamp=None, clock=clock, content=reshuffled))

        assert second.duplicate is True
        assert second.message.id == first.message.id
        assert len(store.messages) == 1

    @pytest.mark.asyncio
    async def test_stamped_signal_adopts_unstamped_message(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        first = await tracker.on_signal(_signal("queued", stamp=None, clock=clock, content=INVOICE))

        second = await tracker.on_signal(_signal("transport-accepted", stamp="s-late", clock=clock, content=INVOICE))
        third = await tracker.on_signal(_signal("transport-success", stamp="s-late", clock=clock))

        assert second.message.id == first.message.id
        assert third.message.id == first.message.id
        assert third.message.messenger_stamp_id == "s-late"
        assert len(store.messages) == 1

    @pytest.mark.asyncio
    async def test_new_stamp_with_same_content_joins_existing_message(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        first = await tracker.on_signal(_signal("queued", stamp="S1", clock=clock, content=INVOICE))

        second = await tracker.on_signal(_signal("transport-success", stamp="S2", clock=clock, content=INVOICE))

        assert second.message.id == first.message.id
        assert second.duplicate is True
        assert second.message.status == MessageStatus.SENT
        assert second.message.messenger_stamp_id == "S1"
        assert second.event.event_data["stamp_id"] == "S2"
        assert second.event.event_data["matched_on"] == "fingerprint"
        assert len(store.messages) == 1

    @pytest.mark.asyncio
    async def test_original_stamp_still_resolves_after_content_match(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        await tracker.on_signal(_signal("queued", stamp="S1", clock=clock, content=INVOICE))
        await tracker.on_signal(_signal("transport-success", stamp="S2", clock=clock, content=INVOICE))

        delivered = await tracker.on_signal(_signal("delivered", stamp="S1", clock=clock))

        assert delivered.message.status == MessageStatus.DELIVERED
        assert len(store.messages) == 1

    @pytest.mark.asyncio
    async def test_content_outside_window_is_a_new_message(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        await tracker.on_signal(_signal("queued", stamp=None, clock=clock, content=INVOICE))
        clock.advance(hours=2)

        result = await tracker.on_signal(_signal("queued", stamp=None, clock=clock, content=INVOICE))

        assert result.created is True
        assert len(store.messages) == 2

    @pytest.mark.asyncio
    async def test_explicit_fingerprint_is_used(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        fingerprint = "f" * 64
        first = await tracker.on_signal(_signal("queued", stamp=None, clock=clock, fingerprint=fingerprint))
        second = await tracker.on_signal(_signal("transport-accepted", stamp=None, clock=clock, fingerprint=fingerprint))

        assert first.message.content_fingerprint == fingerprint
        assert second.message.id == first.message.id


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_duplicates_create_one_message(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        results = await asyncio.gather(
            *(tracker.on_signal(_signal("queued", stamp="s-burst", clock=clock)) for _ in range(10))
        )

        assert len(store.messages) == 1
        assert sum(r.created for r in results) == 1
        assert len({r.message.id for r in results}) == 1
        assert len(store.events) == 10

    @pytest.mark.asyncio
    async def test_concurrent_unstamped_duplicates_create_one_message(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        await asyncio.gather(
            *(tracker.on_signal(_signal("queued", stamp=None, clock=clock, content=INVOICE)) for _ in range(5))
        )

        assert len(store.messages) == 1

    @pytest.mark.asyncio
    async def test_concurrent_mixed_signals_end_delivered(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        await asyncio.gather(*(tracker.on_signal(_signal(kind, stamp="s-mix", clock=clock)) for kind in FORWARD))

        (message,) = store.messages.values()
        assert message.status == MessageStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_cancel_waits_for_content_signal_on_same_message(
        self, uow_factory: Callable[[], InMemoryUnitOfWork], clock: FakeClock
    ) -> None:
        locks = KeyedLock()
        tracker = DeliveryTracker(uow_factory, clock=clock, locks=locks)
        created = await tracker.on_signal(_signal("queued", stamp=None, clock=clock, content=INVOICE))
        fingerprint = created.message.content_fingerprint

        async with locks.hold(f"fp:{fingerprint}"):
            cancel = asyncio.create_task(tracker.cancel_message(created.message.id))
            for _ in range(5):
                await asyncio.sleep(0)
            assert not cancel.done()

        message = await cancel
        assert message.status == MessageStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_lost_insert_race_is_retried(
        self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock
    ) -> None:
        winner = Message(channel=ChannelType.EMAIL, messenger_stamp_id="s-race", status=MessageStatus.QUEUED)
        store.race_winners.append(winner)

        result = await tracker.on_signal(_signal("transport-accepted", stamp="s-race", clock=clock))

        assert result.created is False
        assert result.message.id == winner.id
        assert result.message.status == MessageStatus.SENDING
        assert len(store.messages) == 1

    @pytest.mark.asyncio
    async def test_contention_outlasting_attempts_raises(
        self, uow_factory: Callable[[], InMemoryUnitOfWork], store: InMemoryStore, clock: FakeClock
    ) -> None:
        tracker = DeliveryTracker(uow_factory, clock=clock, store_attempts=1)
        store.race_winners.append(Message(channel=ChannelType.EMAIL, messenger_stamp_id="s-race"))

        with pytest.raises(SignalConflictError):
            await tracker.on_signal(_signal("queued", stamp="s-race", clock=clock))


class TestReads:
    @pytest.mark.asyncio
    async def test_latest_event_breaks_ties_by_id(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        created = await tracker.on_signal(_signal("queued", clock=clock))
        second = await tracker.on_signal(_signal("transport-accepted", clock=clock))

        latest = await tracker.latest_event(created.message.id)

        assert latest is not None
        assert latest.id == max(created.event.id, second.event.id)
        assert latest.event_type == EventType.ACCEPTED

    @pytest.mark.asyncio
    async def test_events_newest_first_with_limit(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        for kind in FORWARD:
            clock.advance(seconds=1)
            result = await tracker.on_signal(_signal(kind, clock=clock))

        events = await tracker.list_events(result.message.id, limit=2)

        assert [e.event_type for e in events] == [EventType.DELIVERED, EventType.SENT]

    @pytest.mark.asyncio
    async def test_engagement_stats(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        content = SignalContent(subject="Launch", body="We are live", recipients=("ada@example.com", "bob@example.com"))
        created = await tracker.on_signal(_signal("queued", clock=clock, content=content))
        await tracker.on_signal(_signal("delivered", clock=clock, recipient_address="ada@example.com"))
        await tracker.on_signal(_signal("opened", clock=clock, recipient_address="ada@example.com"))
        await tracker.on_signal(_signal("opened", clock=clock, recipient_address="ada@example.com"))
        await tracker.on_signal(_signal("clicked", clock=clock, recipient_address="bob@example.com"))

        stats = await tracker.engagement_stats(created.message.id)

        assert stats.total_recipients == 2
        assert stats.delivered == 1
        assert stats.opened == 1
        assert stats.clicked == 1
        assert stats.total_opens == 2
        assert stats.total_clicks == 1
        assert stats.bounced == 0

    @pytest.mark.asyncio
    async def test_unknown_address_touches_no_recipient(self, tracker: DeliveryTracker, clock: FakeClock) -> None:
        content = SignalContent(subject="Launch", recipients=("ada@example.com", "bob@example.com"))
        await tracker.on_signal(_signal("queued", clock=clock, content=content))

        result = await tracker.on_signal(_signal("opened", clock=clock, recipient_address="zed@example.com"))

        assert result.event.recipient_id is None
        assert all(r.open_count == 0 for r in result.message.recipients)

    @pytest.mark.asyncio
    async def test_effective_schedule(self, tracker: DeliveryTracker, store: InMemoryStore, clock: FakeClock) -> None:
        notification = Notification(type="digest", scheduled_at=clock.now + timedelta(hours=1))
        store.notifications[notification.id] = notification
        own_time = clock.now + timedelta(hours=3)

        inherited = await tracker.on_signal(
            _signal("queued", stamp="s-a", clock=clock, notification_id=notification.id, scheduled_at=own_time)
        )
        overridden = await tracker.on_signal(
            _signal(
                "queued",
                stamp="s-b",
                clock=clock,
                notification_id=notification.id,
                scheduled_at=own_time,
                schedule_override=True,
            )
        )

        assert await tracker.effective_scheduled_at(inherited.message) == notification.scheduled_at
        assert await tracker.effective_scheduled_at(overridden.message) == own_time
