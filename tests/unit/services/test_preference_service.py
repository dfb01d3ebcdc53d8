"""Unit tests for Preference service layer."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from core.exceptions import PreferenceNotFoundError
from domain.entities.preference import BlockReason, ChannelPreference, Frequency, QuietHoursWindow
from domain.services.preference_service import PreferenceService
from tests.unit.conftest import FakeClock, FakeUnitOfWork
from tests.unit.fakes import InMemoryStore, InMemoryUnitOfWork


@pytest.fixture
def service(uow_factory: Callable[[], InMemoryUnitOfWork], clock: FakeClock) -> PreferenceService:
    return PreferenceService(uow_factory, clock=clock)


class TestPreferenceServiceGet:
    @pytest.mark.asyncio
    async def test_raises_when_nothing_stored(self, uow: FakeUnitOfWork) -> None:
        """Test get_preference raises PreferenceNotFoundError when no row exists."""
        uow.preferences.get_for_channel.return_value = None
        service = PreferenceService(lambda: uow)

        with pytest.raises(PreferenceNotFoundError) as exc_info:
            await service.get_preference("contact-1", "email")

        assert exc_info.value.details == {"contact_id": "contact-1", "channel": "email"}
        uow.preferences.get_for_channel.assert_called_once_with("contact-1", "email")

    @pytest.mark.asyncio
    async def test_effective_falls_back_to_permissive_default(self, service: PreferenceService) -> None:
        pref = await service.get_effective("contact-1", "sms")

        assert pref.allow_notifications is True
        assert pref.frequency == Frequency.IMMEDIATE
        assert pref.max_per_hour is None


class TestPreferenceServiceUpsert:
    @pytest.mark.asyncio
    async def test_creates_then_updates(self, service: PreferenceService, store: InMemoryStore) -> None:
        created = await service.upsert_preference(
            "contact-1",
            "email",
            {
                "frequency": "daily",
                "quiet_hours": [{"start": "22:00", "end": "06:00", "timezone": "Europe/Paris"}],
                "blocked_categories": ["marketing"],
            },
        )
        updated = await service.upsert_preference("contact-1", "email", {"max_per_day": 3})

        assert created.frequency == Frequency.DAILY
        assert created.quiet_hours == [QuietHoursWindow(start="22:00", end="06:00", timezone="Europe/Paris")]
        assert updated.id == created.id
        assert updated.max_per_day == 3
        assert updated.blocked_categories == ["marketing"]
        assert len(store.preferences) == 1

    @pytest.mark.asyncio
    async def test_null_clears_a_ceiling_but_not_a_flag(self, service: PreferenceService) -> None:
        await service.upsert_preference("contact-1", "email", {"max_per_hour": 5, "allow_marketing": True})

        updated = await service.upsert_preference(
            "contact-1", "email", {"max_per_hour": None, "allow_marketing": None}
        )

        assert updated.max_per_hour is None
        assert updated.allow_marketing is True

    @pytest.mark.asyncio
    async def test_rejects_unknown_fields(self, service: PreferenceService) -> None:
        with pytest.raises(ValueError, match="messages_today"):
            await service.upsert_preference("contact-1", "email", {"messages_today": 0})


class TestPreferenceServiceGating:
    @pytest.mark.asyncio
    async def test_explain_reports_first_refusal(self, service: PreferenceService) -> None:
        await service.upsert_preference("contact-1", "email", {"blocked_senders": ["promo@acme.io"]})

        assert await service.explain("contact-1", "email", sender="promo@acme.io") == BlockReason.SENDER
        assert await service.can_send("contact-1", "email", sender="support@acme.io")

    @pytest.mark.asyncio
    async def test_recorded_sends_reach_the_ceiling(self, service: PreferenceService, store: InMemoryStore) -> None:
        await service.upsert_preference("contact-1", "email", {"max_per_hour": 2})

        outcomes = []
        for _ in range(3):
            reason = await service.explain("contact-1", "email")
            if reason is None:
                await service.record_send("contact-1", "email")
            outcomes.append(reason)

        assert outcomes == [None, None, BlockReason.RATE_LIMIT]
        assert store.preferences[("contact-1", "email")].messages_this_hour == 2

    @pytest.mark.asyncio
    async def test_concurrent_record_send_loses_no_increment(
        self, service: PreferenceService, store: InMemoryStore
    ) -> None:
        await asyncio.gather(*(service.record_send("contact-1", "push") for _ in range(5)))

        stored = store.preferences[("contact-1", "push")]
        assert stored.messages_this_hour == 5
        assert stored.messages_this_week == 5

    @pytest.mark.asyncio
    async def test_counters_reset_with_time(
        self, service: PreferenceService, store: InMemoryStore, clock: FakeClock
    ) -> None:
        await service.upsert_preference("contact-1", "email", {"max_per_hour": 1})
        await service.record_send("contact-1", "email")
        assert await service.explain("contact-1", "email") == BlockReason.RATE_LIMIT

        clock.advance(hours=1)

        assert await service.explain("contact-1", "email") is None

    @pytest.mark.asyncio
    async def test_quiet_hours_use_send_time(self, service: PreferenceService) -> None:
        await service.upsert_preference(
            "contact-1", "email", {"quiet_hours": [{"start": "22:00", "end": "06:00"}]}
        )
        night = datetime(2024, 6, 11, 23, 0, tzinfo=UTC)

        assert await service.explain("contact-1", "email", send_at=night) == BlockReason.QUIET_HOURS
        assert await service.explain("contact-1", "email", send_at=night + timedelta(hours=8)) is None


class TestPreferenceServiceConsent:
    @pytest.mark.asyncio
    async def test_opt_out_then_in(self, service: PreferenceService, clock: FakeClock) -> None:
        out = await service.opt_out("contact-1", "sms", reason="STOP")

        assert out.allow_notifications is False
        assert out.opt_out_reason == "STOP"
        assert out.last_opt_out_at == clock.now
        assert await service.explain("contact-1", "sms") == BlockReason.OPTED_OUT

        clock.advance(days=1)
        back = await service.opt_in("contact-1", "sms")

        assert back.allow_notifications is True
        assert back.opt_out_reason is None
        assert back.last_opt_in_at == clock.now

    @pytest.mark.asyncio
    async def test_opt_out_keeps_other_settings(self, service: PreferenceService) -> None:
        await service.upsert_preference("contact-1", "email", {"minimum_priority": "high"})

        out = await service.opt_out("contact-1", "email")

        assert isinstance(out, ChannelPreference)
        assert out.minimum_priority == "high"
