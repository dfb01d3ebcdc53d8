"""Preference service layer for channel consent and send gating."""

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any

import structlog

from core.clock import Clock, utcnow
from core.exceptions import PreferenceNotFoundError
from core.locks import KeyedLock
from domain.entities.preference import BlockReason, ChannelPreference, Frequency, QuietHoursWindow
from domain.repositories.unit_of_work import IUnitOfWork
from domain.services.preference_engine import PreferenceEngine, preference_engine

logger = structlog.get_logger()

# Settings a caller may change; counters and consent timestamps are managed here
EDITABLE_FIELDS = frozenset(
    {
        "allow_notifications",
        "allow_transactional",
        "allow_marketing",
        "allow_promotional",
        "frequency",
        "minimum_priority",
        "quiet_hours",
        "allowed_categories",
        "blocked_categories",
        "allowed_senders",
        "blocked_senders",
        "max_per_hour",
        "max_per_day",
        "max_per_week",
    }
)

# Settings where None is meaningful (no ceiling)
NULLABLE_FIELDS = frozenset({"max_per_hour", "max_per_day", "max_per_week"})


class PreferenceService:
    """Service layer for per-contact, per-channel preferences."""

    def __init__(
        self,
        uow_factory: Callable[[], IUnitOfWork],
        engine: PreferenceEngine = preference_engine,
        clock: Clock = utcnow,
        locks: KeyedLock | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._engine = engine
        self._clock = clock
        self._locks = locks or KeyedLock()

    @staticmethod
    def _lock_key(contact_id: str, channel: str) -> str:
        return f"pref:{contact_id}:{channel}"

    async def get_preference(self, contact_id: str, channel: str) -> ChannelPreference:
        """Get a stored preference or raise PreferenceNotFoundError."""
        async with self._uow_factory() as uow:
            pref = await uow.preferences.get_for_channel(contact_id, channel)
            if not pref:
                raise PreferenceNotFoundError(contact_id, channel)
            return pref

    async def get_effective(self, contact_id: str, channel: str) -> ChannelPreference:
        """Stored preference, or the permissive default when none exists."""
        async with self._uow_factory() as uow:
            pref = await uow.preferences.get_for_channel(contact_id, channel)
        return pref or ChannelPreference.default_for(contact_id, channel)

    async def upsert_preference(
        self,
        contact_id: str,
        channel: str,
        changes: dict[str, Any],
    ) -> ChannelPreference:
        """Apply ``changes`` over the stored (or default) preference."""
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown preference fields: {sorted(unknown)}")

        values = {k: v for k, v in changes.items() if v is not None or k in NULLABLE_FIELDS}
        if values.get("frequency") is not None:
            values["frequency"] = Frequency(values["frequency"])
        if "quiet_hours" in values:
            values["quiet_hours"] = [
                w if isinstance(w, QuietHoursWindow) else QuietHoursWindow.from_dict(w)
                for w in values["quiet_hours"] or []
            ]

        async with self._locks.hold(self._lock_key(contact_id, channel)):
            async with self._uow_factory() as uow:
                current = await uow.preferences.get_for_channel(contact_id, channel, for_update=True)
                base = current or ChannelPreference.default_for(contact_id, channel)
                updated = replace(base, **values, updated_at=self._clock())
                saved = await uow.preferences.upsert(updated)
                await uow.commit()

        logger.info(
            "preference_saved",
            contact_id=contact_id,
            channel=channel,
            fields=sorted(changes),
        )
        return saved

    async def explain(
        self,
        contact_id: str,
        channel: str,
        category: str | None = None,
        priority: str | None = None,
        sender: str | None = None,
        send_at: datetime | None = None,
    ) -> BlockReason | None:
        pref = await self.get_effective(contact_id, channel)
        return self._engine.explain(pref, category, priority, sender, send_at, now=self._clock())

    async def can_send(
        self,
        contact_id: str,
        channel: str,
        category: str | None = None,
        priority: str | None = None,
        sender: str | None = None,
        send_at: datetime | None = None,
    ) -> bool:
        return await self.explain(contact_id, channel, category, priority, sender, send_at) is None

    async def record_send(self, contact_id: str, channel: str) -> ChannelPreference:
        """Count one send against the contact's rolling counters.

        Serialized per (contact, channel) so concurrent sends never lose an
        increment.
        """
        async with self._locks.hold(self._lock_key(contact_id, channel)):
            async with self._uow_factory() as uow:
                pref = await self._load_for_update(uow, contact_id, channel)
                saved = await uow.preferences.upsert(self._engine.record_send(pref, self._clock()))
                await uow.commit()
        return saved

    async def opt_in(self, contact_id: str, channel: str) -> ChannelPreference:
        async with self._locks.hold(self._lock_key(contact_id, channel)):
            async with self._uow_factory() as uow:
                pref = await self._load_for_update(uow, contact_id, channel)
                saved = await uow.preferences.upsert(self._engine.opt_in(pref, self._clock()))
                await uow.commit()
        logger.info("contact_opted_in", contact_id=contact_id, channel=channel)
        return saved

    async def opt_out(self, contact_id: str, channel: str, reason: str | None = None) -> ChannelPreference:
        async with self._locks.hold(self._lock_key(contact_id, channel)):
            async with self._uow_factory() as uow:
                pref = await self._load_for_update(uow, contact_id, channel)
                saved = await uow.preferences.upsert(self._engine.opt_out(pref, reason, self._clock()))
                await uow.commit()
        logger.info("contact_opted_out", contact_id=contact_id, channel=channel, reason=reason)
        return saved

    async def _load_for_update(self, uow: IUnitOfWork, contact_id: str, channel: str) -> ChannelPreference:
        pref = await uow.preferences.get_for_channel(contact_id, channel, for_update=True)
        return pref or ChannelPreference.default_for(contact_id, channel)
