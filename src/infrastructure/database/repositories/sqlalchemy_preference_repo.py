"""SQLAlchemy implementation of ChannelPreference repository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import ensure_utc
from domain.entities.preference import ChannelPreference, Frequency, QuietHoursWindow
from infrastructure.database.models import ChannelPreferenceModel

# Columns copied verbatim between entity and model
_PLAIN_FIELDS = (
    "allow_notifications",
    "allow_transactional",
    "allow_marketing",
    "allow_promotional",
    "minimum_priority",
    "max_per_hour",
    "max_per_day",
    "max_per_week",
    "messages_this_hour",
    "messages_today",
    "messages_this_week",
    "last_message_at",
    "last_opt_in_at",
    "last_opt_out_at",
    "opt_out_reason",
)

_LIST_FIELDS = (
    "allowed_categories",
    "blocked_categories",
    "allowed_senders",
    "blocked_senders",
)


class SQLAlchemyPreferenceRepository:
    """SQLAlchemy implementation of IPreferenceRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_for_channel(
        self,
        contact_id: str,
        channel: str,
        for_update: bool = False,
    ) -> ChannelPreference | None:
        """Get the preference of a contact on a channel."""
        model = await self._fetch(contact_id, channel, for_update)
        return self._to_entity(model) if model else None

    async def list_for_contact(self, contact_id: str) -> list[ChannelPreference]:
        """Get every channel preference of a contact."""
        stmt = (
            select(ChannelPreferenceModel)
            .where(ChannelPreferenceModel.contact_id == contact_id)
            .order_by(ChannelPreferenceModel.channel)
        )
        result = await self._session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars()]

    async def upsert(self, preference: ChannelPreference) -> ChannelPreference:
        """Insert or overwrite the preference for (contact, channel)."""
        existing = await self._fetch(preference.contact_id, preference.channel, False)

        if existing:
            self._apply(existing, preference)
            await self._session.flush()
            await self._session.refresh(existing)
            return self._to_entity(existing)

        model = ChannelPreferenceModel(
            id=preference.id,
            contact_id=preference.contact_id,
            channel=preference.channel,
            created_at=preference.created_at,
        )
        self._apply(model, preference)
        self._session.add(model)
        await self._session.flush()
        await self._session.refresh(model)
        return self._to_entity(model)

    async def _fetch(self, contact_id: str, channel: str, for_update: bool) -> ChannelPreferenceModel | None:
        stmt = select(ChannelPreferenceModel).where(
            ChannelPreferenceModel.contact_id == contact_id,
            ChannelPreferenceModel.channel == channel,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    # --- Conversion methods ---

    @staticmethod
    def _apply(model: ChannelPreferenceModel, entity: ChannelPreference) -> None:
        for name in _PLAIN_FIELDS:
            setattr(model, name, getattr(entity, name))
        for name in _LIST_FIELDS:
            setattr(model, name, list(getattr(entity, name)))
        model.frequency = str(entity.frequency)
        model.quiet_hours = [w.to_dict() for w in entity.quiet_hours]
        model.updated_at = entity.updated_at

    def _to_entity(self, model: ChannelPreferenceModel) -> ChannelPreference:
        """Convert ChannelPreferenceModel to domain entity."""
        return ChannelPreference(
            id=model.id,
            contact_id=model.contact_id,
            channel=model.channel,
            allow_notifications=model.allow_notifications,
            allow_transactional=model.allow_transactional,
            allow_marketing=model.allow_marketing,
            allow_promotional=model.allow_promotional,
            frequency=Frequency(model.frequency),
            minimum_priority=model.minimum_priority,
            quiet_hours=[QuietHoursWindow.from_dict(w) for w in model.quiet_hours or []],
            allowed_categories=list(model.allowed_categories or []),
            blocked_categories=list(model.blocked_categories or []),
            allowed_senders=list(model.allowed_senders or []),
            blocked_senders=list(model.blocked_senders or []),
            max_per_hour=model.max_per_hour,
            max_per_day=model.max_per_day,
            max_per_week=model.max_per_week,
            messages_this_hour=model.messages_this_hour,
            messages_today=model.messages_today,
            messages_this_week=model.messages_this_week,
            last_message_at=ensure_utc(model.last_message_at),
            last_opt_in_at=ensure_utc(model.last_opt_in_at),
            last_opt_out_at=ensure_utc(model.last_opt_out_at),
            opt_out_reason=model.opt_out_reason,
            created_at=ensure_utc(model.created_at),  # type: ignore[arg-type]
            updated_at=ensure_utc(model.updated_at),  # type: ignore[arg-type]
        )
