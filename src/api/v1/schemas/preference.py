"""Pydantic schemas for channel preference API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from domain.entities.preference import BlockReason, ChannelPreference, Frequency

_CLOCK = "^([01][0-9]|2[0-3]):[0-5][0-9](:[0-5][0-9])?$"
_WEEKDAY = "^(mon|tue|wed|thu|fri|sat|sun)$"


class QuietHoursSchema(BaseModel):
    """Recurring window during which nothing is sent."""

    model_config = ConfigDict(from_attributes=True)

    start: str = Field(..., pattern=_CLOCK, examples=["22:00"])
    end: str = Field(..., pattern=_CLOCK, examples=["07:00"])
    timezone: str = Field("UTC", max_length=64)
    days: list[str] = Field(default_factory=list, description="Empty means every day")


class PreferenceUpdate(BaseModel):
    """Schema for updating a channel preference (all fields optional)."""

    allow_notifications: bool | None = None
    allow_transactional: bool | None = None
    allow_marketing: bool | None = None
    allow_promotional: bool | None = None
    frequency: Frequency | None = None
    minimum_priority: str | None = Field(None, pattern="^(all|high|medium|low)$")
    quiet_hours: list[QuietHoursSchema] | None = None
    allowed_categories: list[str] | None = None
    blocked_categories: list[str] | None = None
    allowed_senders: list[str] | None = None
    blocked_senders: list[str] | None = None
    max_per_hour: int | None = Field(None, ge=0)
    max_per_day: int | None = Field(None, ge=0)
    max_per_week: int | None = Field(None, ge=0)


class PreferenceResponse(BaseModel):
    """Schema for channel preference response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    contact_id: str
    channel: str
    allow_notifications: bool
    allow_transactional: bool
    allow_marketing: bool
    allow_promotional: bool
    frequency: Frequency
    minimum_priority: str
    quiet_hours: list[QuietHoursSchema]
    allowed_categories: list[str]
    blocked_categories: list[str]
    allowed_senders: list[str]
    blocked_senders: list[str]
    max_per_hour: int | None = None
    max_per_day: int | None = None
    max_per_week: int | None = None
    messages_this_hour: int
    messages_today: int
    messages_this_week: int
    last_message_at: datetime | None = None
    last_opt_in_at: datetime | None = None
    last_opt_out_at: datetime | None = None
    opt_out_reason: str | None = None

    @classmethod
    def from_entity(cls, preference: ChannelPreference) -> "PreferenceResponse":
        return cls.model_validate(preference)


class PreferenceDetailResponse(BaseModel):
    data: PreferenceResponse


class SendCheckRequest(BaseModel):
    """A prospective send to check against a preference."""

    category: str | None = Field(None, max_length=100)
    priority: str | None = Field(None, pattern="^(high|medium|low)$")
    sender: str | None = Field(None, max_length=255)
    send_at: datetime | None = None


class SendCheckResponse(BaseModel):
    allowed: bool
    reason: BlockReason | None = None


class SendCheckDetailResponse(BaseModel):
    data: SendCheckResponse


class OptOutRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)
