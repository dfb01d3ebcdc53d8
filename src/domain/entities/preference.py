"""Channel preference domain entities."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from core.clock import utcnow
from core.ids import new_id


class Frequency(StrEnum):
    IMMEDIATE = "immediate"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    NEVER = "never"


class BlockReason(StrEnum):
    """First rule that refused a send."""

    OPTED_OUT = "opted_out"
    FREQUENCY = "frequency"
    RATE_LIMIT = "rate_limit"
    PRIORITY = "priority"
    CATEGORY = "category"
    SENDER = "sender"
    QUIET_HOURS = "quiet_hours"


PRIORITY_ALL = "all"

PRIORITY_RANK: dict[str, int] = {
    "high": 3,
    "medium": 2,
    "low": 1,
}


@dataclass(frozen=True)
class QuietHoursWindow:
    """A recurring time-of-day window, e.g. 22:00-06:00 Europe/Paris."""

    start: str
    end: str
    timezone: str = "UTC"
    days: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuietHoursWindow":
        return cls(
            start=str(data["start"]),
            end=str(data["end"]),
            timezone=data.get("timezone") or "UTC",
            days=tuple(str(d).lower() for d in data.get("days") or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "timezone": self.timezone,
            "days": list(self.days),
        }


@dataclass
class ChannelPreference:
    """Domain entity for one contact's rules on one channel."""

    contact_id: str
    channel: str
    id: UUID = field(default_factory=new_id)

    # Consent
    allow_notifications: bool = True
    allow_transactional: bool = True
    allow_marketing: bool = False
    allow_promotional: bool = False

    frequency: Frequency = Frequency.IMMEDIATE
    minimum_priority: str = PRIORITY_ALL
    quiet_hours: list[QuietHoursWindow] = field(default_factory=list)

    allowed_categories: list[str] = field(default_factory=list)
    blocked_categories: list[str] = field(default_factory=list)
    allowed_senders: list[str] = field(default_factory=list)
    blocked_senders: list[str] = field(default_factory=list)

    # Rate ceilings, None means unlimited
    max_per_hour: int | None = None
    max_per_day: int | None = None
    max_per_week: int | None = None

    # Rolling counters
    messages_this_hour: int = 0
    messages_today: int = 0
    messages_this_week: int = 0
    last_message_at: datetime | None = None

    last_opt_in_at: datetime | None = None
    last_opt_out_at: datetime | None = None
    opt_out_reason: str | None = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def default_for(cls, contact_id: str, channel: str) -> "ChannelPreference":
        """Permissive preference used when nothing is stored."""
        return cls(contact_id=contact_id, channel=channel)
