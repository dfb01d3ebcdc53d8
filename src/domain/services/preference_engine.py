"""Send gating against a recipient channel preference.

Checks run in a fixed order and stop at the first refusal: opt-out,
frequency tier, rolling rate ceilings, priority floor, category lists,
sender lists, quiet hours.

Counter windows reset relative to ``last_message_at``: the hourly counter
once ``last_message_at`` is an hour old, the daily counter when the UTC date
changes, the weekly counter once ``last_message_at`` is seven days old. A
recipient messaged every 59 minutes therefore never sees the hourly counter
reset; that rule is kept as is.
"""

import calendar
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

import structlog

from core.clock import ensure_utc, resolve_timezone, utcnow
from domain.entities.preference import (
    PRIORITY_RANK,
    BlockReason,
    ChannelPreference,
    Frequency,
    QuietHoursWindow,
)
from domain.services.attribute_gate import AttributeGate, attribute_gate

logger = structlog.get_logger()

_WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_FREQUENCY_WINDOWS: dict[Frequency, timedelta] = {
    Frequency.HOURLY: timedelta(hours=1),
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(weeks=1),
}


@dataclass(frozen=True, slots=True)
class RollingCounters:
    """Counters as they stand at a given instant, after lazy resets."""

    this_hour: int
    today: int
    this_week: int


def _one_month_before(value: datetime) -> datetime:
    year, month = value.year, value.month - 1
    if month == 0:
        year, month = year - 1, 12
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _clock_text(value: str) -> str | None:
    """Normalize ``H:MM`` / ``HH:MM`` to zero-padded ``HH:MM``."""
    try:
        hours, minutes = value.strip().split(":")[:2]
        h, m = int(hours), int(minutes)
    except (AttributeError, ValueError):
        return None
    if not (0 <= h <= 23 and 0 <= m <= 59):
        return None
    return f"{h:02d}:{m:02d}"


class PreferenceEngine:
    """Answers can-send questions and advances rolling counters."""

    def __init__(self, gate: AttributeGate = attribute_gate) -> None:
        self._gate = gate

    # --- Counters ---

    def counters_at(self, pref: ChannelPreference, now: datetime) -> RollingCounters:
        last = ensure_utc(pref.last_message_at)
        now = ensure_utc(now)  # type: ignore[assignment]
        if last is None:
            return RollingCounters(pref.messages_this_hour, pref.messages_today, pref.messages_this_week)
        return RollingCounters(
            this_hour=0 if last <= now - timedelta(hours=1) else pref.messages_this_hour,
            today=0 if last.date() != now.date() else pref.messages_today,
            this_week=0 if last <= now - timedelta(weeks=1) else pref.messages_this_week,
        )

    def record_send(self, pref: ChannelPreference, now: datetime | None = None) -> ChannelPreference:
        """Return a copy of ``pref`` with this send counted.

        Windows are reset against the previous send before incrementing, so a
        send is never counted into a stale window.
        """
        now = ensure_utc(now or utcnow())  # type: ignore[assignment]
        counters = self.counters_at(pref, now)
        return replace(
            pref,
            messages_this_hour=counters.this_hour + 1,
            messages_today=counters.today + 1,
            messages_this_week=counters.this_week + 1,
            last_message_at=now,
            updated_at=now,
        )

    # --- Consent ---

    def opt_in(self, pref: ChannelPreference, now: datetime | None = None) -> ChannelPreference:
        now = now or utcnow()
        return replace(
            pref,
            allow_notifications=True,
            last_opt_in_at=now,
            last_opt_out_at=None,
            opt_out_reason=None,
            updated_at=now,
        )

    def opt_out(
        self,
        pref: ChannelPreference,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> ChannelPreference:
        now = now or utcnow()
        return replace(
            pref,
            allow_notifications=False,
            last_opt_out_at=now,
            opt_out_reason=reason,
            updated_at=now,
        )

    # --- Gating ---

    def can_send(
        self,
        pref: ChannelPreference,
        category: str | None = None,
        priority: str | None = None,
        sender: str | None = None,
        send_at: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        return self.explain(pref, category, priority, sender, send_at, now) is None

    def explain(
        self,
        pref: ChannelPreference,
        category: str | None = None,
        priority: str | None = None,
        sender: str | None = None,
        send_at: datetime | None = None,
        now: datetime | None = None,
    ) -> BlockReason | None:
        """First rule that refuses the send, or None when it may go out."""
        now = ensure_utc(now or utcnow())  # type: ignore[assignment]
        send_at = ensure_utc(send_at) or now

        if not pref.allow_notifications:
            return BlockReason.OPTED_OUT
        if not self._frequency_allows(pref, now):
            return BlockReason.FREQUENCY
        if not self._rate_allows(pref, now):
            return BlockReason.RATE_LIMIT
        if priority and not self._priority_allows(pref, priority):
            return BlockReason.PRIORITY
        if category and not self._listed(category, pref.allowed_categories, pref.blocked_categories):
            return BlockReason.CATEGORY
        if sender and not self._listed(sender, pref.allowed_senders, pref.blocked_senders):
            return BlockReason.SENDER
        if self.in_quiet_hours(pref, send_at):
            return BlockReason.QUIET_HOURS
        return None

    def _frequency_allows(self, pref: ChannelPreference, now: datetime) -> bool:
        frequency = Frequency(pref.frequency)
        if frequency == Frequency.NEVER:
            return False
        if frequency == Frequency.IMMEDIATE:
            return True
        last = ensure_utc(pref.last_message_at)
        if last is None:
            return True
        if frequency == Frequency.MONTHLY:
            return last <= _one_month_before(now)
        return last <= now - _FREQUENCY_WINDOWS[frequency]

    def _rate_allows(self, pref: ChannelPreference, now: datetime) -> bool:
        counters = self.counters_at(pref, now)
        for count, ceiling in (
            (counters.this_hour, pref.max_per_hour),
            (counters.today, pref.max_per_day),
            (counters.this_week, pref.max_per_week),
        ):
            if ceiling and count >= ceiling:
                return False
        return True

    def _priority_allows(self, pref: ChannelPreference, priority: str) -> bool:
        floor = PRIORITY_RANK.get(pref.minimum_priority, 0)
        return PRIORITY_RANK.get(priority, 0) >= floor

    def _listed(self, value: str, allowed: list[str], blocked: list[str]) -> bool:
        if blocked and self._gate.evaluate(value, "in", blocked):
            return False
        if allowed:
            return self._gate.evaluate(value, "in", allowed)
        return True

    def in_quiet_hours(self, pref: ChannelPreference, send_at: datetime) -> bool:
        return any(self._in_window(window, send_at) for window in pref.quiet_hours)

    def _in_window(self, window: QuietHoursWindow, send_at: datetime) -> bool:
        start, end = _clock_text(window.start), _clock_text(window.end)
        if start is None or end is None:
            logger.warning(
                "quiet_hours_malformed",
                start=window.start,
                end=window.end,
            )
            return False

        local = ensure_utc(send_at).astimezone(resolve_timezone(window.timezone))  # type: ignore[union-attr]
        if window.days:
            days = [d.strip().lower()[:3] for d in window.days]
            if not self._gate.evaluate(_WEEKDAYS[local.weekday()], "in", days):
                return False

        current = local.strftime("%H:%M")
        if start > end:
            return current >= start or current <= end
        return start <= current <= end


preference_engine = PreferenceEngine()
