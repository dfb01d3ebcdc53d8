"""Resolution of signals to the Message they belong to."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from core.clock import start_of_utc_day
from domain.entities.message import Message
from domain.repositories.message_repository import IMessageRepository


@dataclass(frozen=True, slots=True)
class DedupMatch:
    """An existing Message a signal attaches to."""

    message: Message
    matched_on: str
    adopt_stamp: bool = False


class DedupIndex:
    """Finds the canonical Message for a stamp id or content fingerprint.

    Lookup order, first hit wins:

    1. exact messenger stamp id;
    2. content fingerprint among Messages created inside the trailing window
       (the current UTC calendar day unless ``window_seconds`` is given),
       oldest first, whatever stamp the candidate already carries;
    3. no match, the caller creates a new Message.
    """

    def __init__(self, window_seconds: int | None = None) -> None:
        self._window_seconds = window_seconds

    def window_start(self, now: datetime) -> datetime:
        if self._window_seconds is None:
            return start_of_utc_day(now)
        return now - timedelta(seconds=self._window_seconds)

    @staticmethod
    def lock_keys(stamp_id: str | None, fingerprint: str | None) -> tuple[str, ...]:
        keys = []
        if stamp_id:
            keys.append(f"stamp:{stamp_id}")
        if fingerprint:
            keys.append(f"fp:{fingerprint}")
        return tuple(keys)

    async def lookup(
        self,
        messages: IMessageRepository,
        stamp_id: str | None,
        fingerprint: str | None,
        now: datetime,
    ) -> DedupMatch | None:
        if stamp_id:
            message = await messages.find_by_stamp_id(stamp_id, for_update=True)
            if message is not None:
                return DedupMatch(message=message, matched_on="stamp_id")

        if fingerprint:
            candidates = await messages.find_recent_by_fingerprint(fingerprint, self.window_start(now))
            if candidates:
                candidate = candidates[0]
                return DedupMatch(
                    message=candidate,
                    matched_on="fingerprint",
                    adopt_stamp=stamp_id is not None and candidate.messenger_stamp_id is None,
                )

        return None
