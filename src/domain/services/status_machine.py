"""Lifecycle transition tables for Messages and Notifications.

The machine answers questions only; it never mutates an entity. Retry
ceilings are a caller policy: ``failed -> retrying`` is always an edge here.
"""

from collections import deque
from collections.abc import Iterable
from enum import StrEnum

from core.exceptions import InvalidTransitionError
from domain.entities.message import MessageStatus
from domain.entities.notification import NotificationStatus


class LifecycleKind(StrEnum):
    MESSAGE = "message"
    NOTIFICATION = "notification"


# Edge order is the preference order used when searching for implied paths
_MESSAGE_TRANSITIONS: dict[MessageStatus, tuple[MessageStatus, ...]] = {
    MessageStatus.PENDING: (MessageStatus.QUEUED, MessageStatus.CANCELLED),
    MessageStatus.QUEUED: (MessageStatus.SENDING, MessageStatus.CANCELLED),
    MessageStatus.SENDING: (MessageStatus.SENT, MessageStatus.FAILED, MessageStatus.CANCELLED),
    MessageStatus.SENT: (MessageStatus.DELIVERED,),
    MessageStatus.FAILED: (MessageStatus.RETRYING, MessageStatus.CANCELLED),
    MessageStatus.RETRYING: (MessageStatus.QUEUED, MessageStatus.CANCELLED),
    MessageStatus.DELIVERED: (),  # Terminal
    MessageStatus.CANCELLED: (),  # Terminal
    MessageStatus.BOUNCED: (),  # Terminal
}

_MESSAGE_ADVANCE: dict[MessageStatus, MessageStatus] = {
    MessageStatus.PENDING: MessageStatus.QUEUED,
    MessageStatus.QUEUED: MessageStatus.SENDING,
    MessageStatus.SENDING: MessageStatus.SENT,
    MessageStatus.SENT: MessageStatus.DELIVERED,
    MessageStatus.FAILED: MessageStatus.RETRYING,
    MessageStatus.RETRYING: MessageStatus.QUEUED,
}

_NOTIFICATION_TRANSITIONS: dict[NotificationStatus, tuple[NotificationStatus, ...]] = {
    NotificationStatus.DRAFT: (
        NotificationStatus.SCHEDULED,
        NotificationStatus.QUEUED,
        NotificationStatus.CANCELLED,
        NotificationStatus.FAILED,
    ),
    NotificationStatus.SCHEDULED: (
        NotificationStatus.QUEUED,
        NotificationStatus.CANCELLED,
        NotificationStatus.FAILED,
    ),
    NotificationStatus.QUEUED: (
        NotificationStatus.SENDING,
        NotificationStatus.CANCELLED,
        NotificationStatus.FAILED,
    ),
    NotificationStatus.SENDING: (
        NotificationStatus.SENT,
        NotificationStatus.CANCELLED,
        NotificationStatus.FAILED,
    ),
    NotificationStatus.SENT: (NotificationStatus.FAILED,),
    # Manual resend
    NotificationStatus.FAILED: (NotificationStatus.QUEUED,),
    NotificationStatus.CANCELLED: (NotificationStatus.FAILED,),
}

_NOTIFICATION_ADVANCE: dict[NotificationStatus, NotificationStatus] = {
    NotificationStatus.DRAFT: NotificationStatus.QUEUED,
    NotificationStatus.SCHEDULED: NotificationStatus.QUEUED,
    NotificationStatus.QUEUED: NotificationStatus.SENDING,
    NotificationStatus.SENDING: NotificationStatus.SENT,
}

NOTIFICATION_EDITABLE = frozenset({NotificationStatus.DRAFT, NotificationStatus.SCHEDULED})
NOTIFICATION_SENDABLE = frozenset(
    {NotificationStatus.DRAFT, NotificationStatus.SCHEDULED, NotificationStatus.FAILED}
)

_TABLES: dict[LifecycleKind, tuple[type[StrEnum], dict, dict]] = {
    LifecycleKind.MESSAGE: (MessageStatus, _MESSAGE_TRANSITIONS, _MESSAGE_ADVANCE),
    LifecycleKind.NOTIFICATION: (
        NotificationStatus,
        _NOTIFICATION_TRANSITIONS,
        _NOTIFICATION_ADVANCE,
    ),
}


class StatusMachine:
    """Pure transition checks for both lifecycles."""

    def _coerce(self, kind: LifecycleKind | str, status: str) -> tuple[StrEnum | None, dict, dict]:
        status_type, edges, advance = _TABLES[LifecycleKind(kind)]
        try:
            return status_type(status), edges, advance
        except ValueError:
            return None, edges, advance

    def can_transition(self, kind: LifecycleKind | str, current: str, requested: str) -> bool:
        source, edges, _ = self._coerce(kind, current)
        target, _, _ = self._coerce(kind, requested)
        if source is None or target is None:
            return False
        return target in edges[source]

    def valid_transitions(self, kind: LifecycleKind | str, current: str) -> frozenset[StrEnum]:
        source, edges, _ = self._coerce(kind, current)
        if source is None:
            return frozenset()
        return frozenset(edges[source])

    def next_status(self, kind: LifecycleKind | str, current: str) -> StrEnum | None:
        """The canonical forward edge, if the state has one."""
        source, _, advance = self._coerce(kind, current)
        if source is None:
            return None
        return advance.get(source)

    def is_terminal(self, kind: LifecycleKind | str, current: str) -> bool:
        return not self.valid_transitions(kind, current)

    def implied_path(
        self,
        kind: LifecycleKind | str,
        current: str,
        target: str,
        never_through: Iterable[str] = (),
    ) -> list[StrEnum] | None:
        """Shortest chain of approved edges from ``current`` to ``target``.

        Returns the hops after ``current`` (empty when already there) or None
        when ``target`` is unreachable. States in ``never_through`` may end a
        path but never appear in the middle of one.
        """
        source, edges, _ = self._coerce(kind, current)
        goal, _, _ = self._coerce(kind, target)
        if source is None or goal is None:
            return None
        if source == goal:
            return []

        blocked = {self._coerce(kind, s)[0] for s in never_through}
        previous: dict[StrEnum, StrEnum] = {}
        queue: deque[StrEnum] = deque([source])
        seen = {source}
        while queue:
            node = queue.popleft()
            for nxt in edges[node]:
                if nxt in seen:
                    continue
                seen.add(nxt)
                previous[nxt] = node
                if nxt == goal:
                    path = [nxt]
                    while path[-1] != source and previous[path[-1]] != source:
                        path.append(previous[path[-1]])
                    return list(reversed(path))
                if nxt not in blocked:
                    queue.append(nxt)
        return None

    def ensure_transition(self, kind: LifecycleKind | str, current: str, requested: str) -> None:
        """Raise for explicit operator requests that are not an edge."""
        if not self.can_transition(kind, current, requested):
            raise InvalidTransitionError(str(LifecycleKind(kind)), str(current), str(requested))

    def is_editable(self, status: str) -> bool:
        return status in NOTIFICATION_EDITABLE

    def is_sendable(self, status: str) -> bool:
        return status in NOTIFICATION_SENDABLE


status_machine = StatusMachine()
