"""Time-ordered identifier generation.

Ids follow the UUIDv7 layout: a 48-bit millisecond timestamp, a 12-bit
sequence that keeps ids generated in the same millisecond increasing, and
62 random bits. Sorting ids therefore sorts by creation time.
"""

import secrets
import threading
import time
from collections.abc import Callable
from uuid import UUID

IdGenerator = Callable[[], UUID]

_SEQUENCE_MAX = 0xFFF


class TimeOrderedIdGenerator:
    """Produces monotonically increasing UUIDv7-style ids within a process."""

    def __init__(self, clock_ms: Callable[[], int] | None = None) -> None:
        self._clock_ms = clock_ms or (lambda: time.time_ns() // 1_000_000)
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    def __call__(self) -> UUID:
        with self._lock:
            ms = self._clock_ms()
            if ms <= self._last_ms:
                ms = self._last_ms
                self._sequence += 1
                if self._sequence > _SEQUENCE_MAX:
                    ms += 1
                    self._sequence = 0
            else:
                # Leave headroom for same-millisecond bursts
                self._sequence = secrets.randbelow(_SEQUENCE_MAX // 2)
            self._last_ms = ms
            sequence = self._sequence

        value = (ms & 0xFFFF_FFFF_FFFF) << 80
        value |= 0x7 << 76
        value |= sequence << 64
        value |= 0b10 << 62
        value |= secrets.randbits(62)
        return UUID(int=value)


new_id: IdGenerator = TimeOrderedIdGenerator()
