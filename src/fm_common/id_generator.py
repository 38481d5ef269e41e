"""Time-ordered ids for orders, milestones, payments, timeline events and outbox rows.

Ids are snowflake integers rendered as fixed-width decimal strings, so
sorting them as text (SQL `ORDER BY id`, keyset cursors on order_id) gives
the same order as sorting them numerically.

Layout: 41 bits milliseconds since _EPOCH_MS | 10 bits machine | 12 bits sequence.
"""

import threading
import time

from config.settings import settings

_EPOCH_MS = 1_700_000_000_000
_MACHINE_BITS = 10
_SEQUENCE_BITS = 12
_SEQUENCE_MASK = (1 << _SEQUENCE_BITS) - 1
_WIDTH = 19  # digits in 2**63 - 1


class SnowflakeIdGenerator:
    def __init__(self, machine_id: int = 0) -> None:
        if not (0 <= machine_id < (1 << _MACHINE_BITS)):
            raise ValueError(f"machine_id must be 0-{(1 << _MACHINE_BITS) - 1}, got {machine_id}")
        self._machine_bits = machine_id << _SEQUENCE_BITS
        self._last_ms = -1
        self._sequence = 0
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            now_ms = time.time_ns() // 1_000_000
            if now_ms > self._last_ms:
                self._last_ms = now_ms
                self._sequence = 0
            else:
                # Same millisecond, or the wall clock stepped back: keep counting on the last one
                self._sequence = (self._sequence + 1) & _SEQUENCE_MASK
                if self._sequence == 0:
                    while now_ms <= self._last_ms:
                        now_ms = time.time_ns() // 1_000_000
                    self._last_ms = now_ms
            value = (
                ((self._last_ms - _EPOCH_MS) << (_MACHINE_BITS + _SEQUENCE_BITS))
                | self._machine_bits
                | self._sequence
            )
        return str(value).zfill(_WIDTH)


_default_generator = SnowflakeIdGenerator(settings.ID_MACHINE_ID)


def generate_id() -> str:
    return _default_generator.next_id()


def generate_order_id(order_type: str) -> str:
    """'AI_ORDER-0071012…', 'JOB-0071012…'."""
    return f"{order_type.upper()}-{generate_id()}"
