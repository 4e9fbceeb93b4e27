"""
Identifier Generation
=====================
Time-ordered unique identifiers (ULID) for comments.

A ULID is 48 bits of millisecond timestamp followed by 80 random bits,
encoded as 26 Crockford Base32 characters. Identifiers generated in the
same millisecond increment the random part, so ids sort in creation order
within a process.
"""

import os
import threading
import time

_B32_CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_RANDOM_BITS = 80
_RANDOM_MAX = (1 << _RANDOM_BITS) - 1


class _ULIDState:
    __slots__ = ("lock", "last_ms", "last_rand")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.last_ms = -1
        self.last_rand = 0


_STATE = _ULIDState()


def _encode(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        value, idx = divmod(value, 32)
        chars.append(_B32_CROCKFORD[idx])
    return "".join(reversed(chars))


def new_ulid() -> str:
    """Return a new monotonic ULID string."""
    with _STATE.lock:
        now_ms = int(time.time() * 1000)
        if now_ms <= _STATE.last_ms:
            # Same (or skewed back) millisecond: keep the timestamp and bump
            now_ms = _STATE.last_ms
            rand = _STATE.last_rand + 1
            if rand > _RANDOM_MAX:
                now_ms += 1
                rand = int.from_bytes(os.urandom(10), "big")
        else:
            rand = int.from_bytes(os.urandom(10), "big")
        _STATE.last_ms = now_ms
        _STATE.last_rand = rand

    return _encode(now_ms, 10) + _encode(rand, 16)


def ulid_timestamp_ms(value: str) -> int:
    """Extract the millisecond timestamp from a ULID string."""
    result = 0
    for ch in value[:10].upper():
        result = result * 32 + _B32_CROCKFORD.index(ch)
    return result
