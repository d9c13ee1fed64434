"""Identifier generation.

Event ids are UUIDv7 strings (RFC 9562): a 48-bit millisecond timestamp
followed by random bits, so sorting the canonical string form sorts by
creation time. Inside one process ids are strictly increasing: the 12-bit
``rand_a`` field is used as a per-millisecond counter, and when it overflows
the generator borrows the next millisecond.

Fork and job ids are short random lowercase alphanumerics.
"""

from __future__ import annotations

import re
import secrets
import string
import threading
import time
import uuid

_SHORT_ALPHABET = string.ascii_lowercase + string.digits
SHORT_ID_LENGTH = 8

_UUID7_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-7[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)

_lock = threading.Lock()
_last_ms = 0
_seq = 0


def new_event_id() -> str:
    """Return a new UUIDv7 string, greater than any previously returned."""
    global _last_ms, _seq

    with _lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms > _last_ms:
            _last_ms = now_ms
            _seq = secrets.randbits(10)
        else:
            _seq += 1
            if _seq > 0xFFF:
                _last_ms += 1
                _seq = 0
        ms, seq = _last_ms, _seq

    rand_b = secrets.randbits(62)
    value = (ms & 0xFFFF_FFFF_FFFF) << 80
    value |= 0x7 << 76
    value |= seq << 64
    value |= 0b10 << 62
    value |= rand_b
    return str(uuid.UUID(int=value))


def is_event_id(value: str) -> bool:
    """True if *value* is a canonical lowercase UUIDv7 string."""
    return bool(_UUID7_RE.match(value))


def event_id_timestamp_ms(event_id: str) -> int:
    """Millisecond Unix timestamp embedded in a UUIDv7 string."""
    return uuid.UUID(event_id).int >> 80


def new_short_id(length: int = SHORT_ID_LENGTH) -> str:
    """Random lowercase alphanumeric id (fork and job ids)."""
    return "".join(secrets.choice(_SHORT_ALPHABET) for _ in range(length))
