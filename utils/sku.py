"""SKU code formatting helpers.

Pure string transforms shared by the generator: code truncation, joining,
and the time-sortable unique fragment appended to product SKUs.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Iterable

CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
TIME_BITS = 48
RANDOM_BITS = 80
ULID_LENGTH = 26


def format_code(value: str | None, length: int) -> str:
    """Uppercase *value* and truncate it to *length* characters."""
    if not value:
        return ""
    return str(value).strip().upper()[:length]


def join_codes(codes: Iterable[str], separator: str = "-") -> str:
    """Join the non-empty codes with *separator*."""
    return separator.join(c for c in codes if c)


def _encode_base32(value: int, length: int = ULID_LENGTH) -> str:
    chars: list[str] = []
    for _ in range(length):
        chars.append(CROCKFORD[value & 31])
        value >>= 5
    return "".join(reversed(chars))


def generate_ulid() -> str:
    """Return a 26-character uppercase ULID (48-bit ms timestamp + 80 random bits)."""
    time_ms = time.time_ns() // 1_000_000
    if time_ms >= (1 << TIME_BITS):
        msg = "Timestamp too large for ULID"
        raise OverflowError(msg)
    value = (time_ms << RANDOM_BITS) | secrets.randbits(RANDOM_BITS)
    return _encode_base32(value)


def unique_fragment(length: int) -> str:
    """Return the first *length* characters of a fresh ULID.

    Raises ValueError if length is outside 1..26.
    """
    if length < 1 or length > ULID_LENGTH:
        msg = f"unique fragment length must be between 1 and {ULID_LENGTH}"
        raise ValueError(msg)
    return generate_ulid()[:length]
