"""
Run identifiers and UTC timestamp helpers.

- ``generate_run_id()``: time-sortable 26-char ULID-style id
- ``batch_id_for()``: raw batch id derived from the fetch time
- ``utc_now()`` / ``to_iso8601()`` / ``from_iso8601()``: aware UTC datetimes

STDLIB ONLY.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to datetime."""
    if s is None:
        return None
    return datetime.fromisoformat(s)


def batch_id_for(produced_at: datetime) -> str:
    """Derive a raw batch id from its fetch time.

    >>> batch_id_for(datetime(2026, 10, 18, 12, 0, 5, 250, tzinfo=UTC))
    'batch-20261018T120005000250Z'
    """
    return "batch-" + ensure_utc(produced_at).strftime("%Y%m%dT%H%M%S%fZ")


def generate_run_id(now: datetime | None = None) -> str:
    """Generate a ULID-like run identifier.

    Format: 26 characters, Crockford base32, sortable by creation time.
    """
    moment = ensure_utc(now) if now is not None else utc_now()
    timestamp_ms = int(moment.timestamp() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))
