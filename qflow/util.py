"""Small utilities shared by the engines (ids, time, sync/async calls)."""

from __future__ import annotations

import inspect
import os
import time
from datetime import datetime, timezone
from typing import Any, Callable


_CROCKFORD32 = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def _encode_crockford_base32(value: int, length: int) -> str:
    chars: list[str] = []
    for _ in range(length):
        chars.append(_CROCKFORD32[value & 31])
        value >>= 5
    return "".join(reversed(chars))


def new_ulid(*, timestamp_ms: int | None = None) -> str:
    """
    Generate a ULID (26 chars, Crockford base32).

    ULID = 48-bit millisecond timestamp + 80-bit randomness.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)

    if not (0 <= timestamp_ms < (1 << 48)):
        raise ValueError("timestamp_ms out of range for ULID")

    randomness = int.from_bytes(os.urandom(10), "big")
    value = (timestamp_ms << 80) | randomness
    return _encode_crockford_base32(value, 26)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def call_maybe_async(fn: Callable[[], Any]) -> Any:
    """Call a zero-arg callable and await its result if it is awaitable."""
    result = fn()
    if inspect.isawaitable(result):
        return await result
    return result


def as_utc(value: datetime) -> datetime:
    """Treat a naive datetime as UTC so it compares with stored timestamps."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
