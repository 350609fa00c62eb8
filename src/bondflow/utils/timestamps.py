"""
Timestamp helpers:
- ISO-8601 timestamp generator
- UTC datetime helper
- Unix seconds (default attestation nonce / salt source)
"""

from __future__ import annotations
import datetime as _dt
import time


def utc_now() -> _dt.datetime:
    """Return a timezone-aware UTC datetime."""
    return _dt.datetime.now(tz=_dt.timezone.utc)


def now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string with Z suffix."""
    return utc_now().isoformat().replace("+00:00", "Z")


def today_iso() -> str:
    return utc_now().date().isoformat()


def unix_seconds() -> int:
    return int(time.time())


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)
