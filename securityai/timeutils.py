from __future__ import annotations

import re
from datetime import datetime, timezone, timedelta
from typing import Optional, Union


_WINDOW_RE = re.compile(r"^(\d+)([smhd])$")
_WINDOW_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso8601(ts: str) -> datetime:
    """
    Parse an RFC 3339 / ISO-8601 timestamp into an aware UTC datetime.

    A trailing "Z" (either case) means UTC; naive timestamps are taken as UTC.
    Raises ValueError on anything fromisoformat rejects.
    """
    text = ts.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def window_to_timedelta(window: Optional[str]) -> Optional[timedelta]:
    """Window strings are "<int><unit>" with unit one of s, m, h, d (e.g. 30s, 5m, 2d)."""
    if window is None:
        return None
    m = _WINDOW_RE.match(window.strip())
    if m is None:
        raise ValueError(f"Invalid window: {window!r}")
    return timedelta(**{_WINDOW_UNITS[m.group(2)]: int(m.group(1))})


def as_timedelta(value: Union[None, str, int, float, timedelta]) -> Optional[timedelta]:
    # config values may be window strings or plain seconds
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=float(value))
    return window_to_timedelta(str(value))


def minute_bucket(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y%m%d%H%M")
