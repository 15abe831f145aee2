# Overview: UTC clock and ISO-8601 parsing/serialization for timestamps and calendar dates.

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into a UTC-naive datetime.

    Blank input yields None. Naive values are taken as UTC; a trailing "Z"
    or an explicit offset is converted. Raises ValueError on bad input.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    return _as_utc_naive(datetime.fromisoformat(text))


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a calendar date.

    Event, invoice, due and payment dates are plain dates; a full timestamp
    is accepted too and reduced to its UTC date.
    """
    text = (value or "").strip()
    if not text:
        return None
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_iso_datetime(text).date()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render as ISO-8601 with a trailing 'Z' (naive values are UTC), second precision."""
    if dt is None:
        return None
    stamp = _as_utc_naive(dt).replace(microsecond=0)
    return stamp.isoformat() + "Z"


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d is not None else None
