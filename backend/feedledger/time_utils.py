# Overview: UTC timestamp helpers for ledger rows and CLI date filters.

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC 'now'; every stored timestamp uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read a history filter bound.

    Blank -> None. A bare date is midnight UTC; naive times are UTC; offsets
    and a trailing Z are converted. Raises ValueError on anything else.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"

    if len(text) == 10:
        return datetime.combine(date.fromisoformat(text), time.min)
    return _as_naive_utc(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """'2024-05-01T08:30:00Z' style, seconds precision."""
    if dt is None:
        return None
    utc = _as_naive_utc(dt).replace(tzinfo=timezone.utc, microsecond=0)
    return utc.isoformat().replace("+00:00", "Z")
