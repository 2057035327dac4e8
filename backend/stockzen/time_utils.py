from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime], *, precise: bool = False) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.

    precise=True keeps microseconds (checkpoints and cursors need them to
    stay strictly ordered); display values are truncated to seconds.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc)
    if precise:
        return dt_utc.isoformat(timespec="microseconds").replace("+00:00", "Z")
    return dt_utc.replace(microsecond=0).isoformat().replace("+00:00", "Z")


# Client checkpoints further ahead of the server clock than this are ignored
CHECKPOINT_MAX_SKEW = timedelta(minutes=5)


def normalize_checkpoint(value: Optional[str], *, now: Optional[datetime] = None) -> Optional[str]:
    """
    Canonical form of a client checkpoint, or None when it cannot be used.

    Unparseable values, values outside the datetime range once converted to
    UTC, and values more than CHECKPOINT_MAX_SKEW ahead of the server clock
    are all treated as "no checkpoint". The result is always safe to step
    forward by a microsecond.
    """
    try:
        prior = parse_iso_datetime(value) if value else None
    except (ValueError, OverflowError):
        return None
    if prior is None:
        return None
    if prior > (now or utcnow()) + CHECKPOINT_MAX_SKEW:
        return None
    return to_utc_z(prior, precise=True)


def next_checkpoint(previous: Optional[str] = None, *, now: Optional[datetime] = None) -> str:
    """
    Issue a sync checkpoint token.

    The token is the server time in ISO-8601 with microseconds. It never goes
    backwards relative to the checkpoint the client sent, even if the server
    clock was adjusted between requests. Client checkpoints that
    normalize_checkpoint() rejects are ignored.
    """
    current = now or utcnow()
    usable = normalize_checkpoint(previous, now=current)
    prior = parse_iso_datetime(usable) if usable else None
    if prior is not None and prior >= current:
        current = prior + timedelta(microseconds=1)
    return to_utc_z(current, precise=True)
