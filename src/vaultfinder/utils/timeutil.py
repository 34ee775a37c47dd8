"""Timestamp helpers.

Timestamps are stored as UTC ISO-8601 text with millisecond precision and an
explicit ``+00:00`` offset, written the same way by SQLite column defaults and
by Python, so they sort correctly as text. Older offset-less values are still
read back as aware UTC datetimes.
"""

from __future__ import annotations

from datetime import datetime, timezone

SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat(timespec="milliseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp, returning None when it is missing or malformed."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def age_in_days(value: str | None, now: datetime | None = None) -> float | None:
    """Days elapsed since ``value``; future timestamps clamp to zero."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    reference = now or utc_now()
    return max(0.0, (reference - parsed).total_seconds() / SECONDS_PER_DAY)
