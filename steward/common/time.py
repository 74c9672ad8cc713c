"""Common time utilities."""

from __future__ import annotations

import datetime as dt


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def parse_github_datetime(value: str | None) -> dt.datetime | None:
    """Parse a GitHub ISO-8601 timestamp into an aware UTC datetime.

    GitHub returns ``null`` for ``pushed_at`` on repositories that have never
    received a push, so ``None`` passes through unchanged.

    Raises
    ------
    ValueError
        If the value is not ISO-8601 or carries no timezone.

    """
    if value is None:
        return None
    parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        msg = f"GitHub datetime missing timezone: {value}"
        raise ValueError(msg)
    return parsed.astimezone(dt.UTC)
