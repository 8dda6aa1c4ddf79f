"""Timestamp coercion shared by validation, calendar import and notifications.

Documents store instants as ISO-8601 UTC strings with a fixed width so they
compare correctly as text inside PostgreSQL as well as in Python.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Any) -> Optional[datetime]:
    """Coerce ``value`` to an aware UTC datetime.

    Accepts aware or naive datetimes (naive is taken as UTC), ISO-8601 strings
    (``Z`` suffix allowed), epoch seconds, and ``{"seconds": ...}`` mappings as
    exported by document databases. Returns ``None`` for empty values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, dict) and "seconds" in value:
        value = value.get("seconds")
    if isinstance(value, bool):
        raise TypeError(f"Unsupported timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return as_utc(parsed)
    raise TypeError(f"Unsupported timestamp value: {value!r}")


def to_iso(value: Any) -> Optional[str]:
    dt = as_utc(value)
    if dt is None:
        return None
    return dt.strftime(_ISO_FORMAT)


__all__ = ["utcnow", "as_utc", "to_iso"]
