"""
Date and time utilities.

Platform payloads carry timestamps in three shapes: epoch milliseconds
(Messenger/Instagram), epoch seconds as strings (WhatsApp) and ISO-8601
strings with a +0000 offset (Graph API listings). Everything is
normalized to timezone-aware UTC datetimes.
"""

from datetime import datetime, timezone
from typing import Any, Optional, Union

UTC = timezone.utc


def now_utc() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def from_epoch_millis(value: Union[int, float, str]) -> datetime:
    """Convert epoch milliseconds to a UTC datetime."""
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)


def from_epoch_seconds(value: Union[int, float, str]) -> datetime:
    """Convert epoch seconds to a UTC datetime."""
    return datetime.fromtimestamp(int(value), tz=UTC)


def parse_graph_datetime(value: str) -> datetime:
    """
    Parse a Graph API timestamp such as ``2024-05-01T10:03:00+0000``.

    Raises:
        ValueError: If the string is not a recognised timestamp
    """
    for fmt in ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z"):
        try:
            return datetime.strptime(value, fmt).astimezone(UTC)
        except ValueError:
            continue
    return ensure_utc(datetime.fromisoformat(value))


def coerce_timestamp(value: Any, millis: bool = False) -> Optional[datetime]:
    """
    Best-effort conversion of a payload timestamp.

    Returns None for missing or unparseable values so callers can fall
    back to the receive time.
    """
    if value is None or value == "":
        return None
    try:
        if isinstance(value, datetime):
            return ensure_utc(value)
        if isinstance(value, (int, float)) or str(value).isdigit():
            return from_epoch_millis(value) if millis else from_epoch_seconds(value)
        return parse_graph_datetime(str(value))
    except (ValueError, OverflowError, OSError):
        return None
