"""Time utilities."""
from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def from_unix(ts: int | float | None) -> datetime | None:
    """Convert a processor epoch timestamp to an aware UTC datetime."""

    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=UTC)


__all__ = ["utcnow", "from_unix"]
