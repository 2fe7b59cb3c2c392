"""Time helpers for UTC timestamps stored as sortable ISO strings."""

import datetime as dt
from collections.abc import Callable

Clock = Callable[[], dt.datetime]


def utc_now() -> dt.datetime:
    """Current time as an aware UTC datetime."""
    return dt.datetime.now(dt.UTC)


def to_iso(value: dt.datetime) -> str:
    """Serialize a datetime for storage.

    Always emits microseconds and a UTC offset so that stored values compare
    correctly as strings in DynamoDB key and condition expressions.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC).isoformat(timespec="microseconds")


def from_iso(value: str) -> dt.datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    parsed = dt.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def stay_nights(check_in: dt.date, check_out: dt.date) -> list[dt.date]:
    """List each night of a stay (check-in inclusive, check-out exclusive)."""
    return [
        check_in + dt.timedelta(days=offset)
        for offset in range((check_out - check_in).days)
    ]
