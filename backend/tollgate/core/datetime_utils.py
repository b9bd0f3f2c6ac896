"""Datetime helpers shared by the billing layer."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:
    """Get the current UTC time without tzinfo.

    Columns are stored as TIMESTAMP WITHOUT TIME ZONE, so everything that is
    compared against a database value goes through this helper.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalize an aware or naive datetime to naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_timestamp(value: datetime) -> int:
    """Convert a datetime to a unix timestamp, naive values are read as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def from_timestamp(value: int | float | None) -> datetime | None:
    """Convert a unix timestamp to a naive UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
