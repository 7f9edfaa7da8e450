"""Normalization of the timestamp shapes found in Firestore documents.

Documents written by the web clients, the Admin SDK and older imports do not
agree on how dates are stored. A value may be a provider timestamp wrapper,
a ``{"seconds": ..., "nanoseconds": ...}`` map, a ``datetime``/``date``, an
ISO string or an epoch number in milliseconds. Everything that does date
arithmetic goes through :func:`to_datetime` first.
"""

from __future__ import annotations

import datetime
from typing import Any

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


def utcnow() -> datetime.datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def _from_millis(millis: float) -> datetime.datetime | None:
    try:
        return EPOCH + datetime.timedelta(milliseconds=millis)
    except (OverflowError, ValueError):
        return None


def _from_mapping(value: dict[str, Any]) -> datetime.datetime | None:
    seconds = value.get("seconds", value.get("_seconds"))
    if seconds is None:
        return None
    nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
    try:
        return EPOCH + datetime.timedelta(
            seconds=float(seconds), microseconds=float(nanos) / 1000
        )
    except (OverflowError, TypeError, ValueError):
        return None


def _from_string(value: str) -> datetime.datetime | None:
    text = value.strip()
    if not text:
        return None
    try:
        millis = float(text)
    except ValueError:
        pass
    else:
        return _from_millis(millis)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _as_utc(datetime.datetime.fromisoformat(text))
    except ValueError:
        return None


def to_datetime(value: Any) -> datetime.datetime | None:  # noqa: PLR0911
    """Convert any supported timestamp representation to an aware datetime.

    Returns None when the value is missing or cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    # DatetimeWithNanoseconds is a datetime subclass.
    if isinstance(value, datetime.datetime):
        return _as_utc(value)
    if isinstance(value, datetime.date):
        return datetime.datetime(
            value.year, value.month, value.day, tzinfo=datetime.timezone.utc
        )
    if hasattr(value, "to_datetime"):
        return _as_utc(value.to_datetime())
    if hasattr(value, "ToDatetime"):
        return _as_utc(value.ToDatetime())
    if isinstance(value, dict):
        return _from_mapping(value)
    if isinstance(value, (int, float)):
        return _from_millis(value)
    if isinstance(value, str):
        return _from_string(value)
    return None


def sort_key(value: Any) -> datetime.datetime:
    """Return a value usable as a sort key; missing timestamps sort first."""
    return to_datetime(value) or EPOCH
