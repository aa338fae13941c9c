from __future__ import annotations

import datetime as dt

import pytz
from dateutil import parser as dateutil_parser


def to_utc(value: dt.datetime) -> dt.datetime:
    # Naive datetimes are taken to be UTC already.
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


def format_instant(value: dt.datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix, e.g. ``2026-10-19T16:00:00.000Z``."""
    utc = to_utc(value)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def format_rfc3339(value: dt.datetime) -> str:
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_instant(raw: str, tz: dt.tzinfo) -> dt.datetime:
    """Parse an ISO-8601 timestamp into a UTC instant.

    Timestamps without an offset are read as civil time in ``tz``.
    Raises ``ValueError`` when ``raw`` is not a timestamp.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError("empty timestamp")

    parsed = dateutil_parser.isoparse(raw.strip())
    if parsed.tzinfo is None:
        parsed = localize(parsed, tz)
    return parsed.astimezone(pytz.utc)


def localize(naive: dt.datetime, tz: dt.tzinfo) -> dt.datetime:
    # pytz zones need localize(); plain tzinfo objects accept replace().
    if hasattr(tz, "localize"):
        return tz.localize(naive)  # type: ignore[attr-defined]
    return naive.replace(tzinfo=tz)


def civil_midnight(day: dt.date, tz: dt.tzinfo) -> dt.datetime:
    """UTC instant of 00:00 civil time on ``day`` in ``tz``."""
    return localize(dt.datetime.combine(day, dt.time.min), tz).astimezone(pytz.utc)
