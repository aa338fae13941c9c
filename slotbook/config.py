from __future__ import annotations

import datetime as dt
import json
import os
from dataclasses import dataclass

import pytz
from dotenv import load_dotenv

from slotbook.constraints import DEFAULT_RULES, ConstraintRule, parse_rules

QUERY_STYLES = ("freebusy", "events")


def _parse_rules_json(raw: str) -> tuple[ConstraintRule, ...]:
    # CONSTRAINT_RULES is a JSON list, in evaluation order. Example:
    #   [{"type": "day-of-week", "effect": "unavailable", "days": [0, 6]},
    #    {"type": "overlapping-event", "effect": "unavailable"},
    #    {"type": "time-of-day", "effect": "unavailable", "hourStart": 18, "hourEnd": 9.5}]
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Invalid CONSTRAINT_RULES value: not valid JSON ({e})") from e

    if not isinstance(data, list):
        raise RuntimeError("Invalid CONSTRAINT_RULES value: expected a JSON list of rules")

    try:
        return parse_rules(data)
    except ValueError as e:
        raise RuntimeError(f"Invalid CONSTRAINT_RULES value: {e}") from e


def _parse_timezone(name: str) -> dt.tzinfo:
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError as e:
        raise RuntimeError(f"Invalid TIME_ZONE value: {name!r} is not an IANA timezone") from e


def _int_in_range(name: str, default: str, low: int, high: int | None = None) -> int:
    raw = os.getenv(name, default).strip()
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e

    if value < low or (high is not None and value > high):
        bounds = f">= {low}" if high is None else f"within {low}..{high}"
        raise RuntimeError(f"{name} must be {bounds}")
    return value


def _float_at_least(name: str, default: str, low: float, *, strict: bool = False) -> float:
    raw = os.getenv(name, default).strip()
    try:
        value = float(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected a number.") from e

    if value < low or (strict and value == low):
        raise RuntimeError(f"{name} must be {'>' if strict else '>='} {low:g}")
    return value


@dataclass(frozen=True)
class Settings:
    google_client_id: str
    google_client_secret: str
    google_refresh_token: str

    calendar_id: str = "primary"
    time_zone: str = "America/Los_Angeles"

    # Large horizons make every availability query slower, not wrong.
    days_in_advance: int = 28
    timeslot_duration_minutes: int = 30

    rules: tuple[ConstraintRule, ...] = DEFAULT_RULES

    # "freebusy" only sees busy windows; "events" also sees transparency and attendees,
    # which meeting-load rules need.
    calendar_query_style: str = "freebusy"

    # Closed-interval recheck before booking: an event touching the slot edge is a conflict.
    booking_recheck_inclusive: bool = True

    # Retry tuning for idempotent provider reads. Event creation is never retried.
    provider_retry_attempts: int = 3
    provider_retry_backoff_seconds: float = 1.0

    http_timeout_seconds: float = 30.0

    @property
    def tz(self) -> dt.tzinfo:
        return pytz.timezone(self.time_zone)


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    time_zone = os.getenv("TIME_ZONE", "America/Los_Angeles").strip()
    _parse_timezone(time_zone)

    days_in_advance = _int_in_range("DAYS_IN_ADVANCE", "28", 1, 366)
    timeslot_duration_minutes = _int_in_range("TIMESLOT_DURATION", "30", 1, 24 * 60)

    rules_raw = os.getenv("CONSTRAINT_RULES", "").strip()
    rules = _parse_rules_json(rules_raw) if rules_raw else DEFAULT_RULES

    query_style = os.getenv("CALENDAR_QUERY_STYLE", "freebusy").strip().lower()
    if query_style not in QUERY_STYLES:
        raise RuntimeError(f"Invalid CALENDAR_QUERY_STYLE value: {query_style!r}. Expected one of {QUERY_STYLES}.")

    inclusive_raw = os.getenv("BOOKING_RECHECK_INCLUSIVE", "1").strip().lower()
    booking_recheck_inclusive = inclusive_raw not in {"0", "false", "no"}

    provider_retry_attempts = _int_in_range("PROVIDER_RETRY_ATTEMPTS", "3", 1)
    provider_retry_backoff_seconds = _float_at_least("PROVIDER_RETRY_BACKOFF_SECONDS", "1", 0)
    http_timeout_seconds = _float_at_least("HTTP_TIMEOUT_SECONDS", "30", 0, strict=True)

    return Settings(
        google_client_id=_require("GOOGLE_CLIENT_ID"),
        google_client_secret=_require("GOOGLE_CLIENT_SECRET"),
        google_refresh_token=_require("GOOGLE_REFRESH_TOKEN"),
        calendar_id=os.getenv("CALENDAR_ID", "primary").strip() or "primary",
        time_zone=time_zone,
        days_in_advance=days_in_advance,
        timeslot_duration_minutes=timeslot_duration_minutes,
        rules=rules,
        calendar_query_style=query_style,
        booking_recheck_inclusive=booking_recheck_inclusive,
        provider_retry_attempts=provider_retry_attempts,
        provider_retry_backoff_seconds=provider_retry_backoff_seconds,
        http_timeout_seconds=http_timeout_seconds,
    )
