from __future__ import annotations

import pytest

from slotbook.config import load_settings
from slotbook.constraints import DEFAULT_RULES, UNAVAILABLE, MeetingLoadRule, OverlappingEventRule

_OPTIONAL = (
    "CALENDAR_ID",
    "TIME_ZONE",
    "DAYS_IN_ADVANCE",
    "TIMESLOT_DURATION",
    "CONSTRAINT_RULES",
    "CALENDAR_QUERY_STYLE",
    "BOOKING_RECHECK_INCLUSIVE",
    "PROVIDER_RETRY_ATTEMPTS",
    "PROVIDER_RETRY_BACKOFF_SECONDS",
    "HTTP_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "client")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
    monkeypatch.setenv("GOOGLE_REFRESH_TOKEN", "refresh")


def test_load_settings_defaults() -> None:
    settings = load_settings(dotenv_path=None)

    assert settings.calendar_id == "primary"
    assert settings.time_zone == "America/Los_Angeles"
    assert settings.days_in_advance == 28
    assert settings.timeslot_duration_minutes == 30
    assert settings.rules == DEFAULT_RULES
    assert settings.calendar_query_style == "freebusy"
    assert settings.booking_recheck_inclusive is True
    assert settings.provider_retry_attempts == 3
    assert settings.tz.zone == "America/Los_Angeles"


def test_load_settings_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CALENDAR_ID", "team@example.com")
    monkeypatch.setenv("TIME_ZONE", "Europe/Berlin")
    monkeypatch.setenv("DAYS_IN_ADVANCE", "14")
    monkeypatch.setenv("TIMESLOT_DURATION", "45")
    monkeypatch.setenv("CALENDAR_QUERY_STYLE", "Events")
    monkeypatch.setenv("BOOKING_RECHECK_INCLUSIVE", "false")
    monkeypatch.setenv(
        "CONSTRAINT_RULES",
        '[{"type": "overlapping-event", "effect": "unavailable"},'
        ' {"type": "meeting-load", "effect": "unavailable", "thresholdHours": 5}]',
    )

    settings = load_settings(dotenv_path=None)

    assert settings.calendar_id == "team@example.com"
    assert settings.time_zone == "Europe/Berlin"
    assert settings.days_in_advance == 14
    assert settings.timeslot_duration_minutes == 45
    assert settings.calendar_query_style == "events"
    assert settings.booking_recheck_inclusive is False
    assert settings.rules == (
        OverlappingEventRule(effect=UNAVAILABLE),
        MeetingLoadRule(effect=UNAVAILABLE, threshold_hours=5.0),
    )


def test_load_settings_requires_google_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GOOGLE_REFRESH_TOKEN")

    with pytest.raises(RuntimeError, match=r"Missing required environment variable: GOOGLE_REFRESH_TOKEN"):
        load_settings(dotenv_path=None)


def test_load_settings_rejects_unknown_timezone(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TIME_ZONE", "Mars/Olympus_Mons")

    with pytest.raises(RuntimeError, match=r"Invalid TIME_ZONE"):
        load_settings(dotenv_path=None)


@pytest.mark.parametrize(
    "name, value, message",
    [
        ("DAYS_IN_ADVANCE", "0", r"DAYS_IN_ADVANCE must be within 1..366"),
        ("DAYS_IN_ADVANCE", "abc", r"Invalid DAYS_IN_ADVANCE"),
        ("TIMESLOT_DURATION", "0", r"TIMESLOT_DURATION must be within 1..1440"),
        ("PROVIDER_RETRY_ATTEMPTS", "0", r"PROVIDER_RETRY_ATTEMPTS must be >= 1"),
        ("PROVIDER_RETRY_BACKOFF_SECONDS", "-1", r"PROVIDER_RETRY_BACKOFF_SECONDS must be >= 0"),
        ("HTTP_TIMEOUT_SECONDS", "0", r"HTTP_TIMEOUT_SECONDS must be > 0"),
        ("CALENDAR_QUERY_STYLE", "ical", r"Invalid CALENDAR_QUERY_STYLE"),
    ],
)
def test_load_settings_rejects_out_of_range_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(RuntimeError, match=message):
        load_settings(dotenv_path=None)


def test_load_settings_rejects_bad_rule_json(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONSTRAINT_RULES", "[{not json")

    with pytest.raises(RuntimeError, match=r"Invalid CONSTRAINT_RULES value: not valid JSON"):
        load_settings(dotenv_path=None)


def test_load_settings_rejects_unknown_rule_type(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONSTRAINT_RULES", '[{"type": "full-moon", "effect": "unavailable"}]')

    with pytest.raises(RuntimeError, match=r"Unknown rule type"):
        load_settings(dotenv_path=None)


def test_load_settings_does_not_override_existing_env_with_dotenv(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    # load_dotenv(override=False) must not overwrite already-set env vars.
    monkeypatch.setenv("CALENDAR_ID", "from-env")

    dotenv = tmp_path / ".env"
    dotenv.write_text("CALENDAR_ID=from-dotenv\n")

    settings = load_settings(dotenv_path=str(dotenv))
    assert settings.calendar_id == "from-env"
