from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

import main
from slotbook.config import Settings
from slotbook.domain import BookingRequest, ProviderError, SlotUnavailable


def _settings() -> Settings:
    return Settings(
        google_client_id="id",
        google_client_secret="secret",
        google_refresh_token="refresh",
        provider_retry_attempts=1,
    )


def _provider_factory() -> tuple[MagicMock, MagicMock]:
    provider = MagicMock(name="provider")
    factory = MagicMock(name="build_provider")
    factory.return_value.__enter__.return_value = provider
    factory.return_value.__exit__.return_value = False
    return factory, provider


def test_availability_prints_json(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    settings = _settings()
    factory, provider = _provider_factory()
    response = {"timeslots": ["2026-06-01T16:00:00.000Z"], "durationMinutes": 30}
    monkeypatch.setattr("sys.argv", ["main.py", "availability"])

    with (
        patch("main.load_settings", return_value=settings),
        patch("main.build_provider", factory),
        patch("main.fetch_availability", return_value=response) as fetch,
    ):
        assert main.main() == 0
        fetch.assert_called_once_with(settings, provider)

    assert json.loads(capsys.readouterr().out) == response
    factory.return_value.__exit__.assert_called_once()


def test_book_passes_request_and_prints_message(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    settings = _settings()
    factory, provider = _provider_factory()
    monkeypatch.setattr(
        "sys.argv",
        ["main.py", "book", "--timeslot", "2026-06-01T16:00:00.000Z", "--name", "Ada", "--email", "ada@example.com", "--phone", "555"],
    )

    with (
        patch("main.load_settings", return_value=settings),
        patch("main.build_provider", factory),
        patch("main.book_timeslot", return_value="Timeslot booked successfully") as book,
    ):
        assert main.main() == 0
        book.assert_called_once_with(
            settings,
            provider,
            BookingRequest(slot="2026-06-01T16:00:00.000Z", name="Ada", email="ada@example.com", phone="555", note=""),
        )

    assert capsys.readouterr().out.strip() == "Timeslot booked successfully"


def test_book_failure_exits_non_zero(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    factory, _ = _provider_factory()
    monkeypatch.setattr(
        "sys.argv",
        ["main.py", "book", "--timeslot", "2026-06-01T16:00:00.000Z", "--name", "Ada", "--email", "ada@example.com"],
    )

    with (
        patch("main.load_settings", return_value=_settings()),
        patch("main.build_provider", factory),
        patch("main.book_timeslot", side_effect=SlotUnavailable("Timeslot not available, please pick another time")),
    ):
        assert main.main() == 1

    assert "please pick another time" in capsys.readouterr().err


def test_availability_failure_exits_non_zero(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    factory, _ = _provider_factory()
    monkeypatch.setattr("sys.argv", ["main.py", "availability"])

    with (
        patch("main.load_settings", return_value=_settings()),
        patch("main.build_provider", factory),
        patch("main.fetch_availability", side_effect=ProviderError("Google Calendar API error (503): Backend Error")),
    ):
        assert main.main() == 1

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Backend Error" in captured.err
    factory.return_value.__exit__.assert_called_once()
