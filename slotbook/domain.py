from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, order=True)
class CalendarEvent:
    """A busy interval as reported by the calendar provider.

    ``start``/``end`` are timezone-aware UTC instants. Transparent ("free")
    entries keep ``is_blocking=False`` and never suppress availability.
    """

    start: dt.datetime
    end: dt.datetime
    is_blocking: bool = True
    attendee_count: int = 1


@dataclass(frozen=True, order=True)
class TimeSlot:
    start: dt.datetime  # UTC, aligned to the slot grid
    duration_minutes: int

    @property
    def end(self) -> dt.datetime:
        return self.start + dt.timedelta(minutes=self.duration_minutes)


@dataclass(frozen=True)
class BookingRequest:
    slot: str  # ISO-8601 instant as received from the client
    name: str
    email: str
    phone: str = ""
    note: str = ""


@dataclass(frozen=True)
class Confirmation:
    message: str
    start: dt.datetime
    end: dt.datetime
    event_id: str | None = None


class CalendarProvider(Protocol):
    def list_busy_intervals(
        self, calendar_id: str, time_min: dt.datetime, time_max: dt.datetime
    ) -> list[CalendarEvent]: ...

    def create_event(
        self,
        calendar_id: str,
        title: str,
        start: dt.datetime,
        end: dt.datetime,
        *,
        description: str,
        guest_email: str,
        send_invites: bool = True,
    ) -> str: ...


class BookingError(RuntimeError):
    """Base class for everything a booking attempt can fail with."""


class InvalidInput(BookingError):
    """Malformed timeslot or request fields. Never retried."""


class SlotUnavailable(BookingError):
    """The recheck found a conflicting busy interval; the client should re-fetch availability."""


class ProviderError(BookingError):
    """The calendar provider failed or answered with an unexpected shape."""
