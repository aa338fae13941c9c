from __future__ import annotations

import datetime as dt
import logging
from typing import Any

import pytz

from slotbook.availability import compute_availability, grid_start, horizon_end
from slotbook.booking import book
from slotbook.config import Settings
from slotbook.domain import BookingRequest, CalendarProvider
from slotbook.instants import format_instant
from slotbook.reads import list_busy_with_retry

logger = logging.getLogger(__name__)


def fetch_availability(
    settings: Settings,
    provider: CalendarProvider,
    *,
    now: dt.datetime | None = None,
) -> dict[str, Any]:
    """Availability response for the picker: ``{"timeslots": [...], "durationMinutes": n}``."""
    now = now or dt.datetime.now(pytz.utc)
    slot = dt.timedelta(minutes=settings.timeslot_duration_minutes)
    time_min = grid_start(now, slot)
    time_max = horizon_end(time_min, settings.days_in_advance)

    logger.info("Fetching busy intervals %s .. %s (%s)", format_instant(time_min), format_instant(time_max), settings.calendar_id)
    events = list_busy_with_retry(provider, settings, time_min, time_max)

    slots = compute_availability(
        now,
        settings.days_in_advance,
        settings.timeslot_duration_minutes,
        settings.tz,
        settings.rules,
        events,
    )
    logger.info("Availability: events=%d slots=%d", len(events), len(slots))

    return {
        "timeslots": [format_instant(s.start) for s in slots],
        "durationMinutes": settings.timeslot_duration_minutes,
    }


def book_timeslot(
    settings: Settings,
    provider: CalendarProvider,
    request: BookingRequest,
    *,
    now: dt.datetime | None = None,
) -> str:
    return book(request, provider, settings, now=now).message
