"""
Booking transaction: recheck-then-write.

The busy data for the requested slot is re-read right before the single
create-event call. There is no lock: two requests for the same slot inside the
provider's consistency window can both pass the recheck. The create call is
attempted at most once; a timeout after sending is reported, not retried.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Iterable

import pytz

from slotbook.config import Settings
from slotbook.domain import (
    BookingError,
    BookingRequest,
    CalendarEvent,
    CalendarProvider,
    Confirmation,
    InvalidInput,
    ProviderError,
    SlotUnavailable,
)
from slotbook.instants import format_instant, parse_instant, to_utc
from slotbook.reads import list_busy_with_retry

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Timeslot booked successfully"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_EDGE_PAD = dt.timedelta(seconds=1)


def conflicting_events(
    events: Iterable[CalendarEvent],
    start: dt.datetime,
    end: dt.datetime,
    *,
    inclusive: bool = True,
) -> list[CalendarEvent]:
    """Blocking events that collide with ``[start, end]``.

    ``inclusive`` treats both ends as closed, so an event that merely touches
    the slot edge counts. Otherwise it is the same half-open test availability uses.
    """
    if inclusive:
        return [e for e in events if e.is_blocking and e.start <= end and e.end >= start]
    return [e for e in events if e.is_blocking and e.start < end and e.end > start]


def _validate(request: BookingRequest, settings: Settings, now: dt.datetime) -> tuple[dt.datetime, dt.datetime]:
    try:
        start = parse_instant(request.slot, settings.tz)
    except (ValueError, OverflowError) as e:
        raise InvalidInput(f"Invalid start time: {request.slot!r}") from e

    if not request.name or not request.name.strip():
        raise InvalidInput("Name is required")
    if not request.email or not _EMAIL_RE.match(request.email.strip()):
        raise InvalidInput(f"Invalid email address: {request.email!r}")
    if start < now:
        raise InvalidInput(f"Timeslot {format_instant(start)} is in the past")

    return start, start + dt.timedelta(minutes=settings.timeslot_duration_minutes)


def book(
    request: BookingRequest,
    provider: CalendarProvider,
    settings: Settings,
    *,
    now: dt.datetime | None = None,
) -> Confirmation:
    now = to_utc(now) if now is not None else dt.datetime.now(pytz.utc)
    logger.info("Booking timeslot %s for %s", request.slot, request.name)

    start, end = _validate(request, settings, now)
    logger.info("Timeslot start=%s end=%s", format_instant(start), format_instant(end))

    # Providers return only intervals intersecting the query range, so an event that
    # merely touches the slot edge needs a slightly wider read to be seen at all.
    pad = _EDGE_PAD if settings.booking_recheck_inclusive else dt.timedelta(0)
    try:
        busy = list_busy_with_retry(provider, settings, start - pad, end + pad)
    except BookingError:
        raise
    except Exception as e:
        raise ProviderError(f"Failed to check calendar: {e}") from e

    conflicts = conflicting_events(busy, start, end, inclusive=settings.booking_recheck_inclusive)
    if conflicts:
        logger.info("Timeslot %s no longer available (%d conflicting)", format_instant(start), len(conflicts))
        raise SlotUnavailable("Timeslot not available, please pick another time")

    try:
        event_id = provider.create_event(
            settings.calendar_id,
            f"Appointment with {request.name.strip()}",
            start,
            end,
            description=f"Phone: {request.phone}\nNote: {request.note}",
            guest_email=request.email.strip(),
            send_invites=True,
        )
    except Exception as e:
        logger.error("Failed to create event (%s: %s)", type(e).__name__, e)
        raise ProviderError(f"Failed to create event: {e}") from e

    logger.info("Event created: %s", event_id)
    return Confirmation(message=SUCCESS_MESSAGE, start=start, end=end, event_id=event_id)
