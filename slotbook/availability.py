"""
Availability engine.

Derives the ordered list of bookable slots from the calendar's busy data and
an ordered rule list. Pure: no I/O, no clock access, no exceptions on
degenerate input (empty rules, empty events, zero horizon).
"""

from __future__ import annotations

import datetime as dt
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Sequence

import pytz

from slotbook.constraints import (
    AVAILABLE,
    ConstraintRule,
    DayOfWeekRule,
    Effect,
    MeetingLoadRule,
    OverlappingEventRule,
    TimeOfDayRule,
)
from slotbook.domain import CalendarEvent, TimeSlot
from slotbook.instants import civil_midnight, to_utc

_EPOCH = dt.datetime(1970, 1, 1, tzinfo=pytz.utc)
_ONE_DAY = dt.timedelta(days=1)


@dataclass(frozen=True)
class _SlotView:
    start: dt.datetime
    end: dt.datetime
    civil_start: dt.datetime
    civil_days: tuple[dt.date, ...]


def grid_start(now: dt.datetime, slot: dt.timedelta) -> dt.datetime:
    """``now`` rounded down to the slot grid (multiples of ``slot`` since the UTC epoch)."""
    return _EPOCH + slot * ((to_utc(now) - _EPOCH) // slot)


def horizon_end(first_slot: dt.datetime, horizon_days: int) -> dt.datetime:
    # Calendar-date arithmetic on the UTC date, not elapsed time.
    first_day = first_slot.astimezone(pytz.utc).date()
    try:
        day = first_day + dt.timedelta(days=horizon_days)
    except OverflowError:
        day = dt.date.max
    return dt.datetime(day.year, day.month, day.day, tzinfo=pytz.utc)


def iter_grid(now: dt.datetime, horizon_days: int, slot_duration_minutes: int) -> Iterable[dt.datetime]:
    if slot_duration_minutes <= 0 or horizon_days <= 0:
        return
    slot = dt.timedelta(minutes=slot_duration_minutes)
    start = grid_start(now, slot)
    end = horizon_end(start, horizon_days)
    # Compare the remaining span so stepping never goes past datetime.max.
    while end - start >= slot:
        yield start
        start += slot


def daily_meeting_load(events: Iterable[CalendarEvent], tz: dt.tzinfo) -> dict[dt.date, dt.timedelta]:
    """Total multi-attendee blocking time per civil day, clipped to each day's bounds."""
    load: dict[dt.date, dt.timedelta] = defaultdict(dt.timedelta)
    for event in events:
        if not event.is_blocking or event.attendee_count <= 1:
            continue
        start, end = to_utc(event.start), to_utc(event.end)
        if end <= start:
            continue

        day = start.astimezone(tz).date()
        last_day = end.astimezone(tz).date()
        while day <= last_day:
            day_start = civil_midnight(day, tz)
            day_end = civil_midnight(day + _ONE_DAY, tz) if day < dt.date.max else end
            overlap = min(end, day_end) - max(start, day_start)
            if overlap > dt.timedelta(0):
                load[day] += overlap
            if day == dt.date.max:
                break
            day += _ONE_DAY
    return dict(load)


def _civil_hour(civil: dt.datetime) -> float:
    return civil.hour + civil.minute / 60 + civil.second / 3600


def _matches_time_of_day(rule: TimeOfDayRule, civil: dt.datetime) -> bool:
    hour = _civil_hour(civil)
    if rule.hour_start <= rule.hour_end:
        return rule.hour_start <= hour < rule.hour_end
    return not (rule.hour_end <= hour < rule.hour_start)


def _rule_matches(
    rule: ConstraintRule,
    view: _SlotView,
    blocking: Sequence[CalendarEvent],
    load: dict[dt.date, dt.timedelta],
) -> bool:
    if isinstance(rule, DayOfWeekRule):
        # isoweekday: Monday=1 .. Sunday=7, so % 7 gives Sunday=0.
        return view.civil_start.isoweekday() % 7 in rule.days

    if isinstance(rule, OverlappingEventRule):
        return any(e.start < view.end and e.end > view.start for e in blocking)

    if isinstance(rule, TimeOfDayRule):
        return _matches_time_of_day(rule, view.civil_start)

    if isinstance(rule, MeetingLoadRule):
        threshold = dt.timedelta(hours=rule.threshold_hours)
        return any(load.get(day, dt.timedelta(0)) >= threshold for day in view.civil_days)

    raise TypeError(f"Unsupported constraint rule: {rule!r}")


def _resolve_effect(
    rules: Sequence[ConstraintRule],
    view: _SlotView,
    blocking: Sequence[CalendarEvent],
    load: dict[dt.date, dt.timedelta],
) -> Effect:
    for rule in rules:
        if _rule_matches(rule, view, blocking, load):
            return rule.effect
    return AVAILABLE


def _view(start: dt.datetime, slot: dt.timedelta, tz: dt.tzinfo) -> _SlotView:
    end = start + slot
    civil_start = start.astimezone(tz)
    civil_last = (end - dt.timedelta(microseconds=1)).astimezone(tz)
    days = (civil_start.date(),)
    if civil_last.date() != civil_start.date():
        days = days + (civil_last.date(),)
    return _SlotView(start=start, end=end, civil_start=civil_start, civil_days=days)


def compute_availability(
    now: dt.datetime,
    horizon_days: int,
    slot_duration_minutes: int,
    tz: dt.tzinfo,
    rules: Sequence[ConstraintRule],
    events: Iterable[CalendarEvent],
) -> list[TimeSlot]:
    """Bookable slots from ``now`` (rounded down to the grid) to UTC midnight ``horizon_days`` ahead.

    Rules are checked in the given order and the first one that matches a slot
    decides its effect. A slot no rule matches is available. The result is
    ascending by start.
    """
    rules = tuple(rules)
    events = [
        CalendarEvent(
            start=to_utc(e.start),
            end=to_utc(e.end),
            is_blocking=e.is_blocking,
            attendee_count=e.attendee_count,
        )
        for e in events
    ]
    blocking = [e for e in events if e.is_blocking]

    load: dict[dt.date, dt.timedelta] = {}
    if any(isinstance(r, MeetingLoadRule) for r in rules):
        load = daily_meeting_load(blocking, tz)

    slot = dt.timedelta(minutes=max(slot_duration_minutes, 0))
    timeslots: list[TimeSlot] = []
    for start in iter_grid(now, horizon_days, slot_duration_minutes):
        view = _view(start, slot, tz)
        if _resolve_effect(rules, view, blocking, load) == AVAILABLE:
            timeslots.append(TimeSlot(start=start, duration_minutes=slot_duration_minutes))
    return timeslots
