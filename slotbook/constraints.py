from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal, Union

Effect = Literal["available", "unavailable"]

AVAILABLE: Effect = "available"
UNAVAILABLE: Effect = "unavailable"

_EFFECTS = {AVAILABLE, UNAVAILABLE}


@dataclass(frozen=True)
class DayOfWeekRule:
    """Matches slots whose civil weekday is in ``days`` (0=Sunday .. 6=Saturday)."""

    effect: Effect
    days: frozenset[int]


@dataclass(frozen=True)
class OverlappingEventRule:
    effect: Effect


@dataclass(frozen=True)
class TimeOfDayRule:
    """Matches on the fractional civil hour of the slot start (9.5 == 09:30).

    ``hour_start <= hour_end`` is the same-day window ``[hour_start, hour_end)``.
    Otherwise the window wraps midnight: everything except ``[hour_end, hour_start)``.
    """

    effect: Effect
    hour_start: float
    hour_end: float


@dataclass(frozen=True)
class MeetingLoadRule:
    """Matches when a civil day touched by the slot already holds
    ``threshold_hours`` or more of multi-attendee meetings (inclusive)."""

    effect: Effect
    threshold_hours: float


ConstraintRule = Union[DayOfWeekRule, OverlappingEventRule, TimeOfDayRule, MeetingLoadRule]


# The rule set the booking page shipped with: no weekends, nothing on top of
# existing events, nothing between 18:00 and 09:00.
DEFAULT_RULES: tuple[ConstraintRule, ...] = (
    DayOfWeekRule(effect=UNAVAILABLE, days=frozenset({0, 6})),
    OverlappingEventRule(effect=UNAVAILABLE),
    TimeOfDayRule(effect=UNAVAILABLE, hour_start=18, hour_end=9),
)


def _parse_effect(raw: Any) -> Effect:
    if raw not in _EFFECTS:
        raise ValueError(f"Invalid rule effect: {raw!r}. Expected 'available' or 'unavailable'.")
    return raw


def _parse_hour(raw: Any, field: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValueError(f"Rule field {field!r} must be a number, got {raw!r}")
    if not 0 <= raw <= 24:
        raise ValueError(f"Rule field {field!r} must be within 0..24, got {raw!r}")
    return float(raw)


def parse_rule(raw: Any) -> ConstraintRule:
    if not isinstance(raw, dict):
        raise ValueError(f"Rule must be an object, got {raw!r}")

    rule_type = raw.get("type")
    effect = _parse_effect(raw.get("effect"))

    if rule_type == "day-of-week":
        days = raw.get("days")
        if not isinstance(days, list):
            raise ValueError("day-of-week rule requires a 'days' list")
        for d in days:
            if isinstance(d, bool) or not isinstance(d, int) or not 0 <= d <= 6:
                raise ValueError(f"Invalid weekday {d!r}. Expected 0 (Sunday) .. 6 (Saturday).")
        return DayOfWeekRule(effect=effect, days=frozenset(days))

    if rule_type == "overlapping-event":
        return OverlappingEventRule(effect=effect)

    # "hour-of-day" is the name older configurations use.
    if rule_type in ("time-of-day", "hour-of-day"):
        return TimeOfDayRule(
            effect=effect,
            hour_start=_parse_hour(raw.get("hourStart"), "hourStart"),
            hour_end=_parse_hour(raw.get("hourEnd"), "hourEnd"),
        )

    if rule_type == "meeting-load":
        threshold = raw.get("thresholdHours")
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or threshold < 0:
            raise ValueError(f"meeting-load rule requires a non-negative 'thresholdHours', got {threshold!r}")
        return MeetingLoadRule(effect=effect, threshold_hours=float(threshold))

    raise ValueError(f"Unknown rule type: {rule_type!r}")


def parse_rules(raw: Iterable[Any]) -> tuple[ConstraintRule, ...]:
    return tuple(parse_rule(item) for item in raw)
