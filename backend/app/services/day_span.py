"""
day_span.py — Converts event dates and clock times into billable hours.

Single-day event:   hours = (end - start) / 60, +24 when the span crosses
                    midnight, minimum 0.5 h, rounded half-up to 0.5 h.
Multi-day event:    every selected day with both times set is computed on
                    its own and the per-day values are SUMMED. Days without
                    times contribute zero and do not count as configured.

Malformed input never raises here: the result carries zero hours, an
``complete=False`` flag and a warning outcome so the caller can prompt for
correction.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from app.config import (
    AFTERNOON_START_HOUR,
    FULL_DAY_THRESHOLD_HOURS,
    MAX_EVENT_DAYS,
    MAX_MULTI_DAY_HOURS,
    MAX_SINGLE_DAY_HOURS,
    MIN_BILLABLE_HOURS,
)
from app.services import outcome as oc
from app.services.outcome import Outcome

logger = logging.getLogger("events-pricing.day_span")

MINUTES_PER_DAY = 24 * 60


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class DaySchedule:
    date: Optional[date]
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    @property
    def has_times(self) -> bool:
        return parse_time(self.start_time) is not None and parse_time(self.end_time) is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DaySchedule":
        return cls(
            date=parse_date(data.get("date")),
            start_time=data.get("start_time") or None,
            end_time=data.get("end_time") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat() if self.date else None,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


@dataclass
class EventWindow:
    start_date: Optional[date]
    end_date: Optional[date]
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    selected_days: List[date] = field(default_factory=list)
    daily_schedules: List[DaySchedule] = field(default_factory=list)

    @property
    def is_multi_day(self) -> bool:
        return (
            self.start_date is not None
            and self.end_date is not None
            and self.start_date != self.end_date
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventWindow":
        selected = [parse_date(d) for d in data.get("selected_days") or []]
        return cls(
            start_date=parse_date(data.get("start_date")),
            end_date=parse_date(data.get("end_date")),
            start_time=data.get("start_time") or None,
            end_time=data.get("end_time") or None,
            selected_days=[d for d in selected if d is not None],
            daily_schedules=[
                s if isinstance(s, DaySchedule) else DaySchedule.from_dict(s)
                for s in data.get("daily_schedules") or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "selected_days": [d.isoformat() for d in self.selected_days],
            "daily_schedules": [s.to_dict() for s in self.daily_schedules],
        }

    def schedule_for(self, day: date) -> Optional[DaySchedule]:
        for schedule in self.daily_schedules:
            if schedule.date == day:
                return schedule
        return None


@dataclass
class EventHours:
    per_day: Dict[date, float]
    total_hours: float
    hours_per_day: float
    configured_days: int
    selected_days: int
    is_multi_day: bool
    complete: bool
    outcome: Outcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "per_day": {d.isoformat(): h for d, h in sorted(self.per_day.items())},
            "total_hours": self.total_hours,
            "hours_per_day": self.hours_per_day,
            "configured_days": self.configured_days,
            "selected_days": self.selected_days,
            "is_multi_day": self.is_multi_day,
            "complete": self.complete,
            "outcome": self.outcome.to_dict(),
        }


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_time(value: Optional[str]) -> Optional[int]:
    """'HH:MM' or 'HH:MM:SS' → minutes after midnight; None when unparseable."""
    if not value or not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        return None
    return hours * 60 + minutes


def parse_date(value: Union[str, date, None]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def _round_half_up(hours: float) -> float:
    return math.floor(hours * 2 + 0.5) / 2


def _raw_duration_hours(start_time: Optional[str], end_time: Optional[str]) -> Optional[float]:
    start = parse_time(start_time)
    end = parse_time(end_time)
    if start is None or end is None:
        return None
    diff = end - start
    if diff < 0:
        diff += MINUTES_PER_DAY       # overnight
    return diff / 60


# ---------------------------------------------------------------------------
# Spans
# ---------------------------------------------------------------------------

def compute_day_span(schedule: Union[DaySchedule, Dict[str, Any]]) -> float:
    """
    Billable hours for one day's clock times.

    Accepts a DaySchedule or a mapping with ``start_time``/``end_time``
    (``start``/``end`` also accepted). Returns 0.0 when either time is
    missing or malformed.
    """
    if isinstance(schedule, DaySchedule):
        start_time, end_time = schedule.start_time, schedule.end_time
    else:
        start_time = schedule.get("start_time", schedule.get("start"))
        end_time = schedule.get("end_time", schedule.get("end"))

    raw = _raw_duration_hours(start_time, end_time)
    if raw is None:
        return 0.0
    return _round_half_up(max(MIN_BILLABLE_HOURS, raw))


def days_between(start: date, end: date, limit: int = MAX_EVENT_DAYS) -> List[date]:
    """Inclusive list of dates; refuses ranges longer than ``limit`` days."""
    if end < start:
        raise ValueError(f"end date {end} is before start date {start}")
    count = (end - start).days + 1
    if count > limit:
        raise ValueError(f"date range of {count} days exceeds the {limit}-day limit")
    return [start + timedelta(days=i) for i in range(count)]


def _incomplete(is_multi_day: bool, result: Outcome) -> EventHours:
    return EventHours(
        per_day={},
        total_hours=0.0,
        hours_per_day=0.0,
        configured_days=0,
        selected_days=0,
        is_multi_day=is_multi_day,
        complete=False,
        outcome=result,
    )


def compute_event_hours(event: Union[EventWindow, Dict[str, Any]]) -> EventHours:
    """
    Total billable hours for an event window.

    Multi-day events use the explicit ``selected_days``; when none are given
    the inclusive start..end range is used, bounded by MAX_EVENT_DAYS.
    """
    if not isinstance(event, EventWindow):
        event = EventWindow.from_dict(event)

    if event.start_date is None or event.end_date is None:
        return _incomplete(False, oc.warning("invalid_date", "Event start or end date is missing or malformed"))
    if event.end_date < event.start_date:
        return _incomplete(
            True,
            oc.warning(
                "invalid_date_range",
                "Event end date is before its start date",
                start_date=event.start_date.isoformat(),
                end_date=event.end_date.isoformat(),
            ),
        )

    if not event.is_multi_day:
        hours = compute_day_span({"start_time": event.start_time, "end_time": event.end_time})
        if hours == 0:
            return EventHours(
                per_day={}, total_hours=0.0, hours_per_day=0.0, configured_days=0,
                selected_days=1, is_multi_day=False, complete=False,
                outcome=oc.warning("missing_times", "Event start and end times are required"),
            )
        return EventHours(
            per_day={event.start_date: hours}, total_hours=hours, hours_per_day=hours,
            configured_days=1, selected_days=1, is_multi_day=False, complete=True,
            outcome=oc.ok(),
        )

    if event.selected_days:
        selected = sorted(set(event.selected_days))
    else:
        try:
            selected = days_between(event.start_date, event.end_date)
        except ValueError as exc:
            return _incomplete(True, oc.warning("range_too_long", str(exc)))

    outside = [d for d in selected if not (event.start_date <= d <= event.end_date)]
    selected = [d for d in selected if event.start_date <= d <= event.end_date]

    per_day: Dict[date, float] = {}
    for day in selected:
        schedule = event.schedule_for(day)
        if schedule is None or not schedule.has_times:
            continue
        per_day[day] = compute_day_span(schedule)

    total = sum(per_day.values())
    configured = len(per_day)
    complete = configured > 0 and configured == len(selected)

    if outside:
        logger.warning("Ignoring %d selected day(s) outside %s..%s", len(outside), event.start_date, event.end_date)
        result = oc.warning(
            "day_outside_range",
            f"{len(outside)} selected day(s) fall outside the event dates and were ignored",
            days=[d.isoformat() for d in outside],
        )
    elif not complete:
        missing = [d.isoformat() for d in selected if d not in per_day]
        result = oc.warning(
            "unscheduled_days",
            f"{len(missing)} of {len(selected)} selected day(s) have no start/end time",
            days=missing,
        )
    else:
        result = oc.ok()

    return EventHours(
        per_day=per_day,
        total_hours=total,
        hours_per_day=round(total / configured, 2) if configured else 0.0,
        configured_days=configured,
        selected_days=len(selected),
        is_multi_day=True,
        complete=complete,
        outcome=result,
    )


# ---------------------------------------------------------------------------
# Schedule maintenance
# ---------------------------------------------------------------------------

def sync_daily_schedules(event: EventWindow, selected_days: Iterable[date]) -> List[DaySchedule]:
    """
    Schedules matching a new day selection.

    Still-selected days keep their times, new days get an empty schedule,
    deselected days are dropped. Single-day events carry no schedules.
    """
    if not event.is_multi_day:
        return []
    existing = {s.date: s for s in event.daily_schedules}
    return [existing.get(day) or DaySchedule(date=day) for day in sorted(set(selected_days))]


def derive_shift_window(start_time: Optional[str], end_time: Optional[str]) -> str:
    """Shift window used for booking a day with the given clock times."""
    raw = _raw_duration_hours(start_time, end_time)
    if raw is None:
        return "full_day"
    if raw > FULL_DAY_THRESHOLD_HOURS:
        return "full_day"
    if parse_time(start_time) < AFTERNOON_START_HOUR * 60:
        return "morning"
    return "afternoon"


def validate_event_window(event: Union[EventWindow, Dict[str, Any]]) -> Outcome:
    """
    Finalization check for an event window.

    compute_event_hours only warns about malformed dates or unscheduled
    days; here every such case is an error, since a quote cannot be priced
    or booked until each selected day has its times.
    """
    if not isinstance(event, EventWindow):
        event = EventWindow.from_dict(event)

    if not event.is_multi_day and event.daily_schedules:
        return oc.error(
            "single_day_with_schedules",
            "A single-day event uses its start/end time; daily schedules must be empty",
        )

    hours = compute_event_hours(event)
    if not hours.outcome.is_ok:
        return oc.error(hours.outcome.code, hours.outcome.message, **hours.outcome.details)
    if not hours.complete:
        return oc.error("incomplete_event", "Event has no scheduled hours")

    for day, day_hours in hours.per_day.items():
        if day_hours > MAX_SINGLE_DAY_HOURS:
            return oc.error(
                "day_too_long", f"{day.isoformat()} exceeds {MAX_SINGLE_DAY_HOURS:g} hours",
                date=day.isoformat(), hours=day_hours,
            )
    if hours.is_multi_day and hours.total_hours > MAX_MULTI_DAY_HOURS:
        return oc.error(
            "event_too_long",
            f"Total of {hours.total_hours:g} hours exceeds {MAX_MULTI_DAY_HOURS:g}",
            total_hours=hours.total_hours,
        )
    return oc.ok()
