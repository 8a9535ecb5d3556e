"""
test_day_span.py — Unit tests for billable hours from dates and clock times.

Tests cover:
  - compute_day_span: plain, overnight, minimum 0.5 h, half-up rounding
  - compute_event_hours: single-day, multi-day summation, month and
    leap-year boundaries, partially scheduled days, malformed input
  - sync_daily_schedules and derive_shift_window helpers
  - validate_event_window structural checks
"""

from datetime import date

import pytest

from app.services.day_span import (
    DaySchedule,
    EventWindow,
    compute_day_span,
    compute_event_hours,
    days_between,
    derive_shift_window,
    parse_time,
    sync_daily_schedules,
    validate_event_window,
)


# ===========================================================================
# Class 1: One day
# ===========================================================================

class TestDaySpan:

    def test_regular_day(self):
        """08:00 → 17:00 = 9 h."""
        assert compute_day_span({"start_time": "08:00", "end_time": "17:00"}) == 9.0

    def test_overnight_span(self):
        """22:00 → 02:00 crosses midnight: (120 − 1320 + 1440) / 60 = 4 h."""
        assert compute_day_span({"start_time": "22:00", "end_time": "02:00"}) == 4.0

    def test_short_span_billed_at_minimum(self):
        """08:00 → 08:15 = 0.25 h, raised to the 0.5 h minimum."""
        assert compute_day_span({"start_time": "08:00", "end_time": "08:15"}) == 0.5

    def test_quarter_hour_rounds_half_up(self):
        """08:00 → 12:15 = 4.25 h → 4.5 (ties go up)."""
        assert compute_day_span({"start_time": "08:00", "end_time": "12:15"}) == 4.5

    def test_ten_minutes_rounds_down(self):
        """08:00 → 12:10 = 4.17 h → 4.0."""
        assert compute_day_span({"start_time": "08:00", "end_time": "12:10"}) == 4.0

    def test_short_keys_accepted(self):
        assert compute_day_span({"start": "09:00", "end": "13:00"}) == 4.0

    def test_day_schedule_object(self):
        assert compute_day_span(DaySchedule(date(2024, 5, 1), "10:00", "18:30")) == 8.5

    @pytest.mark.parametrize("start,end", [
        (None, "17:00"),
        ("08:00", None),
        ("", ""),
        ("25:00", "17:00"),
        ("08:00", "nope"),
    ])
    def test_missing_or_malformed_times_give_zero(self, start, end):
        assert compute_day_span({"start_time": start, "end_time": end}) == 0.0

    def test_parse_time_accepts_seconds(self):
        assert parse_time("08:30:00") == 510


# ===========================================================================
# Class 2: Event windows
# ===========================================================================

class TestEventHours:

    def test_single_day_event(self, single_day_event):
        hours = compute_event_hours(single_day_event)
        assert hours.total_hours == 9.0
        assert hours.configured_days == 1
        assert hours.complete
        assert not hours.is_multi_day
        assert hours.outcome.is_ok

    def test_multi_day_across_month_boundary(self, multi_day_event):
        """Jan 30, Jan 31, Feb 1 at 12 h each → 36 h summed, never averaged."""
        hours = compute_event_hours(multi_day_event)
        assert hours.total_hours == 36.0
        assert hours.configured_days == 3
        assert hours.hours_per_day == 12.0
        assert hours.is_multi_day
        assert hours.complete

    def test_leap_year_includes_february_29(self):
        """Feb 28 → Mar 1, 2024 is three days; 8 h each → 24 h."""
        days = ["2024-02-28", "2024-02-29", "2024-03-01"]
        hours = compute_event_hours({
            "start_date": "2024-02-28",
            "end_date": "2024-03-01",
            "selected_days": days,
            "daily_schedules": [{"date": d, "start_time": "08:00", "end_time": "16:00"} for d in days],
        })
        assert hours.configured_days == 3
        assert date(2024, 2, 29) in hours.per_day
        assert hours.total_hours == 24.0

    def test_unscheduled_days_contribute_zero(self):
        """Three selected days, two scheduled at 10 h → 20 h, incomplete with warning."""
        hours = compute_event_hours({
            "start_date": "2024-07-01",
            "end_date": "2024-07-03",
            "selected_days": ["2024-07-01", "2024-07-02", "2024-07-03"],
            "daily_schedules": [
                {"date": "2024-07-01", "start_time": "08:00", "end_time": "18:00"},
                {"date": "2024-07-03", "start_time": "08:00", "end_time": "18:00"},
            ],
        })
        assert hours.total_hours == 20.0
        assert hours.configured_days == 2
        assert hours.selected_days == 3
        assert not hours.complete
        assert hours.outcome.code == "unscheduled_days"
        assert hours.outcome.details["days"] == ["2024-07-02"]

    def test_range_used_when_no_days_selected(self):
        hours = compute_event_hours({
            "start_date": "2024-07-01",
            "end_date": "2024-07-02",
            "daily_schedules": [
                {"date": "2024-07-01", "start_time": "08:00", "end_time": "12:00"},
                {"date": "2024-07-02", "start_time": "14:00", "end_time": "20:00"},
            ],
        })
        assert hours.selected_days == 2
        assert hours.total_hours == 10.0

    def test_selected_day_outside_range_is_ignored(self):
        hours = compute_event_hours({
            "start_date": "2024-07-01",
            "end_date": "2024-07-02",
            "selected_days": ["2024-07-01", "2024-07-02", "2024-08-01"],
            "daily_schedules": [
                {"date": "2024-07-01", "start_time": "08:00", "end_time": "12:00"},
                {"date": "2024-07-02", "start_time": "08:00", "end_time": "12:00"},
            ],
        })
        assert hours.total_hours == 8.0
        assert hours.outcome.code == "day_outside_range"

    def test_malformed_date_is_incomplete_not_an_exception(self):
        hours = compute_event_hours({"start_date": "2024-13-45", "end_date": "2024-06-15"})
        assert hours.total_hours == 0.0
        assert not hours.complete
        assert hours.outcome.code == "invalid_date"

    def test_end_before_start_is_incomplete(self):
        hours = compute_event_hours({"start_date": "2024-06-15", "end_date": "2024-06-10"})
        assert not hours.complete
        assert hours.outcome.code == "invalid_date_range"

    def test_single_day_without_times(self):
        hours = compute_event_hours({"start_date": "2024-06-15", "end_date": "2024-06-15"})
        assert hours.total_hours == 0.0
        assert hours.outcome.code == "missing_times"

    def test_to_dict_uses_iso_dates(self, multi_day_event):
        data = compute_event_hours(multi_day_event).to_dict()
        assert list(data["per_day"]) == ["2024-01-30", "2024-01-31", "2024-02-01"]
        assert data["outcome"]["status"] == "ok"


# ===========================================================================
# Class 3: Helpers and validation
# ===========================================================================

class TestScheduleHelpers:

    def test_days_between_inclusive(self):
        assert days_between(date(2024, 2, 28), date(2024, 3, 1)) == [
            date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1),
        ]

    def test_days_between_refuses_huge_range(self):
        with pytest.raises(ValueError):
            days_between(date(2020, 1, 1), date(2024, 1, 1))

    def test_days_between_refuses_reversed_range(self):
        with pytest.raises(ValueError):
            days_between(date(2024, 1, 2), date(2024, 1, 1))

    def test_sync_keeps_existing_times(self, multi_day_event):
        event = EventWindow.from_dict(multi_day_event)
        synced = sync_daily_schedules(event, [date(2024, 1, 31), date(2024, 2, 1)])
        assert [s.date for s in synced] == [date(2024, 1, 31), date(2024, 2, 1)]
        assert synced[0].start_time == "08:00"

    def test_sync_adds_empty_schedule_for_new_day(self):
        event = EventWindow(date(2024, 1, 1), date(2024, 1, 3))
        synced = sync_daily_schedules(event, [date(2024, 1, 2)])
        assert synced[0].start_time is None and not synced[0].has_times

    def test_sync_single_day_has_no_schedules(self):
        event = EventWindow(date(2024, 1, 1), date(2024, 1, 1))
        assert sync_daily_schedules(event, [date(2024, 1, 1)]) == []

    @pytest.mark.parametrize("start,end,window", [
        ("08:00", "12:00", "morning"),
        ("13:59", "18:00", "morning"),
        ("14:00", "20:00", "afternoon"),
        ("07:00", "21:00", "full_day"),
        (None, None, "full_day"),
    ])
    def test_derive_shift_window(self, start, end, window):
        assert derive_shift_window(start, end) == window

    def test_single_day_with_schedules_is_error(self, single_day_event):
        event = dict(single_day_event, daily_schedules=[
            {"date": "2024-06-15", "start_time": "08:00", "end_time": "17:00"},
        ])
        result = validate_event_window(event)
        assert result.is_error
        assert result.code == "single_day_with_schedules"

    def test_event_over_a_week_of_hours_is_error(self):
        """15 days × 12 h = 180 h > 168 h."""
        days = [f"2024-03-{d:02d}" for d in range(1, 16)]
        result = validate_event_window({
            "start_date": "2024-03-01",
            "end_date": "2024-03-15",
            "selected_days": days,
            "daily_schedules": [{"date": d, "start_time": "08:00", "end_time": "20:00"} for d in days],
        })
        assert result.code == "event_too_long"

    def test_valid_window_is_ok(self, multi_day_event):
        assert validate_event_window(multi_day_event).is_ok

    @pytest.mark.parametrize("event,code", [
        ({"start_date": "2024-13-45", "end_date": "2024-06-15"}, "invalid_date"),
        ({"start_date": "2024-06-15", "end_date": "2024-06-10"}, "invalid_date_range"),
        ({"start_date": "2024-06-15", "end_date": "2024-06-15"}, "missing_times"),
        ({
            "start_date": "2024-07-01",
            "end_date": "2024-07-03",
            "selected_days": ["2024-07-01", "2024-07-02", "2024-07-03"],
            "daily_schedules": [{"date": "2024-07-01", "start_time": "08:00", "end_time": "18:00"}],
        }, "unscheduled_days"),
        ({
            "start_date": "2024-07-01",
            "end_date": "2024-07-02",
            "selected_days": ["2024-07-01", "2024-07-02", "2024-08-01"],
            "daily_schedules": [
                {"date": "2024-07-01", "start_time": "08:00", "end_time": "12:00"},
                {"date": "2024-07-02", "start_time": "08:00", "end_time": "12:00"},
            ],
        }, "day_outside_range"),
    ])
    def test_incomplete_window_is_error(self, event, code):
        """Hour calculation only warns; the finalization check refuses."""
        assert compute_event_hours(event).outcome.is_warning
        result = validate_event_window(event)
        assert result.is_error
        assert result.code == code
