from datetime import date

import pytest

from railplan.core.models import DaysOfWeek
from railplan.core.timeutil import BASE_DATE, format_clock, parse_clock, service_week, week_window_start


def test_parse_and_format_clock():
    assert parse_clock("06:30") == 6 * 3600 + 1800
    assert parse_clock("00:04:00") == 240
    assert parse_clock("25:30") == 86400 + 5400
    assert parse_clock(90) == 90
    assert parse_clock("90") == 90
    for bad in ("", "6h", "10:75", "1:2:3:4", True):
        with pytest.raises(ValueError):
            parse_clock(bad)
    assert format_clock(3723) == "01:02:03"
    assert format_clock(86400 + 60) == "00:01:00+1"


def test_days_of_week():
    assert BASE_DATE.weekday() == 0
    assert DaysOfWeek.for_date(BASE_DATE) == DaysOfWeek.MONDAY
    assert DaysOfWeek.from_index(6) == DaysOfWeek.SUNDAY
    assert DaysOfWeek.from_index(7) is None
    assert DaysOfWeek.ALL_DAYS.display() == "All days"
    assert DaysOfWeek.WEEKENDS.display() == "Weekends"
    assert (DaysOfWeek.MONDAY | DaysOfWeek.WEDNESDAY).display() == "Mon, Wed"


def test_service_week_starts_on_the_sunday_before():
    week = service_week()
    days = list(week.dates())
    assert days[0] == date(2023, 12, 31)
    assert days[-1] == week.end == date(2024, 1, 7)
    assert len(days) == 8
    assert week_window_start().date() == BASE_DATE
    assert len(list(service_week(lead_in=False).dates())) == 7
