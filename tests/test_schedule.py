import logging
from datetime import datetime

import pytest

from railplan.core.errors import InvalidSchedule
from railplan.core.models import AutoSchedule, DaysOfWeek, Direction, ManualDeparture, ScheduleConfig
from railplan.core.schedule import auto_times, expand_departures, manual_times
from railplan.core.timeutil import BASE_DATE, DateRange, parse_clock, service_week


def _clock(s):
    return parse_clock(s)


def test_rollover_past_midnight():
    sched = ScheduleConfig(forward=AutoSchedule(interval=1800, first_departure=_clock("23:00"), last_departure_before=_clock("02:00")))
    deps = list(expand_departures(sched, DateRange.single(BASE_DATE)))
    assert [d.departure for d in deps] == [
        datetime(2024, 1, 1, 23, 0),
        datetime(2024, 1, 1, 23, 30),
        datetime(2024, 1, 2, 0, 0),
        datetime(2024, 1, 2, 0, 30),
        datetime(2024, 1, 2, 1, 0),
        datetime(2024, 1, 2, 1, 30),
    ]
    assert [d.rolled_over for d in deps] == [False, False, True, True, True, True]
    # rolled services still belong to the Monday they started from
    assert {d.day_anchor for d in deps} == {DaysOfWeek.MONDAY}
    assert {d.service_date for d in deps} == {BASE_DATE}
    assert deps[-1].offset == 86400 + 5400


def test_auto_time_bounds():
    assert auto_times(AutoSchedule(interval=3600, first_departure=_clock("22:00"))) == [_clock("22:00"), _clock("23:00")]
    assert auto_times(AutoSchedule(interval=600, first_departure=_clock("08:00"), last_departure_before=_clock("08:00"))) == [
        _clock("08:00")
    ]
    # upper bound is exclusive
    assert auto_times(AutoSchedule(interval=1800, first_departure=_clock("06:00"), last_departure_before=_clock("07:00"))) == [
        _clock("06:00"),
        _clock("06:30"),
    ]


def test_days_of_week_filter():
    sched = ScheduleConfig(
        forward=AutoSchedule(
            interval=3600, first_departure=_clock("06:00"), last_departure_before=_clock("07:00"), days=DaysOfWeek.WEEKDAYS
        )
    )
    deps = list(expand_departures(sched, service_week()))
    assert len(deps) == 5
    assert [d.departure.weekday() for d in deps] == [0, 1, 2, 3, 4]


def test_manual_repeats():
    until_after_midnight = ManualDeparture(time=_clock("23:30"), repeat_interval=1800, repeat_until=_clock("01:00"))
    assert manual_times(until_after_midnight) == [_clock("23:30"), 86400, 86400 + 1800, 86400 + 3600]

    inclusive = ManualDeparture(time=_clock("10:00"), repeat_interval=900, repeat_until=_clock("10:30"))
    assert manual_times(inclusive) == [_clock("10:00"), _clock("10:15"), _clock("10:30")]

    to_day_end = ManualDeparture(time=_clock("22:00"), repeat_interval=3600)
    assert manual_times(to_day_end) == [_clock("22:00"), _clock("23:00")]

    assert manual_times(ManualDeparture(time=_clock("12:34"))) == [_clock("12:34")]


def test_manual_departures_merge_by_direction():
    sched = ScheduleConfig(
        forward=AutoSchedule(interval=3600, first_departure=_clock("08:00"), last_departure_before=_clock("10:00")),
        manual=[
            ManualDeparture(time=_clock("08:30")),
            ManualDeparture(time=_clock("09:15"), direction=Direction.RETURN, from_node="B"),
        ],
    )
    day = DateRange.single(BASE_DATE)
    fwd = list(expand_departures(sched, day))
    assert [(d.departure.strftime("%H:%M"), d.source) for d in fwd] == [("08:00", "auto"), ("08:30", "manual"), ("09:00", "auto")]
    back = list(expand_departures(sched, day, Direction.RETURN))
    assert len(back) == 1
    assert back[0].from_node == "B"
    assert back[0].direction == Direction.RETURN


def test_locked_offset_mirrors_forward_service():
    sched = ScheduleConfig(
        forward=AutoSchedule(interval=3600, first_departure=_clock("06:00"), last_departure_before=_clock("08:00")),
        return_schedule=AutoSchedule(interval=600, first_departure=_clock("12:00")),
        locked_offset=900,
    )
    back = list(expand_departures(sched, DateRange.single(BASE_DATE), Direction.RETURN))
    assert [d.departure.strftime("%H:%M") for d in back] == ["06:15", "07:15"]
    assert {d.source for d in back} == {"locked"}


@pytest.mark.parametrize(
    "sched",
    [
        ScheduleConfig(forward=AutoSchedule(interval=0, first_departure=0)),
        ScheduleConfig(forward=AutoSchedule(interval=60, first_departure=86400)),
        ScheduleConfig(forward=AutoSchedule(interval=60, first_departure=0, last_departure_before=86401)),
        ScheduleConfig(manual=[ManualDeparture(time=3600, repeat_until=7200)]),
        ScheduleConfig(manual=[ManualDeparture(time=3600, repeat_interval=0)]),
        ScheduleConfig(manual=[ManualDeparture(time=-1)]),
        ScheduleConfig(manual=[ManualDeparture(time=3600), ManualDeparture(time=3600, days=DaysOfWeek.MONDAY)]),
    ],
)
def test_invalid_schedules(sched):
    with pytest.raises(InvalidSchedule):
        expand_departures(sched, DateRange.single(BASE_DATE))


def test_same_time_on_disjoint_days_is_allowed():
    sched = ScheduleConfig(
        manual=[
            ManualDeparture(time=3600, days=DaysOfWeek.WEEKDAYS),
            ManualDeparture(time=3600, days=DaysOfWeek.WEEKENDS),
            ManualDeparture(time=3600, direction=Direction.RETURN),
        ]
    )
    assert len(list(expand_departures(sched, service_week(lead_in=False)))) == 7


def test_per_day_cap_logs_warning(caplog):
    sched = ScheduleConfig(forward=AutoSchedule(interval=60, first_departure=0))
    with caplog.at_level(logging.WARNING, logger="railplan.core.schedule"):
        deps = list(expand_departures(sched, DateRange.single(BASE_DATE), max_per_day=100))
    assert len(deps) == 100
    assert "capped at 100" in caplog.text


def test_sequence_is_restartable():
    sched = ScheduleConfig(forward=AutoSchedule(interval=1800, first_departure=_clock("06:00"), last_departure_before=_clock("08:00")))
    seq = expand_departures(sched, DateRange(start=BASE_DATE, days=3))
    first = list(seq)
    assert len(first) == 12
    assert list(seq) == first
