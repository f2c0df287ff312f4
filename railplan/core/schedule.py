from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterator, List, Optional

from railplan.core.errors import InvalidSchedule
from railplan.core.models import AutoSchedule, DaysOfWeek, Direction, ManualDeparture, ScheduleConfig
from railplan.core.timeutil import DAY_SECONDS, DateRange, Seconds, at, format_clock

logger = logging.getLogger(__name__)

MAX_DEPARTURES_PER_DAY = 100


@dataclass(frozen=True)
class ScheduledDeparture:
    departure: datetime
    service_date: date  # originating day, also for services rolled past midnight
    day_anchor: DaysOfWeek
    rolled_over: bool
    direction: Direction
    source: str  # "auto", "locked" or "manual"
    from_node: Optional[str] = None
    to_node: Optional[str] = None

    @property
    def offset(self) -> Seconds:
        """Seconds after midnight of the service date (>= 86400 once rolled over)."""
        return int((self.departure - at(self.service_date, 0)).total_seconds())


def _check_clock(value: Seconds, what: str, allow_day_end: bool = False) -> None:
    upper = DAY_SECONDS if allow_day_end else DAY_SECONDS - 1
    if not 0 <= value <= upper:
        raise InvalidSchedule(f"{what} must be within a day (0..{upper} s), got {value}")


def _validate_auto(auto: AutoSchedule, label: str) -> None:
    if auto.interval <= 0:
        raise InvalidSchedule(f"{label} interval must be positive, got {auto.interval}")
    _check_clock(auto.first_departure, f"{label} first departure")
    if auto.last_departure_before is not None:
        _check_clock(auto.last_departure_before, f"{label} last departure", allow_day_end=True)


def validate_schedule(schedule: ScheduleConfig) -> None:
    """Raise InvalidSchedule for any contradictory or out-of-range setting."""
    if schedule.forward is not None:
        _validate_auto(schedule.forward, "forward")
    if schedule.return_schedule is not None:
        _validate_auto(schedule.return_schedule, "return")
    for i, m in enumerate(schedule.manual):
        _check_clock(m.time, f"manual departure {i} time")
        if m.repeat_interval is not None and m.repeat_interval <= 0:
            raise InvalidSchedule(f"manual departure {i} repeat interval must be positive, got {m.repeat_interval}")
        if m.repeat_until is not None:
            if m.repeat_interval is None:
                raise InvalidSchedule(f"manual departure {i} has repeat_until without repeat_interval")
            _check_clock(m.repeat_until, f"manual departure {i} repeat_until")
        for j in range(i):
            other = schedule.manual[j]
            if other.direction == m.direction and other.time == m.time and other.days & m.days:
                raise InvalidSchedule(
                    f"manual departures {j} and {i} both leave {m.direction.value} at {format_clock(m.time)} "
                    f"on {DaysOfWeek(other.days & m.days).display()}"
                )


def auto_times(auto: AutoSchedule) -> List[Seconds]:
    """Departure offsets of one service day; offsets past 86400 belong to the next calendar day."""
    first = auto.first_departure
    last = auto.last_departure_before
    if last is None:
        end = DAY_SECONDS
    elif last == first:
        return [first]
    elif last < first:
        end = last + DAY_SECONDS
    else:
        end = last
    return list(range(first, end, auto.interval))


def manual_times(m: ManualDeparture) -> List[Seconds]:
    if m.repeat_interval is None:
        return [m.time]
    if m.repeat_until is None:
        return list(range(m.time, DAY_SECONDS, m.repeat_interval))
    until = m.repeat_until
    if until < m.time:
        until += DAY_SECONDS
    return list(range(m.time, until + 1, m.repeat_interval))


@dataclass
class DepartureSequence:
    """Restartable, lazily generated departures of one direction over a date range."""

    schedule: ScheduleConfig
    date_range: DateRange
    direction: Direction
    max_per_day: int = MAX_DEPARTURES_PER_DAY

    def __iter__(self) -> Iterator[ScheduledDeparture]:
        for day in self.date_range.dates():
            yield from self.for_day(day)

    def for_day(self, day: date) -> List[ScheduledDeparture]:
        anchor = DaysOfWeek.for_date(day)
        out: List[ScheduledDeparture] = []

        def emit(t: Seconds, source: str, from_node: Optional[str] = None, to_node: Optional[str] = None) -> None:
            out.append(
                ScheduledDeparture(
                    departure=at(day, t),
                    service_date=day,
                    day_anchor=anchor,
                    rolled_over=t >= DAY_SECONDS,
                    direction=self.direction,
                    source=source,
                    from_node=from_node,
                    to_node=to_node,
                )
            )

        sched = self.schedule
        if self.direction == Direction.RETURN and sched.locked_offset is not None:
            if sched.forward is not None and sched.forward.days & anchor:
                for t in auto_times(sched.forward):
                    emit(t + sched.locked_offset, "locked")
        else:
            auto = sched.forward if self.direction == Direction.FORWARD else sched.return_schedule
            if auto is not None and auto.days & anchor:
                for t in auto_times(auto):
                    emit(t, "auto")
        for m in sched.manual:
            if m.direction == self.direction and m.days & anchor:
                for t in manual_times(m):
                    emit(t, "manual", m.from_node, m.to_node)

        out.sort(key=lambda d: d.departure)
        if len(out) > self.max_per_day:
            logger.warning(
                "%s departures on %s capped at %d (of %d)", self.direction.value, day, self.max_per_day, len(out)
            )
            out = out[: self.max_per_day]
        return out


def expand_departures(
    schedule: ScheduleConfig,
    date_range: DateRange,
    direction: Direction = Direction.FORWARD,
    max_per_day: int = MAX_DEPARTURES_PER_DAY,
) -> DepartureSequence:
    """Validate `schedule` and return the departures it generates for `direction`.

    Automatic services run every `interval` from `first_departure` up to (not including)
    `last_departure_before`; a value earlier than the first departure runs past midnight and
    those instances are flagged `rolled_over`. Manual departures repeat up to and including
    `repeat_until`. With a locked offset the return direction mirrors the forward service.
    """
    validate_schedule(schedule)
    return DepartureSequence(schedule=schedule, date_range=date_range, direction=Direction(direction), max_per_day=max_per_day)
