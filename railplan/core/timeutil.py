from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, Union

Seconds = int

DAY_SECONDS: Seconds = 24 * 3600

# Monday; every generated service week is anchored here
BASE_DATE: date = date(2024, 1, 1)
BASE_MIDNIGHT: datetime = datetime.combine(BASE_DATE, datetime.min.time())


def parse_clock(value: Union[str, int]) -> Seconds:
    """Parse "HH:MM" / "HH:MM:SS" (or plain seconds) into seconds after midnight.

    Hours above 23 are accepted so that "25:30" can express an after-midnight time.
    Raises ValueError on malformed input.
    """
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse clock value: {value!r}")
    if isinstance(value, int):
        return value
    s = str(value).strip()
    if not s:
        raise ValueError("Empty clock string")
    if s.isdigit():
        return int(s)
    parts = s.split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ValueError(f"Cannot parse clock string: {value!r}")
    h, m = int(parts[0]), int(parts[1])
    sec = int(parts[2]) if len(parts) == 3 else 0
    if m > 59 or sec > 59:
        raise ValueError(f"Cannot parse clock string: {value!r}")
    return h * 3600 + m * 60 + sec


def format_clock(seconds: Seconds) -> str:
    """Format seconds after midnight as HH:MM:SS, with a "+N" day suffix past midnight."""
    days, rem = divmod(int(seconds), DAY_SECONDS)
    h, rem = divmod(rem, 3600)
    m, s = divmod(rem, 60)
    text = f"{h:02d}:{m:02d}:{s:02d}"
    return f"{text}+{days}" if days else text


def at(day: date, seconds: Seconds) -> datetime:
    """Absolute instant `seconds` after midnight of `day` (may land on a later date)."""
    return datetime.combine(day, datetime.min.time()) + timedelta(seconds=int(seconds))


@dataclass(frozen=True)
class DateRange:
    """A run of consecutive service days starting at `start`."""

    start: date
    days: int = 7

    def dates(self) -> Iterator[date]:
        for i in range(max(self.days, 0)):
            yield self.start + timedelta(days=i)

    @property
    def end(self) -> date:
        return self.start + timedelta(days=max(self.days, 1) - 1)

    @classmethod
    def single(cls, day: date) -> "DateRange":
        return cls(start=day, days=1)


def service_week(lead_in: bool = True) -> DateRange:
    # The Sunday before BASE_DATE is included so its after-midnight services reach Monday
    if lead_in:
        return DateRange(start=BASE_DATE - timedelta(days=1), days=8)
    return DateRange(start=BASE_DATE, days=7)


def week_window_start() -> datetime:
    return BASE_MIDNIGHT
