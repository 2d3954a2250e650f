"""Minute-of-day helpers shared by schedules, exceptions and bookings."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date

_HHMM = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")


def is_valid_hhmm(value: str | None) -> bool:
    return bool(value) and _HHMM.match(value) is not None


def to_minutes(value: str) -> int:
    """Convert "HH:MM" into minutes from midnight."""
    if not is_valid_hhmm(value):
        raise ValueError(f"Invalid time {value!r}; expected HH:MM.")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def ranges_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    # Half-open: [09:00, 10:00) and [10:00, 11:00) do not overlap.
    return start1 < end2 and end1 > start2


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


@dataclass(frozen=True, order=True)
class Window:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"Window start must be before end ({self.start} >= {self.end}).")

    @classmethod
    def from_hhmm(cls, start: str, end: str) -> "Window":
        return cls(to_minutes(start), to_minutes(end))

    def overlaps(self, start: int, end: int) -> bool:
        return ranges_overlap(self.start, self.end, start, end)


@dataclass(frozen=True)
class BookedInterval:
    """Minutes occupied by an existing booking, sized by its own duration."""

    booking_id: str
    start: int
    end: int

    def overlaps(self, start: int, end: int) -> bool:
        return ranges_overlap(self.start, self.end, start, end)
