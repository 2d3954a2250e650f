from datetime import date

import pytest

from booking.availability import candidate_starts, overlap_count
from booking.intervals import (
    BookedInterval,
    Window,
    day_of_week,
    format_minutes,
    is_valid_hhmm,
    ranges_overlap,
    to_minutes,
)


def test_to_minutes_and_back():
    assert to_minutes("00:00") == 0
    assert to_minutes("09:30") == 570
    assert to_minutes("23:59") == 1439
    assert format_minutes(570) == "09:30"
    assert format_minutes(0) == "00:00"


@pytest.mark.parametrize("value", ["9:00", "24:00", "12:60", "noon", "", None])
def test_invalid_times_are_rejected(value):
    assert not is_valid_hhmm(value)
    with pytest.raises(ValueError):
        to_minutes(value)


def test_touching_ranges_do_not_overlap():
    assert not ranges_overlap(540, 600, 600, 660)
    assert not ranges_overlap(600, 660, 540, 600)
    assert ranges_overlap(540, 600, 599, 660)
    assert ranges_overlap(540, 720, 600, 630)


def test_day_of_week_starts_on_sunday():
    assert day_of_week(date(2030, 1, 6)) == 0
    assert day_of_week(date(2030, 1, 7)) == 1
    assert day_of_week(date(2030, 1, 12)) == 6


def test_window_requires_start_before_end():
    with pytest.raises(ValueError):
        Window(600, 600)
    with pytest.raises(ValueError):
        Window.from_hhmm("12:00", "09:00")
    assert Window.from_hhmm("09:00", "12:00") == Window(540, 720)


def test_candidate_starts_stay_inside_window():
    starts = list(candidate_starts([Window(540, 720)], 60, 15))
    assert starts[0] == 540
    assert starts[-1] == 660
    assert len(starts) == 9
    assert all(start + 60 <= 720 for start in starts)


def test_candidate_starts_skip_windows_shorter_than_duration():
    assert list(candidate_starts([Window(540, 570)], 60, 15)) == []


def test_candidate_starts_deduplicate_across_windows():
    starts = list(candidate_starts([Window(540, 660), Window(600, 720)], 60, 30))
    assert starts == [540, 570, 600, 630, 660]


def test_overlap_count_uses_each_interval_length():
    intervals = [
        BookedInterval(booking_id="a", start=540, end=570),
        BookedInterval(booking_id="b", start=540, end=660),
    ]
    assert overlap_count(intervals, 570, 630) == 1
    assert overlap_count(intervals, 540, 600) == 2
    assert overlap_count(intervals, 660, 720) == 0
