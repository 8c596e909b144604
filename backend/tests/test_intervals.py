from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from clinic_booking.errors import InvalidArgument
from clinic_booking.services.intervals import (
    TimeInterval, blocks_within, merge, overlaps, overlaps_any, subtract_busy,
)

NY = ZoneInfo("America/New_York")


def at(hour, minute=0):
    return datetime(2024, 9, 2, hour, minute, tzinfo=NY)


def span(h1, m1, h2, m2):
    return TimeInterval(at(h1, m1), at(h2, m2))


def test_interval_requires_start_before_end():
    with pytest.raises(InvalidArgument):
        TimeInterval(at(10), at(10))
    with pytest.raises(InvalidArgument):
        TimeInterval(at(11), at(10))


def test_interval_rejects_naive_datetimes():
    with pytest.raises(InvalidArgument):
        TimeInterval(datetime(2024, 9, 2, 9), datetime(2024, 9, 2, 10))


def test_back_to_back_intervals_do_not_overlap():
    assert not overlaps(span(9, 0, 10, 0), span(10, 0, 11, 0))
    assert not overlaps(span(10, 0, 11, 0), span(9, 0, 10, 0))


def test_overlap_is_symmetric():
    samples = [
        span(9, 0, 10, 0), span(9, 30, 10, 30), span(10, 0, 11, 0),
        span(8, 0, 12, 0), span(14, 0, 15, 0), span(14, 30, 15, 30),
    ]
    for a in samples:
        for b in samples:
            assert overlaps(a, b) == overlaps(b, a)


def test_overlap_across_timezones_compares_instants():
    utc_block = TimeInterval(
        datetime(2024, 9, 2, 14, 0, tzinfo=timezone.utc),  # 10:00 EDT
        datetime(2024, 9, 2, 15, 0, tzinfo=timezone.utc),
    )
    assert overlaps(span(10, 0, 11, 0), utc_block)
    assert not overlaps(span(9, 0, 10, 0), utc_block)


def test_overlaps_any():
    blocks = [span(10, 0, 11, 0), span(13, 0, 14, 0)]
    assert overlaps_any(span(10, 30, 11, 30), blocks)
    assert not overlaps_any(span(11, 0, 13, 0), blocks)
    assert not overlaps_any(span(11, 0, 13, 0), [])


def test_merge_joins_overlapping_and_touching_blocks():
    blocks = [span(13, 0, 14, 0), span(10, 0, 11, 0), span(10, 30, 11, 30), span(11, 30, 12, 0), span(10, 45, 11, 0)]
    assert merge(blocks) == [span(10, 0, 12, 0), span(13, 0, 14, 0)]
    assert merge([]) == []


def test_subtract_busy_returns_free_gaps_in_order():
    window = span(9, 0, 17, 0)
    blocks = [span(13, 0, 14, 0), span(10, 0, 11, 0), span(10, 30, 11, 30)]
    assert subtract_busy(window, blocks) == [
        span(9, 0, 10, 0),
        span(11, 30, 13, 0),
        span(14, 0, 17, 0),
    ]


def test_subtract_busy_clips_blocks_outside_window():
    window = span(9, 0, 17, 0)
    blocks = [span(8, 0, 9, 30), span(16, 0, 18, 0), span(18, 0, 19, 0)]
    assert subtract_busy(window, blocks) == [span(9, 30, 16, 0)]


def test_subtract_busy_fully_covered_window():
    assert subtract_busy(span(9, 0, 10, 0), [span(8, 0, 12, 0)]) == []


def test_blocks_within_slices_a_wide_fetch():
    day = TimeInterval(at(0), at(0) + timedelta(days=1))
    inside = span(10, 0, 11, 0)
    next_day = TimeInterval(at(10) + timedelta(days=1), at(11) + timedelta(days=1))
    assert blocks_within(day, [inside, next_day]) == [inside]
