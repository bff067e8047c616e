"""Tests for availability conflict detection."""

from datetime import datetime, timedelta

import pytz

from courtbot.conflicts import (
    find_free_resources,
    has_conflict,
    intervals_overlap,
    to_instant,
)
from courtbot.models import ReservationRecord, TimeWindow


def utc(*args):
    return pytz.utc.localize(datetime(*args))


def window(hour=18, minutes=60):
    start = utc(2025, 12, 1, hour)
    return TimeWindow(start, start + timedelta(minutes=minutes))


def booking(reservation_id, court, start, end):
    return ReservationRecord(
        reservation_id=reservation_id, resource_id=court, start=start, end=end
    )


class TestIntervalsOverlap:
    """Half-open interval overlap rule."""

    def test_disjoint_windows_do_not_overlap(self):
        assert not intervals_overlap(
            utc(2025, 12, 1, 10), utc(2025, 12, 1, 11), utc(2025, 12, 1, 12), utc(2025, 12, 1, 13)
        )

    def test_touching_at_boundary_is_not_overlap(self):
        a0, a1 = utc(2025, 12, 1, 18), utc(2025, 12, 1, 19)
        assert not intervals_overlap(a0, a1, a1, utc(2025, 12, 1, 20))
        assert not intervals_overlap(a0, a1, utc(2025, 12, 1, 17), a0)

    def test_sharing_any_instant_overlaps(self):
        a0, a1 = utc(2025, 12, 1, 18), utc(2025, 12, 1, 19)
        assert intervals_overlap(a0, a1, utc(2025, 12, 1, 18, 59), utc(2025, 12, 1, 20))
        assert intervals_overlap(a0, a1, utc(2025, 12, 1, 18, 15), utc(2025, 12, 1, 18, 30))
        assert intervals_overlap(a0, a1, utc(2025, 12, 1, 17), utc(2025, 12, 1, 21))


class TestToInstant:
    def test_zulu_suffix(self):
        assert to_instant("2025-11-13T14:00:00Z") == utc(2025, 11, 13, 14)

    def test_offset_is_normalized_to_utc(self):
        assert to_instant("2025-11-13T06:00:00-08:00") == utc(2025, 11, 13, 14)

    def test_naive_string_is_taken_as_utc(self):
        assert to_instant("2025-11-13T14:00:00") == utc(2025, 11, 13, 14)

    def test_datetime_passthrough(self):
        value = utc(2025, 11, 13, 14)
        assert to_instant(value) == value

    def test_unparseable_values(self):
        assert to_instant("not a date") is None
        assert to_instant("") is None
        assert to_instant(None) is None


class TestHasConflict:
    def test_sentinel_records_never_conflict(self):
        records = [booking(0, "A", "2025-12-01T18:00:00Z", "2025-12-01T19:00:00Z")]
        assert not has_conflict(window(), records)

    def test_real_booking_conflicts(self):
        records = [booking(7, "A", "2025-12-01T18:30:00Z", "2025-12-01T19:30:00Z")]
        assert has_conflict(window(), records)

    def test_malformed_timestamp_counts_as_conflict(self):
        records = [booking(7, "A", "garbage", "2025-12-01T19:00:00Z")]
        assert has_conflict(window(), records)

    def test_malformed_sentinel_is_ignored(self):
        records = [booking(0, "A", "garbage", None)]
        assert not has_conflict(window(), records)

    def test_unknown_reservation_id_is_treated_as_booking(self):
        records = [booking(None, "A", "2025-12-01T18:00:00Z", "2025-12-01T19:00:00Z")]
        assert has_conflict(window(), records)


class TestFindFreeResources:
    def test_booked_court_is_excluded(self):
        """A booking on A for the exact window leaves only B."""
        records = [booking(5, "A", "2025-12-01T18:00:00Z", "2025-12-01T19:00:00Z")]
        assert find_free_resources(records, ["A", "B"], window()) == ["B"]

    def test_empty_records_returns_full_range_ascending(self):
        resources = ["52669", "52667", "52668"]
        assert find_free_resources([], resources, window()) == ["52667", "52668", "52669"]

    def test_sentinel_only_courts_are_free(self):
        records = [
            booking(0, "52667", "2025-12-01T18:00:00Z", "2025-12-01T19:00:00Z"),
            booking(-1, "52668", "2025-12-01T18:00:00Z", "2025-12-01T19:00:00Z"),
        ]
        assert find_free_resources(records, ["52667", "52668"], window()) == ["52667", "52668"]

    def test_booking_touching_window_leaves_court_free(self):
        records = [booking(5, "A", "2025-12-01T17:00:00Z", "2025-12-01T18:00:00Z")]
        assert find_free_resources(records, ["A"], window()) == ["A"]

    def test_integer_court_ids_match_string_records(self):
        records = [
            ReservationRecord.from_api(
                {
                    "ReservationId": 11,
                    "CourtId": 52667,
                    "Start": "2025-12-01T18:00:00Z",
                    "End": "2025-12-01T19:00:00Z",
                }
            )
        ]
        assert find_free_resources(records, [52667, 52668], window()) == [52668]

    def test_numeric_ids_sort_numerically_before_names(self):
        result = find_free_resources([], ["10", "B", "9", "A"], window())
        assert result == ["9", "10", "A", "B"]

    def test_duplicates_are_removed(self):
        assert find_free_resources([], ["B", "A", "B"], window()) == ["A", "B"]

    def test_deterministic_for_identical_inputs(self):
        records = [booking(5, "52668", "2025-12-01T18:00:00Z", "2025-12-01T19:00:00Z")]
        resources = ["52669", "52667", "52668"]
        first = find_free_resources(records, resources, window())
        assert first == find_free_resources(records, resources, window())
        assert first == ["52667", "52669"]
