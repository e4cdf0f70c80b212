"""Tests for booking overlap detection."""

import pytest

from scheduling.engine.conflicts import ensure_no_conflict, find_conflicts, has_conflict
from scheduling.engine.intervals import Interval
from scheduling.errors import ConflictError
from scheduling.models.availability import BusyBlock
from scheduling.models.booking import BookingStatus
from scheduling.tests.factories import OWNER, at, make_booking


@pytest.fixture
def existing():
    return [
        make_booking("b-10", at(2, 10), at(2, 11)),
        make_booking("b-cancelled", at(2, 12), at(2, 13), status=BookingStatus.CANCELLED),
        make_booking("b-pending", at(2, 14), at(2, 15), status=BookingStatus.PENDING),
        make_booking("b-other-owner", at(2, 16), at(2, 17), owner_id="owner-2"),
    ]


class TestFindConflicts:
    def test_overlap_reports_booking_id(self, existing):
        candidate = Interval(at(2, 10, 30), at(2, 11, 30))
        assert find_conflicts(OWNER, candidate, existing) == ["b-10"]

    def test_adjacent_booking_is_not_a_conflict(self, existing):
        """A booking ending exactly when another starts is allowed."""
        assert not has_conflict(OWNER, Interval(at(2, 11), at(2, 12)), existing)
        assert not has_conflict(OWNER, Interval(at(2, 9), at(2, 10)), existing)

    def test_only_confirmed_bookings_count(self, existing):
        assert not has_conflict(OWNER, Interval(at(2, 12), at(2, 13)), existing)
        assert not has_conflict(OWNER, Interval(at(2, 14), at(2, 15)), existing)

    def test_other_owners_are_ignored(self, existing):
        assert not has_conflict(OWNER, Interval(at(2, 16), at(2, 17)), existing)

    def test_buffers_pad_the_new_interval(self, existing):
        """Adjacent slot conflicts once buffers are applied."""
        candidate = Interval(at(2, 11), at(2, 12))
        assert has_conflict(OWNER, candidate, existing, buffer_before_minutes=15)
        assert not has_conflict(OWNER, candidate, existing, buffer_after_minutes=15)

    def test_busy_blocks_participate(self, existing):
        block = BusyBlock(id="gcal-1", owner_id=OWNER, start=at(2, 12), end=at(2, 12, 30), source="google")
        candidate = Interval(at(2, 12), at(2, 13))
        assert find_conflicts(OWNER, candidate, existing, busy_blocks=[block]) == ["gcal-1"]


class TestEnsureNoConflict:
    def test_raises_with_conflicting_ids(self, existing):
        with pytest.raises(ConflictError) as exc_info:
            ensure_no_conflict(OWNER, Interval(at(2, 9, 30), at(2, 10, 30)), existing)
        assert exc_info.value.status_code == 409
        assert exc_info.value.conflicting_booking_ids == ["b-10"]

    def test_clear_interval_passes(self, existing):
        ensure_no_conflict(OWNER, Interval(at(2, 11), at(2, 12)), existing)
