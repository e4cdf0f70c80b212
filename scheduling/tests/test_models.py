"""Tests for the record models and their transition tables."""

from datetime import time

import pytest
from pydantic import ValidationError as PydanticValidationError

from scheduling.errors import InvalidTransitionError
from scheduling.models.availability import AvailabilityRule, EventType
from scheduling.models.booking import (
    REQUEST_TRANSITIONS,
    BookingStatus,
    Guest,
    RequestStatus,
)
from scheduling.models.poll import NotificationSettings, Poll, PollStatus
from scheduling.tests.factories import NOW, OWNER, at, make_booking


class TestBookingTransitions:
    def test_confirmed_to_cancelled(self):
        booking = make_booking("b1", at(2, 9), at(2, 10))
        cancelled = booking.transition(BookingStatus.CANCELLED, NOW)
        assert cancelled.status is BookingStatus.CANCELLED
        assert cancelled.cancelled_at == NOW
        # Records are never mutated in place
        assert booking.status is BookingStatus.CONFIRMED

    def test_cancelled_is_terminal(self):
        booking = make_booking("b1", at(2, 9), at(2, 10), status=BookingStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError):
            booking.transition(BookingStatus.CONFIRMED, NOW)

    def test_naive_timestamps_rejected(self):
        with pytest.raises(PydanticValidationError):
            make_booking("b1", at(2, 9).replace(tzinfo=None), at(2, 10))


class TestRequestStatus:
    @pytest.mark.parametrize("status", ["confirmed", "declined", "expired", "cancelled"])
    def test_terminal_states_have_no_exits(self, status):
        assert RequestStatus(status).is_terminal
        assert REQUEST_TRANSITIONS[RequestStatus(status)] == frozenset()

    def test_pending_states(self):
        assert RequestStatus.PENDING_CONFIRMATION.is_pending
        assert RequestStatus.PENDING_HOST_APPROVAL.is_pending
        assert not RequestStatus.PENDING_HOST_APPROVAL.is_terminal

    def test_host_approval_cannot_go_back(self):
        assert RequestStatus.PENDING_CONFIRMATION not in REQUEST_TRANSITIONS[RequestStatus.PENDING_HOST_APPROVAL]


class TestPollTransitions:
    def _poll(self, **kwargs):
        return Poll(id="p1", owner_id=OWNER, title="Sync", duration_minutes=30, created_at=NOW, **kwargs)

    def test_finalized_is_terminal(self):
        poll = self._poll(status=PollStatus.FINALIZED)
        with pytest.raises(InvalidTransitionError):
            poll.transition(PollStatus.CLOSED)
        assert not poll.can_be_finalized()

    def test_closed_cannot_reopen(self):
        with pytest.raises(InvalidTransitionError):
            self._poll(status=PollStatus.CLOSED).transition(PollStatus.ACTIVE)

    def test_accepts_votes_until_deadline(self):
        poll = self._poll(deadline=at(2, 0))
        assert poll.accepts_votes(NOW)
        assert not poll.accepts_votes(at(2, 0))

    def test_notification_settings_are_typed(self):
        with pytest.raises(PydanticValidationError):
            NotificationSettings(notify_on_everything=True)

    def test_unknown_timezone_rejected(self):
        with pytest.raises(PydanticValidationError):
            self._poll(timezone="Nowhere/Special")


class TestInputModels:
    def test_rule_window_must_be_ordered(self):
        with pytest.raises(PydanticValidationError):
            AvailabilityRule(owner_id=OWNER, day_of_week=1, start_time=time(17), end_time=time(9))

    def test_rule_day_range(self):
        with pytest.raises(PydanticValidationError):
            AvailabilityRule(owner_id=OWNER, day_of_week=7, start_time=time(9), end_time=time(17))

    @pytest.mark.parametrize(
        "field,value",
        [
            ("duration_minutes", 4),
            ("duration_minutes", 481),
            ("buffer_before_minutes", 121),
            ("minimum_notice_minutes", 20161),
            ("maximum_advance_minutes", 1439),
        ],
    )
    def test_event_type_bounds(self, field, value):
        with pytest.raises(PydanticValidationError):
            EventType(id="e", owner_id=OWNER, **{field: value})

    def test_guest_email_normalized(self):
        assert Guest(name="Dee", email=" Dee@Example.COM ").email == "dee@example.com"

    def test_guest_email_validated(self):
        with pytest.raises(PydanticValidationError):
            Guest(name="Dee", email="not-an-email")

    @pytest.mark.parametrize("email", ["dee@", "dee@@example.com", "dee example@example.com", "dee@example..com"])
    def test_guest_email_rejects_malformed(self, email):
        with pytest.raises(PydanticValidationError):
            Guest(name="Dee", email=email)
