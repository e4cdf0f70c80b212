from typing import Literal, TypedDict, Union


class BookingRequestSubmittedEvent(TypedDict):
    type: Literal["booking_request_submitted"]
    request_id: str
    owner_id: str
    guest_name: str
    guest_email: str | None
    start: str
    end: str
    confirmation_token: str
    expires_at: str


class BookingRequestStatusEvent(TypedDict, total=False):
    type: Literal["booking_request_status"]
    request_id: str
    owner_id: str
    status: str
    decline_reason: str | None
    # Only present when the request moves to pending_host_approval.
    host_approval_token: str
    host_approval_expires_at: str


class BookingConfirmedEvent(TypedDict):
    type: Literal["booking_confirmed"]
    booking_id: str
    owner_id: str
    guest_name: str
    guest_email: str | None
    start: str
    end: str
    request_id: str | None
    poll_id: str | None


class BookingCancelledEvent(TypedDict):
    type: Literal["booking_cancelled"]
    booking_id: str
    owner_id: str
    start: str
    end: str


class PollVoteRecordedEvent(TypedDict):
    type: Literal["poll_vote_recorded"]
    poll_id: str
    owner_id: str
    participant_name: str
    participant_email: str
    vote_count: int


class PollFinalizedEvent(TypedDict):
    type: Literal["poll_finalized"]
    poll_id: str
    owner_id: str
    time_slot_id: str
    booking_id: str
    start: str
    end: str


# Discriminated union of everything published after a committed transition
SchedulingEvent = Union[
    BookingRequestSubmittedEvent,
    BookingRequestStatusEvent,
    BookingConfirmedEvent,
    BookingCancelledEvent,
    PollVoteRecordedEvent,
    PollFinalizedEvent,
]
