"""Bookings and booking requests with their lifecycle tables.

Status values are persisted verbatim, so the enum values must not change.
Every status change goes through ``transition()``, which checks the table
and returns a new record; records are never mutated in place.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from scheduling.engine.intervals import Interval
from scheduling.errors import InvalidTransitionError
from scheduling.models.common import Email, UTCDateTime


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
}


class RequestStatus(StrEnum):
    PENDING_CONFIRMATION = "pending_confirmation"
    PENDING_HOST_APPROVAL = "pending_host_approval"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not REQUEST_TRANSITIONS[self]

    @property
    def is_pending(self) -> bool:
        return self in (RequestStatus.PENDING_CONFIRMATION, RequestStatus.PENDING_HOST_APPROVAL)


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING_CONFIRMATION: frozenset({
        RequestStatus.PENDING_HOST_APPROVAL,
        RequestStatus.CONFIRMED,
        RequestStatus.DECLINED,
        RequestStatus.EXPIRED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.PENDING_HOST_APPROVAL: frozenset({
        RequestStatus.CONFIRMED,
        RequestStatus.DECLINED,
        RequestStatus.EXPIRED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.CONFIRMED: frozenset(),
    RequestStatus.DECLINED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}


class TokenPurpose(StrEnum):
    CONFIRMATION = "confirmation"
    HOST_APPROVAL = "host_approval"


GUEST_NAME_MAX_LENGTH = 100


class Guest(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, max_length=GUEST_NAME_MAX_LENGTH)
    email: Email | None = None
    phone: str | None = Field(default=None, max_length=25)


class Booking(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    guest: Guest
    start: UTCDateTime
    end: UTCDateTime
    status: BookingStatus = BookingStatus.CONFIRMED
    event_type_id: str | None = None
    request_id: str | None = None
    poll_id: str | None = None
    created_at: UTCDateTime | None = None
    cancelled_at: UTCDateTime | None = None

    @model_validator(mode="after")
    def check_order(self) -> "Booking":
        if self.start >= self.end:
            raise ValueError("start must be before end")
        return self

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    def transition(self, to: BookingStatus, now: datetime) -> "Booking":
        if to not in BOOKING_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                detail=f"Booking cannot move from {self.status} to {to}",
                booking_id=self.id,
                status=str(self.status),
            )
        changes: dict = {"status": to}
        if to is BookingStatus.CANCELLED:
            changes["cancelled_at"] = now
        return self.model_copy(update=changes)


class RequestToken(BaseModel):
    """Opaque single-use credential bound to one request and one purpose."""

    model_config = ConfigDict(frozen=True)

    value: str
    purpose: TokenPurpose
    expires_at: UTCDateTime
    consumed_at: UTCDateTime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None


class BookingRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    event_type_id: str
    guest: Guest
    start: UTCDateTime
    end: UTCDateTime
    notes: str | None = None
    status: RequestStatus = RequestStatus.PENDING_CONFIRMATION
    confirmation: RequestToken
    host_approval: RequestToken | None = None
    created_at: UTCDateTime
    decided_at: UTCDateTime | None = None
    decline_reason: str | None = None
    booking_id: str | None = None
    conflicting_booking_ids: list[str] = Field(default_factory=list)

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    def token_for(self, purpose: TokenPurpose) -> RequestToken | None:
        if purpose is TokenPurpose.CONFIRMATION:
            return self.confirmation
        return self.host_approval

    @property
    def active_token(self) -> RequestToken | None:
        """Token whose expiry governs the current pending state."""
        if self.status is RequestStatus.PENDING_CONFIRMATION:
            return self.confirmation
        if self.status is RequestStatus.PENDING_HOST_APPROVAL:
            return self.host_approval
        return None

    def consume(self, purpose: TokenPurpose, now: datetime) -> "BookingRequest":
        token = self.token_for(purpose)
        field = "confirmation" if purpose is TokenPurpose.CONFIRMATION else "host_approval"
        return self.model_copy(update={field: token.model_copy(update={"consumed_at": now})})

    def transition(self, to: RequestStatus, now: datetime, **changes) -> "BookingRequest":
        if to not in REQUEST_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                detail=f"Booking request cannot move from {self.status} to {to}",
                request_id=self.id,
                status=str(self.status),
            )
        changes["status"] = to
        if to.is_terminal:
            changes["decided_at"] = now
        return self.model_copy(update=changes)


class SubmitResult(BaseModel):
    request_id: str
    status: RequestStatus
    confirmation_token: str
    expires_at: datetime


class RequestState(BaseModel):
    """Outcome of a workflow operation on a booking request."""

    request_id: str
    status: RequestStatus
    booking_id: str | None = None
    decline_reason: str | None = None
    host_approval_expires_at: datetime | None = None
    already_processed: bool = False

    @classmethod
    def of(cls, request: BookingRequest, already_processed: bool = False) -> "RequestState":
        return cls(
            request_id=request.id,
            status=request.status,
            booking_id=request.booking_id,
            decline_reason=request.decline_reason,
            host_approval_expires_at=request.host_approval.expires_at if request.host_approval else None,
            already_processed=already_processed,
        )
