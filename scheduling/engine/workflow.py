"""Booking request lifecycle.

pending_confirmation --(guest token)--> pending_host_approval | confirmed | declined
pending_host_approval --(host token)--> confirmed | declined
any pending --(token lapses)--> expired
any pending --(explicit cancel)--> cancelled

Token redemption and the resulting state change are written in the same
owner-serialized unit of work, so a token can only ever be spent once and a
booking is materialized at most once per request.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from scheduling.bus import EventBus, dispatch
from scheduling.clock import Clock, TokenGenerator
from scheduling.config import WorkflowSettings
from scheduling.db.base import Store, UnitOfWork
from scheduling.engine.availability import compute_slots, daily_limit_reached
from scheduling.engine.conflicts import ensure_no_conflict
from scheduling.engine.intervals import Interval
from scheduling.errors import ConflictError, ExpiredTokenError, InvalidTransitionError, NotFoundError, ValidationError
from scheduling.events import SchedulingEvent
from scheduling.models.booking import (
    Booking,
    BookingRequest,
    BookingStatus,
    Guest,
    RequestState,
    RequestStatus,
    RequestToken,
    SubmitResult,
    TokenPurpose,
)

logger = logging.getLogger(__name__)

DECLINE_CONFLICT = "conflict"
DECLINE_HOST = "host_declined"
DECLINE_EVENT_TYPE_GONE = "event_type_unavailable"
DECLINE_DAILY_LIMIT = "daily_limit_reached"


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: datetime) -> str:
    return value.isoformat()


def booking_confirmed_event(booking: Booking) -> SchedulingEvent:
    return {
        "type": "booking_confirmed",
        "booking_id": booking.id,
        "owner_id": booking.owner_id,
        "guest_name": booking.guest.name,
        "guest_email": booking.guest.email,
        "start": _iso(booking.start),
        "end": _iso(booking.end),
        "request_id": booking.request_id,
        "poll_id": booking.poll_id,
    }


def _status_event(request: BookingRequest) -> SchedulingEvent:
    event = {
        "type": "booking_request_status",
        "request_id": request.id,
        "owner_id": request.owner_id,
        "status": str(request.status),
        "decline_reason": request.decline_reason,
    }
    if request.status is RequestStatus.PENDING_HOST_APPROVAL and request.host_approval:
        event["host_approval_token"] = request.host_approval.value
        event["host_approval_expires_at"] = _iso(request.host_approval.expires_at)
    return event


@dataclass
class _Outcome:
    """What a redemption decided inside the unit of work, acted on after commit."""

    request: BookingRequest | None = None
    already_processed: bool = False
    expired: bool = False
    changed: bool = False
    limit_reached: bool = False
    booking: Booking | None = None
    conflicts: list[str] = field(default_factory=list)


class BookingRequestWorkflow:
    def __init__(
        self,
        store: Store,
        clock: Clock,
        tokens: TokenGenerator,
        *,
        settings: WorkflowSettings | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.tokens = tokens
        self.settings = settings or WorkflowSettings()
        self.bus = bus

    async def book_interval(
        self,
        uow: UnitOfWork,
        *,
        owner_id: str,
        interval: Interval,
        guest: Guest,
        now: datetime,
        buffer_before_minutes: int = 0,
        buffer_after_minutes: int = 0,
        event_type_id: str | None = None,
        request_id: str | None = None,
        poll_id: str | None = None,
    ) -> tuple[Booking | None, list[str]]:
        """Atomic check-and-insert of a confirmed booking.

        Must run inside ``store.unit_of_work(owner_id)``. Returns the new booking,
        or ``None`` and the conflicting ids.
        """
        booking = Booking(
            id=new_id(),
            owner_id=owner_id,
            guest=guest,
            start=interval.start,
            end=interval.end,
            status=BookingStatus.CONFIRMED,
            event_type_id=event_type_id,
            request_id=request_id,
            poll_id=poll_id,
            created_at=now,
        )
        conflicts = await uow.insert_booking_if_no_conflict(
            booking,
            buffer_before_minutes=buffer_before_minutes,
            buffer_after_minutes=buffer_after_minutes,
        )
        if conflicts:
            logger.info(
                "Booking rejected owner=%s start=%s conflicts=%s",
                owner_id, _iso(interval.start), conflicts,
            )
            return None, conflicts
        logger.info("Booking created id=%s owner=%s start=%s", booking.id, owner_id, _iso(interval.start))
        return booking, []

    async def submit(
        self,
        owner_id: str,
        event_type_id: str,
        guest: Guest,
        start: datetime,
        notes: str | None = None,
    ) -> SubmitResult:
        now = self.clock.now()
        if start.tzinfo is None or start.utcoffset() is None:
            raise ValidationError(detail="start must be timezone-aware", field="start")

        async with self.store.unit_of_work(owner_id) as uow:
            event_type = await uow.get_event_type(event_type_id)
            if event_type is None or event_type.owner_id != owner_id or not event_type.is_active:
                raise NotFoundError(detail="Event type not found", event_type_id=event_type_id)

            requested = Interval(start, start + timedelta(minutes=event_type.duration_minutes))
            around = Interval(requested.start - timedelta(days=1), requested.end + timedelta(days=1))
            bookings = await uow.list_confirmed_bookings(owner_id, around.start, around.end)
            busy = await uow.list_busy_blocks(owner_id, around.start, around.end)
            ensure_no_conflict(
                owner_id,
                requested,
                bookings,
                buffer_before_minutes=event_type.buffer_before_minutes,
                buffer_after_minutes=event_type.buffer_after_minutes,
                busy_blocks=busy,
            )

            offered = compute_slots(
                owner_id,
                event_type,
                await uow.list_rules(owner_id),
                bookings,
                now,
                requested.start,
                requested.end,
                timezone=await uow.get_owner_timezone(owner_id),
                busy_blocks=busy,
            )
            if requested not in offered:
                raise ValidationError(
                    detail="Requested time is not an available slot",
                    start=_iso(requested.start),
                )

            request = BookingRequest(
                id=new_id(),
                owner_id=owner_id,
                event_type_id=event_type.id,
                guest=guest,
                start=requested.start,
                end=requested.end,
                notes=notes,
                status=RequestStatus.PENDING_CONFIRMATION,
                confirmation=RequestToken(
                    value=self.tokens.new_token(),
                    purpose=TokenPurpose.CONFIRMATION,
                    expires_at=now + timedelta(minutes=self.settings.confirmation_ttl_minutes),
                ),
                created_at=now,
            )
            await uow.insert_request(request)

        logger.info("Booking request submitted id=%s owner=%s start=%s", request.id, owner_id, _iso(request.start))
        await dispatch(self.bus, {
            "type": "booking_request_submitted",
            "request_id": request.id,
            "owner_id": owner_id,
            "guest_name": guest.name,
            "guest_email": guest.email,
            "start": _iso(request.start),
            "end": _iso(request.end),
            "confirmation_token": request.confirmation.value,
            "expires_at": _iso(request.confirmation.expires_at),
        })
        return SubmitResult(
            request_id=request.id,
            status=request.status,
            confirmation_token=request.confirmation.value,
            expires_at=request.confirmation.expires_at,
        )

    async def confirm(self, token: str) -> RequestState:
        """Guest redeems the confirmation token."""
        return await self._redeem(token, TokenPurpose.CONFIRMATION, self._on_guest_confirmed)

    async def host_approve(self, token: str) -> RequestState:
        return await self._redeem(token, TokenPurpose.HOST_APPROVAL, self._on_host_approved)

    async def host_decline(self, token: str) -> RequestState:
        return await self._redeem(token, TokenPurpose.HOST_APPROVAL, self._on_host_declined)

    async def _redeem(self, token: str, purpose: TokenPurpose, action) -> RequestState:
        now = self.clock.now()
        async with self.store.unit_of_work() as uow:
            found = await uow.find_request_by_token(token)
        presented = found.token_for(purpose) if found else None
        if presented is None or presented.value != token:
            raise NotFoundError(detail="Unknown token", purpose=str(purpose))

        expected = (
            RequestStatus.PENDING_CONFIRMATION
            if purpose is TokenPurpose.CONFIRMATION
            else RequestStatus.PENDING_HOST_APPROVAL
        )
        outcome = _Outcome()
        async with self.store.unit_of_work(found.owner_id) as uow:
            request = await uow.get_request(found.id)
            presented = request.token_for(purpose)
            if presented.is_consumed:
                outcome.request = request
                outcome.already_processed = True
            elif request.status is RequestStatus.EXPIRED:
                outcome.request = request
                outcome.expired = True
            elif request.status is not expected:
                outcome.request = request
                outcome.already_processed = True
            elif presented.is_expired(now):
                outcome.request = request.transition(RequestStatus.EXPIRED, now)
                outcome.expired = True
                outcome.changed = True
                await uow.update_request(outcome.request)
            else:
                await action(uow, request.consume(purpose, now), now, outcome)
                await uow.update_request(outcome.request)

        request = outcome.request
        if outcome.already_processed:
            logger.info("Token already processed request=%s status=%s", request.id, request.status)
            return RequestState.of(request, already_processed=True)
        if outcome.expired:
            if outcome.changed:
                logger.info("Booking request expired id=%s", request.id)
                await dispatch(self.bus, _status_event(request))
            raise ExpiredTokenError(
                detail="Token has expired",
                request_id=request.id,
                status=str(request.status),
            )

        logger.info("Booking request %s -> %s", request.id, request.status)
        await dispatch(self.bus, _status_event(request))
        if outcome.booking is not None:
            await dispatch(self.bus, booking_confirmed_event(outcome.booking))
        if outcome.conflicts:
            raise ConflictError(
                detail="Requested time is no longer available",
                request_id=request.id,
                status=str(request.status),
                conflicting_booking_ids=outcome.conflicts,
            )
        if outcome.limit_reached:
            raise ConflictError(
                detail="Daily booking limit reached for this day",
                request_id=request.id,
                status=str(request.status),
                decline_reason=DECLINE_DAILY_LIMIT,
            )
        return RequestState.of(request)

    async def _on_guest_confirmed(
        self, uow: UnitOfWork, request: BookingRequest, now: datetime, outcome: _Outcome
    ) -> None:
        event_type = await uow.get_event_type(request.event_type_id)
        if event_type is None or not event_type.is_active:
            outcome.request = request.transition(
                RequestStatus.DECLINED, now, decline_reason=DECLINE_EVENT_TYPE_GONE
            )
            return
        if event_type.requires_confirmation:
            approval = RequestToken(
                value=self.tokens.new_token(),
                purpose=TokenPurpose.HOST_APPROVAL,
                expires_at=now + timedelta(minutes=self.settings.host_approval_ttl_minutes),
            )
            outcome.request = request.transition(
                RequestStatus.PENDING_HOST_APPROVAL, now, host_approval=approval
            )
            return
        await self._materialize(uow, request, now, outcome)

    async def _on_host_approved(
        self, uow: UnitOfWork, request: BookingRequest, now: datetime, outcome: _Outcome
    ) -> None:
        # Time has passed since the guest confirmed; check again.
        await self._materialize(uow, request, now, outcome)

    async def _on_host_declined(
        self, uow: UnitOfWork, request: BookingRequest, now: datetime, outcome: _Outcome
    ) -> None:
        outcome.request = request.transition(RequestStatus.DECLINED, now, decline_reason=DECLINE_HOST)

    async def _materialize(
        self, uow: UnitOfWork, request: BookingRequest, now: datetime, outcome: _Outcome
    ) -> None:
        event_type = await uow.get_event_type(request.event_type_id)
        if await self._day_is_full(uow, request):
            outcome.limit_reached = True
            outcome.request = request.transition(
                RequestStatus.DECLINED, now, decline_reason=DECLINE_DAILY_LIMIT
            )
            return
        booking, conflicts = await self.book_interval(
            uow,
            owner_id=request.owner_id,
            interval=request.interval,
            guest=request.guest,
            now=now,
            buffer_before_minutes=event_type.buffer_before_minutes if event_type else 0,
            buffer_after_minutes=event_type.buffer_after_minutes if event_type else 0,
            event_type_id=request.event_type_id,
            request_id=request.id,
        )
        if booking is None:
            outcome.conflicts = conflicts
            outcome.request = request.transition(
                RequestStatus.DECLINED,
                now,
                decline_reason=DECLINE_CONFLICT,
                conflicting_booking_ids=conflicts,
            )
            return
        outcome.booking = booking
        outcome.request = request.transition(RequestStatus.CONFIRMED, now, booking_id=booking.id)

    async def _day_is_full(self, uow: UnitOfWork, request: BookingRequest) -> bool:
        # Other requests for the same day may have been confirmed since this one was offered.
        around = Interval(request.start - timedelta(days=1), request.end + timedelta(days=1))
        return daily_limit_reached(
            request.owner_id,
            await uow.list_rules(request.owner_id),
            await uow.list_confirmed_bookings(request.owner_id, around.start, around.end),
            request.start,
            timezone=await uow.get_owner_timezone(request.owner_id),
        )

    async def cancel_request(self, request_id: str) -> RequestState:
        """Guest or host withdraws a pending request."""
        now = self.clock.now()
        async with self.store.unit_of_work() as uow:
            found = await uow.get_request(request_id)
        if found is None:
            raise NotFoundError(detail="Booking request not found", request_id=request_id)

        async with self.store.unit_of_work(found.owner_id) as uow:
            request = await uow.get_request(request_id)
            if request.status is RequestStatus.CANCELLED:
                return RequestState.of(request, already_processed=True)
            if request.status.is_terminal:
                raise InvalidTransitionError(
                    detail=f"Booking request is already {request.status}",
                    request_id=request.id,
                    status=str(request.status),
                )
            request = request.transition(RequestStatus.CANCELLED, now)
            await uow.update_request(request)

        logger.info("Booking request cancelled id=%s", request.id)
        await dispatch(self.bus, _status_event(request))
        return RequestState.of(request)

    async def cancel_booking(self, booking_id: str) -> Booking:
        now = self.clock.now()
        async with self.store.unit_of_work() as uow:
            found = await uow.get_booking(booking_id)
        if found is None:
            raise NotFoundError(detail="Booking not found", booking_id=booking_id)

        async with self.store.unit_of_work(found.owner_id) as uow:
            booking = await uow.get_booking(booking_id)
            if booking.status is BookingStatus.CANCELLED:
                return booking
            booking = booking.transition(BookingStatus.CANCELLED, now)
            await uow.update_booking(booking)

        logger.info("Booking cancelled id=%s owner=%s", booking.id, booking.owner_id)
        await dispatch(self.bus, {
            "type": "booking_cancelled",
            "booking_id": booking.id,
            "owner_id": booking.owner_id,
            "start": _iso(booking.start),
            "end": _iso(booking.end),
        })
        return booking

    async def expire_stale_requests(self) -> int:
        """Move pending requests whose token lapsed to ``expired``."""
        now = self.clock.now()
        async with self.store.unit_of_work() as uow:
            stale = await uow.list_expired_pending_requests(now)

        expired = []
        for candidate in stale:
            async with self.store.unit_of_work(candidate.owner_id) as uow:
                request = await uow.get_request(candidate.id)
                token = request.active_token
                if token is None or token.is_consumed or not token.is_expired(now):
                    continue
                request = request.transition(RequestStatus.EXPIRED, now)
                await uow.update_request(request)
            expired.append(request)

        for request in expired:
            await dispatch(self.bus, _status_event(request))
        if expired:
            logger.info("expire_stale_requests: %d booking requests expired", len(expired))
        return len(expired)
