"""Persistence boundary used by the scheduling engine.

A ``Store`` hands out units of work. Everything done through one
``UnitOfWork`` commits together or not at all, and a unit opened with an
``owner_id`` is serialized against every other unit for the same owner.
That per-owner serialization is what makes check-then-insert of bookings and
token redemption race-free.
"""

import abc
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from scheduling.engine.conflicts import find_conflicts
from scheduling.models.availability import AvailabilityRule, BusyBlock, EventType
from scheduling.models.booking import Booking, BookingRequest
from scheduling.models.poll import Poll, PollTimeSlot, PollVote


class UnitOfWork(abc.ABC):
    # Host configuration (read-only here)

    @abc.abstractmethod
    async def get_event_type(self, event_type_id: str) -> EventType | None: ...

    @abc.abstractmethod
    async def list_rules(self, owner_id: str) -> list[AvailabilityRule]: ...

    @abc.abstractmethod
    async def get_owner_timezone(self, owner_id: str) -> str: ...

    @abc.abstractmethod
    async def list_busy_blocks(self, owner_id: str, start: datetime, end: datetime) -> list[BusyBlock]: ...

    # Bookings

    @abc.abstractmethod
    async def list_confirmed_bookings(self, owner_id: str, start: datetime, end: datetime) -> list[Booking]:
        """Confirmed bookings of ``owner_id`` overlapping ``[start, end)``."""

    @abc.abstractmethod
    async def get_booking(self, booking_id: str) -> Booking | None: ...

    @abc.abstractmethod
    async def insert_booking(self, booking: Booking) -> None: ...

    @abc.abstractmethod
    async def update_booking(self, booking: Booking) -> None: ...

    # Booking requests

    @abc.abstractmethod
    async def get_request(self, request_id: str) -> BookingRequest | None: ...

    @abc.abstractmethod
    async def find_request_by_token(self, token: str) -> BookingRequest | None: ...

    @abc.abstractmethod
    async def insert_request(self, request: BookingRequest) -> None: ...

    @abc.abstractmethod
    async def update_request(self, request: BookingRequest) -> None: ...

    @abc.abstractmethod
    async def list_expired_pending_requests(self, now: datetime) -> list[BookingRequest]:
        """Pending requests whose governing token expired at or before ``now``."""

    # Polls

    @abc.abstractmethod
    async def insert_poll(self, poll: Poll, time_slots: list[PollTimeSlot]) -> None: ...

    @abc.abstractmethod
    async def get_poll(self, poll_id: str) -> Poll | None: ...

    @abc.abstractmethod
    async def update_poll(self, poll: Poll) -> None: ...

    @abc.abstractmethod
    async def list_poll_slots(self, poll_id: str) -> list[PollTimeSlot]: ...

    @abc.abstractmethod
    async def list_votes(self, poll_id: str) -> list[PollVote]: ...

    @abc.abstractmethod
    async def replace_votes(
        self, poll_id: str, participant_identifier: str, votes: list[PollVote]
    ) -> list[PollTimeSlot]:
        """Swap a participant's votes and recount every touched slot.

        Returns the slots whose ``vote_count`` was recomputed.
        """

    async def insert_booking_if_no_conflict(
        self,
        booking: Booking,
        *,
        buffer_before_minutes: int = 0,
        buffer_after_minutes: int = 0,
    ) -> list[str]:
        """Re-validate against current bookings and insert when clear.

        Returns the conflicting ids; an empty list means the booking was inserted.
        Only safe inside a unit of work opened for ``booking.owner_id``.
        """
        window = booking.interval.padded(buffer_before_minutes, buffer_after_minutes)
        existing = await self.list_confirmed_bookings(booking.owner_id, window.start, window.end)
        busy = await self.list_busy_blocks(booking.owner_id, window.start, window.end)
        conflicts = find_conflicts(
            booking.owner_id,
            booking.interval,
            existing,
            buffer_before_minutes=buffer_before_minutes,
            buffer_after_minutes=buffer_after_minutes,
            busy_blocks=busy,
        )
        if not conflicts:
            await self.insert_booking(booking)
        return conflicts


class Store(abc.ABC):
    @abc.abstractmethod
    def unit_of_work(self, owner_id: str | None = None) -> AbstractAsyncContextManager[UnitOfWork]:
        """Open an atomic unit; serialized per owner when ``owner_id`` is given."""

    async def close(self) -> None:
        return
