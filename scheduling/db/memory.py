"""In-process store.

Writes made through a unit of work are staged and applied in one synchronous
step when the unit exits cleanly, so other coroutines never observe a
half-applied unit; an exception discards the staged writes. Per-owner
``asyncio.Lock``s provide the serialization point.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

from scheduling.db.base import Store, UnitOfWork
from scheduling.models.availability import AvailabilityRule, BusyBlock, EventType
from scheduling.models.booking import Booking, BookingRequest, BookingStatus
from scheduling.models.poll import Poll, PollTimeSlot, PollVote

logger = logging.getLogger(__name__)

_TABLES = ("bookings", "requests", "polls", "poll_slots", "votes")


class MemoryStore(Store):
    def __init__(self) -> None:
        self.event_types: dict[str, EventType] = {}
        self.rules: dict[str, list[AvailabilityRule]] = defaultdict(list)
        self.timezones: dict[str, str] = {}
        self.busy_blocks: dict[str, list[BusyBlock]] = defaultdict(list)
        self.tables: dict[str, dict[str, Any]] = {name: {} for name in _TABLES}
        self._owner_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # Host configuration is managed outside the engine; these seed it.

    def add_event_type(self, event_type: EventType) -> None:
        self.event_types[event_type.id] = event_type

    def add_rule(self, rule: AvailabilityRule) -> None:
        self.rules[rule.owner_id].append(rule)

    def set_owner_timezone(self, owner_id: str, tz_name: str) -> None:
        self.timezones[owner_id] = tz_name

    def add_busy_block(self, block: BusyBlock) -> None:
        self.busy_blocks[block.owner_id].append(block)

    @property
    def bookings(self) -> dict[str, Booking]:
        return self.tables["bookings"]

    @property
    def requests(self) -> dict[str, BookingRequest]:
        return self.tables["requests"]

    @asynccontextmanager
    async def unit_of_work(self, owner_id: str | None = None) -> AsyncIterator[UnitOfWork]:
        lock = self._owner_locks[owner_id] if owner_id else None
        if lock is not None:
            await lock.acquire()
        try:
            uow = MemoryUnitOfWork(self)
            yield uow
            uow.commit()
        finally:
            if lock is not None:
                lock.release()


class MemoryUnitOfWork(UnitOfWork):
    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        self._staged: dict[str, dict[str, Any]] = {name: {} for name in _TABLES}
        self._deleted: dict[str, set[str]] = {name: set() for name in _TABLES}

    def commit(self) -> None:
        for name in _TABLES:
            table = self._store.tables[name]
            for key in self._deleted[name]:
                table.pop(key, None)
            table.update(self._staged[name])

    def _rows(self, name: str) -> dict[str, Any]:
        rows = {k: v for k, v in self._store.tables[name].items() if k not in self._deleted[name]}
        rows.update(self._staged[name])
        return rows

    def _put(self, name: str, key: str, value: Any) -> None:
        self._deleted[name].discard(key)
        self._staged[name][key] = value

    def _delete(self, name: str, key: str) -> None:
        self._staged[name].pop(key, None)
        self._deleted[name].add(key)

    async def get_event_type(self, event_type_id: str) -> EventType | None:
        return self._store.event_types.get(event_type_id)

    async def list_rules(self, owner_id: str) -> list[AvailabilityRule]:
        return list(self._store.rules.get(owner_id, []))

    async def get_owner_timezone(self, owner_id: str) -> str:
        return self._store.timezones.get(owner_id, "UTC")

    async def list_busy_blocks(self, owner_id: str, start: datetime, end: datetime) -> list[BusyBlock]:
        return [
            b for b in self._store.busy_blocks.get(owner_id, [])
            if b.start < end and start < b.end
        ]

    async def list_confirmed_bookings(self, owner_id: str, start: datetime, end: datetime) -> list[Booking]:
        bookings = [
            b for b in self._rows("bookings").values()
            if b.owner_id == owner_id
            and b.status is BookingStatus.CONFIRMED
            and b.start < end and start < b.end
        ]
        return sorted(bookings, key=lambda b: b.start)

    async def get_booking(self, booking_id: str) -> Booking | None:
        return self._rows("bookings").get(booking_id)

    async def insert_booking(self, booking: Booking) -> None:
        self._put("bookings", booking.id, booking)

    async def update_booking(self, booking: Booking) -> None:
        self._put("bookings", booking.id, booking)

    async def get_request(self, request_id: str) -> BookingRequest | None:
        return self._rows("requests").get(request_id)

    async def find_request_by_token(self, token: str) -> BookingRequest | None:
        for request in self._rows("requests").values():
            if request.confirmation.value == token:
                return request
            if request.host_approval is not None and request.host_approval.value == token:
                return request
        return None

    async def insert_request(self, request: BookingRequest) -> None:
        self._put("requests", request.id, request)

    async def update_request(self, request: BookingRequest) -> None:
        self._put("requests", request.id, request)

    async def list_expired_pending_requests(self, now: datetime) -> list[BookingRequest]:
        return [
            r for r in self._rows("requests").values()
            if r.status.is_pending and r.active_token is not None and r.active_token.is_expired(now)
        ]

    async def insert_poll(self, poll: Poll, time_slots: list[PollTimeSlot]) -> None:
        self._put("polls", poll.id, poll)
        for slot in time_slots:
            self._put("poll_slots", slot.id, slot)

    async def get_poll(self, poll_id: str) -> Poll | None:
        return self._rows("polls").get(poll_id)

    async def update_poll(self, poll: Poll) -> None:
        self._put("polls", poll.id, poll)

    async def list_poll_slots(self, poll_id: str) -> list[PollTimeSlot]:
        slots = [s for s in self._rows("poll_slots").values() if s.poll_id == poll_id]
        return sorted(slots, key=lambda s: (s.start, s.id))

    async def list_votes(self, poll_id: str) -> list[PollVote]:
        return [v for v in self._rows("votes").values() if v.poll_id == poll_id]

    async def replace_votes(
        self, poll_id: str, participant_identifier: str, votes: list[PollVote]
    ) -> list[PollTimeSlot]:
        touched = set()
        for vote in await self.list_votes(poll_id):
            if vote.participant_identifier == participant_identifier:
                touched.add(vote.time_slot_id)
                self._delete("votes", vote.id)
        for vote in votes:
            touched.add(vote.time_slot_id)
            self._put("votes", vote.id, vote)

        live = await self.list_votes(poll_id)
        recounted = []
        slots = self._rows("poll_slots")
        for slot_id in sorted(touched):
            count = sum(1 for v in live if v.time_slot_id == slot_id)
            slot = slots[slot_id].model_copy(update={"vote_count": count})
            self._put("poll_slots", slot_id, slot)
            recounted.append(slot)
        return recounted
