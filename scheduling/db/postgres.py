"""PostgreSQL store.

Each unit of work is one transaction. Units opened for an owner take
``pg_advisory_xact_lock`` on that owner first, and re-read booking requests
``FOR UPDATE``, so concurrent token redemptions and booking inserts for the
same owner run one after another.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

import psycopg
from psycopg.types.json import Jsonb

from scheduling.db.base import Store, UnitOfWork
from scheduling.db.core import _get_connection
from scheduling.errors import DatabaseError
from scheduling.models.availability import AvailabilityRule, BusyBlock, EventQuestion, EventType
from scheduling.models.booking import Booking, BookingRequest, Guest, RequestToken, TokenPurpose
from scheduling.models.poll import NotificationSettings, Poll, PollTimeSlot, PollVote

logger = logging.getLogger(__name__)

_EVENT_TYPE_COLUMNS = (
    "id, owner_id, name, duration_minutes, buffer_before_minutes, buffer_after_minutes, "
    "minimum_notice_minutes, maximum_advance_minutes, booking_horizon_days, "
    "requires_confirmation, is_active, questions"
)
_BOOKING_COLUMNS = (
    "id, owner_id, guest_name, guest_email, guest_phone, start_at, end_at, status, "
    "event_type_id, request_id, poll_id, created_at, cancelled_at"
)
_REQUEST_COLUMNS = (
    "id, owner_id, event_type_id, guest_name, guest_email, guest_phone, start_at, end_at, notes, status, "
    "confirmation_token, confirmation_expires_at, confirmation_consumed_at, "
    "host_approval_token, host_approval_expires_at, host_approval_consumed_at, "
    "created_at, decided_at, decline_reason, booking_id, conflicting_booking_ids"
)
_POLL_COLUMNS = (
    "id, owner_id, title, description, duration_minutes, timezone, deadline, max_votes_per_participant, "
    "allow_anonymous_votes, status, selected_time_slot_id, booking_id, notification_settings, created_at"
)
_SLOT_COLUMNS = "id, poll_id, start_at, end_at, vote_count, is_available"
_VOTE_COLUMNS = (
    "id, poll_id, time_slot_id, participant_identifier, participant_name, participant_email, created_at"
)


def _event_type(row) -> EventType:
    return EventType(
        id=row[0],
        owner_id=row[1],
        name=row[2],
        duration_minutes=row[3],
        buffer_before_minutes=row[4],
        buffer_after_minutes=row[5],
        minimum_notice_minutes=row[6],
        maximum_advance_minutes=row[7],
        booking_horizon_days=row[8],
        requires_confirmation=row[9],
        is_active=row[10],
        questions=[EventQuestion(**q) for q in row[11] or []],
    )


def _booking(row) -> Booking:
    return Booking(
        id=row[0],
        owner_id=row[1],
        guest=Guest(name=row[2], email=row[3], phone=row[4]),
        start=row[5],
        end=row[6],
        status=row[7],
        event_type_id=row[8],
        request_id=row[9],
        poll_id=row[10],
        created_at=row[11],
        cancelled_at=row[12],
    )


def _booking_params(b: Booking) -> tuple:
    return (
        b.id, b.owner_id, b.guest.name, b.guest.email, b.guest.phone, b.start, b.end, str(b.status),
        b.event_type_id, b.request_id, b.poll_id, b.created_at, b.cancelled_at,
    )


def _request(row) -> BookingRequest:
    host_approval = None
    if row[13] is not None:
        host_approval = RequestToken(
            value=row[13], purpose=TokenPurpose.HOST_APPROVAL, expires_at=row[14], consumed_at=row[15]
        )
    return BookingRequest(
        id=row[0],
        owner_id=row[1],
        event_type_id=row[2],
        guest=Guest(name=row[3], email=row[4], phone=row[5]),
        start=row[6],
        end=row[7],
        notes=row[8],
        status=row[9],
        confirmation=RequestToken(
            value=row[10], purpose=TokenPurpose.CONFIRMATION, expires_at=row[11], consumed_at=row[12]
        ),
        host_approval=host_approval,
        created_at=row[16],
        decided_at=row[17],
        decline_reason=row[18],
        booking_id=row[19],
        conflicting_booking_ids=list(row[20] or []),
    )


def _request_params(r: BookingRequest) -> tuple:
    approval = r.host_approval
    return (
        r.id, r.owner_id, r.event_type_id, r.guest.name, r.guest.email, r.guest.phone, r.start, r.end,
        r.notes, str(r.status),
        r.confirmation.value, r.confirmation.expires_at, r.confirmation.consumed_at,
        approval.value if approval else None,
        approval.expires_at if approval else None,
        approval.consumed_at if approval else None,
        r.created_at, r.decided_at, r.decline_reason, r.booking_id, list(r.conflicting_booking_ids),
    )


def _poll(row) -> Poll:
    return Poll(
        id=row[0],
        owner_id=row[1],
        title=row[2],
        description=row[3],
        duration_minutes=row[4],
        timezone=row[5],
        deadline=row[6],
        max_votes_per_participant=row[7],
        allow_anonymous_votes=row[8],
        status=row[9],
        selected_time_slot_id=row[10],
        booking_id=row[11],
        notification_settings=NotificationSettings(**(row[12] or {})),
        created_at=row[13],
    )


def _poll_params(p: Poll) -> tuple:
    return (
        p.id, p.owner_id, p.title, p.description, p.duration_minutes, p.timezone, p.deadline,
        p.max_votes_per_participant, p.allow_anonymous_votes, str(p.status), p.selected_time_slot_id,
        p.booking_id, Jsonb(p.notification_settings.model_dump()), p.created_at,
    )


def _slot(row) -> PollTimeSlot:
    return PollTimeSlot(
        id=row[0], poll_id=row[1], start=row[2], end=row[3], vote_count=row[4], is_available=row[5]
    )


def _vote(row) -> PollVote:
    return PollVote(
        id=row[0],
        poll_id=row[1],
        time_slot_id=row[2],
        participant_identifier=row[3],
        participant_name=row[4],
        participant_email=row[5],
        created_at=row[6],
    )


def _placeholders(columns: str) -> str:
    return ", ".join(["%s"] * len(columns.split(",")))


def _assignments(columns: str) -> str:
    return ", ".join(f"{c.strip()} = %s" for c in columns.split(",")[1:])


class PostgresStore(Store):
    @asynccontextmanager
    async def unit_of_work(self, owner_id: str | None = None) -> AsyncIterator[UnitOfWork]:
        try:
            async with _get_connection(autocommit=False) as conn:
                async with conn.transaction():
                    if owner_id:
                        await conn.execute(
                            "SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))", (owner_id,)
                        )
                    yield PostgresUnitOfWork(conn, locking=owner_id is not None)
        except psycopg.OperationalError as e:
            logger.exception("Database unavailable")
            raise DatabaseError(detail="Database unavailable") from e

    async def close(self) -> None:
        from scheduling.db.core import close_pool

        await close_pool()


class PostgresUnitOfWork(UnitOfWork):
    def __init__(self, conn: psycopg.AsyncConnection, locking: bool = False) -> None:
        self.conn = conn
        self.locking = locking

    async def _one(self, sql: str, params: tuple):
        cur = await self.conn.execute(sql, params)
        return await cur.fetchone()

    async def _all(self, sql: str, params: tuple) -> list:
        cur = await self.conn.execute(sql, params)
        return await cur.fetchall()

    async def get_event_type(self, event_type_id: str) -> EventType | None:
        row = await self._one(f"SELECT {_EVENT_TYPE_COLUMNS} FROM event_types WHERE id = %s", (event_type_id,))
        return _event_type(row) if row else None

    async def list_rules(self, owner_id: str) -> list[AvailabilityRule]:
        rows = await self._all(
            """SELECT id, owner_id, day_of_week, start_time, end_time, buffer_minutes, max_bookings_per_day
               FROM availability_rules WHERE owner_id = %s ORDER BY day_of_week, start_time""",
            (owner_id,),
        )
        return [
            AvailabilityRule(
                id=r[0], owner_id=r[1], day_of_week=r[2], start_time=r[3], end_time=r[4],
                buffer_minutes=r[5], max_bookings_per_day=r[6],
            )
            for r in rows
        ]

    async def get_owner_timezone(self, owner_id: str) -> str:
        row = await self._one("SELECT timezone FROM owners WHERE id = %s", (owner_id,))
        return row[0] if row and row[0] else "UTC"

    async def list_busy_blocks(self, owner_id: str, start: datetime, end: datetime) -> list[BusyBlock]:
        rows = await self._all(
            """SELECT id, owner_id, start_at, end_at, source FROM busy_blocks
               WHERE owner_id = %s AND start_at < %s AND end_at > %s ORDER BY start_at""",
            (owner_id, end, start),
        )
        return [BusyBlock(id=r[0], owner_id=r[1], start=r[2], end=r[3], source=r[4]) for r in rows]

    async def list_confirmed_bookings(self, owner_id: str, start: datetime, end: datetime) -> list[Booking]:
        rows = await self._all(
            f"""SELECT {_BOOKING_COLUMNS} FROM bookings
                WHERE owner_id = %s AND status = 'confirmed' AND start_at < %s AND end_at > %s
                ORDER BY start_at""",
            (owner_id, end, start),
        )
        return [_booking(r) for r in rows]

    async def get_booking(self, booking_id: str) -> Booking | None:
        lock = " FOR UPDATE" if self.locking else ""
        row = await self._one(f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE id = %s{lock}", (booking_id,))
        return _booking(row) if row else None

    async def insert_booking(self, booking: Booking) -> None:
        await self.conn.execute(
            f"INSERT INTO bookings ({_BOOKING_COLUMNS}) VALUES ({_placeholders(_BOOKING_COLUMNS)})",
            _booking_params(booking),
        )

    async def update_booking(self, booking: Booking) -> None:
        params = _booking_params(booking)
        await self.conn.execute(
            f"UPDATE bookings SET {_assignments(_BOOKING_COLUMNS)} WHERE id = %s",
            params[1:] + (booking.id,),
        )

    async def get_request(self, request_id: str) -> BookingRequest | None:
        lock = " FOR UPDATE" if self.locking else ""
        row = await self._one(
            f"SELECT {_REQUEST_COLUMNS} FROM booking_requests WHERE id = %s{lock}", (request_id,)
        )
        return _request(row) if row else None

    async def find_request_by_token(self, token: str) -> BookingRequest | None:
        row = await self._one(
            f"""SELECT {_REQUEST_COLUMNS} FROM booking_requests
                WHERE confirmation_token = %s OR host_approval_token = %s""",
            (token, token),
        )
        return _request(row) if row else None

    async def insert_request(self, request: BookingRequest) -> None:
        await self.conn.execute(
            f"INSERT INTO booking_requests ({_REQUEST_COLUMNS}) VALUES ({_placeholders(_REQUEST_COLUMNS)})",
            _request_params(request),
        )

    async def update_request(self, request: BookingRequest) -> None:
        params = _request_params(request)
        await self.conn.execute(
            f"UPDATE booking_requests SET {_assignments(_REQUEST_COLUMNS)} WHERE id = %s",
            params[1:] + (request.id,),
        )

    async def list_expired_pending_requests(self, now: datetime) -> list[BookingRequest]:
        rows = await self._all(
            f"""SELECT {_REQUEST_COLUMNS} FROM booking_requests
                WHERE (status = 'pending_confirmation' AND confirmation_expires_at <= %s)
                   OR (status = 'pending_host_approval' AND host_approval_expires_at <= %s)""",
            (now, now),
        )
        return [_request(r) for r in rows]

    async def insert_poll(self, poll: Poll, time_slots: list[PollTimeSlot]) -> None:
        await self.conn.execute(
            f"INSERT INTO polls ({_POLL_COLUMNS}) VALUES ({_placeholders(_POLL_COLUMNS)})",
            _poll_params(poll),
        )
        for slot in time_slots:
            await self.conn.execute(
                f"INSERT INTO poll_time_slots ({_SLOT_COLUMNS}) VALUES (%s, %s, %s, %s, %s, %s)",
                (slot.id, slot.poll_id, slot.start, slot.end, slot.vote_count, slot.is_available),
            )

    async def get_poll(self, poll_id: str) -> Poll | None:
        lock = " FOR UPDATE" if self.locking else ""
        row = await self._one(f"SELECT {_POLL_COLUMNS} FROM polls WHERE id = %s{lock}", (poll_id,))
        return _poll(row) if row else None

    async def update_poll(self, poll: Poll) -> None:
        params = _poll_params(poll)
        await self.conn.execute(
            f"UPDATE polls SET {_assignments(_POLL_COLUMNS)} WHERE id = %s",
            params[1:] + (poll.id,),
        )

    async def list_poll_slots(self, poll_id: str) -> list[PollTimeSlot]:
        rows = await self._all(
            f"SELECT {_SLOT_COLUMNS} FROM poll_time_slots WHERE poll_id = %s ORDER BY start_at, id",
            (poll_id,),
        )
        return [_slot(r) for r in rows]

    async def list_votes(self, poll_id: str) -> list[PollVote]:
        rows = await self._all(
            f"SELECT {_VOTE_COLUMNS} FROM poll_votes WHERE poll_id = %s ORDER BY created_at, id",
            (poll_id,),
        )
        return [_vote(r) for r in rows]

    async def replace_votes(
        self, poll_id: str, participant_identifier: str, votes: list[PollVote]
    ) -> list[PollTimeSlot]:
        rows = await self._all(
            """DELETE FROM poll_votes WHERE poll_id = %s AND participant_identifier = %s
               RETURNING time_slot_id""",
            (poll_id, participant_identifier),
        )
        touched = {r[0] for r in rows}
        for vote in votes:
            touched.add(vote.time_slot_id)
            await self.conn.execute(
                f"INSERT INTO poll_votes ({_VOTE_COLUMNS}) VALUES (%s, %s, %s, %s, %s, %s, %s)",
                (
                    vote.id, vote.poll_id, vote.time_slot_id, vote.participant_identifier,
                    vote.participant_name, vote.participant_email, vote.created_at,
                ),
            )
        # Counts are recomputed from the vote rows, never incremented.
        rows = await self._all(
            f"""UPDATE poll_time_slots s
                SET vote_count = (SELECT COUNT(*) FROM poll_votes v WHERE v.time_slot_id = s.id)
                WHERE s.poll_id = %s AND s.id = ANY(%s)
                RETURNING {", ".join("s." + c.strip() for c in _SLOT_COLUMNS.split(","))}""",
            (poll_id, sorted(touched)),
        )
        return sorted((_slot(r) for r in rows), key=lambda s: s.id)
