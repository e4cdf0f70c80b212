"""Overlap detection against an owner's confirmed bookings.

Pure functions: results are reported as booleans or id lists so the same checks
can filter silently during slot generation and validate loudly at commit time.
Only the new interval is padded by its buffers; the comparison itself is always
the half-open overlap test.
"""

from typing import Iterable

from scheduling.engine.intervals import Interval
from scheduling.errors import ConflictError
from scheduling.models.availability import BusyBlock
from scheduling.models.booking import Booking, BookingStatus


def find_conflicts(
    owner_id: str,
    candidate: Interval,
    existing_bookings: Iterable[Booking],
    *,
    buffer_before_minutes: int = 0,
    buffer_after_minutes: int = 0,
    busy_blocks: Iterable[BusyBlock] = (),
) -> list[str]:
    """Return ids of confirmed bookings (and busy blocks) the candidate collides with."""
    padded = candidate.padded(buffer_before_minutes, buffer_after_minutes)
    conflicts = [
        booking.id
        for booking in existing_bookings
        if booking.owner_id == owner_id
        and booking.status is BookingStatus.CONFIRMED
        and padded.overlaps(booking.interval)
    ]
    conflicts.extend(
        block.id
        for block in busy_blocks
        if block.owner_id == owner_id and padded.overlaps(block.interval)
    )
    return conflicts


def has_conflict(
    owner_id: str,
    candidate: Interval,
    existing_bookings: Iterable[Booking],
    *,
    buffer_before_minutes: int = 0,
    buffer_after_minutes: int = 0,
    busy_blocks: Iterable[BusyBlock] = (),
) -> bool:
    return bool(
        find_conflicts(
            owner_id,
            candidate,
            existing_bookings,
            buffer_before_minutes=buffer_before_minutes,
            buffer_after_minutes=buffer_after_minutes,
            busy_blocks=busy_blocks,
        )
    )


def ensure_no_conflict(
    owner_id: str,
    candidate: Interval,
    existing_bookings: Iterable[Booking],
    **kwargs,
) -> None:
    """Raise ``ConflictError`` listing the offending bookings, if any."""
    conflicts = find_conflicts(owner_id, candidate, existing_bookings, **kwargs)
    if conflicts:
        raise ConflictError(
            detail="Requested time conflicts with an existing booking",
            conflicting_booking_ids=conflicts,
        )
