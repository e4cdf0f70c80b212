"""
Availability Calculator

Turns weekly recurring rules plus per-event-type constraints into a bounded,
ordered list of candidate slots, considering:
- Minimum notice, maximum advance and the booking horizon
- Existing confirmed bookings and external busy blocks (padded by buffers)
- The owner's timezone (rules are wall-clock, slots are UTC)
- Per-day booking caps

Nothing here mutates state.
"""

import logging
from collections import defaultdict
from datetime import UTC, date, datetime, timedelta
from typing import Iterable

import pytz

from scheduling.engine.intervals import Interval, merge, subtract_all
from scheduling.errors import ValidationError
from scheduling.models.availability import AvailabilityRule, BusyBlock, EventType
from scheduling.models.booking import Booking, BookingStatus

logger = logging.getLogger(__name__)


def day_of_week(day: date) -> int:
    """Rule numbering for a calendar date (0 = Sunday)."""
    return (day.weekday() + 1) % 7


def _zone(tz_name: str) -> pytz.BaseTzInfo:
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(detail=f"Unknown timezone: {tz_name}", timezone=tz_name) from None


def _require_aware(**values: datetime) -> None:
    for name, value in values.items():
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValidationError(detail=f"{name} must be timezone-aware", field=name)


def _check_event_type(event_type: EventType) -> None:
    # Records built with model_construct() skip pydantic validation.
    if event_type.duration_minutes <= 0:
        raise ValidationError(detail="Event duration must be positive", event_type_id=event_type.id)
    if min(
        event_type.buffer_before_minutes,
        event_type.buffer_after_minutes,
        event_type.minimum_notice_minutes,
    ) < 0:
        raise ValidationError(detail="Buffers and notice must not be negative", event_type_id=event_type.id)
    if event_type.maximum_advance_minutes <= 0 or event_type.booking_horizon_days <= 0:
        raise ValidationError(detail="Booking window must be positive", event_type_id=event_type.id)


def _check_rule(rule: AvailabilityRule) -> None:
    if not 0 <= rule.day_of_week <= 6:
        raise ValidationError(detail="day_of_week must be between 0 and 6", rule_id=rule.id)
    if rule.start_time >= rule.end_time:
        raise ValidationError(detail="Rule start must be before its end", rule_id=rule.id)
    if rule.buffer_minutes < 0:
        raise ValidationError(detail="Rule buffer must not be negative", rule_id=rule.id)
    if rule.max_bookings_per_day is not None and rule.max_bookings_per_day < 1:
        raise ValidationError(detail="max_bookings_per_day must be at least 1", rule_id=rule.id)


def _wall_clock(tz: pytz.BaseTzInfo, day: date, moment) -> datetime:
    return tz.normalize(tz.localize(datetime.combine(day, moment))).astimezone(UTC)


def daily_cap(rules: Iterable[AvailabilityRule], owner_id: str, day: date) -> int | None:
    """Tightest max-bookings-per-day among the owner's rules for ``day``, if any."""
    weekday = day_of_week(day)
    caps = [
        r.max_bookings_per_day
        for r in rules
        if r.owner_id == owner_id and r.day_of_week == weekday and r.max_bookings_per_day is not None
    ]
    return min(caps) if caps else None


def daily_limit_reached(
    owner_id: str,
    rules: Iterable[AvailabilityRule],
    existing_bookings: Iterable[Booking],
    moment: datetime,
    *,
    timezone: str = "UTC",
) -> bool:
    """Whether the owner's local day containing ``moment`` already holds its cap of confirmed bookings."""
    tz = _zone(timezone)
    day = moment.astimezone(tz).date()
    cap = daily_cap(rules, owner_id, day)
    if cap is None:
        return False
    booked = sum(
        1 for b in existing_bookings
        if b.owner_id == owner_id
        and b.status is BookingStatus.CONFIRMED
        and b.start.astimezone(tz).date() == day
    )
    return booked >= cap


def compute_slots(
    owner_id: str,
    event_type: EventType,
    rules: Iterable[AvailabilityRule],
    existing_bookings: Iterable[Booking],
    now: datetime,
    range_start: datetime,
    range_end: datetime,
    *,
    timezone: str = "UTC",
    busy_blocks: Iterable[BusyBlock] = (),
) -> list[Interval]:
    """
    Candidate slots for ``event_type`` inside ``[range_start, range_end]``.

    Algorithm:
        1. Clip the range to [now + minimum notice, now + booking horizon]
        2. For each local calendar day, collect the rules for its weekday
        3. Build each rule's window in the owner's timezone, as UTC
        4. Subtract bookings/busy blocks padded by the event and rule buffers
        5. Step through the remaining windows by the event duration
        6. Apply the tightest max-bookings-per-day cap of that day's rules

    Returns:
        list[Interval]: ordered, non-overlapping slots
    """
    _check_event_type(event_type)
    rules = list(rules)
    for rule in rules:
        _check_rule(rule)
    _require_aware(now=now, range_start=range_start, range_end=range_end)
    if range_end <= range_start:
        raise ValidationError(detail="range_end must be after range_start")
    tz = _zone(timezone)

    lower = max(range_start, now + timedelta(minutes=event_type.minimum_notice_minutes))
    upper = min(range_end, now + timedelta(days=event_type.booking_horizon_days))
    latest_end = now + timedelta(minutes=event_type.maximum_advance_minutes)
    if lower >= upper:
        return []

    rules_by_day: dict[int, list[AvailabilityRule]] = defaultdict(list)
    for rule in rules:
        if rule.owner_id == owner_id:
            rules_by_day[rule.day_of_week].append(rule)
    if not rules_by_day:
        return []

    confirmed = [
        b for b in existing_bookings
        if b.owner_id == owner_id and b.status is BookingStatus.CONFIRMED
    ]
    busy = [b.interval for b in confirmed]
    busy.extend(block.interval for block in busy_blocks if block.owner_id == owner_id)

    bookings_per_day: dict[date, int] = defaultdict(int)
    for booking in confirmed:
        bookings_per_day[booking.start.astimezone(tz).date()] += 1

    step = timedelta(minutes=event_type.duration_minutes)
    slots: list[Interval] = []
    day = lower.astimezone(tz).date()
    last_day = upper.astimezone(tz).date()
    while day <= last_day:
        day_rules = rules_by_day.get(day_of_week(day), [])
        if day_rules:
            free = []
            for rule in day_rules:
                window = Interval(
                    _wall_clock(tz, day, rule.start_time),
                    _wall_clock(tz, day, rule.end_time),
                )
                # A slot [s, s+d) padded by its own buffers must clear each busy
                # interval, which is the same as widening the busy interval.
                exclusions = [
                    Interval(
                        b.start - timedelta(minutes=event_type.buffer_after_minutes + rule.buffer_minutes),
                        b.end + timedelta(minutes=event_type.buffer_before_minutes + rule.buffer_minutes),
                    )
                    for b in busy
                ]
                free.extend(subtract_all([window], exclusions))

            day_slots = []
            for window in merge(free):
                start = window.start
                while start + step <= window.end:
                    end = start + step
                    if start >= lower and end <= upper and end <= latest_end:
                        day_slots.append(Interval(start, end))
                    start = end

            cap = daily_cap(day_rules, owner_id, day)
            if cap is not None:
                remaining = max(0, cap - bookings_per_day[day])
                day_slots = day_slots[:remaining]
            slots.extend(day_slots)
        day += timedelta(days=1)

    logger.debug(
        "Computed %d slots for owner=%s event_type=%s range=%s..%s",
        len(slots), owner_id, event_type.id, lower.isoformat(), upper.isoformat(),
    )
    return slots
