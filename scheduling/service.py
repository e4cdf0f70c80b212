"""Facade composing the availability, booking request and poll components over one store."""

import logging
from datetime import datetime, timedelta

from scheduling.bus import EventBus
from scheduling.clock import Clock, SecureTokenGenerator, SystemClock, TokenGenerator
from scheduling.config import Settings, get_settings
from scheduling.db.base import Store
from scheduling.engine.availability import compute_slots
from scheduling.engine.intervals import Interval
from scheduling.engine.polls import PollTallyEngine
from scheduling.engine.workflow import BookingRequestWorkflow
from scheduling.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class SchedulingService:
    def __init__(
        self,
        store: Store,
        clock: Clock | None = None,
        tokens: TokenGenerator | None = None,
        bus: EventBus | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.clock = clock or SystemClock()
        self.tokens = tokens or SecureTokenGenerator(settings.workflow.token_bytes)
        self.bus = bus
        self.workflow = BookingRequestWorkflow(
            store, self.clock, self.tokens, settings=settings.workflow, bus=bus
        )
        self.polls = PollTallyEngine(
            store, self.clock, self.workflow, settings=settings.polls, bus=bus
        )

    async def compute_available_slots(
        self,
        owner_id: str,
        event_type_id: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[Interval]:
        now = self.clock.now()
        if range_start.tzinfo is None or range_end.tzinfo is None:
            raise ValidationError(detail="range bounds must be timezone-aware")

        # Bookings just outside the range still shadow slots through buffers.
        around_start = range_start - timedelta(days=1)
        around_end = range_end + timedelta(days=1)
        async with self.store.unit_of_work() as uow:
            event_type = await uow.get_event_type(event_type_id)
            if event_type is None or event_type.owner_id != owner_id or not event_type.is_active:
                raise NotFoundError(detail="Event type not found", event_type_id=event_type_id)
            rules = await uow.list_rules(owner_id)
            timezone = await uow.get_owner_timezone(owner_id)
            bookings = await uow.list_confirmed_bookings(owner_id, around_start, around_end)
            busy = await uow.list_busy_blocks(owner_id, around_start, around_end)

        return compute_slots(
            owner_id,
            event_type,
            rules,
            bookings,
            now,
            range_start,
            range_end,
            timezone=timezone,
            busy_blocks=busy,
        )
