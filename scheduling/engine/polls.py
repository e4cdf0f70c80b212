"""Meeting polls: voting, tallying and finalization into a booking."""

import hashlib
import logging
from datetime import datetime

from scheduling.bus import EventBus, dispatch
from scheduling.clock import Clock
from scheduling.config import PollSettings
from scheduling.db.base import Store
from scheduling.engine.workflow import BookingRequestWorkflow, booking_confirmed_event, new_id
from scheduling.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from scheduling.models.booking import GUEST_NAME_MAX_LENGTH, Guest
from scheduling.models.poll import (
    FinalizeResult,
    Participant,
    Poll,
    PollCreate,
    PollDetails,
    PollResults,
    PollStatus,
    PollTimeSlot,
    PollVote,
    VoteResult,
)

logger = logging.getLogger(__name__)

ANONYMOUS_LABEL = "[Anonymous]"


def participant_identifier(email: str, poll_id: str, anonymous: bool) -> str:
    """Stable per-poll voter key; anonymous polls never store the raw email as key."""
    email = email.strip().lower()
    if anonymous:
        return hashlib.sha256(f"{email}:{poll_id}".encode()).hexdigest()[:20]
    return email


def select_winner(time_slots: list[PollTimeSlot]) -> PollTimeSlot | None:
    """Highest vote count wins, earliest start breaks ties; no votes, no winner."""
    if not time_slots:
        return None
    top = max(slot.vote_count for slot in time_slots)
    if top == 0:
        return None
    return min((s for s in time_slots if s.vote_count == top), key=lambda s: (s.start, s.id))


class PollTallyEngine:
    def __init__(
        self,
        store: Store,
        clock: Clock,
        workflow: BookingRequestWorkflow,
        *,
        settings: PollSettings | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.workflow = workflow
        self.settings = settings or PollSettings()
        self.bus = bus

    def _validate(self, data: PollCreate, now: datetime) -> None:
        s = self.settings
        if not data.time_slots:
            raise ValidationError(detail="At least one time slot is required")
        if len(data.time_slots) > s.max_time_slots:
            raise ValidationError(detail=f"Maximum {s.max_time_slots} time slots allowed")
        if not s.min_votes_per_participant <= data.max_votes_per_participant <= s.max_votes_per_participant:
            raise ValidationError(
                detail=(
                    f"max_votes_per_participant must be between "
                    f"{s.min_votes_per_participant} and {s.max_votes_per_participant}"
                )
            )
        if not s.min_duration_minutes <= data.duration_minutes <= s.max_duration_minutes:
            raise ValidationError(
                detail=f"duration_minutes must be between {s.min_duration_minutes} and {s.max_duration_minutes}"
            )
        if data.deadline is not None and data.deadline <= now:
            raise ValidationError(detail="Deadline must be in the future")
        for i, slot in enumerate(data.time_slots):
            if slot.start <= now:
                raise ValidationError(detail=f"Time slot {i + 1} start time must be in the future")
            for j in range(i + 1, len(data.time_slots)):
                other = data.time_slots[j]
                if slot.start < other.end and other.start < slot.end:
                    raise ValidationError(detail=f"Time slot {i + 1} overlaps with time slot {j + 1}")

    async def create_poll(self, owner_id: str, data: PollCreate) -> PollDetails:
        now = self.clock.now()
        self._validate(data, now)
        poll = Poll(
            id=new_id(),
            owner_id=owner_id,
            title=data.title,
            description=data.description,
            duration_minutes=data.duration_minutes,
            timezone=data.timezone,
            deadline=data.deadline,
            max_votes_per_participant=data.max_votes_per_participant,
            allow_anonymous_votes=data.allow_anonymous_votes,
            notification_settings=data.notification_settings,
            created_at=now,
        )
        time_slots = sorted(
            (PollTimeSlot(id=new_id(), poll_id=poll.id, start=s.start, end=s.end) for s in data.time_slots),
            key=lambda s: s.start,
        )
        async with self.store.unit_of_work(owner_id) as uow:
            await uow.insert_poll(poll, time_slots)
        logger.info("Poll created id=%s owner=%s slots=%d", poll.id, owner_id, len(time_slots))
        return PollDetails(poll=poll, time_slots=time_slots)

    async def _load(self, poll_id: str) -> Poll:
        async with self.store.unit_of_work() as uow:
            poll = await uow.get_poll(poll_id)
        if poll is None:
            raise NotFoundError(detail="Poll not found", poll_id=poll_id)
        return poll

    async def vote(self, poll_id: str, participant: Participant, time_slot_ids: list[str]) -> VoteResult:
        """Replace the participant's vote set for this poll."""
        now = self.clock.now()
        if not time_slot_ids:
            raise ValidationError(detail="At least one time slot must be selected")
        if len(set(time_slot_ids)) != len(time_slot_ids):
            raise ValidationError(detail="A time slot can only be voted for once")
        poll = await self._load(poll_id)

        async with self.store.unit_of_work(poll.owner_id) as uow:
            poll = await uow.get_poll(poll_id)
            if not poll.accepts_votes(now):
                raise ValidationError(detail="This poll is no longer accepting votes", poll_id=poll_id)
            if len(time_slot_ids) > poll.max_votes_per_participant:
                raise ValidationError(
                    detail=f"Maximum {poll.max_votes_per_participant} votes per participant",
                    poll_id=poll_id,
                )
            slots = {s.id: s for s in await uow.list_poll_slots(poll_id)}
            for slot_id in time_slot_ids:
                if slot_id not in slots or not slots[slot_id].is_available:
                    raise ValidationError(detail="Invalid time slot selection", time_slot_id=slot_id)

            identifier = participant_identifier(participant.email, poll.id, poll.allow_anonymous_votes)
            votes = [
                PollVote(
                    id=new_id(),
                    poll_id=poll.id,
                    time_slot_id=slot_id,
                    participant_identifier=identifier,
                    participant_name=participant.name,
                    participant_email=participant.email,
                    created_at=now,
                )
                for slot_id in time_slot_ids
            ]
            await uow.replace_votes(poll.id, identifier, votes)

        logger.info(
            "Votes recorded poll=%s participant=%s count=%d",
            poll.id, ANONYMOUS_LABEL if poll.allow_anonymous_votes else identifier, len(votes),
        )
        if poll.notification_settings.notify_on_vote:
            await dispatch(self.bus, {
                "type": "poll_vote_recorded",
                "poll_id": poll.id,
                "owner_id": poll.owner_id,
                "participant_name": participant.name,
                "participant_email": ANONYMOUS_LABEL if poll.allow_anonymous_votes else participant.email,
                "vote_count": len(votes),
            })
        return VoteResult(
            poll_id=poll.id,
            participant_identifier=identifier,
            time_slot_ids=list(time_slot_ids),
            vote_count=len(votes),
        )

    async def get_results(self, poll_id: str) -> PollResults:
        async with self.store.unit_of_work() as uow:
            poll = await uow.get_poll(poll_id)
            if poll is None:
                raise NotFoundError(detail="Poll not found", poll_id=poll_id)
            time_slots = await uow.list_poll_slots(poll_id)
            votes = await uow.list_votes(poll_id)
        leader = select_winner(time_slots)
        return PollResults(
            poll=poll,
            time_slots=time_slots,
            total_votes=len(votes),
            unique_participants=len({v.participant_identifier for v in votes}),
            leading_time_slot_id=leader.id if leader else None,
        )

    async def close_poll(self, poll_id: str) -> Poll:
        """Stop accepting votes."""
        poll = await self._load(poll_id)
        async with self.store.unit_of_work(poll.owner_id) as uow:
            poll = await uow.get_poll(poll_id)
            if poll.status is not PollStatus.ACTIVE:
                raise InvalidTransitionError(detail="Only active polls can be closed", poll_id=poll_id)
            poll = poll.transition(PollStatus.CLOSED)
            await uow.update_poll(poll)
        logger.info("Poll closed id=%s", poll.id)
        return poll

    async def finalize(self, poll_id: str, selected_time_slot_id: str | None = None) -> FinalizeResult:
        """Pick the winning slot (or the host's override) and book it."""
        now = self.clock.now()
        poll = await self._load(poll_id)

        conflicts: list[str] = []
        async with self.store.unit_of_work(poll.owner_id) as uow:
            poll = await uow.get_poll(poll_id)
            if not poll.can_be_finalized():
                raise InvalidTransitionError(detail="Poll cannot be finalized", poll_id=poll_id, status=str(poll.status))
            time_slots = await uow.list_poll_slots(poll_id)
            if selected_time_slot_id is not None:
                chosen = next((s for s in time_slots if s.id == selected_time_slot_id), None)
                if chosen is None:
                    raise ValidationError(detail="Invalid time slot selection", time_slot_id=selected_time_slot_id)
            else:
                chosen = select_winner(time_slots)
                if chosen is None:
                    raise ValidationError(detail="Poll has no votes; select a time slot explicitly", poll_id=poll_id)

            booking, conflicts = await self.workflow.book_interval(
                uow,
                owner_id=poll.owner_id,
                interval=chosen.interval,
                guest=Guest(name=poll.title[:GUEST_NAME_MAX_LENGTH].rstrip()),
                now=now,
                poll_id=poll.id,
            )
            if booking is not None:
                poll = poll.transition(
                    PollStatus.FINALIZED,
                    selected_time_slot_id=chosen.id,
                    booking_id=booking.id,
                )
                await uow.update_poll(poll)

        if conflicts:
            raise ConflictError(
                detail="Selected time slot conflicts with an existing booking",
                poll_id=poll.id,
                time_slot_id=chosen.id,
                conflicting_booking_ids=conflicts,
            )

        logger.info("Poll finalized id=%s slot=%s booking=%s", poll.id, chosen.id, booking.id)
        await dispatch(self.bus, booking_confirmed_event(booking))
        if poll.notification_settings.notify_participants_on_finalization:
            await dispatch(self.bus, {
                "type": "poll_finalized",
                "poll_id": poll.id,
                "owner_id": poll.owner_id,
                "time_slot_id": chosen.id,
                "booking_id": booking.id,
                "start": chosen.start.isoformat(),
                "end": chosen.end.isoformat(),
            })
        return FinalizeResult(poll=poll, selected_time_slot=chosen, booking=booking)
