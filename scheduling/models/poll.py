"""Meeting polls: proposed slots, participant votes and the poll lifecycle."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from scheduling.engine.intervals import Interval
from scheduling.errors import InvalidTransitionError
from scheduling.models.booking import Booking
from scheduling.models.common import Email, TimezoneName, UTCDateTime


class PollStatus(StrEnum):
    ACTIVE = "active"
    CLOSED = "closed"
    FINALIZED = "finalized"


POLL_TRANSITIONS: dict[PollStatus, frozenset[PollStatus]] = {
    PollStatus.ACTIVE: frozenset({PollStatus.CLOSED, PollStatus.FINALIZED}),
    PollStatus.CLOSED: frozenset({PollStatus.FINALIZED}),
    PollStatus.FINALIZED: frozenset(),
}


class NotificationSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    notify_on_vote: bool = True
    notify_on_deadline: bool = True
    notify_participants_on_finalization: bool = True


class Poll(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    title: str
    description: str | None = None
    duration_minutes: int
    timezone: TimezoneName = "UTC"
    deadline: UTCDateTime | None = None
    max_votes_per_participant: int = 3
    allow_anonymous_votes: bool = False
    status: PollStatus = PollStatus.ACTIVE
    selected_time_slot_id: str | None = None
    booking_id: str | None = None
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)
    created_at: UTCDateTime

    def accepts_votes(self, now: datetime) -> bool:
        return self.status is PollStatus.ACTIVE and (self.deadline is None or now < self.deadline)

    def can_be_finalized(self) -> bool:
        return self.status in (PollStatus.ACTIVE, PollStatus.CLOSED)

    def transition(self, to: PollStatus, **changes) -> "Poll":
        if to not in POLL_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                detail=f"Poll cannot move from {self.status} to {to}",
                poll_id=self.id,
                status=str(self.status),
            )
        changes["status"] = to
        return self.model_copy(update=changes)


class PollTimeSlot(BaseModel):
    """Proposed slot. ``vote_count`` mirrors the live votes referencing it."""

    model_config = ConfigDict(frozen=True)

    id: str
    poll_id: str
    start: UTCDateTime
    end: UTCDateTime
    vote_count: int = Field(default=0, ge=0)
    is_available: bool = True

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)


class PollVote(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    poll_id: str
    time_slot_id: str
    participant_identifier: str
    participant_name: str
    participant_email: str
    created_at: UTCDateTime


class Participant(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: Email

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class PollSlotInput(BaseModel):
    start: UTCDateTime
    end: UTCDateTime

    @model_validator(mode="after")
    def check_order(self) -> "PollSlotInput":
        if self.start >= self.end:
            raise ValueError("time slot end must be after its start")
        return self


class PollCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    duration_minutes: int = 60
    timezone: TimezoneName = "UTC"
    deadline: UTCDateTime | None = None
    max_votes_per_participant: int = 3
    allow_anonymous_votes: bool = False
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)
    time_slots: list[PollSlotInput]

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v


class PollDetails(BaseModel):
    poll: Poll
    time_slots: list[PollTimeSlot]


class PollResults(BaseModel):
    poll: Poll
    time_slots: list[PollTimeSlot]
    total_votes: int
    unique_participants: int
    leading_time_slot_id: str | None = None


class VoteResult(BaseModel):
    poll_id: str
    participant_identifier: str
    time_slot_ids: list[str]
    vote_count: int


class FinalizeResult(BaseModel):
    poll: Poll
    selected_time_slot: PollTimeSlot
    booking: Booking
