import logging
from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field, field_validator

from scheduling.dependencies import Service
from scheduling.models.common import Email
from scheduling.models.poll import (
    FinalizeResult,
    Participant,
    Poll,
    PollCreate,
    PollDetails,
    PollResults,
    VoteResult,
)

logger = logging.getLogger("scheduling.polls")
router = APIRouter()


class PollCreateRequest(PollCreate):
    owner_id: str = Field(min_length=1)


class VoteRequest(BaseModel):
    participant_name: str = Field(min_length=1, max_length=100)
    participant_email: Email
    time_slot_ids: List[str]

    @field_validator("participant_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("participant_name must not be blank")
        return v


class FinalizeRequest(BaseModel):
    selected_time_slot_id: Optional[str] = None


@router.post("/polls", status_code=201)
async def create_poll(req: PollCreateRequest, service: Service) -> PollDetails:
    logger.info("POST /polls owner=%s title=%s slots=%d", req.owner_id, req.title, len(req.time_slots))
    return await service.polls.create_poll(req.owner_id, req)


@router.get("/polls/{poll_id}/results")
async def get_poll_results(poll_id: str, service: Service) -> PollResults:
    return await service.polls.get_results(poll_id)


@router.post("/polls/{poll_id}/votes")
async def vote(poll_id: str, req: VoteRequest, service: Service) -> VoteResult:
    logger.info("POST /polls/%s/votes slots=%d", poll_id, len(req.time_slot_ids))
    participant = Participant(name=req.participant_name, email=req.participant_email)
    return await service.polls.vote(poll_id, participant, req.time_slot_ids)


@router.post("/polls/{poll_id}/close")
async def close_poll(poll_id: str, service: Service) -> Poll:
    return await service.polls.close_poll(poll_id)


@router.post("/polls/{poll_id}/finalize")
async def finalize_poll(poll_id: str, service: Service, req: Optional[FinalizeRequest] = None) -> FinalizeResult:
    selected = req.selected_time_slot_id if req else None
    logger.info("POST /polls/%s/finalize selected=%s", poll_id, selected)
    return await service.polls.finalize(poll_id, selected)
