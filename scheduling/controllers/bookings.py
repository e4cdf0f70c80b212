import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from scheduling.dependencies import Service
from scheduling.models.booking import Booking, Guest, RequestState, SubmitResult

logger = logging.getLogger("scheduling.bookings")
router = APIRouter()


class BookingRequestCreate(BaseModel):
    owner_id: str = Field(min_length=1)
    event_type_id: str = Field(min_length=1)
    guest: Guest
    start: datetime
    notes: Optional[str] = Field(default=None, max_length=2000)


@router.post("/booking-requests", status_code=201)
async def submit_booking_request(req: BookingRequestCreate, service: Service) -> SubmitResult:
    logger.info("POST /booking-requests owner=%s event_type=%s start=%s", req.owner_id, req.event_type_id, req.start)
    return await service.workflow.submit(req.owner_id, req.event_type_id, req.guest, req.start, req.notes)


@router.post("/booking-requests/confirm/{token}")
async def confirm_booking_request(token: str, service: Service) -> RequestState:
    return await service.workflow.confirm(token)


@router.post("/booking-requests/approve/{token}")
async def approve_booking_request(token: str, service: Service) -> RequestState:
    return await service.workflow.host_approve(token)


@router.post("/booking-requests/decline/{token}")
async def decline_booking_request(token: str, service: Service) -> RequestState:
    return await service.workflow.host_decline(token)


@router.post("/booking-requests/{request_id}/cancel")
async def cancel_booking_request(request_id: str, service: Service) -> RequestState:
    logger.info("POST /booking-requests/%s/cancel", request_id)
    return await service.workflow.cancel_request(request_id)


@router.post("/bookings/{booking_id}/cancel")
async def cancel_booking(booking_id: str, service: Service) -> Booking:
    logger.info("POST /bookings/%s/cancel", booking_id)
    return await service.workflow.cancel_booking(booking_id)
