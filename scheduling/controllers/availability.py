import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Query

from scheduling.dependencies import Service

logger = logging.getLogger("scheduling.availability")
router = APIRouter()


@router.get("/owners/{owner_id}/event-types/{event_type_id}/slots")
async def list_slots(
    owner_id: str,
    event_type_id: str,
    service: Service,
    start: datetime = Query(..., description="Range start, ISO 8601 with offset"),
    end: datetime = Query(..., description="Range end, ISO 8601 with offset"),
) -> Dict[str, Any]:
    logger.info("GET slots owner=%s event_type=%s range=%s..%s", owner_id, event_type_id, start, end)
    slots = await service.compute_available_slots(owner_id, event_type_id, start, end)
    return {
        "owner_id": owner_id,
        "event_type_id": event_type_id,
        "slots": [{"start": s.start.isoformat(), "end": s.end.isoformat()} for s in slots],
    }
