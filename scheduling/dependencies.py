"""Dependency injection for FastAPI endpoints.

Controllers receive the scheduling service and event bus through these
dependencies instead of reaching into ``scheduling.state``:

    @router.post("/polls/{poll_id}/close")
    async def close(poll_id: str, service: Service):
        return await service.polls.close_poll(poll_id)
"""

from typing import Annotated

from fastapi import Depends

from scheduling import state
from scheduling.bus import EventBus
from scheduling.errors import ServiceUnavailableError
from scheduling.service import SchedulingService


def get_service() -> SchedulingService:
    """Get the scheduling service.

    Raises:
        ServiceUnavailableError: If the store has not been initialized.
    """
    if state.service is None:
        raise ServiceUnavailableError(detail="Scheduling service not initialized")
    return state.service


def get_optional_event_bus() -> EventBus | None:
    return state.event_bus


Service = Annotated[SchedulingService, Depends(get_service)]
OptionalBus = Annotated[EventBus | None, Depends(get_optional_event_bus)]
