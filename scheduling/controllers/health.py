import logging
from typing import Any, Dict

from fastapi import APIRouter

from scheduling import state
from scheduling.config import get_settings
from scheduling.dependencies import OptionalBus

logger = logging.getLogger("scheduling.health")
router = APIRouter()


@router.get("/health")
async def health(bus: OptionalBus) -> Dict[str, Any]:
    redis_status = "disabled"
    if state.redis_client:
        try:
            await state.redis_client.ping()
            redis_status = "healthy"
        except Exception:
            redis_status = "unhealthy"

    backend = get_settings().storage.backend
    body: Dict[str, Any] = {
        "status": "ok",
        "redis": redis_status,
        "events": bus.channel if bus is not None else "disabled",
        "store": "ready" if state.store is not None else "not_initialized",
        "backend": backend,
    }
    if backend == "postgres":
        from scheduling.db.core import get_pool_stats
        from scheduling.db.schema import get_schema_info

        body["pool"] = get_pool_stats()
        try:
            body["schema_version"] = (await get_schema_info())["current_version"]
        except Exception as e:
            logger.warning("Schema version lookup failed: %s", e)
            body["schema_version"] = None
    return body
