from typing import Optional

import redis.asyncio as redis

from scheduling.bus import EventBus
from scheduling.db.base import Store
from scheduling.service import SchedulingService

# Global runtime state initialized in lifespan.setup_resources
redis_client: Optional[redis.Redis] = None
event_bus: Optional[EventBus] = None
store: Optional[Store] = None
service: Optional[SchedulingService] = None
