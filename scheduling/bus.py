"""
Event bus for scheduling lifecycle events, backed by Redis pub/sub.

Notification and calendar-sync workers subscribe to the channel; delivery
retries are theirs, not ours.
"""
import json
import logging
from typing import Final

import redis.asyncio as redis

from scheduling.events import SchedulingEvent

CHANNEL_EVENTS: Final[str] = "scheduling:events"

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self, redis_client: redis.Redis, channel: str = CHANNEL_EVENTS):
        self.redis_client = redis_client
        self.channel = channel

    async def publish(self, event: SchedulingEvent) -> None:
        logger.debug("publish channel=%s type=%s", self.channel, event.get("type"))
        await self.redis_client.publish(self.channel, json.dumps(event))


async def dispatch(bus: EventBus | None, event: SchedulingEvent) -> bool:
    """Publish after commit. Failures are logged and never propagate."""
    if bus is None:
        return False
    try:
        await bus.publish(event)
        return True
    except Exception as e:
        logger.warning("Failed to publish %s event: %s", event.get("type"), e)
        return False
