"""Application startup and shutdown.

Builds the store, Redis client, event bus and scheduling service, publishes
them through ``scheduling.state`` and runs the stale request sweep.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import redis.asyncio as redis
from fastapi import FastAPI
from redis.asyncio import BlockingConnectionPool as RedisConnectionPool

from scheduling import state
from scheduling.bus import EventBus
from scheduling.config import get_settings
from scheduling.db.base import Store
from scheduling.db.memory import MemoryStore
from scheduling.service import SchedulingService

logger = logging.getLogger(__name__)


@dataclass
class LifespanResources:
    """Container for resources initialized during lifespan."""

    store: Store | None = None
    redis_client: redis.Redis | None = None
    event_bus: EventBus | None = None
    service: SchedulingService | None = None
    stop_event: asyncio.Event | None = None
    background_tasks: list[asyncio.Task] = field(default_factory=list)


async def init_redis() -> redis.Redis:
    settings = get_settings()

    redis_pool = RedisConnectionPool(
        host=settings.redis.host,
        port=settings.redis.port,
        password=settings.redis.password if settings.redis.password else None,
        max_connections=settings.redis.max_connections,
        timeout=settings.redis.pool_timeout_sec,
        socket_timeout=settings.redis.socket_timeout,
    )
    redis_client = redis.Redis(connection_pool=redis_pool, decode_responses=True)

    if settings.debug.redis:
        logging.getLogger("scheduling.bus").setLevel(logging.DEBUG)
    return redis_client


async def init_store() -> Store:
    """Create the configured store; ``postgres`` also opens the pool and migrates."""
    backend = get_settings().storage.backend
    if backend == "postgres":
        # Import here so the memory backend never needs a database driver configured
        from scheduling.db.core import init_pool
        from scheduling.db.postgres import PostgresStore

        await init_pool()
        logger.info("Using PostgreSQL store")
        return PostgresStore()
    logger.info("Using in-memory store")
    return MemoryStore()


async def expiry_sweeper(service: SchedulingService, stop_event: asyncio.Event, interval: float) -> None:
    """Periodically expire pending requests whose token lapsed."""
    while not stop_event.is_set():
        try:
            await service.workflow.expire_stale_requests()
        except Exception:
            logger.exception("Stale request sweep failed")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue


async def setup_resources() -> LifespanResources:
    settings = get_settings()
    resources = LifespanResources()

    resources.store = await init_store()
    if settings.features.event_bus:
        resources.redis_client = await init_redis()
        resources.event_bus = EventBus(resources.redis_client, settings.redis.events_channel)
    resources.service = SchedulingService(resources.store, bus=resources.event_bus, settings=settings)

    interval = settings.workflow.expiry_sweep_interval_seconds
    if interval > 0:
        resources.stop_event = asyncio.Event()
        resources.background_tasks.append(
            asyncio.create_task(expiry_sweeper(resources.service, resources.stop_event, interval))
        )

    state.store = resources.store
    state.redis_client = resources.redis_client
    state.event_bus = resources.event_bus
    state.service = resources.service
    return resources


async def cleanup_resources(resources: LifespanResources) -> None:
    if resources.background_tasks and resources.stop_event:
        resources.stop_event.set()
        try:
            await asyncio.wait_for(
                asyncio.gather(*resources.background_tasks, return_exceptions=True),
                timeout=5,
            )
        except asyncio.TimeoutError:
            for t in resources.background_tasks:
                t.cancel()

    if resources.store is not None:
        try:
            await resources.store.close()
        except Exception as e:
            logger.warning("Failed to close store: %s", e)

    if resources.redis_client is not None:
        await resources.redis_client.aclose()

    state.store = None
    state.redis_client = None
    state.event_bus = None
    state.service = None


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    resources = await setup_resources()
    try:
        yield
    finally:
        await cleanup_resources(resources)
