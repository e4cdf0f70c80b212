import os
import sys
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from datetime import time

import fakeredis.aioredis as fakeredis
import pytest
from fastapi.testclient import TestClient

from scheduling.bus import EventBus
from scheduling.config import PollSettings, WorkflowSettings, clear_settings_cache
from scheduling.db.memory import MemoryStore
from scheduling.engine.polls import PollTallyEngine
from scheduling.engine.workflow import BookingRequestWorkflow
from scheduling.models.availability import AvailabilityRule, EventType
from scheduling.tests.factories import OWNER, MONDAY, FixedClock, RecordingBus, SequentialTokens


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def tokens():
    return SequentialTokens()


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def event_type():
    return EventType(id="intro", owner_id=OWNER, name="Intro call", duration_minutes=60)


@pytest.fixture
def monday_rule():
    return AvailabilityRule(id="mon", owner_id=OWNER, day_of_week=MONDAY, start_time=time(9), end_time=time(17))


@pytest.fixture
def store(event_type, monday_rule):
    s = MemoryStore()
    s.add_event_type(event_type)
    s.add_event_type(
        EventType(
            id="review",
            owner_id=OWNER,
            name="Portfolio review",
            duration_minutes=60,
            requires_confirmation=True,
        )
    )
    s.add_rule(monday_rule)
    return s


@pytest.fixture
def workflow(store, clock, tokens, bus):
    return BookingRequestWorkflow(store, clock, tokens, settings=WorkflowSettings(), bus=bus)


@pytest.fixture
def polls(store, clock, workflow, bus):
    return PollTallyEngine(store, clock, workflow, settings=PollSettings(), bus=bus)


@pytest.fixture
def app_env(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.setenv("WORKFLOW_EXPIRY_SWEEP_INTERVAL_SECONDS", "0")
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def client(app_env, monkeypatch, store, clock, tokens, fake_redis):
    import scheduling.lifespan as lifespan
    import scheduling.main as main
    from scheduling import state
    from scheduling.config import get_settings
    from scheduling.service import SchedulingService

    monkeypatch.setattr(lifespan.redis, "Redis", lambda *_args, **_kwargs: fake_redis)

    with TestClient(main.app) as c:
        # Swap in the seeded store and a pinned clock
        state.store = store
        state.service = SchedulingService(
            store, clock=clock, tokens=tokens, bus=EventBus(fake_redis), settings=get_settings()
        )
        yield c
