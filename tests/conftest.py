"""
Pytest configuration and fixtures

Nothing here touches the network: generation goes through ScriptedClient,
Redis through FakeRedis, and the history database is an in-memory SQLite
engine created per test.
"""
import asyncio
import json
import os
import sys
from datetime import date, datetime, timedelta, timezone

import pytest

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from redis.exceptions import ConnectionError as RedisConnectionError

from services.workout_composition.catalog import YamlExerciseCatalog
from services.workout_composition.constants import (
    DailyFocus,
    FitnessGoal,
    SorenessLevel,
    TrainingLevel,
    TrainingStructure,
)
from services.workout_composition.models import DailyCheckIn, UserProfile

TEST_DAY = date(2026, 3, 2)


class FakeRedis:
    """Minimal in-memory stand-in for redis.asyncio.Redis."""

    def __init__(self):
        self._store: dict = {}
        self._ttls: dict = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis down")

    async def get(self, key):
        self._check()
        return self._store.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self._store[key] = value
        self._ttls[key] = ttl

    async def delete(self, *keys):
        self._check()
        for k in keys:
            self._store.pop(k, None)
            self._ttls.pop(k, None)

    async def incr(self, key):
        self._check()
        val = int(self._store.get(key, 0)) + 1
        self._store[key] = str(val).encode()
        return val

    async def expire(self, key, ttl):
        self._check()
        self._ttls[key] = ttl

    async def ping(self):
        self._check()
        return True


class ScriptedClient:
    """
    GenerativeClient that replays a script.

    Each call consumes the next item: a string is returned, an exception is
    raised. The last item repeats once the script runs out.
    """

    def __init__(self, *script, delay: float = 0.0):
        self.script = list(script)
        self.delay = delay
        self.calls = 0
        self.requests = []

    async def generate(self, system_text: str, user_text: str) -> str:
        self.calls += 1
        self.requests.append((system_text, user_text))
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.script[min(self.calls - 1, len(self.script) - 1)]
        if isinstance(item, BaseException):
            raise item
        return item


class FakeClock:
    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def bench_press_reply(title: str = None) -> str:
    """Valid two-phase reply for the upper-body hypertrophy blueprint."""
    reply = {
        "phases": [
            {
                "kind": "warmup",
                "activity": {"kind": "mobility", "title": "Dynamic Mobility", "durationMinutes": 8},
            },
            {
                "kind": "strength",
                "exercises": [
                    {
                        "name": "Bench Press",
                        "muscleGroup": "chest",
                        "equipment": "barbell",
                        "sets": 5,
                        "reps": "5-8",
                        "restSeconds": 180,
                    }
                ],
            },
        ],
    }
    if title:
        reply["title"] = title
    return json.dumps(reply)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture(scope="session")
def catalog():
    return YamlExerciseCatalog.from_path()


@pytest.fixture
def hypertrophy_profile():
    return UserProfile(
        user_id="user-1",
        goal=FitnessGoal.HYPERTROPHY,
        structure=TrainingStructure.FULL_GYM,
        level=TrainingLevel.INTERMEDIATE,
    )


@pytest.fixture
def upper_check_in():
    return DailyCheckIn(focus=DailyFocus.UPPER, soreness=SorenessLevel.NONE, day=TEST_DAY)


@pytest.fixture
def db_session():
    """In-memory SQLite session with the history table created."""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool

    from core.database import Base
    import models  # noqa: F401

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
