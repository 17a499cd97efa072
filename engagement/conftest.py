# engagement/conftest.py
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from engagement.core.clock import FixedClock, SequenceRandom
from engagement.core.database import metadata
from engagement.core.errors import StateStoreError
from engagement.core.locks import UserLockRegistry
from engagement.core.metrics import METRICS
from engagement.core.store import CounterStore, InMemoryCounterStore
from engagement.features.notifications.delivery import InAppNotificationRepository
from engagement.models.context import UserContext


# Wednesday, midday UTC
BASE_TIME = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class FailingCounterStore(CounterStore):
    """Every operation fails the way an unreachable Redis would."""

    def __init__(self):
        self.writes = 0

    def get(self, key):
        raise StateStoreError(f"store unavailable reading {key}")

    def incr_with_expiry(self, key, ttl_seconds):
        self.writes += 1
        raise StateStoreError(f"store unavailable writing {key}")

    def set_with_expiry(self, key, value, ttl_seconds):
        self.writes += 1
        raise StateStoreError(f"store unavailable writing {key}")

    def ping(self):
        return False


@pytest.fixture(autouse=True)
def reset_metrics():
    """Counters are process-global; start every test from zero."""
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def clock():
    return FixedClock(BASE_TIME)


@pytest.fixture
def store(clock):
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def failing_store():
    return FailingCounterStore()


@pytest.fixture
def user_lock():
    return UserLockRegistry(default_timeout=1.0)


@pytest.fixture
def never_grant():
    """Every draw lands above any tier's probability."""
    return SequenceRandom([0.99])


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def inbox(session_factory, clock):
    return InAppNotificationRepository(session_factory, clock=clock)


@pytest.fixture
def make_context():
    """Build a UserContext with sensible defaults; keyword overrides win."""

    def _make(**overrides):
        payload = {
            "userId": "user_123",
            "timezone": "UTC",
            "localTime": BASE_TIME,
            "lastActiveAt": BASE_TIME,
            "currentStreak": 0,
            "longestStreak": 0,
            "freezeTokens": 0,
            "house": "Phoenix",
            "class": "Warrior",
        }
        payload.update(overrides)
        return UserContext.model_validate(payload)

    return _make
