"""
Expiring counter store.

Three counter families live here:
- cooldown:{user_id}:{type}      last-sent timestamp per notification type
- dailycount:{user_id}:{date}    notifications sent on a user's local day
- rewardcount:{user_id}          rewards granted in the rolling fatigue window

Adapters raise StateStoreError on any backend failure; callers decide which
safe default applies (treat as on cooldown / fatigued).
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple

from redis import Redis
from redis.exceptions import RedisError

from engagement.core.clock import Clock, SystemClock
from engagement.core.config import settings as default_settings
from engagement.core.errors import StateStoreError
from engagement.models.mutations import CounterMutation


def cooldown_key(user_id: str, notification_type: str) -> str:
    return f"cooldown:{user_id}:{notification_type}"


def daily_count_key(user_id: str, local_day: date) -> str:
    return f"dailycount:{user_id}:{local_day.isoformat()}"


def reward_count_key(user_id: str) -> str:
    return f"rewardcount:{user_id}"


class CounterStore:
    """Minimal key-value interface with expiry."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def get_int(self, key: str) -> int:
        raw = self.get(key)
        if raw is None:
            return 0
        try:
            return int(float(raw))
        except (TypeError, ValueError):
            raise StateStoreError(f"Counter {key} holds a non-numeric value")

    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        raise NotImplementedError

    def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError


class RedisCounterStore(CounterStore):
    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(Redis.from_url(url, decode_responses=True, socket_timeout=2.0))

    def get(self, key: str) -> Optional[str]:
        try:
            value = self.client.get(key)
        except RedisError as exc:
            raise StateStoreError(f"Redis GET failed for {key}: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        # MULTI/EXEC so the increment never lands without its expiry
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, ttl_seconds)
            count, _ = pipe.execute()
        except RedisError as exc:
            raise StateStoreError(f"Redis INCR/EXPIRE failed for {key}: {exc}") from exc
        return int(count)

    def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self.client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise StateStoreError(f"Redis SET failed for {key}: {exc}") from exc

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError:
            return False


class InMemoryCounterStore(CounterStore):
    """Process-local store for development and tests. Expiry follows the injected clock."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._values: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock.now() >= expires_at:
            del self._values[key]
            return None
        return value

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            current = int(self._live(key) or 0) + 1
            self._values[key] = (str(current), self.clock.now() + timedelta(seconds=ttl_seconds))
            return current

    def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._values[key] = (str(value), self.clock.now() + timedelta(seconds=ttl_seconds))

    def ttl(self, key: str) -> Optional[float]:
        with self._lock:
            if self._live(key) is None:
                return None
            return (self._values[key][1] - self.clock.now()).total_seconds()

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


def apply_mutations(store: CounterStore, mutations: Iterable[CounterMutation]) -> None:
    """Execute decision mutations in order. Stops at the first StateStoreError."""
    for mutation in mutations:
        if mutation.kind == "incr":
            store.incr_with_expiry(mutation.key, mutation.ttl_seconds)
        elif mutation.kind == "set":
            store.set_with_expiry(mutation.key, mutation.value or "", mutation.ttl_seconds)
        else:
            raise ValueError(f"Unknown mutation kind: {mutation.kind}")


def build_counter_store(settings_obj=None, clock: Optional[Clock] = None) -> CounterStore:
    cfg = settings_obj or default_settings
    if getattr(cfg, "COUNTER_BACKEND", "redis") == "memory":
        return InMemoryCounterStore(clock=clock)
    return RedisCounterStore.from_url(cfg.REDIS_URL)
