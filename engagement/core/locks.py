"""
Per-user mutual exclusion.

Check-ins, reward checks and notification sends for one user read and then
write shared counters, so each call holds that user's lock. Different users
never contend.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from redis import Redis
from redis.exceptions import LockError, RedisError

from engagement.core.config import settings as default_settings
from engagement.core.errors import LockContentionError, StateStoreError


class UserLock:
    def hold(self, user_id: str, timeout: Optional[float] = None):
        """Context manager holding the user's lock for the duration of the block."""
        raise NotImplementedError


class UserLockRegistry(UserLock):
    """Process-local locks keyed by user id, created lazily."""

    def __init__(self, default_timeout: float = 5.0):
        self.default_timeout = default_timeout
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, user_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        lock = self._lock_for(user_id)
        wait = self.default_timeout if timeout is None else timeout
        if not lock.acquire(timeout=wait):
            raise LockContentionError(f"Another operation is in progress for user {user_id}")
        try:
            yield
        finally:
            lock.release()


class RedisUserLock(UserLock):
    """Distributed variant for deployments running several worker processes."""

    def __init__(self, client: Redis, default_timeout: float = 5.0, lease_seconds: float = 30.0):
        self.client = client
        self.default_timeout = default_timeout
        self.lease_seconds = lease_seconds

    @contextmanager
    def hold(self, user_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        wait = self.default_timeout if timeout is None else timeout
        lock = self.client.lock(f"lock:user:{user_id}", timeout=self.lease_seconds, blocking_timeout=wait)
        try:
            acquired = lock.acquire()
        except RedisError as exc:
            raise StateStoreError(f"Could not reach lock store for user {user_id}: {exc}") from exc
        if not acquired:
            raise LockContentionError(f"Another operation is in progress for user {user_id}")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Lease expired while held; the next holder already owns the key.
                pass


def build_user_lock(settings_obj=None) -> UserLock:
    cfg = settings_obj or default_settings
    if getattr(cfg, "LOCK_BACKEND", "local") == "redis":
        return RedisUserLock(Redis.from_url(cfg.REDIS_URL), default_timeout=cfg.LOCK_TIMEOUT_SECONDS)
    return UserLockRegistry(default_timeout=cfg.LOCK_TIMEOUT_SECONDS)
