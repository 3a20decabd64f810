"""
Single-flight guards for scheduler sweeps.

One sweep of a given type may run at a time: per process through a
non-blocking threading.Lock, and across instances through a Redis
SET NX EX lease when Redis is configured.
"""

import logging
import threading
import uuid
from typing import Dict, Optional, Protocol

import redis

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "paywall:sweep_lock"
DEFAULT_LEASE_SECONDS = 60 * 60

# Delete only if we still own the lease
RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


class SweepLock(Protocol):
    def acquire(self) -> bool:
        ...

    def release(self) -> None:
        ...


class LocalSweepLock:
    def __init__(self) -> None:
        self._lock = threading.Lock()

    def acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()


class RedisSweepLock:
    """Lease-based lock; the lease expires on its own if the holder dies."""

    def __init__(self, client: redis.Redis, name: str, lease_seconds: int = DEFAULT_LEASE_SECONDS) -> None:
        self._redis = client
        self._key = f"{LOCK_KEY_PREFIX}:{name}"
        self._lease_seconds = lease_seconds
        self._token: Optional[str] = None
        self._release_script = client.register_script(RELEASE_LUA)

    def acquire(self) -> bool:
        token = uuid.uuid4().hex
        if self._redis.set(self._key, token, nx=True, ex=self._lease_seconds):
            self._token = token
            return True
        return False

    def release(self) -> None:
        if self._token is None:
            return
        try:
            self._release_script(keys=[self._key], args=[self._token])
        except redis.RedisError as e:
            # The lease expires by itself
            logger.warning("sweep_lock.release_failed", extra={"key": self._key, "error": str(e)})
        finally:
            self._token = None


class CompositeSweepLock:
    """Local lock first, then the distributed one; both or neither."""

    def __init__(self, local: SweepLock, remote: Optional[SweepLock] = None) -> None:
        self._local = local
        self._remote = remote

    def acquire(self) -> bool:
        if not self._local.acquire():
            return False
        if self._remote is None:
            return True
        try:
            acquired = self._remote.acquire()
        except redis.RedisError:
            self._local.release()
            raise
        if not acquired:
            self._local.release()
        return acquired

    def release(self) -> None:
        try:
            if self._remote is not None:
                self._remote.release()
        finally:
            self._local.release()


class SweepLockRegistry:
    """Hands out one lock per sweep name."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, lease_seconds: int = DEFAULT_LEASE_SECONDS) -> None:
        self._redis = redis_client
        self._lease_seconds = lease_seconds
        self._locks: Dict[str, CompositeSweepLock] = {}
        self._guard = threading.Lock()

    def get(self, name: str) -> CompositeSweepLock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                remote = None
                if self._redis is not None:
                    remote = RedisSweepLock(self._redis, name, self._lease_seconds)
                lock = CompositeSweepLock(LocalSweepLock(), remote)
                self._locks[name] = lock
            return lock
