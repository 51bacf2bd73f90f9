"""
chorus.services.lock_service — Distributed Mutual Exclusion
============================================================

``acquire(key, ttl)`` sets *key* only if no unexpired value exists and
returns a caller-unique token; ``release(key, token)`` deletes the key only
while it still holds that token, so a holder whose lock expired and was
re-acquired by someone else can never release the new holder's lock.

Neither call blocks or retries on contention; callers decide.  The TTL
bounds how long a crashed holder can keep the key.

Two backends share the :class:`LockService` protocol:

* :class:`RedisLockService` — production, ``SET NX PX`` plus a Lua
  compare-and-delete script.
* :class:`InMemoryLockService` — single-process fallback and tests, with an
  injectable monotonic clock.

The lock is a contention aid, never the authority for contest state; the
storage-level uniqueness constraint is.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol

import redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "lock:"

# KEYS[1] = lock key, ARGV[1] = token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def new_token() -> str:
    """Caller-unique token: process id plus a random UUID."""
    return f"{os.getpid()}-{uuid.uuid4().hex}"


class LockService(Protocol):
    def acquire(self, key: str, ttl: float) -> str | None: ...

    def release(self, key: str, token: str) -> bool: ...


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------
class RedisLockService:
    """Lock backed by a Redis (or Redis-protocol) server."""

    def __init__(self, client: redis.Redis, prefix: str = KEY_PREFIX) -> None:
        self._client = client
        self._prefix = prefix
        self._release = client.register_script(_RELEASE_SCRIPT)

    @classmethod
    def from_url(cls, url: str, **kwargs) -> RedisLockService:
        client = redis.from_url(url, decode_responses=True)
        return cls(client, **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def acquire(self, key: str, ttl: float) -> str | None:
        token = new_token()
        acquired = self._client.set(self._key(key), token, nx=True, px=int(ttl * 1000))
        if not acquired:
            logger.debug("Lock %s is held elsewhere", key)
            return None
        return token

    def release(self, key: str, token: str) -> bool:
        released = bool(self._release(keys=[self._key(key)], args=[token]))
        if not released:
            logger.warning("Lock %s was not held by this token at release (expired?)", key)
        return released


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------
class InMemoryLockService:
    """Thread-safe lock table for a single process.

    *clock* must be monotonic; tests inject a fake one to expire TTLs.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._mutex = threading.Lock()
        # key → (token, expires_at)
        self._held: dict[str, tuple[str, float]] = {}

    def _live(self, key: str, now: float) -> tuple[str, float] | None:
        entry = self._held.get(key)
        if entry is not None and entry[1] <= now:
            del self._held[key]
            return None
        return entry

    def acquire(self, key: str, ttl: float) -> str | None:
        with self._mutex:
            now = self._clock()
            if self._live(key, now) is not None:
                logger.debug("Lock %s is held elsewhere", key)
                return None
            token = new_token()
            self._held[key] = (token, now + ttl)
            return token

    def release(self, key: str, token: str) -> bool:
        with self._mutex:
            entry = self._live(key, self._clock())
            if entry is None or entry[0] != token:
                logger.warning("Lock %s was not held by this token at release (expired?)", key)
                return False
            del self._held[key]
            return True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def acquire_with_retry(
    lock: LockService,
    key: str,
    ttl: float,
    *,
    attempts: int = 3,
    delay: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> str | None:
    """Try :meth:`LockService.acquire` up to *attempts* times."""
    for attempt in range(1, attempts + 1):
        token = lock.acquire(key, ttl)
        if token is not None:
            return token
        if attempt < attempts:
            sleep(delay)
    logger.warning("Lock %s still contended after %d attempts", key, attempts)
    return None


@contextmanager
def held_lock(lock: LockService, key: str, token: str) -> Iterator[str]:
    """Release *token* on *key* when the block exits, however it exits."""
    try:
        yield token
    finally:
        lock.release(key, token)


def build_lock_service(url: str | None = None) -> LockService:
    """Redis-backed lock when ``REDIS_URL`` is set, else the in-memory one."""
    url = url or os.getenv("REDIS_URL", "")
    if url:
        logger.info("Lifecycle lock backed by Redis")
        return RedisLockService.from_url(url)
    logger.warning(
        "REDIS_URL not configured; using in-memory lifecycle lock "
        "(safe only with a single engine process)"
    )
    return InMemoryLockService()
