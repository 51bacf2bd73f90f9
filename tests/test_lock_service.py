"""
tests/test_lock_service.py — Lifecycle Lock Backends
=====================================================

The in-memory backend runs against a fake monotonic clock; the Redis
backend against a mocked client, checking the commands it issues.
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from chorus.services.lock_service import (
    InMemoryLockService,
    RedisLockService,
    acquire_with_retry,
    build_lock_service,
    held_lock,
)


class FakeMonotonic:
    def __init__(self) -> None:
        self.t = 1000.0

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def mono() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def lock(mono) -> InMemoryLockService:
    return InMemoryLockService(clock=mono)


class TestInMemoryLock:
    def test_second_acquire_fails_while_held(self, lock):
        assert lock.acquire("k", 30) is not None
        assert lock.acquire("k", 30) is None

    def test_tokens_are_unique(self, lock):
        first = lock.acquire("a", 30)
        second = lock.acquire("b", 30)
        assert first != second

    def test_release_then_reacquire(self, lock):
        token = lock.acquire("k", 30)
        assert lock.release("k", token) is True
        assert lock.acquire("k", 30) is not None

    def test_expired_lock_can_be_taken(self, lock, mono):
        lock.acquire("k", 30)
        mono.t += 30
        assert lock.acquire("k", 30) is not None

    def test_stale_holder_cannot_release_new_holders_lock(self, lock, mono):
        old = lock.acquire("k", 30)
        mono.t += 31
        new = lock.acquire("k", 30)
        assert lock.release("k", old) is False
        # New holder still owns the key
        assert lock.acquire("k", 30) is None
        assert lock.release("k", new) is True

    def test_release_unknown_key(self, lock):
        assert lock.release("missing", "token") is False

    def test_concurrent_acquire_has_one_winner(self):
        lock = InMemoryLockService()
        barrier = threading.Barrier(8)
        tokens: list[str | None] = []
        guard = threading.Lock()

        def worker():
            barrier.wait()
            token = lock.acquire("race", 30)
            with guard:
                tokens.append(token)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len([t for t in tokens if t is not None]) == 1


class TestHelpers:
    def test_acquire_with_retry_sleeps_between_attempts(self, lock, mono):
        lock.acquire("k", 30)
        sleeps: list[float] = []
        assert acquire_with_retry(lock, "k", 30, attempts=3, delay=0.5, sleep=sleeps.append) is None
        assert sleeps == [0.5, 0.5]

    def test_acquire_with_retry_succeeds_after_expiry(self, lock, mono):
        lock.acquire("k", 1)

        def sleep(seconds: float) -> None:
            mono.t += 2

        assert acquire_with_retry(lock, "k", 30, attempts=2, sleep=sleep) is not None

    def test_held_lock_releases_on_error(self, lock):
        token = lock.acquire("k", 30)
        with pytest.raises(RuntimeError):
            with held_lock(lock, "k", token):
                raise RuntimeError("boom")
        assert lock.acquire("k", 30) is not None

    def test_build_without_url_is_in_memory(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        assert isinstance(build_lock_service(), InMemoryLockService)


class TestRedisLock:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        self.release_script = MagicMock(return_value=1)
        client.register_script.return_value = self.release_script
        return client

    def test_acquire_uses_set_nx_px_with_prefix(self, client):
        client.set.return_value = True
        service = RedisLockService(client)
        token = service.acquire("contest-lifecycle", 30)
        assert token is not None
        client.set.assert_called_once_with(
            "lock:contest-lifecycle", token, nx=True, px=30000
        )

    def test_acquire_contended(self, client):
        client.set.return_value = None
        assert RedisLockService(client).acquire("k", 1) is None

    def test_release_runs_compare_and_delete(self, client):
        service = RedisLockService(client)
        assert service.release("k", "tok") is True
        self.release_script.assert_called_once_with(keys=["lock:k"], args=["tok"])

    def test_release_not_held(self, client):
        self.release_script.return_value = 0
        assert RedisLockService(client).release("k", "tok") is False
