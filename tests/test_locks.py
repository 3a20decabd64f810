"""Tests for sweep single-flight locks."""

from unittest.mock import MagicMock

import pytest
import redis

from paywall.workers.locks import (
    RELEASE_LUA,
    CompositeSweepLock,
    LocalSweepLock,
    RedisSweepLock,
    SweepLockRegistry,
)


def _redis(set_result=True):
    client = MagicMock()
    client.set.return_value = set_result
    client.register_script.return_value = MagicMock(return_value=1)
    return client


class TestLocalSweepLock:
    def test_second_acquire_fails_until_release(self):
        lock = LocalSweepLock()

        assert lock.acquire() is True
        assert lock.acquire() is False
        lock.release()
        assert lock.acquire() is True


class TestRedisSweepLock:
    def test_acquire_uses_set_nx_with_lease(self):
        client = _redis()
        lock = RedisSweepLock(client, "expiry", lease_seconds=120)

        assert lock.acquire() is True
        key, token = client.set.call_args.args
        assert key == "paywall:sweep_lock:expiry"
        assert client.set.call_args.kwargs == {"nx": True, "ex": 120}
        assert token

    def test_release_deletes_only_own_token(self):
        client = _redis()
        lock = RedisSweepLock(client, "expiry")
        lock.acquire()
        token = client.set.call_args.args[1]

        lock.release()

        client.register_script.assert_called_once_with(RELEASE_LUA)
        client.register_script.return_value.assert_called_once_with(
            keys=["paywall:sweep_lock:expiry"], args=[token]
        )

    def test_release_without_acquire_is_noop(self):
        client = _redis(set_result=None)
        lock = RedisSweepLock(client, "expiry")

        assert lock.acquire() is False
        lock.release()
        client.register_script.return_value.assert_not_called()

    def test_release_error_logged(self):
        client = _redis()
        client.register_script.return_value.side_effect = redis.ConnectionError("gone")
        lock = RedisSweepLock(client, "expiry")
        lock.acquire()

        lock.release()
        assert lock.acquire() is True


class TestCompositeSweepLock:
    def test_remote_refusal_releases_local(self):
        local = LocalSweepLock()
        lock = CompositeSweepLock(local, RedisSweepLock(_redis(set_result=None), "expiry"))

        assert lock.acquire() is False
        assert local.acquire() is True

    def test_remote_error_releases_local_and_raises(self):
        client = _redis()
        client.set.side_effect = redis.ConnectionError("refused")
        local = LocalSweepLock()
        lock = CompositeSweepLock(local, RedisSweepLock(client, "expiry"))

        with pytest.raises(redis.ConnectionError):
            lock.acquire()
        assert local.acquire() is True

    def test_local_only(self):
        lock = CompositeSweepLock(LocalSweepLock())

        assert lock.acquire() is True
        assert lock.acquire() is False
        lock.release()


class TestSweepLockRegistry:
    def test_one_lock_per_name(self):
        registry = SweepLockRegistry()

        assert registry.get("reminder") is registry.get("reminder")
        assert registry.get("reminder") is not registry.get("expiry")

    def test_independent_sweeps_do_not_block_each_other(self):
        registry = SweepLockRegistry()

        assert registry.get("reminder").acquire() is True
        assert registry.get("expiry").acquire() is True
