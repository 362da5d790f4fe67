"""Tests for batch lock behavior."""

import asyncio

import pytest
import redis.asyncio as redis

from pricewatch.config import settings
from pricewatch.worker.scan_lock import (
    HEARTBEAT_KEY,
    LOCK_KEY,
    RedisSingleFlight,
    SingleFlight,
    build_batch_lock,
    refresh_lock_heartbeat,
)


async def _redis_available() -> bool:
    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


async def _clear_lock():
    client = redis.from_url(settings.redis_url, decode_responses=True)
    await client.delete(LOCK_KEY, HEARTBEAT_KEY)
    await client.aclose()


@pytest.mark.asyncio
async def test_local_lock_is_single_flight():
    lock = SingleFlight()

    token = await lock.acquire("run_one")
    assert token is not None
    assert lock.locked
    assert await lock.acquire("run_two") is None

    assert await lock.release("run_one", token) is True
    assert not lock.locked
    assert await lock.acquire("run_two") is not None


@pytest.mark.asyncio
async def test_local_lock_token_mismatch():
    lock = SingleFlight()
    token = await lock.acquire("run_one")

    assert await lock.release("run_one", "bad_token") is False
    assert await lock.release("other_run", token) is False
    assert lock.locked


@pytest.mark.asyncio
async def test_local_lock_refresh_requires_ownership():
    lock = SingleFlight()
    token = await lock.acquire("run_one")

    assert await lock.refresh("run_one", token) is True
    assert await lock.refresh("run_one", "bad_token") is False

    await lock.release("run_one", token)
    assert await lock.refresh("run_one", token) is False


class RecordingLock:
    def __init__(self, answers):
        self.answers = list(answers)
        self.refreshes = []

    async def refresh(self, run_id, token):
        self.refreshes.append((run_id, token))
        answer = self.answers.pop(0) if self.answers else True
        if isinstance(answer, Exception):
            raise answer
        return answer


@pytest.mark.asyncio
async def test_heartbeat_refreshes_until_cancelled():
    lock = RecordingLock([True, True, True, True, True])
    task = asyncio.create_task(refresh_lock_heartbeat(lock, "run_one", "token", interval=0.01))
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(lock.refreshes) >= 2
    assert lock.refreshes[0] == ("run_one", "token")


@pytest.mark.asyncio
async def test_heartbeat_gives_up_after_repeated_failures():
    lock = RecordingLock([False, ConnectionError("redis down"), False, True])
    await asyncio.wait_for(refresh_lock_heartbeat(lock, "run_one", "token", interval=0.001), timeout=1)
    assert len(lock.refreshes) == 3


def test_build_batch_lock():
    assert isinstance(build_batch_lock("local"), SingleFlight)
    assert isinstance(build_batch_lock("REDIS"), RedisSingleFlight)


@pytest.mark.asyncio
async def test_redis_lock_acquire_release():
    if not await _redis_available():
        pytest.skip("Redis not available")
    await _clear_lock()

    lock = RedisSingleFlight(redis_url=settings.redis_url, ttl_seconds=30)
    try:
        token = await lock.acquire("test_run_lock")
        assert token is not None
        assert await lock.acquire("test_run_other") is None

        assert await lock.release("test_run_lock", token) is True
        assert await lock.acquire("test_run_other") is not None
    finally:
        await _clear_lock()
        await lock.close()


@pytest.mark.asyncio
async def test_redis_lock_token_mismatch():
    if not await _redis_available():
        pytest.skip("Redis not available")
    await _clear_lock()

    lock = RedisSingleFlight(redis_url=settings.redis_url, ttl_seconds=30)
    try:
        token = await lock.acquire("test_run_token")
        assert token is not None
        assert await lock.release("test_run_token", "bad_token") is False
        assert await lock.release("test_run_token", None) is False
    finally:
        await _clear_lock()
        await lock.close()


@pytest.mark.asyncio
async def test_redis_lock_refresh_extends_ttl():
    if not await _redis_available():
        pytest.skip("Redis not available")
    await _clear_lock()

    lock = RedisSingleFlight(redis_url=settings.redis_url, ttl_seconds=30)
    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        token = await lock.acquire("test_run_refresh")
        await client.expire(LOCK_KEY, 5)

        assert await lock.refresh("test_run_refresh", token) is True
        assert await client.ttl(LOCK_KEY) > 5
        assert await client.ttl(HEARTBEAT_KEY) > 5
        assert await lock.refresh("test_run_refresh", "bad_token") is False
    finally:
        await _clear_lock()
        await client.aclose()
        await lock.close()
