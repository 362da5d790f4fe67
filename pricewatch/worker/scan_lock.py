"""Single-flight guards so that at most one batch run is active at a time."""

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional, Protocol
from uuid import uuid4

import redis.asyncio as redis

from pricewatch.config import settings

logger = logging.getLogger(__name__)

# Redis keys for the batch lock
LOCK_KEY = "pricewatch:batch:lock"
HEARTBEAT_KEY = "pricewatch:batch:heartbeat"

# Atomically verify run_id + token and delete lock + heartbeat
# Returns: 0 = not found/already released, 1 = deleted, 2 = mismatch
RELEASE_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 2
end

if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('DEL', KEYS[1])
    redis.call('DEL', KEYS[2])
    return 1
else
    return 2
end
"""

# Atomically verify run_id + token, extend the lock TTL and rewrite the heartbeat
# Returns: 0 = not found, 1 = refreshed, 2 = mismatch
REFRESH_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 0
end

if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('EXPIRE', KEYS[1], ARGV[3])
    redis.call('SET', KEYS[2], ARGV[4], 'EX', ARGV[3])
    return 1
else
    return 2
end
"""

HEARTBEAT_MAX_FAILURES = 3


class BatchLock(Protocol):
    async def acquire(self, run_id: str) -> Optional[str]: ...

    async def release(self, run_id: str, token: Optional[str]) -> bool: ...

    async def refresh(self, run_id: str, token: Optional[str]) -> bool: ...

    async def close(self) -> None: ...


class SingleFlight:
    """
    Process-local single-flight guard.

    `acquire` never waits: it returns a token when the guard was free and
    None when another run holds it.
    """

    def __init__(self):
        self._run_id: Optional[str] = None
        self._token: Optional[str] = None

    @property
    def locked(self) -> bool:
        return self._token is not None

    async def acquire(self, run_id: str) -> Optional[str]:
        # No await between the check and the set, so this is atomic on the event loop
        if self._token is not None:
            logger.debug(f"Batch lock already held by run_id: {self._run_id[:16]}...")
            return None
        self._run_id = run_id
        self._token = uuid4().hex
        return self._token

    async def release(self, run_id: str, token: Optional[str]) -> bool:
        if self._token is None:
            return True
        if run_id != self._run_id or token != self._token:
            logger.warning(f"Attempted to release batch lock with mismatched token/run_id: {run_id[:16]}...")
            return False
        self._run_id = None
        self._token = None
        return True

    async def refresh(self, run_id: str, token: Optional[str]) -> bool:
        """Nothing expires locally; only report whether the caller still owns the guard."""
        return self._token is not None and run_id == self._run_id and token == self._token

    async def close(self) -> None:
        pass


class RedisSingleFlight:
    """
    Distributed single-flight guard for multi-process deployments.

    Uses SET NX EX with an ownership token; the TTL frees the lock if its
    holder dies mid-run.
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.redis_url = redis_url or settings.redis_url
        self.ttl_seconds = ttl_seconds or settings.scan_lock_ttl_seconds
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def acquire(self, run_id: str) -> Optional[str]:
        redis_client = await self._get_redis()

        token = uuid4().hex
        lock_value = json.dumps({
            "run_id": run_id,
            "token": token,
            "started_at": datetime.utcnow().isoformat(),
        })

        acquired = await redis_client.set(LOCK_KEY, lock_value, nx=True, ex=self.ttl_seconds)
        if acquired:
            await redis_client.set(HEARTBEAT_KEY, datetime.utcnow().isoformat(), ex=self.ttl_seconds)
            logger.info(f"Acquired batch lock for run_id: {run_id[:16]}...")
            return token

        existing_value = await redis_client.get(LOCK_KEY)
        if existing_value:
            try:
                existing_run_id = json.loads(existing_value).get("run_id", "unknown")
                logger.debug(f"Batch lock already held by run_id: {existing_run_id[:16]}...")
            except (json.JSONDecodeError, AttributeError):
                logger.warning(f"Batch lock exists but value is invalid: {existing_value}")
        return None

    async def release(self, run_id: str, token: Optional[str]) -> bool:
        """Release the lock only if this run still owns it."""
        if not token:
            logger.warning("Unlock requested without token; refusing")
            return False

        redis_client = await self._get_redis()
        result = await redis_client.eval(RELEASE_SCRIPT, 2, LOCK_KEY, HEARTBEAT_KEY, run_id, token)
        if result == 2:
            logger.warning(f"Attempted to release batch lock with mismatched token/run_id: {run_id[:16]}...")
            return False
        if result == 1:
            logger.info(f"Released batch lock for run_id: {run_id[:16]}...")
        return True

    async def refresh(self, run_id: str, token: Optional[str]) -> bool:
        """Extend the lock TTL (heartbeat) if this run still owns it."""
        if not token:
            return False

        redis_client = await self._get_redis()
        result = await redis_client.eval(
            REFRESH_SCRIPT,
            2,
            LOCK_KEY,
            HEARTBEAT_KEY,
            run_id,
            token,
            str(self.ttl_seconds),
            datetime.utcnow().isoformat(),
        )
        if result == 1:
            logger.debug(f"Refreshed batch lock TTL for run_id: {run_id[:16]}...")
            return True
        if result == 2:
            logger.warning(f"Attempted to refresh batch lock with mismatched token/run_id: {run_id[:16]}...")
        else:
            logger.debug("Batch lock not found (may have expired)")
        return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None


def build_batch_lock(backend: Optional[str] = None) -> BatchLock:
    backend = (backend or settings.scan_lock_backend).lower()
    if backend == "redis":
        return RedisSingleFlight()
    return SingleFlight()


async def refresh_lock_heartbeat(lock: BatchLock, run_id: str, token: Optional[str], interval: float) -> None:
    """
    Background task that keeps a held batch lock alive while the run lasts.

    Stops after HEARTBEAT_MAX_FAILURES consecutive failed refreshes.
    """
    failure_count = 0
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                refreshed = await lock.refresh(run_id, token)
            except Exception as e:
                logger.warning(f"Heartbeat refresh error for run_id {run_id[:16]}...: {e}")
                refreshed = False

            if refreshed:
                failure_count = 0
                continue
            failure_count += 1
            logger.warning(
                f"Heartbeat failed for run_id: {run_id[:16]}... (consecutive failures: {failure_count})"
            )
            if failure_count >= HEARTBEAT_MAX_FAILURES:
                logger.error(f"Heartbeat stopping after {failure_count} failures for run_id: {run_id[:16]}...")
                return
    except asyncio.CancelledError:
        logger.debug(f"Heartbeat cancelled for run_id: {run_id[:16]}...")
        raise
