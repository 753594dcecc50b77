"""Redis client for permission write coordination.

Concurrent writers to the same clinic or staff grant are serialized with a
short-lived SET NX EX lock. The lock only guards the write; reads never touch
Redis.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum, auto
from typing import AsyncGenerator

from redis.asyncio import Redis as AsyncRedis, from_url as async_from_url
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class _RedisLifecycleState(Enum):
    """Lifecycle states for the Redis singleton.

    - UNINITIALIZED -> INITIALIZED (via init_redis)
    - INITIALIZED -> CLOSED (via close_redis)
    - CLOSED -> INITIALIZED (via init_redis, allows restart)

    init_redis() and close_redis() are idempotent; get_redis() raises
    RuntimeError unless the state is INITIALIZED.
    """
    UNINITIALIZED = auto()
    INITIALIZED = auto()
    CLOSED = auto()


class RedisClient:
    def __init__(self, redis_url: str) -> None:
        self._redis_url = redis_url
        self._redis: AsyncRedis | None = None

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = async_from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis connection established")

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis connection closed")

    async def _ensure_connected(self) -> AsyncRedis:
        if self._redis is None:
            await self.connect()
        assert self._redis is not None
        return self._redis

    @asynccontextmanager
    async def acquire_lock(
        self,
        key: str,
        ttl_seconds: int = 15,
    ) -> AsyncGenerator[bool, None]:
        """Non-blocking lock using SET NX EX.

        Yields True if the lock was acquired, False if another holder has it.
        The lock expires on its own if the holder crashes.
        """
        redis = await self._ensure_connected()
        lock_key = f"lock:{key}"
        acquired = False

        try:
            acquired = bool(await redis.set(lock_key, "1", nx=True, ex=ttl_seconds))
            yield acquired
        finally:
            if acquired:
                try:
                    await redis.delete(lock_key)
                except RedisError as exc:
                    # Lock will auto-expire anyway
                    logger.warning("lock_release_failed key=%s error=%s", lock_key, exc)


# Global instance (created at startup, not at import)
_redis_client: RedisClient | None = None
_redis_state: _RedisLifecycleState = _RedisLifecycleState.UNINITIALIZED
_redis_lock: asyncio.Lock = asyncio.Lock()


async def init_redis(redis_url: str) -> RedisClient:
    """Initialize the global Redis client; returns the existing one if already up."""
    global _redis_client, _redis_state

    async with _redis_lock:
        if _redis_state == _RedisLifecycleState.INITIALIZED:
            assert _redis_client is not None
            logger.debug("Redis already initialized, returning existing client")
            return _redis_client

        logger.info("Initializing Redis client (current state: %s)", _redis_state.name)
        _redis_client = RedisClient(redis_url)
        await _redis_client.connect()
        _redis_state = _RedisLifecycleState.INITIALIZED
        logger.info("Redis client initialized successfully")
        return _redis_client


async def close_redis() -> None:
    global _redis_client, _redis_state

    async with _redis_lock:
        if _redis_state != _RedisLifecycleState.INITIALIZED:
            logger.debug("Redis not initialized (state: %s), nothing to close", _redis_state.name)
            return

        logger.info("Closing Redis client")
        if _redis_client is not None:
            await _redis_client.disconnect()
            _redis_client = None
        _redis_state = _RedisLifecycleState.CLOSED
        logger.info("Redis client closed successfully")


def get_redis() -> RedisClient:
    """Get the global Redis client.

    Raises:
        RuntimeError: If init_redis() has not run
    """
    if _redis_state != _RedisLifecycleState.INITIALIZED or _redis_client is None:
        raise RuntimeError("Redis client not initialized. Call init_redis() first.")
    return _redis_client


def _reset_for_testing() -> None:
    """Drop the global client without closing it. Tests only."""
    global _redis_client, _redis_state, _redis_lock
    _redis_client = None
    _redis_state = _RedisLifecycleState.UNINITIALIZED
    _redis_lock = asyncio.Lock()
