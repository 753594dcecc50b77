from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from ...domain.ports.permissions import WriteLock
from ...errors import ConflictError
from ...infrastructure.redis import RedisClient


@asynccontextmanager
async def no_write_lock(key: str) -> AsyncIterator[None]:
    yield


def redis_write_lock(client: RedisClient, ttl_seconds: int) -> WriteLock:
    """Per-key write lock backed by Redis SET NX EX.

    A key already held by another writer fails fast with ConflictError.
    """

    @asynccontextmanager
    async def lock(key: str) -> AsyncIterator[None]:
        async with client.acquire_lock(key, ttl_seconds=ttl_seconds) as acquired:
            if not acquired:
                raise ConflictError(
                    "Permission update already in progress",
                    details={"lock": key},
                )
            yield

    return lock


def clinic_lock_key(clinic_id: object) -> str:
    return f"permissions:clinic:{clinic_id}"


def staff_lock_key(clinic_id: object, staff_id: object) -> str:
    return f"permissions:staff:{clinic_id}:{staff_id}"
