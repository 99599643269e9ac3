"""Tests for the per-scope cycle lock."""

import pytest
import redis.asyncio as redis

from primepulse.config import settings
from primepulse.worker.cycle_lock import CycleLock, lock_key

SCOPE_ID = 987654


async def _redis_available() -> bool:
    try:
        client = await redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


async def _clear(scope_id: int) -> None:
    client = await redis.from_url(settings.redis_url, decode_responses=True)
    await client.delete(lock_key(scope_id))
    await client.aclose()


def test_lock_key_is_per_scope():
    assert lock_key(1) == "primepulse:cycle:1"
    assert lock_key(1) != lock_key(2)


@pytest.mark.asyncio
async def test_lock_acquire_release():
    if not await _redis_available():
        pytest.skip("Redis not available")

    lock = CycleLock(redis_url=settings.redis_url, ttl_seconds=30)
    await _clear(SCOPE_ID)

    token = await lock.acquire(SCOPE_ID)
    assert token is not None

    info = await lock.get_lock_info(SCOPE_ID)
    assert info is not None
    assert info.get("scope_id") == SCOPE_ID
    assert info.get("token") == token
    assert 0 < info.get("ttl_seconds") <= 30

    assert await lock.acquire(SCOPE_ID) is None

    released = await lock.release(SCOPE_ID, token)
    assert released is True
    assert await lock.get_lock_info(SCOPE_ID) is None

    await lock.close()


@pytest.mark.asyncio
async def test_lock_token_mismatch():
    if not await _redis_available():
        pytest.skip("Redis not available")

    lock = CycleLock(redis_url=settings.redis_url, ttl_seconds=30)
    await _clear(SCOPE_ID)

    token = await lock.acquire(SCOPE_ID)
    assert token is not None

    released = await lock.release(SCOPE_ID, "bad_token")
    assert released is False
    assert await lock.get_lock_info(SCOPE_ID) is not None

    await _clear(SCOPE_ID)
    await lock.close()


@pytest.mark.asyncio
async def test_release_after_expiry_is_harmless():
    if not await _redis_available():
        pytest.skip("Redis not available")

    lock = CycleLock(redis_url=settings.redis_url, ttl_seconds=30)
    await _clear(SCOPE_ID)

    assert await lock.release(SCOPE_ID, "whatever") is True

    await lock.close()
