"""
Redis client initialization and the shipment sync run lock.

Only one sync run may be active system-wide; the lock is a Redis key set
with NX and a TTL, released only by the token that acquired it.
"""

import uuid
import logging
from typing import Optional

import redis.asyncio as redis
from backend.app.core.config import settings

logger = logging.getLogger(__name__)

SYNC_LOCK_KEY = "shipment-sync:lock"

# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.

    This can be used as a FastAPI dependency if needed.
    """
    return redis_client


async def acquire_run_lock(client, key: str = SYNC_LOCK_KEY, ttl_seconds: int = None) -> Optional[str]:
    """
    Try to take the run lock.

    Args:
        client: Redis client
        key: Lock key
        ttl_seconds: Expiry so a crashed holder cannot block runs forever

    Returns:
        The holder token, or None if another holder has the lock
    """
    token = uuid.uuid4().hex
    acquired = await client.set(
        key, token, nx=True, ex=ttl_seconds or settings.sync_lock_ttl_seconds
    )
    if not acquired:
        logger.info("Run lock %s is held by another run", key)
        return None
    return token


async def release_run_lock(client, token: str, key: str = SYNC_LOCK_KEY) -> bool:
    """
    Release the run lock if ``token`` still owns it.

    Returns:
        True if the lock was released, False if it expired or changed hands
    """
    current = await client.get(key)
    if isinstance(current, bytes):
        current = current.decode()
    if current != token:
        logger.warning("Run lock %s no longer owned by this run", key)
        return False
    await client.delete(key)
    return True
