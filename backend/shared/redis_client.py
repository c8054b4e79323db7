"""
Redis client utilities for key-value persistence.
Provides connection management and key naming conventions.
"""

import logging
from typing import Optional

import redis

from shared.config import settings

logger = logging.getLogger(__name__)

# Global connection pool singleton
_redis_pool: Optional[redis.ConnectionPool] = None


def get_redis_client(redis_url: Optional[str] = None) -> redis.Redis:
    """
    Get Redis client with connection pooling.

    Uses singleton pattern for connection pool to reuse connections
    across the application. Responses are left as raw bytes because
    model artifacts are binary blobs.

    Args:
        redis_url: Connection URL (default from settings)

    Returns:
        Redis client instance
    """
    global _redis_pool

    if _redis_pool is None:
        url = redis_url or settings.redis_url
        logger.info(f"Initializing Redis connection pool to {url}")
        _redis_pool = redis.ConnectionPool.from_url(
            url,
            decode_responses=False,
            max_connections=20,
        )

    return redis.Redis(connection_pool=_redis_pool)


def reset_redis_pool() -> None:
    """Drop the cached connection pool (next client call reconnects)."""
    global _redis_pool

    if _redis_pool is not None:
        _redis_pool.disconnect()
        _redis_pool = None


# Key naming conventions
class RedisKeys:
    """Redis key naming conventions."""

    @staticmethod
    def namespaced(prefix: str, key: str) -> str:
        """Full redis key for a store key."""
        return f"{prefix}:{key}"

    @staticmethod
    def pattern(prefix: str, key_prefix: str = "") -> str:
        """Pattern matching every store key starting with key_prefix."""
        return f"{prefix}:{key_prefix}*"

    @staticmethod
    def strip(prefix: str, full_key: str) -> str:
        """Store key for a full redis key."""
        return full_key[len(prefix) + 1:]
