"""
Redis utility module for centralized change-feed connection logic.

Provides secure Redis URL resolution and client creation for the push feed.
"""

import logging
from typing import Optional

import redis.asyncio as redis

from ranksync.config import Config
from ranksync.utils.sync_exceptions import FeedUnavailable

logger = logging.getLogger(__name__)


class RedisUtils:
    """Centralized Redis configuration and connection utilities."""

    @staticmethod
    def get_secure_redis_url() -> Optional[str]:
        """Get Redis URL with security validation for production deployments."""
        if Config.REDIS_URL:
            if RedisUtils._validate_redis_security(Config.REDIS_URL):
                return Config.REDIS_URL
            logger.error("REDIS_URL contains insecure configuration")
            return None

        if not Config.DEBUG:
            # Production mode - no insecure defaults allowed
            logger.error("No REDIS_URL configured; live updates disabled. Set REDIS_URL with rediss:// protocol and authentication.")
            return None

        logger.warning("Development mode: using insecure localhost Redis. Do not use in production!")
        return 'redis://localhost:6379'

    @staticmethod
    def _validate_redis_security(redis_url: str) -> bool:
        """Validate that Redis URL meets security requirements."""
        if not redis_url:
            return False

        if not Config.DEBUG:
            if not redis_url.startswith('rediss://'):
                logger.error("Production Redis must use rediss:// (TLS) protocol")
                return False
            if '@' not in redis_url:
                logger.error("Production Redis must include authentication credentials")
                return False
            return True

        if redis_url.startswith(('redis://localhost', 'redis://127.0.0.1', 'rediss://')):
            return True
        logger.warning(f"Potentially insecure Redis URL in development: {redis_url}")
        return True

    @staticmethod
    async def create_redis_client(redis_url: Optional[str] = None) -> 'redis.Redis':
        """Create a Redis client and verify the connection.

        Raises:
            FeedUnavailable: no usable URL, or the server did not answer PING.
        """
        redis_url = redis_url or RedisUtils.get_secure_redis_url()
        if not redis_url:
            raise FeedUnavailable("no Redis URL configured")

        client = redis.from_url(redis_url)
        try:
            await client.ping()
        except (redis.RedisError, OSError) as e:
            await client.aclose()
            logger.error(f"Failed to connect to Redis: {e}")
            raise FeedUnavailable(str(e)) from e

        logger.info("Successfully connected to Redis")
        return client
