"""
Redis utility module for centralized Redis configuration and connection logic.

Provides secure Redis connection management with production validation.
"""

import logging
from typing import Optional

import redis.asyncio as redis

from league.config import Config

logger = logging.getLogger(__name__)


class RedisUtils:
    """Centralized Redis configuration and connection utilities."""
    
    @staticmethod
    def get_secure_redis_url(redis_url: Optional[str] = None) -> Optional[str]:
        """Get Redis URL with security validation for production deployments."""
        candidate = redis_url or Config.REDIS_URL
        if candidate:
            if RedisUtils._validate_redis_security(candidate):
                return candidate
            logger.error("REDIS_URL contains insecure configuration")
            return None
        
        if not Config.DEBUG:
            # Production mode - no insecure defaults allowed
            logger.error("Production deployment requires secure Redis configuration. Set REDIS_URL with rediss:// protocol and authentication.")
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
        
        if redis_url.startswith('redis://localhost') or redis_url.startswith('redis://127.0.0.1'):
            return True
        if redis_url.startswith('rediss://'):
            return True
        logger.warning(f"Potentially insecure Redis URL in development: {redis_url}")
        return True
    
    @staticmethod
    async def create_redis_client(redis_url: Optional[str] = None) -> Optional[redis.Redis]:
        """Create a Redis client with secure configuration. Returns None if unreachable."""
        url = RedisUtils.get_secure_redis_url(redis_url)
        if not url:
            return None
        
        client = redis.from_url(url, decode_responses=True)
        try:
            await client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            await client.aclose()
            return None
        
        logger.info("Successfully connected to Redis")
        return client
