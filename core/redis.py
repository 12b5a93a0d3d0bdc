"""
Redis client construction.

One client is created per process (API or worker runner) and passed
explicitly to the queues and the automation cache.
"""

import redis.asyncio as aioredis

from core.config import Settings, settings as default_settings


def create_redis(settings: Settings = default_settings) -> aioredis.Redis:
    """Create an asyncio Redis client that returns ``str`` values."""
    return aioredis.from_url(
        settings.REDIS_URL, encoding="utf-8", decode_responses=True
    )
