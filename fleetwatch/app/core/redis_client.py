"""
Redis client initialization.

Redis backs the idempotency store and the optional event stream.
"""

import redis.asyncio as redis
from fleetwatch.app.core.config import settings


# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)
