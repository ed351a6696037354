import json
from typing import Any

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


class RedisClient:
    """Owns the process-wide async Redis connection."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._redis: redis.Redis | None = None

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
            await self._redis.ping()
            logger.info("redis_connected", redis_url=self.redis_url)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("redis_connection_closed")

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, ensuring connection."""
        if self._redis is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._redis


async def ensure_consumer_group(client: redis.Redis, stream: str, group: str) -> None:
    """Ensure a consumer group exists for the stream."""
    try:
        await client.xgroup_create(stream, group, id="0", mkstream=True)
        logger.info("consumer_group_created", stream=stream, group=group)
    except redis.ResponseError as e:
        if "BUSYGROUP" in str(e):
            logger.debug("consumer_group_exists", stream=stream, group=group)
        else:
            raise


def decode_stream_data(fields: dict[str, Any]) -> dict[str, Any]:
    """Decode the JSON ``data`` field of a stream entry."""
    raw = fields.get("data") or fields.get(b"data")
    if isinstance(raw, bytes):
        raw = raw.decode()
    if not raw:
        raise ValueError("stream entry has no data field")
    return json.loads(raw)
