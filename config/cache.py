from typing import Optional
from redis.asyncio import Redis, from_url
from config.settings import settings

# One connection pool per process; invoices, blobs, catalog, providers and
# the rate limiter all share it.
_client: Optional[Redis] = None


async def get_redis() -> Redis:
    global _client
    if _client is None:
        client = from_url(
            settings.REDIS_URL,
            decode_responses=False,  # repositories decode what they read
            socket_keepalive=True,
            health_check_interval=30,
        )
        # Fail fast on startup if Redis is unreachable.
        await client.ping()
        _client = client
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        client, _client = _client, None
        await client.aclose()
