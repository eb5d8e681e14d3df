import redis.asyncio as redis
from atelier.config.settings import Settings


def build_redis_client(settings: Settings) -> redis.Redis:
    # one client (and its connection pool) per app, closed in the lifespan
    return redis.Redis(
        host=settings.REDIS_HOST, port=settings.REDIS_PORT, db=settings.REDIS_DB,
        decode_responses=False)
