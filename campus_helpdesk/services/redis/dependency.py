from typing import AsyncGenerator

from redis.asyncio import Redis
from starlette.requests import Request


async def get_redis(
    request: Request,
) -> AsyncGenerator[Redis, None]:  # pragma: no cover
    """
    Yields a redis client bound to the application's connection pool.

    :param request: current request.
    :yield: redis client.
    """
    client = Redis(connection_pool=request.app.state.redis_pool)
    try:
        yield client
    finally:
        await client.aclose()
