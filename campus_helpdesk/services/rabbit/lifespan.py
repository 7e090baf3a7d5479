import aio_pika
from aio_pika.abc import AbstractChannel, AbstractRobustConnection
from aio_pika.pool import Pool
from fastapi import FastAPI

from campus_helpdesk.settings import settings


def init_rabbit(app: FastAPI) -> None:  # pragma: no cover
    """
    Set up the RabbitMQ pools used to publish helpdesk events.

    Nothing connects until the first event is published.

    :param app: current FastAPI application.
    """

    async def open_connection() -> AbstractRobustConnection:
        return await aio_pika.connect_robust(settings.rabbit_url)

    connection_pool: Pool[AbstractRobustConnection] = Pool(
        open_connection,
        max_size=settings.rabbit_pool_size,
    )

    async def open_channel() -> AbstractChannel:
        async with connection_pool.acquire() as connection:
            return await connection.channel()

    # services.events acquires channels from this pool.
    channel_pool: Pool[AbstractChannel] = Pool(
        open_channel,
        max_size=settings.rabbit_channel_pool_size,
    )

    app.state.rmq_pool = connection_pool
    app.state.rmq_channel_pool = channel_pool


async def shutdown_rabbit(app: FastAPI) -> None:  # pragma: no cover
    """
    Close the channel pool, then the connections behind it.

    :param app: current FastAPI application.
    """
    await app.state.rmq_channel_pool.close()
    await app.state.rmq_pool.close()
