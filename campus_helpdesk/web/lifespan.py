from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from campus_helpdesk.services.mongo.lifespan import init_mongo, shutdown_mongo
from campus_helpdesk.services.rabbit.lifespan import init_rabbit, shutdown_rabbit
from campus_helpdesk.services.redis.lifespan import init_redis, shutdown_redis


@asynccontextmanager
async def lifespan_setup(
    app: FastAPI,
) -> AsyncGenerator[None, None]:  # pragma: no cover
    """
    Actions to run on application startup.

    This function uses fastAPI app to store data
    in the state, such as db_engine.

    :param app: the fastAPI application.
    :return: function that actually performs actions.
    """

    app.middleware_stack = None
    init_mongo(app)
    init_redis(app)
    init_rabbit(app)
    app.middleware_stack = app.build_middleware_stack()

    yield
    await shutdown_rabbit(app)
    await shutdown_redis(app)
    await shutdown_mongo(app)
