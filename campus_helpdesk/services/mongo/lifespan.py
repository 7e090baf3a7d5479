from fastapi import FastAPI
from motor.motor_asyncio import AsyncIOMotorClient

from campus_helpdesk.services.document_store import HelpdeskDocumentStore
from campus_helpdesk.settings import settings


def init_mongo(app: FastAPI) -> None:  # pragma: no cover
    """
    Creates the Mongo client and the document store on top of it.

    :param app: current fastapi application.
    """
    client = AsyncIOMotorClient(settings.mongo_url, tz_aware=True)
    app.state.mongo_client = client
    app.state.document_store = HelpdeskDocumentStore(client[settings.mongo_database])


async def shutdown_mongo(app: FastAPI) -> None:  # pragma: no cover
    """
    Closes the Mongo client.

    :param app: current FastAPI app.
    """
    app.state.mongo_client.close()
