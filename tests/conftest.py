import json
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

import pytest
from bson import ObjectId
from fakeredis import FakeServer
from fakeredis.aioredis import FakeConnection
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from redis.asyncio import ConnectionPool, Redis

from campus_helpdesk.core.security import create_access_token
from campus_helpdesk.services.auth.gate import ROLES
from campus_helpdesk.services.auth.service import AuthService
from campus_helpdesk.services.redis.dependency import get_redis
from campus_helpdesk.web.application import get_app

DEFAULT_PASSWORD = "Str0ng!Pass"


class InMemoryDocumentStore:
    """Simple in-memory substitute for the Mongo-backed document store."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.tickets: dict[str, dict[str, Any]] = {}

    async def create_user(self, document: dict[str, Any]) -> dict[str, Any]:
        user_id = str(ObjectId())
        self.users[user_id] = {**document, "id": user_id}
        return dict(self.users[user_id])

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        user = self.users.get(user_id)
        return None if user is None else dict(user)

    async def _find_user(self, field: str, value: Any) -> dict[str, Any] | None:
        for user in self.users.values():
            if user.get(field) == value:
                return dict(user)
        return None

    async def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        return await self._find_user("email", email.lower())

    async def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        return await self._find_user("username", username)

    async def get_user_by_token_hash(self, field: str, token_hash: str) -> dict[str, Any] | None:
        return await self._find_user(field, token_hash)

    async def update_user(self, user_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        user = self.users.get(user_id)
        if user is None:
            return None
        user.update(updates)
        user["updated_at"] = datetime.now(timezone.utc)
        return dict(user)

    async def update_user_by_token_hash(
        self,
        field: str,
        token_hash: str,
        updates: dict[str, Any],
    ) -> dict[str, Any] | None:
        for user in self.users.values():
            if user.get(field) == token_hash:
                user.update(updates)
                user["updated_at"] = datetime.now(timezone.utc)
                return dict(user)
        return None

    async def swap_refresh_token(
        self,
        user_id: str,
        expected_hash: str,
        new_hash: Optional[str],
    ) -> bool:
        user = self.users.get(user_id)
        if user is None or user.get("refresh_token") != expected_hash:
            return False
        user["refresh_token"] = new_hash
        return True

    async def increment_login_attempts(self, user_id: str) -> int:
        user = self.users.get(user_id)
        if user is None:
            return 0
        user["login_attempts"] = user.get("login_attempts", 0) + 1
        return user["login_attempts"]

    async def create_ticket(self, document: dict[str, Any]) -> dict[str, Any]:
        ticket_id = str(ObjectId())
        self.tickets[ticket_id] = {"comments": [], "history": [], **document, "id": ticket_id}
        return dict(self.tickets[ticket_id])

    async def get_ticket(self, ticket_id: str) -> dict[str, Any] | None:
        ticket = self.tickets.get(ticket_id)
        return None if ticket is None else dict(ticket)

    async def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            return None
        ticket.update(updates)
        return dict(ticket)

    async def delete_ticket(self, ticket_id: str) -> bool:
        return self.tickets.pop(ticket_id, None) is not None

    async def list_tickets(
        self,
        filters: dict[str, Any],
        *,
        created_by: Optional[str] = None,
    ) -> tuple[list[dict[str, Any]], int]:
        matches: list[dict[str, Any]] = []
        for ticket in self.tickets.values():
            if any(
                filters.get(key) and ticket.get(key) != filters[key]
                for key in ("status", "urgency", "issueType")
            ):
                continue
            if created_by is not None and ticket.get("createdBy") != created_by:
                continue
            if filters.get("dateFrom") and ticket["createdAt"] < filters["dateFrom"]:
                continue
            if filters.get("dateTo") and ticket["createdAt"] > filters["dateTo"]:
                continue
            if filters.get("search"):
                text = f"{ticket.get('title', '')} {ticket.get('description', '')}".lower()
                if filters["search"].lower() not in text:
                    continue
            matches.append(dict(ticket))

        matches.sort(
            key=lambda ticket: ticket.get(filters["sortBy"]) or "",
            reverse=filters["sortOrder"] == "desc",
        )
        start = (filters["page"] - 1) * filters["limit"]
        return matches[start : start + filters["limit"]], len(matches)

    async def add_comment(self, ticket_id: str, comment: dict[str, Any]) -> dict[str, Any] | None:
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            return None
        entry = {"id": uuid4().hex, **comment}
        ticket["comments"].append(entry)
        ticket["updatedAt"] = comment["createdAt"]
        return entry

    async def bulk_update_tickets(
        self,
        ticket_ids: list[str],
        updates: dict[str, Any],
        history_entry: dict[str, Any],
    ) -> int:
        modified = 0
        for ticket_id in ticket_ids:
            ticket = self.tickets.get(ticket_id)
            if ticket is None:
                continue
            ticket.update(updates)
            ticket["history"].append(history_entry)
            modified += 1
        return modified

    async def ticket_stats(self, now: datetime) -> dict[str, Any]:
        tickets = list(self.tickets.values())
        return {
            "byStatus": dict(Counter(ticket["status"] for ticket in tickets)),
            "byUrgency": dict(Counter(ticket["urgency"] for ticket in tickets)),
            "overdue": sum(
                1
                for ticket in tickets
                if ticket.get("dueDate")
                and ticket["dueDate"] < now
                and ticket["status"] not in ("resolved", "closed")
            ),
        }


class CapturingChannelPool:
    """Stands in for the aio-pika channel pool and records published messages."""

    def __init__(self) -> None:
        self.published: list[dict[str, Any]] = []

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator["CapturingChannelPool"]:
        yield self

    async def declare_exchange(self, name: str, auto_delete: bool = True) -> "_CapturingExchange":
        return _CapturingExchange(self, name)

    def events(self, exchange: str) -> list[dict[str, Any]]:
        return [event for event in self.published if event["exchange"] == exchange]


class _CapturingExchange:
    def __init__(self, pool: CapturingChannelPool, name: str) -> None:
        self._pool = pool
        self.name = name

    async def publish(self, message: Any, routing_key: str) -> None:
        self._pool.published.append(
            {
                "exchange": self.name,
                "routing_key": routing_key,
                "body": json.loads(message.body),
            }
        )


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """
    Backend for anyio pytest plugin.

    :return: backend name.
    """
    return "asyncio"


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def channel_pool() -> CapturingChannelPool:
    return CapturingChannelPool()


@pytest.fixture
async def fake_redis_pool() -> AsyncGenerator[ConnectionPool, None]:
    """
    Get instance of a fake redis.

    :yield: FakeRedis instance.
    """
    server = FakeServer()
    server.connected = True
    pool = ConnectionPool(connection_class=FakeConnection, server=server)

    yield pool

    await pool.disconnect()


@pytest.fixture
def auth_service(document_store: InMemoryDocumentStore) -> AuthService:
    return AuthService(document_store)


@pytest.fixture
def create_user(
    auth_service: AuthService,
) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Factory registering an active, verified user with the given role."""

    async def _create(
        username: str = "jdoe",
        role: str = "student",
        password: str = DEFAULT_PASSWORD,
        **extra: Any,
    ) -> dict[str, Any]:
        payload = {
            "username": username,
            "email": f"{username}@campus.edu",
            "password": password,
            "first_name": "Jamie",
            "last_name": "Doe",
            "role": role,
            "status": "active",
            "email_verified": True,
            **extra,
        }
        return await auth_service.register_user(payload, allowed_roles=ROLES)

    return _create


def _auth_headers(user: dict[str, Any]) -> dict[str, str]:
    token = create_access_token(user["id"], claims={"role": user["role"]})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers() -> Callable[[dict[str, Any]], dict[str, str]]:
    """Builds a Bearer header carrying a fresh access token for a user."""
    return _auth_headers


@pytest.fixture
def fastapi_app(
    document_store: InMemoryDocumentStore,
    channel_pool: CapturingChannelPool,
    fake_redis_pool: ConnectionPool,
) -> FastAPI:
    """
    Fixture for creating FastAPI app.

    :return: fastapi app with mocked dependencies.
    """
    application = get_app()

    async def _get_redis_override() -> AsyncGenerator[Redis, None]:
        client = Redis(connection_pool=fake_redis_pool)
        try:
            yield client
        finally:
            await client.aclose()

    application.dependency_overrides[get_redis] = _get_redis_override
    application.state.document_store = document_store
    application.state.rmq_channel_pool = channel_pool
    return application


@pytest.fixture
async def client(
    fastapi_app: FastAPI,
    anyio_backend: Any,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Fixture that creates client for requesting server.

    :param fastapi_app: the application.
    :yield: client for the app.
    """
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test", timeout=2.0) as ac:
        yield ac
