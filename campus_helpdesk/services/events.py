"""Helpers for publishing domain events via RabbitMQ."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from aio_pika import Message
from aio_pika.abc import AbstractChannel
from aio_pika.pool import Pool
from fastapi import Request

EMAIL_EXCHANGE = "email.events"
SECURITY_EXCHANGE = "security.events"
TICKET_EXCHANGE = "ticket.events"


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


async def _publish(
    pool: Pool[AbstractChannel] | None,
    exchange_name: str,
    routing_key: str,
    payload: dict[str, Any],
) -> None:
    if pool is None:
        return
    body = json.dumps(payload, default=_serialize).encode("utf-8")
    async with pool.acquire() as channel:
        exchange = await channel.declare_exchange(exchange_name, auto_delete=False)
        message = Message(body=body, content_type="application/json", delivery_mode=2)
        await exchange.publish(message, routing_key=routing_key)


def _channel_pool(request: Request) -> Pool[AbstractChannel] | None:
    return getattr(request.app.state, "rmq_channel_pool", None)


def _envelope(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": event_type,
        "payload": payload,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def publish_security_event(request: Request, event_type: str, payload: dict[str, Any]) -> None:
    await _publish(_channel_pool(request), SECURITY_EXCHANGE, event_type, _envelope(event_type, payload))


async def publish_ticket_event(request: Request, event_type: str, payload: dict[str, Any]) -> None:
    await _publish(_channel_pool(request), TICKET_EXCHANGE, event_type, _envelope(event_type, payload))


async def publish_email_event(request: Request, event_type: str, payload: dict[str, Any]) -> None:
    """Hand an outgoing email to the mailer; the payload carries the link to send."""

    await _publish(_channel_pool(request), EMAIL_EXCHANGE, event_type, payload)
