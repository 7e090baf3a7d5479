from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from conftest import CapturingChannelPool, InMemoryDocumentStore

CreateUser = Callable[..., Awaitable[dict[str, Any]]]
AuthHeaders = Callable[[dict[str, Any]], dict[str, str]]

TICKET = {
    "title": "Projector not working",
    "description": "The projector in lecture room B12 will not turn on at all",
    "issueType": "Hardware",
    "department": "IT Support",
    "location": "Room B12",
}


async def _create_ticket(
    client: AsyncClient,
    fastapi_app: FastAPI,
    headers: dict[str, str],
    **overrides: Any,
) -> dict[str, Any]:
    response = await client.post(
        fastapi_app.url_path_for("create_ticket"),
        json={**TICKET, **overrides},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["ticket"]


@pytest.mark.anyio
async def test_create_ticket_applies_defaults_and_sla(
    client: AsyncClient,
    fastapi_app: FastAPI,
    channel_pool: CapturingChannelPool,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    student = await create_user("stud")
    other = await create_user("other_student")

    ticket = await _create_ticket(
        client,
        fastapi_app,
        auth_headers(student),
        createdBy=other["id"],
        assignedTo=other["id"],
    )

    assert ticket["createdBy"] == student["id"]
    assert "assignedTo" not in ticket
    assert ticket["issueType"] == "hardware"
    assert ticket["urgency"] == "medium"
    assert ticket["status"] == "open"
    created = datetime.fromisoformat(ticket["createdAt"])
    assert datetime.fromisoformat(ticket["dueDate"]) - created == timedelta(hours=48)
    assert ticket["sla"]["status"] == "normal"
    assert ticket["sla"]["breached"] is False
    assert 47 * 60 <= ticket["sla"]["minutesRemaining"] <= 48 * 60

    event = channel_pool.events("ticket.events")[0]
    assert event["routing_key"] == "ticket.created"
    assert event["body"]["payload"]["ticket_id"] == ticket["id"]


@pytest.mark.anyio
async def test_create_ticket_returns_warnings(
    client: AsyncClient,
    fastapi_app: FastAPI,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    student = await create_user("stud")

    response = await client.post(
        fastapi_app.url_path_for("create_ticket"),
        json={**TICKET, "urgency": "critical", "department": "Rocketry"},
        headers=auth_headers(student),
    )

    assert response.status_code == 201
    assert len(response.json()["warnings"]) == 2


@pytest.mark.anyio
async def test_invalid_ticket_is_rejected_with_all_errors(
    client: AsyncClient,
    fastapi_app: FastAPI,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
    document_store: InMemoryDocumentStore,
) -> None:
    student = await create_user("stud")
    url = fastapi_app.url_path_for("create_ticket")

    missing = await client.post(url, json={"title": "Printer jam"}, headers=auth_headers(student))
    malicious = await client.post(
        url,
        json={**TICKET, "title": "<script>alert(1)</script>", "urgency": "whenever"},
        headers=auth_headers(student),
    )
    not_object = await client.post(url, json=["title"], headers=auth_headers(student))

    assert missing.status_code == 400
    assert missing.json()["detail"] == {
        "message": "Validation failed",
        "errors": ["Description is required", "Issue Type is required"],
        "warnings": [],
    }
    assert malicious.status_code == 400
    assert "Title contains suspicious content" in malicious.json()["detail"]["errors"]
    assert len(malicious.json()["detail"]["errors"]) == 2
    assert not_object.json()["detail"]["errors"] == ["Ticket data is required and must be an object"]
    assert document_store.tickets == {}


@pytest.mark.anyio
async def test_explicit_due_date_is_checked(
    client: AsyncClient,
    fastapi_app: FastAPI,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    student = await create_user("stud")
    url = fastapi_app.url_path_for("create_ticket")
    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    late = (datetime.now(timezone.utc) + timedelta(days=5)).isoformat()

    rejected = await client.post(url, json={**TICKET, "dueDate": past}, headers=auth_headers(student))
    accepted = await client.post(
        url,
        json={**TICKET, "urgency": "high", "dueDate": late},
        headers=auth_headers(student),
    )

    assert rejected.status_code == 400
    assert "Due date cannot be in the past" in rejected.json()["detail"]["errors"]
    assert accepted.status_code == 201
    assert accepted.json()["warnings"] == [
        "Due date exceeds recommended SLA timeframe for high priority",
    ]
    assert datetime.fromisoformat(accepted.json()["ticket"]["dueDate"]) == datetime.fromisoformat(late)


@pytest.mark.anyio
async def test_ticket_creation_requires_authentication(client: AsyncClient, fastapi_app: FastAPI) -> None:
    response = await client.post(fastapi_app.url_path_for("create_ticket"), json=TICKET)

    assert response.status_code == 401


@pytest.mark.anyio
async def test_students_only_see_their_own_tickets(
    client: AsyncClient,
    fastapi_app: FastAPI,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    alice = await create_user("alice")
    bob = await create_user("bob")
    tech = await create_user("tech", role="technician")
    alice_ticket = await _create_ticket(client, fastapi_app, auth_headers(alice))
    await _create_ticket(client, fastapi_app, auth_headers(bob), urgency="high")
    url = fastapi_app.url_path_for("list_tickets")

    alice_page = (await client.get(url, headers=auth_headers(alice))).json()
    tech_page = (await client.get(url, headers=auth_headers(tech))).json()
    high_only = (await client.get(url, params={"urgency": "HIGH"}, headers=auth_headers(tech))).json()
    foreign = await client.get(
        fastapi_app.url_path_for("get_ticket", ticket_id=alice_ticket["id"]),
        headers=auth_headers(bob),
    )

    assert alice_page["total"] == 1
    assert alice_page["items"][0]["id"] == alice_ticket["id"]
    assert (alice_page["page"], alice_page["limit"], alice_page["pages"]) == (1, 10, 1)
    assert tech_page["total"] == 2
    assert high_only["total"] == 1
    assert foreign.status_code == 403
    assert foreign.json()["detail"] == "forbidden"


@pytest.mark.anyio
async def test_invalid_filters_are_rejected(
    client: AsyncClient,
    fastapi_app: FastAPI,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    student = await create_user("stud")

    response = await client.get(
        fastapi_app.url_path_for("list_tickets"),
        params={"status": "archived", "limit": "500"},
        headers=auth_headers(student),
    )

    assert response.status_code == 400
    assert response.json()["detail"]["errors"] == [
        "Invalid status filter: archived",
        "Limit must be between 1 and 100",
    ]


@pytest.mark.anyio
async def test_unknown_ticket(
    client: AsyncClient,
    fastapi_app: FastAPI,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    tech = await create_user("tech", role="technician")

    response = await client.get(
        fastapi_app.url_path_for("get_ticket", ticket_id="65f0c0ffee0000000000beef"),
        headers=auth_headers(tech),
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "ticket_not_found"


@pytest.mark.anyio
async def test_update_ticket_permissions(
    client: AsyncClient,
    fastapi_app: FastAPI,
    channel_pool: CapturingChannelPool,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    student = await create_user("stud")
    tech = await create_user("tech", role="technician")
    ticket = await _create_ticket(client, fastapi_app, auth_headers(student))
    url = fastapi_app.url_path_for("update_ticket", ticket_id=ticket["id"])

    assign = await client.patch(url, json={"assignedTo": tech["id"]}, headers=auth_headers(student))
    escalate = await client.patch(
        url,
        json={"urgency": "critical", "assignedTo": tech["id"]},
        headers=auth_headers(tech),
    )
    resolve = await client.patch(url, json={"status": "resolved"}, headers=auth_headers(tech))
    reopen = await client.patch(url, json={"status": "open"}, headers=auth_headers(student))
    tech_reopen = await client.patch(url, json={"status": "open"}, headers=auth_headers(tech))

    assert assign.status_code == 403
    assert escalate.status_code == 200
    escalated = escalate.json()["ticket"]
    assert escalated["assignedTo"] == tech["id"]
    due = datetime.fromisoformat(escalated["dueDate"]) - datetime.fromisoformat(escalated["createdAt"])
    assert due == timedelta(hours=4)
    assert resolve.json()["ticket"]["status"] == "resolved"
    assert resolve.json()["ticket"]["urgency"] == "critical"
    assert reopen.status_code == 403
    assert reopen.json()["detail"] == "reopen_not_allowed"
    assert tech_reopen.status_code == 200
    assert tech_reopen.json()["warnings"] == ["Reopening a closed ticket requires additional authorization."]
    assert [event["routing_key"] for event in channel_pool.events("ticket.events")][1:] == [
        "ticket.updated",
        "ticket.updated",
        "ticket.updated",
    ]


@pytest.mark.anyio
async def test_internal_comments_are_hidden_from_students(
    client: AsyncClient,
    fastapi_app: FastAPI,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    student = await create_user("stud")
    tech = await create_user("tech", role="technician")
    ticket = await _create_ticket(client, fastapi_app, auth_headers(student))
    url = fastapi_app.url_path_for("add_comment", ticket_id=ticket["id"])

    forbidden = await client.post(
        url,
        json={"content": "Note to self", "isInternal": True},
        headers=auth_headers(student),
    )
    public = await client.post(url, json={"content": "Still broken"}, headers=auth_headers(student))
    internal = await client.post(
        url,
        json={"content": "Replace the bulb", "isInternal": True},
        headers=auth_headers(tech),
    )
    suspicious = await client.post(
        url,
        json={"content": "<script>steal()</script>"},
        headers=auth_headers(student),
    )

    assert forbidden.status_code == 403
    assert public.status_code == 201
    assert public.json()["comment"]["author"] == student["id"]
    assert internal.status_code == 201
    assert suspicious.status_code == 400

    detail_url = fastapi_app.url_path_for("get_ticket", ticket_id=ticket["id"])
    student_view = (await client.get(detail_url, headers=auth_headers(student))).json()["ticket"]
    tech_view = (await client.get(detail_url, headers=auth_headers(tech))).json()["ticket"]
    assert [comment["content"] for comment in student_view["comments"]] == ["Still broken"]
    assert len(tech_view["comments"]) == 2


@pytest.mark.anyio
async def test_bulk_operation_requires_support_role(
    client: AsyncClient,
    fastapi_app: FastAPI,
    channel_pool: CapturingChannelPool,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
    document_store: InMemoryDocumentStore,
) -> None:
    student = await create_user("stud")
    tech = await create_user("tech", role="technician")
    first = await _create_ticket(client, fastapi_app, auth_headers(student))
    second = await _create_ticket(client, fastapi_app, auth_headers(student))
    url = fastapi_app.url_path_for("bulk_operation")
    payload = {
        "ticketIds": [first["id"], second["id"], first["id"]],
        "action": "Resolved",
        "notes": "Fixed by replacing the lamp",
    }

    denied = await client.post(url, json=payload, headers=auth_headers(student))
    applied = await client.post(url, json=payload, headers=auth_headers(tech))
    invalid = await client.post(url, json={"ticketIds": [], "action": "resolved"}, headers=auth_headers(tech))

    assert denied.status_code == 403
    assert applied.status_code == 200
    assert applied.json() == {"action": "resolved", "status": "resolved", "requested": 2, "modified": 2}
    assert document_store.tickets[first["id"]]["status"] == "resolved"
    assert document_store.tickets[first["id"]]["history"][0]["performedBy"] == tech["id"]
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["errors"] == ["At least one ticket ID is required"]
    assert channel_pool.events("ticket.events")[-1]["routing_key"] == "ticket.bulk"


@pytest.mark.anyio
async def test_only_admins_delete_tickets(
    client: AsyncClient,
    fastapi_app: FastAPI,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    student = await create_user("stud")
    tech = await create_user("tech", role="technician")
    admin = await create_user("boss", role="admin")
    ticket = await _create_ticket(client, fastapi_app, auth_headers(student))
    url = fastapi_app.url_path_for("delete_ticket", ticket_id=ticket["id"])

    by_tech = await client.delete(url, headers=auth_headers(tech))
    by_admin = await client.delete(url, headers=auth_headers(admin))
    again = await client.delete(url, headers=auth_headers(admin))

    assert by_tech.status_code == 403
    assert by_admin.status_code == 204
    assert again.status_code == 404


@pytest.mark.anyio
async def test_sla_preview(
    client: AsyncClient,
    fastapi_app: FastAPI,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    student = await create_user("stud")
    url = fastapi_app.url_path_for("sla_preview")
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()

    plain = (await client.get(url, params={"urgency": "critical"}, headers=auth_headers(student))).json()
    checked = (
        await client.get(url, params={"urgency": "low", "dueDate": past}, headers=auth_headers(student))
    ).json()
    unknown = (await client.get(url, params={"urgency": "whenever"}, headers=auth_headers(student))).json()
    anonymous = await client.get(url, params={"urgency": "high"})

    due = datetime.fromisoformat(plain["slaDueDate"]) - datetime.now(timezone.utc)
    assert timedelta(hours=3, minutes=59) < due <= timedelta(hours=4)
    assert plain["dueDateCheck"] is None
    assert checked["dueDateCheck"]["valid"] is False
    assert checked["dueDateCheck"]["errors"] == ["Due date cannot be in the past"]
    assert unknown["slaDueDate"] is None
    assert anonymous.status_code == 200
    assert anonymous.json()["slaDueDate"] is not None


@pytest.mark.anyio
async def test_ticket_stats_counts_overdue_tickets(
    client: AsyncClient,
    fastapi_app: FastAPI,
    document_store: InMemoryDocumentStore,
    create_user: CreateUser,
    auth_headers: AuthHeaders,
) -> None:
    student = await create_user("stud")
    tech = await create_user("tech", role="technician")
    late = await _create_ticket(client, fastapi_app, auth_headers(student), urgency="high")
    done = await _create_ticket(client, fastapi_app, auth_headers(student))
    await _create_ticket(client, fastapi_app, auth_headers(student))
    yesterday = datetime.now(timezone.utc) - timedelta(days=1)
    document_store.tickets[late["id"]]["dueDate"] = yesterday
    document_store.tickets[done["id"]].update({"dueDate": yesterday, "status": "closed"})
    url = fastapi_app.url_path_for("ticket_stats")

    forbidden = await client.get(url, headers=auth_headers(student))
    stats = (await client.get(url, headers=auth_headers(tech))).json()
    listed = (await client.get(fastapi_app.url_path_for("list_tickets"), headers=auth_headers(tech))).json()
    ticket_url = fastapi_app.url_path_for("get_ticket", ticket_id=late["id"])
    shown = (await client.get(ticket_url, headers=auth_headers(tech))).json()

    assert forbidden.status_code == 403
    assert stats["total"] == 3
    assert stats["byStatus"] == {
        "open": 2,
        "in-progress": 0,
        "awaiting-user": 0,
        "resolved": 0,
        "closed": 1,
    }
    assert stats["byUrgency"] == {"low": 0, "medium": 2, "high": 1, "critical": 0}
    assert stats["overdue"] == 1
    assert shown["ticket"]["sla"] == {"status": "breached", "minutesRemaining": 0, "breached": True}
    states = {item["id"]: item["sla"]["status"] for item in listed["items"]}
    assert states[late["id"]] == "breached"
    assert states[done["id"]] == "completed"
