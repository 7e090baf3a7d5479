"""Wrapper around the document database (MongoDB)."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from campus_helpdesk.validation.tickets import CLOSED_STATUSES


def _object_id(value: str) -> ObjectId | None:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def build_ticket_query(
    filters: dict[str, Any],
    *,
    created_by: str | None = None,
) -> dict[str, Any]:
    """Translate sanitized listing filters into a Mongo query."""

    query: dict[str, Any] = {}
    for key in ("status", "urgency", "issueType"):
        if filters.get(key):
            query[key] = filters[key]
    if created_by is not None:
        query["createdBy"] = created_by

    created_range: dict[str, datetime] = {}
    if filters.get("dateFrom"):
        created_range["$gte"] = filters["dateFrom"]
    if filters.get("dateTo"):
        created_range["$lte"] = filters["dateTo"]
    if created_range:
        query["createdAt"] = created_range

    if filters.get("search"):
        regex = {"$regex": re.escape(filters["search"]), "$options": "i"}
        query["$or"] = [{"title": regex}, {"description": regex}]
    return query


class HelpdeskDocumentStore:
    """High-level accessors for user and ticket documents."""

    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self._db = database

    # Users

    async def create_user(self, document: dict[str, Any]) -> dict[str, Any]:
        payload = dict(document)
        result = await self._db.users.insert_one(payload)
        payload["_id"] = result.inserted_id
        return self._normalize(payload)

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        object_id = _object_id(user_id)
        if object_id is None:
            return None
        document = await self._db.users.find_one({"_id": object_id})
        return None if document is None else self._normalize(document)

    async def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        document = await self._db.users.find_one({"email": email.lower()})
        return None if document is None else self._normalize(document)

    async def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        document = await self._db.users.find_one({"username": username})
        return None if document is None else self._normalize(document)

    async def get_user_by_token_hash(self, field: str, token_hash: str) -> dict[str, Any] | None:
        """Find the user holding ``token_hash`` in ``field``."""

        document = await self._db.users.find_one({field: token_hash})
        return None if document is None else self._normalize(document)

    async def update_user(
        self,
        user_id: str,
        updates: dict[str, Any],
    ) -> dict[str, Any] | None:
        object_id = _object_id(user_id)
        if object_id is None:
            return None
        updates = {**updates, "updated_at": datetime.now(timezone.utc)}
        document = await self._db.users.find_one_and_update(
            {"_id": object_id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        return None if document is None else self._normalize(document)

    async def update_user_by_token_hash(
        self,
        field: str,
        token_hash: str,
        updates: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Update the user holding ``token_hash`` in ``field``, matching and writing atomically."""

        document = await self._db.users.find_one_and_update(
            {field: token_hash},
            {"$set": {**updates, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        return None if document is None else self._normalize(document)

    async def swap_refresh_token(
        self,
        user_id: str,
        expected_hash: str,
        new_hash: str | None,
    ) -> bool:
        """Replace the stored refresh token hash only if it still equals ``expected_hash``."""

        object_id = _object_id(user_id)
        if object_id is None:
            return False
        document = await self._db.users.find_one_and_update(
            {"_id": object_id, "refresh_token": expected_hash},
            {"$set": {"refresh_token": new_hash, "updated_at": datetime.now(timezone.utc)}},
        )
        return document is not None

    async def increment_login_attempts(self, user_id: str) -> int:
        object_id = _object_id(user_id)
        if object_id is None:
            return 0
        document = await self._db.users.find_one_and_update(
            {"_id": object_id},
            {"$inc": {"login_attempts": 1}},
            return_document=ReturnDocument.AFTER,
        )
        return 0 if document is None else int(document.get("login_attempts", 0))

    # Tickets

    async def create_ticket(self, document: dict[str, Any]) -> dict[str, Any]:
        payload = {"comments": [], "history": [], **document}
        result = await self._db.tickets.insert_one(payload)
        payload["_id"] = result.inserted_id
        return self._normalize(payload)

    async def get_ticket(self, ticket_id: str) -> dict[str, Any] | None:
        object_id = _object_id(ticket_id)
        if object_id is None:
            return None
        document = await self._db.tickets.find_one({"_id": object_id})
        return None if document is None else self._normalize(document)

    async def update_ticket(
        self,
        ticket_id: str,
        updates: dict[str, Any],
    ) -> dict[str, Any] | None:
        object_id = _object_id(ticket_id)
        if object_id is None:
            return None
        document = await self._db.tickets.find_one_and_update(
            {"_id": object_id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        return None if document is None else self._normalize(document)

    async def delete_ticket(self, ticket_id: str) -> bool:
        object_id = _object_id(ticket_id)
        if object_id is None:
            return False
        result = await self._db.tickets.delete_one({"_id": object_id})
        return result.deleted_count == 1

    async def list_tickets(
        self,
        filters: dict[str, Any],
        *,
        created_by: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """Return one page of tickets matching ``filters`` and the total match count."""

        query = build_ticket_query(filters, created_by=created_by)
        direction = ASCENDING if filters["sortOrder"] == "asc" else DESCENDING
        skip = (filters["page"] - 1) * filters["limit"]

        total = await self._db.tickets.count_documents(query)
        cursor = (
            self._db.tickets.find(query)
            .sort(filters["sortBy"], direction)
            .skip(skip)
            .limit(filters["limit"])
        )
        documents = await cursor.to_list(length=None)
        return [self._normalize(doc) for doc in documents], total

    async def add_comment(
        self,
        ticket_id: str,
        comment: dict[str, Any],
    ) -> dict[str, Any] | None:
        object_id = _object_id(ticket_id)
        if object_id is None:
            return None
        entry = {"id": uuid4().hex, **comment}
        document = await self._db.tickets.find_one_and_update(
            {"_id": object_id},
            {"$push": {"comments": entry}, "$set": {"updatedAt": comment["createdAt"]}},
        )
        return None if document is None else entry

    async def bulk_update_tickets(
        self,
        ticket_ids: list[str],
        updates: dict[str, Any],
        history_entry: dict[str, Any],
    ) -> int:
        object_ids = [oid for oid in map(_object_id, ticket_ids) if oid is not None]
        if not object_ids:
            return 0
        result = await self._db.tickets.update_many(
            {"_id": {"$in": object_ids}},
            {"$set": updates, "$push": {"history": history_entry}},
        )
        return result.modified_count

    async def ticket_stats(self, now: datetime) -> dict[str, Any]:
        """Count tickets per status and urgency, and open tickets due before ``now``."""

        pipeline = [
            {
                "$facet": {
                    "byStatus": [{"$group": {"_id": "$status", "count": {"$sum": 1}}}],
                    "byUrgency": [{"$group": {"_id": "$urgency", "count": {"$sum": 1}}}],
                    "overdue": [
                        {"$match": {"dueDate": {"$lt": now}, "status": {"$nin": list(CLOSED_STATUSES)}}},
                        {"$count": "count"},
                    ],
                },
            },
        ]
        results = await self._db.tickets.aggregate(pipeline).to_list(length=1)
        facets = results[0] if results else {}
        overdue = facets.get("overdue") or [{"count": 0}]
        return {
            "byStatus": {row["_id"]: row["count"] for row in facets.get("byStatus", []) if row["_id"]},
            "byUrgency": {row["_id"]: row["count"] for row in facets.get("byUrgency", []) if row["_id"]},
            "overdue": overdue[0]["count"],
        }

    @staticmethod
    def _normalize(document: dict[str, Any]) -> dict[str, Any]:
        normalized = dict(document)
        normalized["id"] = str(normalized.pop("_id"))
        return normalized
