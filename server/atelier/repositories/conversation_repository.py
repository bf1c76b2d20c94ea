from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from atelier.models.conversation import ConversationDocument
from atelier.utils.ids import make_cursor, pair_key, parse_cursor, utc_now


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True)
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("last_activity_at", DESCENDING)])

    async def get_by_id(self, conversation_id: ObjectId) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"_id": conversation_id})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def find_by_pair(self, user_a: str, user_b: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"pair_key": pair_key(user_a, user_b)})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def get_or_create(self, requester_id: str, provider_id: str) -> ConversationDocument:
        existing = await self.find_by_pair(requester_id, provider_id)
        if existing:
            return existing
        now = utc_now()
        doc: ConversationDocument = {
            "requester_id": requester_id,
            "provider_id": provider_id,
            "participants": sorted([requester_id, provider_id]),
            "pair_key": pair_key(requester_id, provider_id),
            "created_at": now,
            "last_activity_at": now,
            "last_message_preview": None,
        }
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            # a concurrent call for the same pair won the insert
            winner = await self.find_by_pair(requester_id, provider_id)
            if winner is None:
                raise
            return winner
        doc["_id"] = str(result.inserted_id)
        return doc

    async def update_on_new_message(self, conversation_id: ObjectId, preview: Optional[str]) -> None:
        await self.collection.update_one(
            {"_id": conversation_id},
            {
                "$set": {
                    "last_activity_at": utc_now(),
                    "last_message_preview": preview,
                },
            },
        )

    async def list_for_user(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> Tuple[List[ConversationDocument], Optional[str]]:
        query: Dict[str, Any] = {"participants": user_id}
        sort = [("last_activity_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            parsed = parse_cursor(cursor)
            if parsed:
                ts, oid = parsed
                query["$or"] = [
                    {"last_activity_at": {"$lt": ts}},
                    {"last_activity_at": ts, "_id": {"$lt": oid}},
                ]

        cursor_db = self.collection.find(query).sort(sort).limit(limit)
        items = await cursor_db.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            next_cursor = make_cursor(last["last_activity_at"], last["_id"])
        return items, next_cursor
