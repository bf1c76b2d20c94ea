from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from atelier.models.message import MessageDocument
from atelier.utils.ids import make_cursor, parse_cursor, utc_now


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("conversation_id", ASCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)]
        )
        await self.collection.create_index(
            [("conversation_id", ASCENDING), ("read", ASCENDING), ("sender_id", ASCENDING)]
        )

    async def save_message(
        self,
        message_id: ObjectId,
        conversation_id: ObjectId,
        sender_id: str,
        content: Optional[str] = None,
        attachment_url: Optional[str] = None,
        attachment_type: Optional[str] = None,
        attachment_name: Optional[str] = None,
    ) -> MessageDocument:
        doc: MessageDocument = {
            "_id": message_id,
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "attachment_url": attachment_url,
            "attachment_type": attachment_type,
            "attachment_name": attachment_name,
            "read": False,
            "created_at": utc_now(),
        }
        try:
            await self.collection.insert_one(doc)
        except DuplicateKeyError:
            # a retried insert whose first attempt already landed
            existing = await self.collection.find_one({"_id": message_id})
            if existing is None:
                raise
            doc = existing
        doc["_id"] = str(doc["_id"])
        return doc

    async def get_messages_by_conversation(
        self,
        conversation_id: ObjectId,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[MessageDocument], Optional[str]]:
        query: Dict[str, Any] = {"conversation_id": conversation_id}
        # newest page first, returned in ascending order
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            # cursor format: ts_ms:oid
            parsed = parse_cursor(cursor)
            if parsed:
                ts, oid = parsed
                query["$or"] = [
                    {"created_at": {"$lt": ts}},
                    {"created_at": ts, "_id": {"$lt": oid}},
                ]
        cur = self.collection.find(query).sort(sort).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            next_cursor = make_cursor(last["created_at"], last["_id"])
        return list(reversed(items)), next_cursor

    def _unread_query(self, conversation_id: ObjectId, reader_id: str) -> Dict[str, Any]:
        return {"conversation_id": conversation_id, "read": False, "sender_id": {"$ne": reader_id}}

    async def mark_read(self, conversation_id: ObjectId, reader_id: str) -> int:
        result = await self.collection.update_many(
            self._unread_query(conversation_id, reader_id),
            {"$set": {"read": True}},
        )
        return result.modified_count or 0

    async def count_unread(self, conversation_id: ObjectId, reader_id: str) -> int:
        return await self.collection.count_documents(self._unread_query(conversation_id, reader_id))
