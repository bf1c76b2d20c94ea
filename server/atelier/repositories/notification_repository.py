from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from atelier.models.notification import NotificationDocument, NotificationType
from atelier.utils.ids import utc_now


class NotificationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["notifications"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("user_id", ASCENDING), ("read", ASCENDING)])

    async def create(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> NotificationDocument:
        doc: NotificationDocument = {
            "user_id": user_id,
            "type": type,
            "title": title,
            "message": message,
            "link": link,
            "read": False,
            "created_at": utc_now(),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[NotificationDocument]:
        cur = self.collection.find({"user_id": user_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    async def count_unread(self, user_id: str) -> int:
        return await self.collection.count_documents({"user_id": user_id, "read": False})

    async def mark_read(self, notification_id: ObjectId, user_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": notification_id, "user_id": user_id},
            {"$set": {"read": True}},
        )
        return bool(result.matched_count)

    async def mark_all_read(self, user_id: str) -> int:
        result = await self.collection.update_many({"user_id": user_id, "read": False}, {"$set": {"read": True}})
        return result.modified_count or 0

    async def delete(self, notification_id: ObjectId, user_id: str) -> bool:
        result = await self.collection.delete_one({"_id": notification_id, "user_id": user_id})
        return bool(result.deleted_count)
