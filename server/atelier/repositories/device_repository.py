from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from atelier.models.device import DeviceDocument, PushPlatform
from atelier.utils.ids import utc_now


class DeviceRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["devices"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("user_id", ASCENDING), ("platform", ASCENDING), ("token", ASCENDING)], unique=True
        )
        await self.collection.create_index([("token", ASCENDING)])

    async def register(self, user_id: str, platform: PushPlatform, token: str) -> DeviceDocument:
        now = utc_now()
        await self.collection.update_one(
            {"user_id": user_id, "platform": platform, "token": token},
            {"$set": {"last_seen_at": now}, "$setOnInsert": {"registered_at": now}},
            upsert=True,
        )
        return {"user_id": user_id, "platform": platform, "token": token, "last_seen_at": now}

    async def get_tokens(self, user_id: str, platform: Optional[PushPlatform] = None) -> List[str]:
        """Most recently seen devices first."""
        query: Dict[str, Any] = {"user_id": user_id}
        if platform:
            query["platform"] = platform
        cur = self.collection.find(query, {"token": 1}).sort([("last_seen_at", DESCENDING)])
        return [it["token"] for it in await cur.to_list(length=100)]

    async def remove_tokens(self, tokens: List[str]) -> int:
        # tokens the push provider reported as no longer registered
        if not tokens:
            return 0
        result = await self.collection.delete_many({"token": {"$in": tokens}})
        return result.deleted_count
