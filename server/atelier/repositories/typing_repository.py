from datetime import datetime
from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from atelier.core.config import settings
from atelier.models.typing_signal import TypingSignalDocument
from atelier.utils.ids import utc_now


class TypingRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["typing_signals"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("conversation_id", ASCENDING), ("user_id", ASCENDING)], unique=True
        )
        await self.collection.create_index(
            [("updated_at", ASCENDING)], expireAfterSeconds=settings.TYPING_RECORD_TTL_SECONDS
        )

    async def upsert(self, conversation_id: str, user_id: str) -> datetime:
        now = utc_now()
        await self.collection.update_one(
            {"conversation_id": conversation_id, "user_id": user_id},
            {"$set": {"updated_at": now}},
            upsert=True,
        )
        return now

    async def delete(self, conversation_id: str, user_id: str) -> bool:
        result = await self.collection.delete_one({"conversation_id": conversation_id, "user_id": user_id})
        return bool(result.deleted_count)

    async def list_for_conversation(self, conversation_id: str) -> List[TypingSignalDocument]:
        cur = self.collection.find({"conversation_id": conversation_id}, {"_id": 0})
        return await cur.to_list(length=100)
