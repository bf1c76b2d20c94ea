import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from atelier.core.config import settings
from atelier.repositories.conversation_repository import ConversationRepository
from atelier.repositories.device_repository import DeviceRepository
from atelier.repositories.message_repository import MessageRepository
from atelier.repositories.notification_repository import NotificationRepository
from atelier.repositories.typing_repository import TypingRepository

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None


async def connect_to_mongo() -> None:
    global _client
    _client = AsyncIOMotorClient(settings.MONGO_URL, tz_aware=True)
    await ensure_indexes(get_database())
    logger.info("Connected to MongoDB database %s", settings.MONGO_DB)


async def close_mongo_connection() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


def get_database() -> AsyncIOMotorDatabase:
    if _client is None:
        raise RuntimeError("MongoDB client is not connected")
    return _client[settings.MONGO_DB]


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()


async def ensure_indexes(db) -> None:
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await TypingRepository(db).ensure_indexes()
    await NotificationRepository(db).ensure_indexes()
    await DeviceRepository(db).ensure_indexes()
