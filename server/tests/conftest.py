import asyncio
import time

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from mongomock_motor import AsyncMongoMockClient

from atelier.core.config import settings
from atelier.database.connection import ensure_indexes, mongo_db_dependency
from atelier.main import app
from atelier.repositories.conversation_repository import ConversationRepository
from atelier.repositories.device_repository import DeviceRepository
from atelier.repositories.message_repository import MessageRepository
from atelier.repositories.notification_repository import NotificationRepository
from atelier.repositories.typing_repository import TypingRepository
from atelier.services.chat_service import ChatService
from atelier.services.dispatcher import RealtimeDispatcher
from atelier.services.presence_service import PresenceService
from atelier.utils.notifications import MessageNotifier, NoopPush, get_push
from atelier.utils.realtime_bus import InMemoryBus, get_bus

ALICE = {"_id": "user-alice", "email": "alice@example.com", "full_name": "Alice Martin"}
BOB = {"_id": "user-bob", "email": "bob@example.com", "full_name": "Bob Durand"}
CAROL = {"_id": "user-carol", "email": "carol@example.com", "full_name": None}


def run_sync(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def make_token(user: dict, expires_in: int = 3600) -> str:
    payload = {"sub": user["_id"], "exp": int(time.time()) + expires_in, "email": user.get("email")}
    if user.get("full_name"):
        payload["user_metadata"] = {"full_name": user["full_name"]}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def run():
    return run_sync


@pytest.fixture
def auth_headers():
    def _headers(user: dict) -> dict:
        return {"Authorization": f"Bearer {make_token(user)}"}
    return _headers


@pytest.fixture
def token_for():
    return make_token


@pytest.fixture
def eventually():
    async def _eventually(predicate, timeout: float = 2.0, interval: float = 0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(interval)
    return _eventually


@pytest.fixture
def db():
    database = AsyncMongoMockClient()["atelier_test"]
    run_sync(ensure_indexes(database))
    return database


@pytest.fixture
def bus():
    return InMemoryBus()


@pytest.fixture
def dispatcher(bus):
    return RealtimeDispatcher(bus)


@pytest.fixture
def presence(db, dispatcher):
    return PresenceService(TypingRepository(db), dispatcher)


@pytest.fixture
def notifier(db):
    return MessageNotifier(NotificationRepository(db), DeviceRepository(db), NoopPush())


@pytest.fixture
def chat(db, dispatcher, presence, notifier):
    return ChatService(MessageRepository(db), ConversationRepository(db), dispatcher, presence, notifier)


@pytest.fixture
def client(db, bus):
    app.dependency_overrides[mongo_db_dependency] = lambda: db
    app.dependency_overrides[get_bus] = lambda: bus
    app.dependency_overrides[get_push] = lambda: NoopPush()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
