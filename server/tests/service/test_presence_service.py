import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from atelier.repositories.typing_repository import TypingRepository
from atelier.services.dispatcher import RealtimeDispatcher
from atelier.services.presence_service import PresenceService

CONVO = "65f000000000000000000001"


async def _collect_typing(dispatcher, events):
    async def on_typing(data):
        events.append(data)

    async def ignore(data):
        return None

    sub = await dispatcher.subscribe(CONVO, ignore, on_typing)
    task = asyncio.create_task(sub.run())
    return sub, task


@pytest.mark.asyncio
async def test_set_then_clear_leaves_no_record(db, presence):
    await presence.set_typing(CONVO, "user-alice")
    assert [row["user_id"] for row in await presence.list_typing(CONVO)] == ["user-alice"]

    await presence.clear_typing(CONVO, "user-alice")

    assert await presence.list_typing(CONVO) == []
    assert await db["typing_signals"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_repeated_set_keeps_one_record(db, presence):
    await presence.set_typing(CONVO, "user-alice")
    await presence.set_typing(CONVO, "user-alice")

    assert await db["typing_signals"].count_documents({}) == 1


@pytest.mark.asyncio
async def test_list_typing_excludes_caller_and_stale_rows(db, presence):
    await presence.set_typing(CONVO, "user-alice")
    await presence.set_typing(CONVO, "user-bob")
    await db["typing_signals"].insert_one({
        "conversation_id": CONVO,
        "user_id": "user-ghost",
        "updated_at": datetime.now(timezone.utc) - timedelta(minutes=5),
    })

    rows = await presence.list_typing(CONVO, exclude_user_id="user-alice")

    assert [row["user_id"] for row in rows] == ["user-bob"]


@pytest.mark.asyncio
async def test_typing_changes_are_published(dispatcher, presence, eventually):
    events = []
    sub, task = await _collect_typing(dispatcher, events)

    await presence.set_typing(CONVO, "user-alice")
    await presence.clear_typing(CONVO, "user-alice")
    # nothing to clear, nothing published
    await presence.clear_typing(CONVO, "user-alice")

    await eventually(lambda: len(events) == 2)
    await asyncio.sleep(0.05)
    await dispatcher.unsubscribe(sub)
    await task

    assert [(e["user_id"], e["typing"]) for e in events] == [("user-alice", True), ("user-alice", False)]
    assert events[0]["updated_at"] is not None


@pytest.mark.asyncio
async def test_store_failures_are_swallowed(dispatcher):
    class BrokenTyping:
        async def upsert(self, *args):
            raise RuntimeError("down")

        async def delete(self, *args):
            raise RuntimeError("down")

        async def list_for_conversation(self, *args):
            raise RuntimeError("down")

    presence = PresenceService(BrokenTyping(), dispatcher)

    await presence.set_typing(CONVO, "user-alice")
    await presence.clear_typing(CONVO, "user-alice")
    assert await presence.list_typing(CONVO) == []


@pytest.mark.asyncio
async def test_publish_failure_does_not_raise(db):
    class BrokenBus:
        async def publish(self, channel, message):
            raise ConnectionError("bus down")

    presence = PresenceService(TypingRepository(db), RealtimeDispatcher(BrokenBus()))

    await presence.set_typing(CONVO, "user-alice")

    assert await db["typing_signals"].count_documents({}) == 1
