import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

MESSAGE_INSERTED = "message.inserted"
TYPING_CHANGED = "typing.changed"
MESSAGES_READ = "messages.read"

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class RealtimeDispatcher:
    """Conversation-scoped events on top of a bus (in-memory or redis)."""

    def __init__(self, bus) -> None:
        self._bus = bus

    async def _publish(self, conversation_id: str, event_type: str, data: Dict[str, Any]) -> bool:
        payload = json.dumps({"type": event_type, "conversation_id": conversation_id, "data": data})
        try:
            await self._bus.publish(conversation_channel(conversation_id), payload)
        except Exception:
            # the row is already committed; subscribers resync on reconnect
            logger.warning("Failed to publish %s on conversation %s", event_type, conversation_id, exc_info=True)
            return False
        return True

    async def publish_message_inserted(self, message: Dict[str, Any]) -> bool:
        return await self._publish(message["conversation_id"], MESSAGE_INSERTED, message)

    async def publish_typing(self, conversation_id: str, user_id: str, typing: bool, updated_at: Optional[str] = None) -> bool:
        return await self._publish(
            conversation_id,
            TYPING_CHANGED,
            {"user_id": user_id, "typing": typing, "updated_at": updated_at},
        )

    async def publish_read(self, conversation_id: str, reader_id: str, count: int) -> bool:
        return await self._publish(conversation_id, MESSAGES_READ, {"reader_id": reader_id, "count": count})

    async def subscribe(
        self,
        conversation_id: str,
        on_message_inserted: EventHandler,
        on_typing_changed: EventHandler,
        on_messages_read: Optional[EventHandler] = None,
    ):
        handlers = {
            MESSAGE_INSERTED: on_message_inserted,
            TYPING_CHANGED: on_typing_changed,
        }
        if on_messages_read is not None:
            handlers[MESSAGES_READ] = on_messages_read

        async def _route(raw: str) -> None:
            try:
                event = json.loads(raw)
            except ValueError:
                logger.warning("Dropping malformed event on conversation %s", conversation_id)
                return
            handler = handlers.get(event.get("type"))
            if handler is not None:
                await handler(event.get("data") or {})

        return await self._bus.subscribe(conversation_channel(conversation_id), _route)

    async def unsubscribe(self, subscription) -> None:
        await subscription.cancel()

    @asynccontextmanager
    async def channel(
        self,
        conversation_id: str,
        on_message_inserted: EventHandler,
        on_typing_changed: EventHandler,
        on_messages_read: Optional[EventHandler] = None,
    ) -> AsyncIterator[Any]:
        subscription = await self.subscribe(conversation_id, on_message_inserted, on_typing_changed, on_messages_read)
        try:
            yield subscription
        finally:
            await self.unsubscribe(subscription)
