import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from atelier.core.config import settings
from atelier.services.chat_service import ChatService
from atelier.services.dispatcher import RealtimeDispatcher
from atelier.services.errors import ChatError, TransientError
from atelier.utils.ids import normalize_id
from atelier.utils.realtime_bus import ChannelClosedError

logger = logging.getLogger(__name__)

Emit = Callable[[Dict[str, Any]], Awaitable[None]]


class ConversationSession:
    """One participant's live view of a conversation.

    Subscribes before loading so nothing committed after the snapshot is
    missed. A dropped channel is not replayed: the session resubscribes and
    emits a fresh ``sync`` snapshot instead.
    """

    def __init__(
        self,
        service: ChatService,
        dispatcher: RealtimeDispatcher,
        conversation_id: str,
        user_id: str,
        emit: Emit,
        max_reconnects: Optional[int] = None,
        reconnect_delay: Optional[float] = None,
    ) -> None:
        self._service = service
        self._dispatcher = dispatcher
        self.conversation_id = normalize_id(conversation_id)
        self.user_id = user_id
        self._emit = emit
        self._max_reconnects = settings.REALTIME_MAX_RECONNECTS if max_reconnects is None else max_reconnects
        self._reconnect_delay = (
            settings.REALTIME_RECONNECT_DELAY_SECONDS if reconnect_delay is None else reconnect_delay
        )
        self._subscription = None
        self._closed = False

    async def open(self) -> Dict[str, Any]:
        await self._subscribe()
        try:
            return await self.snapshot()
        except BaseException:
            await self._release()
            raise

    async def snapshot(self) -> Dict[str, Any]:
        messages, next_cursor = await self._service.get_history(self.conversation_id, self.user_id)
        await self._service.mark_read(self.conversation_id, self.user_id)
        unread = await self._service.count_unread(self.conversation_id, self.user_id)
        return {
            "type": "sync",
            "conversation_id": self.conversation_id,
            "messages": messages,
            "next_cursor": next_cursor,
            "unread": unread,
        }

    async def run(self) -> None:
        while not self._closed:
            try:
                await self._subscription.run()
                return
            except ChannelClosedError:
                if self._closed:
                    return
                logger.info("Channel for conversation %s dropped, resubscribing", self.conversation_id)
                await self._reconnect()

    async def close(self) -> None:
        self._closed = True
        await self._release()

    async def _reconnect(self) -> None:
        await self._release()
        for attempt in range(1, self._max_reconnects + 1):
            await asyncio.sleep(self._reconnect_delay)
            try:
                await self._subscribe()
                await self._emit(await self.snapshot())
                return
            except (ChannelClosedError, TransientError) as exc:
                logger.info(
                    "Resubscribe %d/%d for conversation %s failed: %s",
                    attempt,
                    self._max_reconnects,
                    self.conversation_id,
                    exc,
                )
                await self._release()
        raise TransientError("Realtime channel unavailable, reopen the conversation")

    async def _subscribe(self) -> None:
        self._subscription = await self._dispatcher.subscribe(
            self.conversation_id,
            self._on_message_inserted,
            self._on_typing_changed,
            self._on_messages_read,
        )

    async def _release(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await self._dispatcher.unsubscribe(subscription)

    async def _on_message_inserted(self, message: Dict[str, Any]) -> None:
        await self._emit({"type": "message", "message": message})
        if message.get("sender_id") != self.user_id:
            try:
                await self._service.mark_read(self.conversation_id, self.user_id)
            except ChatError as exc:
                logger.warning("Could not mark conversation %s read: %s", self.conversation_id, exc)

    async def _on_typing_changed(self, data: Dict[str, Any]) -> None:
        if data.get("user_id") == self.user_id:
            return
        await self._emit({"type": "typing", **data})

    async def _on_messages_read(self, data: Dict[str, Any]) -> None:
        # only the other participant cares that messages were read
        if data.get("reader_id") == self.user_id:
            return
        await self._emit({"type": "read", **data})
