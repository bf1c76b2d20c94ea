import asyncio
import json
import logging
from typing import Any, Dict

import anyio
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from jose import JWTError

from atelier.services.chat_service import ChatService
from atelier.services.conversation_session import ConversationSession
from atelier.services.dispatcher import RealtimeDispatcher
from atelier.services.errors import AuthorizationError, ChatError, NotFoundError, ValidationError
from atelier.services.presence_service import PresenceService
from atelier.utils.dependencies import get_chat_service, get_dispatcher, get_presence_service
from atelier.utils.security import decode_access_token, identity_from_claims
from atelier.utils.typing_state import TypingDebouncer
from atelier.utils.websocket_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_socket(
    websocket: WebSocket,
    conversation_id: str,
    service: ChatService = Depends(get_chat_service),
    presence: PresenceService = Depends(get_presence_service),
    dispatcher: RealtimeDispatcher = Depends(get_dispatcher),
):
    # JWT over the query string: ?token=...
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        identity = identity_from_claims(decode_access_token(token))
    except JWTError:
        await websocket.close(code=4401)
        return
    user_id = identity["_id"]
    try:
        convo = await service.get_conversation(conversation_id, user_id)
    except NotFoundError:
        await websocket.close(code=4404)
        return
    except AuthorizationError:
        await websocket.close(code=4403)
        return
    # canonical id from here on, whatever casing the path used
    conversation_id = convo["id"]

    await manager.connect(conversation_id, user_id, websocket)
    send_lock = asyncio.Lock()

    async def emit(event: Dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(event)

    session = ConversationSession(service, dispatcher, conversation_id, user_id, emit)
    debouncer = TypingDebouncer(
        on_start=lambda: presence.set_typing(conversation_id, user_id),
        on_stop=lambda: presence.clear_typing(conversation_id, user_id),
    )

    async def read_frames() -> None:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                frame = None
            if not isinstance(frame, dict):
                await emit({"type": "error", "code": "validation", "detail": "Frame must be a JSON object"})
                continue
            try:
                await _handle_frame(frame, identity, conversation_id, service, presence, debouncer, emit)
            except ChatError as exc:
                await emit({"type": "error", "code": exc.code, "detail": exc.detail})

    pump = reader = None
    try:
        await emit(await session.open())
        pump = asyncio.create_task(session.run())
        reader = asyncio.create_task(read_frames())
        done, _ = await asyncio.wait({pump, reader}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is None or isinstance(exc, WebSocketDisconnect):
                continue
            if isinstance(exc, ChatError):
                await emit({"type": "error", "code": exc.code, "detail": exc.detail})
            else:
                logger.warning("Conversation socket %s failed", conversation_id, exc_info=exc)
            await websocket.close(code=1011)
            break
    except WebSocketDisconnect:
        pass
    except ChatError as exc:
        logger.warning("Could not open conversation %s for %s: %s", conversation_id, user_id, exc)
        await websocket.close(code=1011)
    finally:
        # runs even when the handler is cancelled on client close
        with anyio.CancelScope(shield=True):
            manager.disconnect(conversation_id, user_id, websocket)
            await session.close()
            await debouncer.aclose()
            await presence.clear_typing(conversation_id, user_id)
            tasks = [t for t in (reader, pump) if t is not None]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)


async def _handle_frame(
    frame: Dict[str, Any],
    identity: Dict[str, Any],
    conversation_id: str,
    service: ChatService,
    presence: PresenceService,
    debouncer: TypingDebouncer,
    emit,
) -> None:
    # {"type": "message" | "keystroke" | "typing_start" | "typing_stop" | "read", ...}
    kind = frame.get("type")
    user_id = identity["_id"]
    if kind == "message":
        await debouncer.sent()
        message = await service.send_message(
            conversation_id,
            identity,
            content=frame.get("content"),
            attachment_url=frame.get("attachment_url"),
            attachment_type=frame.get("attachment_type"),
            attachment_name=frame.get("attachment_name"),
        )
        await emit({
            "type": "ack",
            "ack": {
                "message_id": message["id"],
                "conversation_id": conversation_id,
                "client_message_id": frame.get("client_message_id"),
            },
        })
    elif kind == "keystroke":
        await debouncer.keystroke()
    elif kind == "typing_start":
        await presence.set_typing(conversation_id, user_id)
    elif kind == "typing_stop":
        await presence.clear_typing(conversation_id, user_id)
    elif kind == "read":
        await service.mark_read(conversation_id, user_id)
    else:
        raise ValidationError(f"Unknown frame type: {kind}")
