from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from atelier.database.connection import mongo_db_dependency
from atelier.repositories.conversation_repository import ConversationRepository
from atelier.repositories.device_repository import DeviceRepository
from atelier.repositories.message_repository import MessageRepository
from atelier.repositories.notification_repository import NotificationRepository
from atelier.repositories.typing_repository import TypingRepository
from atelier.services.chat_service import ChatService
from atelier.services.dispatcher import RealtimeDispatcher
from atelier.services.presence_service import PresenceService
from atelier.utils.notifications import MessageNotifier, get_push
from atelier.utils.realtime_bus import get_bus
from atelier.utils.security import decode_access_token, identity_from_claims
from atelier.utils.websocket_manager import manager

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Dict[str, Any]:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return identity_from_claims(payload)


async def get_dispatcher(bus=Depends(get_bus)) -> RealtimeDispatcher:
    return RealtimeDispatcher(bus)


def get_presence_service(db=Depends(mongo_db_dependency), dispatcher: RealtimeDispatcher = Depends(get_dispatcher)) -> PresenceService:
    return PresenceService(TypingRepository(db), dispatcher)


async def get_notifier(db=Depends(mongo_db_dependency), push=Depends(get_push)) -> MessageNotifier:
    return MessageNotifier(NotificationRepository(db), DeviceRepository(db), push)


def get_chat_service(
    db=Depends(mongo_db_dependency),
    dispatcher: RealtimeDispatcher = Depends(get_dispatcher),
    presence: PresenceService = Depends(get_presence_service),
    notifier: MessageNotifier = Depends(get_notifier),
) -> ChatService:
    return ChatService(
        MessageRepository(db),
        ConversationRepository(db),
        dispatcher,
        presence,
        notifier,
        # local sockets only, see REDIS_URL in config
        is_viewing=manager.is_connected,
    )
