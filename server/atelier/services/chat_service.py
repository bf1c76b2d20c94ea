from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bson import ObjectId

from atelier.repositories.conversation_repository import ConversationRepository
from atelier.repositories.message_repository import MessageRepository
from atelier.services.dispatcher import RealtimeDispatcher
from atelier.services.errors import AuthorizationError, NotFoundError, ValidationError
from atelier.services.presence_service import PresenceService
from atelier.utils.ids import as_utc, parse_object_id
from atelier.utils.notifications import MessageNotifier
from atelier.utils.retry import with_store_retry

PREVIEW_LENGTH = 200


def serialize_message(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(doc["_id"]),
        "conversation_id": str(doc["conversation_id"]),
        "sender_id": doc["sender_id"],
        "content": doc.get("content"),
        "attachment_url": doc.get("attachment_url"),
        "attachment_type": doc.get("attachment_type"),
        "attachment_name": doc.get("attachment_name"),
        "read": bool(doc.get("read")),
        "created_at": as_utc(doc["created_at"]).isoformat(),
    }


def serialize_conversation(doc: Dict[str, Any], viewer_id: Optional[str] = None) -> Dict[str, Any]:
    payload = {
        "id": str(doc["_id"]),
        "requester_id": doc["requester_id"],
        "provider_id": doc["provider_id"],
        "participants": list(doc.get("participants") or []),
        "created_at": as_utc(doc["created_at"]).isoformat(),
        "last_activity_at": as_utc(doc["last_activity_at"]).isoformat(),
        "last_message_preview": doc.get("last_message_preview"),
    }
    if viewer_id is not None:
        payload["counterpart_id"] = counterpart_of(doc, viewer_id)
    return payload


def counterpart_of(conversation: Dict[str, Any], user_id: str) -> str:
    if conversation["requester_id"] == user_id:
        return conversation["provider_id"]
    return conversation["requester_id"]


def display_name(identity: Dict[str, Any]) -> str:
    return identity.get("full_name") or identity.get("email") or "A user"


def group_messages_by_day(messages: List[Dict[str, Any]], tz_name: str = "UTC") -> List[Dict[str, Any]]:
    """Bucket already-ordered serialized messages by calendar day in the viewer's time zone."""
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown time zone: {tz_name}") from exc
    groups: List[Dict[str, Any]] = []
    for message in messages:
        day = datetime.fromisoformat(message["created_at"]).astimezone(tz).date().isoformat()
        if not groups or groups[-1]["date"] != day:
            groups.append({"date": day, "messages": []})
        groups[-1]["messages"].append(message)
    return groups


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        dispatcher: RealtimeDispatcher,
        presence: Optional[PresenceService] = None,
        notifier: Optional[MessageNotifier] = None,
        is_viewing: Optional[Callable[[str, str], bool]] = None,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._dispatcher = dispatcher
        self._presence = presence
        self._notifier = notifier
        # (conversation_id, user_id) -> True while that user has the conversation open
        self._is_viewing = is_viewing

    async def _load_conversation(self, conversation_id: str, user_id: str) -> Tuple[ObjectId, Dict[str, Any]]:
        convo_oid = parse_object_id(conversation_id)
        if convo_oid is None:
            raise NotFoundError("Conversation not found")
        convo = await with_store_retry(lambda: self._conversation_repo.get_by_id(convo_oid))
        if not convo:
            raise NotFoundError("Conversation not found")
        if user_id not in (convo.get("participants") or []):
            raise AuthorizationError("You are not a participant of this conversation")
        return convo_oid, convo

    async def get_or_create_conversation(self, requester_id: str, provider_id: str) -> Dict[str, Any]:
        requester_id = str(requester_id or "").strip()
        provider_id = str(provider_id or "").strip()
        if not provider_id:
            raise ValidationError("provider_id is required")
        if requester_id == provider_id:
            raise ValidationError("Cannot start a conversation with yourself")
        convo = await with_store_retry(lambda: self._conversation_repo.get_or_create(requester_id, provider_id))
        return serialize_conversation(convo, requester_id)

    async def get_conversation(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        _, convo = await self._load_conversation(conversation_id, user_id)
        return serialize_conversation(convo, user_id)

    async def list_conversations(self, user_id: str, limit: int = 20, cursor: str | None = None):
        items, next_cursor = await with_store_retry(
            lambda: self._conversation_repo.list_for_user(user_id, limit=limit, cursor=cursor)
        )
        out = []
        for it in items:
            payload = serialize_conversation(it, user_id)
            convo_oid = ObjectId(it["_id"])
            payload["unread_count"] = await with_store_retry(lambda: self._message_repo.count_unread(convo_oid, user_id))
            out.append(payload)
        return out, next_cursor

    async def send_message(
        self,
        conversation_id: str,
        sender: Dict[str, Any],
        content: Optional[str] = None,
        attachment_url: Optional[str] = None,
        attachment_type: Optional[str] = None,
        attachment_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        text = (content or "").strip() or None
        url = (attachment_url or "").strip() or None
        if text is None and url is None:
            raise ValidationError("Message must contain text or an attachment")
        if url is None:
            attachment_type = attachment_name = None
        else:
            attachment_type = (attachment_type or "").strip() or "application/octet-stream"
            attachment_name = (attachment_name or "").strip() or url.rsplit("/", 1)[-1]

        sender_id = sender["_id"]
        convo_oid, convo = await self._load_conversation(conversation_id, sender_id)
        message_id = ObjectId()
        saved = await with_store_retry(
            lambda: self._message_repo.save_message(
                message_id=message_id,
                conversation_id=convo_oid,
                sender_id=sender_id,
                content=text,
                attachment_url=url,
                attachment_type=attachment_type,
                attachment_name=attachment_name,
            )
        )
        preview = text[:PREVIEW_LENGTH] if text else attachment_name
        await with_store_retry(lambda: self._conversation_repo.update_on_new_message(convo_oid, preview))

        message = serialize_message(saved)
        if self._presence is not None:
            await self._presence.clear_typing(message["conversation_id"], sender_id)
        await self._dispatcher.publish_message_inserted(message)
        if self._notifier is not None:
            recipient_id = counterpart_of(convo, sender_id)
            viewing = self._is_viewing is not None and self._is_viewing(message["conversation_id"], recipient_id)
            await self._notifier.notify_new_message(
                recipient_id=recipient_id,
                sender_name=display_name(sender),
                conversation_id=message["conversation_id"],
                send_push=not viewing,
            )
        return message

    async def get_history(self, conversation_id: str, user_id: str, limit: int = 50, cursor: str | None = None):
        convo_oid, _ = await self._load_conversation(conversation_id, user_id)
        items, next_cursor = await with_store_retry(
            lambda: self._message_repo.get_messages_by_conversation(convo_oid, limit=limit, cursor=cursor)
        )
        return [serialize_message(it) for it in items], next_cursor

    async def mark_read(self, conversation_id: str, user_id: str) -> int:
        convo_oid, _ = await self._load_conversation(conversation_id, user_id)
        modified = await with_store_retry(lambda: self._message_repo.mark_read(convo_oid, user_id))
        if modified:
            await self._dispatcher.publish_read(str(convo_oid), user_id, modified)
        return modified

    async def count_unread(self, conversation_id: str, user_id: str) -> int:
        convo_oid, _ = await self._load_conversation(conversation_id, user_id)
        return await with_store_retry(lambda: self._message_repo.count_unread(convo_oid, user_id))
