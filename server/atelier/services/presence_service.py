import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from atelier.core.config import settings
from atelier.repositories.typing_repository import TypingRepository
from atelier.services.dispatcher import RealtimeDispatcher
from atelier.utils.ids import as_utc, normalize_id

logger = logging.getLogger(__name__)


class PresenceService:
    """Typing signals. Best effort: failures are logged and never raised."""

    def __init__(self, typing_repo: TypingRepository, dispatcher: RealtimeDispatcher) -> None:
        self._typing_repo = typing_repo
        self._dispatcher = dispatcher

    async def set_typing(self, conversation_id: str, user_id: str) -> None:
        conversation_id = normalize_id(conversation_id)
        try:
            updated_at = await self._typing_repo.upsert(conversation_id, user_id)
            await self._dispatcher.publish_typing(conversation_id, user_id, True, as_utc(updated_at).isoformat())
        except Exception:
            logger.debug("set_typing failed for %s in %s", user_id, conversation_id, exc_info=True)

    async def clear_typing(self, conversation_id: str, user_id: str) -> None:
        conversation_id = normalize_id(conversation_id)
        try:
            removed = await self._typing_repo.delete(conversation_id, user_id)
            if removed:
                await self._dispatcher.publish_typing(conversation_id, user_id, False)
        except Exception:
            logger.debug("clear_typing failed for %s in %s", user_id, conversation_id, exc_info=True)

    async def list_typing(self, conversation_id: str, exclude_user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        conversation_id = normalize_id(conversation_id)
        try:
            rows = await self._typing_repo.list_for_conversation(conversation_id)
        except Exception:
            logger.debug("list_typing failed for %s", conversation_id, exc_info=True)
            return []
        # the store's TTL sweep is coarse, so filter stale rows here
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=settings.TYPING_RECORD_TTL_SECONDS)
        result = []
        for row in rows:
            if exclude_user_id and row.get("user_id") == exclude_user_id:
                continue
            updated_at = as_utc(row["updated_at"])
            if updated_at < cutoff:
                continue
            result.append({"user_id": row["user_id"], "updated_at": updated_at.isoformat()})
        result.sort(key=lambda item: item["updated_at"], reverse=True)
        return result
