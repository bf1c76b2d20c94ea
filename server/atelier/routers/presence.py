from fastapi import APIRouter, Depends, Response, status

from atelier.services.chat_service import ChatService
from atelier.services.presence_service import PresenceService
from atelier.utils.dependencies import get_chat_service, get_current_user, get_presence_service


router = APIRouter(prefix="/conversations", tags=["presence"])


@router.put("/{conversation_id}/typing", status_code=status.HTTP_204_NO_CONTENT)
async def start_typing(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service), presence: PresenceService = Depends(get_presence_service)):
    convo = await service.get_conversation(conversation_id, current_user["_id"])
    await presence.set_typing(convo["id"], current_user["_id"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{conversation_id}/typing", status_code=status.HTTP_204_NO_CONTENT)
async def stop_typing(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service), presence: PresenceService = Depends(get_presence_service)):
    convo = await service.get_conversation(conversation_id, current_user["_id"])
    await presence.clear_typing(convo["id"], current_user["_id"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{conversation_id}/typing")
async def typing_users(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service), presence: PresenceService = Depends(get_presence_service)):
    """Users currently typing in the conversation, caller excluded."""
    convo = await service.get_conversation(conversation_id, current_user["_id"])
    return {"items": await presence.list_typing(convo["id"], exclude_user_id=current_user["_id"])}
