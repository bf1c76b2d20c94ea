import asyncio
import logging
from typing import Dict, List, Optional

from pyfcm import FCMNotification
from pyfcm.errors import FCMNotRegisteredError

from atelier.core.config import settings
from atelier.repositories.device_repository import DeviceRepository
from atelier.repositories.notification_repository import NotificationRepository

logger = logging.getLogger(__name__)


class NoopPush:

    enabled = False

    async def send_fcm(self, tokens: List[str], title: str, body: str, data: Optional[Dict[str, str]] = None) -> List[str]:
        return []


class FcmPush:

    enabled = True

    def __init__(self, service_account_file: str, project_id: str) -> None:
        self._client = FCMNotification(service_account_file=service_account_file, project_id=project_id)

    async def send_fcm(self, tokens: List[str], title: str, body: str, data: Optional[Dict[str, str]] = None) -> List[str]:
        """Push to every token; returns the tokens FCM no longer recognises."""
        stale = []
        for token in tokens:
            # pyfcm is sync
            try:
                await asyncio.to_thread(
                    self._client.notify,
                    fcm_token=token,
                    notification_title=title,
                    notification_body=body,
                    data_payload=data or {},
                )
            except FCMNotRegisteredError:
                stale.append(token)
            except Exception:
                logger.warning("FCM push to a device failed", exc_info=True)
        return stale


_push = None


async def get_push():
    global _push
    if _push is not None:
        return _push
    if not settings.FCM_PROJECT_ID or not settings.FCM_SERVICE_ACCOUNT_FILE:
        _push = NoopPush()
    else:
        _push = FcmPush(settings.FCM_SERVICE_ACCOUNT_FILE, settings.FCM_PROJECT_ID)
    return _push


class MessageNotifier:
    """Out-of-band "new message" notifications: an in-app row plus an optional device push."""

    def __init__(self, notification_repo: NotificationRepository, device_repo: DeviceRepository, push) -> None:
        self._notification_repo = notification_repo
        self._device_repo = device_repo
        self._push = push

    async def notify_new_message(
        self,
        recipient_id: str,
        sender_name: str,
        conversation_id: str,
        send_push: bool = True,
    ) -> bool:
        link = f"/messages/{conversation_id}"
        body = f"{sender_name} sent you a message"
        try:
            await self._notification_repo.create(
                user_id=recipient_id,
                type="message",
                title="New message",
                message=body,
                link=link,
            )
        except Exception:
            logger.warning("Could not store message notification for %s", recipient_id, exc_info=True)
            return False
        if send_push and self._push.enabled:
            try:
                tokens = await self._device_repo.get_tokens(recipient_id, platform="fcm")
                stale = await self._push.send_fcm(tokens, "New message", body, {"conversation_id": conversation_id, "link": link})
                if stale:
                    await self._device_repo.remove_tokens(stale)
                    logger.info("Pruned %d unregistered device(s) for %s", len(stale), recipient_id)
            except Exception:
                logger.warning("Push notification for %s failed", recipient_id, exc_info=True)
        return True
