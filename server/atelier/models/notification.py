from datetime import datetime
from typing import Literal, Optional, TypedDict


NotificationType = Literal["message", "review", "favorite", "painter_approved", "painter_rejected"]


class NotificationDocument(TypedDict, total=False):
    _id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    link: Optional[str]
    read: bool
    created_at: datetime
