from datetime import datetime
from typing import Optional, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    content: Optional[str]
    # attachment descriptor, set together
    attachment_url: Optional[str]
    attachment_type: Optional[str]
    attachment_name: Optional[str]
    read: bool
    created_at: datetime
