from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    requester_id: str
    provider_id: str
    participants: List[str]
    # "<min id>:<max id>", unique
    pair_key: str
    created_at: datetime
    last_activity_at: datetime
    last_message_preview: Optional[str]
