from datetime import datetime
from typing import TypedDict


class TypingSignalDocument(TypedDict, total=False):
    conversation_id: str
    user_id: str
    updated_at: datetime
