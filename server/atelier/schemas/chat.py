from typing import Literal, Optional

from pydantic import BaseModel, Field


class ConversationCreate(BaseModel):

    provider_id: str = Field(min_length=1)


class MessageCreate(BaseModel):

    content: Optional[str] = None
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None
    attachment_name: Optional[str] = None


class DeviceRegister(BaseModel):

    platform: Literal["fcm", "webpush"]
    token: str = Field(min_length=1)
