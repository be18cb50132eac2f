from typing import List, Optional
from pydantic import Field

from besty.schemas.common import CamelModel, UTCDateTime


class Conversation(CamelModel):
    id: int
    user_id: int
    persona_id: Optional[int] = None
    title: str
    created_at: UTCDateTime
    updated_at: UTCDateTime


class Message(CamelModel):
    id: int
    conversation_id: int
    content: str
    audio_url: Optional[str] = None
    is_user_message: bool
    created_at: UTCDateTime


class ConversationCreate(CamelModel):
    persona_id: Optional[int] = None
    title: Optional[str] = Field(None, max_length=200)


class ConversationUpdate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)


class RecentConversation(CamelModel):
    conversation: Optional[Conversation] = None
    messages: List[Message] = Field(default_factory=list)


class MessageCreate(CamelModel):
    conversation_id: Optional[int] = None
    content: Optional[str] = None
    is_user_message: bool = True
    audio_url: Optional[str] = None
