from typing import Optional
from pydantic import Field

from besty.schemas.common import CamelModel
from besty.schemas.conversation import Message


class ChatRequest(CamelModel):
    message: Optional[str] = Field(None, description="The current message from the user")
    conversation_id: Optional[int] = None
    persona_mood: Optional[str] = Field(None, description="Overrides the persona's mood for this reply")


class ChatResponse(CamelModel):
    text: str
    success: bool = True
    fallback: bool = Field(False, description="True when the reply came from the offline heuristics")


class TurnRequest(CamelModel):
    text: Optional[str] = None
    mood: Optional[str] = None
    voice: Optional[str] = None


class TurnResult(CamelModel):
    user_message: Message
    ai_message: Message
    audio_url: str
    fallback_reply: bool = False
    fallback_audio: bool = False
