from typing import Optional
from pydantic import Field

from besty.schemas.common import CamelModel


class Transcription(CamelModel):
    text: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class SpeechToTextRequest(CamelModel):
    audio: Optional[str] = Field(None, description="Base64 encoded audio")
    mime_type: Optional[str] = None


class TextToSpeechRequest(CamelModel):
    text: Optional[str] = None
    voice: Optional[str] = None
    mood: Optional[str] = None
    voice_id: Optional[str] = None


class TextToSpeechResponse(CamelModel):
    audio_url: str
    fallback: bool = False
