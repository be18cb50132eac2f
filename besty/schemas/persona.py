from enum import Enum
from typing import Any, Dict, Optional
from pydantic import Field

from besty.schemas.common import CamelModel, UTCDateTime


class VoiceType(str, Enum):
    MALE = "male"
    FEMALE = "female"
    CUSTOM = "custom"


class MoodType(str, Enum):
    CHEERFUL = "cheerful"
    CHILL = "chill"
    SASSY = "sassy"
    ROMANTIC = "romantic"
    REALIST = "realist"
    CUSTOM = "custom"


DEFAULT_VOICE = VoiceType.FEMALE
DEFAULT_MOOD = MoodType.CHILL


class Persona(CamelModel):
    id: int
    user_id: int
    voice: VoiceType
    mood: MoodType
    custom_voice_id: Optional[str] = None
    custom_mood_settings: Optional[Dict[str, Any]] = None
    created_at: UTCDateTime
    updated_at: UTCDateTime


class PersonaUpsert(CamelModel):
    # Plain strings so an unknown voice/mood reaches the service and is reported as a 400
    voice: Optional[str] = Field(None, description="male, female or custom")
    mood: Optional[str] = Field(None, description="cheerful, chill, sassy, romantic, realist or custom")
    custom_voice_id: Optional[str] = None
    custom_mood_settings: Optional[Dict[str, Any]] = None
