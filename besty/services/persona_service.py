# besty/services/persona_service.py
from typing import Any, Dict, Optional
from loguru import logger

from besty.core.errors import ValidationError
from besty.schemas.persona import MoodType, Persona, VoiceType
from besty.services.storage import Storage


def parse_voice(value: Any) -> VoiceType:
    try:
        return VoiceType(value)
    except ValueError:
        allowed = ", ".join(v.value for v in VoiceType)
        raise ValidationError(f"Voice must be one of: {allowed}")


def parse_mood(value: Any) -> MoodType:
    try:
        return MoodType(value)
    except ValueError:
        allowed = ", ".join(m.value for m in MoodType)
        raise ValidationError(f"Mood must be one of: {allowed}")


class PersonaService:
    def __init__(self, storage: Storage):
        self.storage = storage

    async def get(self, user_id: int) -> Optional[Persona]:
        return await self.storage.get_persona_by_user(user_id)

    async def upsert(
        self,
        user_id: int,
        voice: Optional[str],
        mood: Optional[str],
        custom_voice_id: Optional[str] = None,
        custom_mood_settings: Optional[Dict[str, Any]] = None,
    ) -> Persona:
        """Update the user's persona in place, or create it if there is none yet."""
        if not voice or not mood:
            raise ValidationError("Voice and mood are required")
        fields = {
            "voice": parse_voice(voice),
            "mood": parse_mood(mood),
            "custom_voice_id": custom_voice_id,
            "custom_mood_settings": custom_mood_settings,
        }

        existing = await self.storage.get_persona_by_user(user_id)
        if existing is not None:
            persona = await self.storage.update_persona(existing.id, **fields)
            logger.info(f"Updated persona {persona.id} for user {user_id}: {persona.voice.value}/{persona.mood.value}")
            return persona

        persona = await self.storage.create_persona(user_id=user_id, **fields)
        logger.info(f"Created persona {persona.id} for user {user_id}: {persona.voice.value}/{persona.mood.value}")
        return persona
