# besty/services/gateways/speech_synthesis.py
import abc
from typing import Dict, Optional, Tuple

import httpx
from loguru import logger

from besty.core.config import Settings
from besty.core.errors import UpstreamServiceFailure
from besty.services.audio import silent_wav

# ElevenLabs premade voices
RACHEL = "21m00Tcm4TlvDq8ikWAM"
DOMI = "AZnzlk1XvdvUeBnXmlld"
BELLA = "EXAVITQu4vr4xnSDxMaL"
ELLI = "MF3mGyEYCl7XYWbV9V6O"
ANTONI = "ErXwobaYiN019PkySvjV"
JOSH = "TxGEqnHWrfWFTfGW9XjX"
ADAM = "pNInz6obpgDQGcFmaJgB"
SAM = "yoZ06aMxZJJ28mfd3POQ"

DEFAULT_VOICE_ID = RACHEL

VOICE_TABLE: Dict[Tuple[str, str], str] = {
    ("female", "cheerful"): BELLA,
    ("female", "chill"): RACHEL,
    ("female", "sassy"): DOMI,
    ("female", "romantic"): ELLI,
    ("female", "realist"): RACHEL,
    ("male", "cheerful"): ANTONI,
    ("male", "chill"): JOSH,
    ("male", "sassy"): SAM,
    ("male", "romantic"): ANTONI,
    ("male", "realist"): ADAM,
}

MOOD_VOICE_SETTINGS: Dict[str, Dict[str, float]] = {
    "cheerful": {"stability": 0.35, "similarity_boost": 0.75, "style": 0.6},
    "chill": {"stability": 0.7, "similarity_boost": 0.75, "style": 0.2},
    "sassy": {"stability": 0.3, "similarity_boost": 0.8, "style": 0.7},
    "romantic": {"stability": 0.5, "similarity_boost": 0.85, "style": 0.5},
    "realist": {"stability": 0.8, "similarity_boost": 0.75, "style": 0.1},
}
DEFAULT_VOICE_SETTINGS = MOOD_VOICE_SETTINGS["chill"]


def resolve_voice_id(voice: Optional[str], mood: Optional[str], custom_voice_id: Optional[str] = None) -> str:
    if custom_voice_id and voice == "custom":
        return custom_voice_id
    return VOICE_TABLE.get((voice or "", mood or ""), DEFAULT_VOICE_ID)


def voice_settings(mood: Optional[str]) -> Dict[str, float]:
    return dict(MOOD_VOICE_SETTINGS.get(mood or "", DEFAULT_VOICE_SETTINGS))


class SpeechSynthesisGateway(abc.ABC):
    name = "speech-synthesis"
    extension = "mp3"

    @abc.abstractmethod
    async def synthesize(
        self, text: str, voice: str, mood: str, custom_voice_id: Optional[str] = None
    ) -> bytes:
        """Return encoded audio for `text`; raises UpstreamServiceFailure on failure."""


class MockSpeechSynthesisGateway(SpeechSynthesisGateway):
    """Used when no text-to-speech credentials are configured; returns a short silent clip."""

    name = "mock-speech"
    extension = "wav"

    async def synthesize(
        self, text: str, voice: str, mood: str, custom_voice_id: Optional[str] = None
    ) -> bytes:
        return silent_wav()


class ElevenLabsSpeechGateway(SpeechSynthesisGateway):
    name = "elevenlabs"
    URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"

    def __init__(self, api_key: str, http_client: httpx.AsyncClient, model_id: str = "eleven_monolingual_v1"):
        self.api_key = api_key
        self.http_client = http_client
        self.model_id = model_id

    async def synthesize(
        self, text: str, voice: str, mood: str, custom_voice_id: Optional[str] = None
    ) -> bytes:
        voice_id = resolve_voice_id(voice, mood, custom_voice_id)
        try:
            response = await self.http_client.post(
                self.URL.format(voice_id=voice_id),
                headers={
                    "xi-api-key": self.api_key,
                    "Content-Type": "application/json",
                    "Accept": "audio/mpeg",
                },
                json={
                    "text": text,
                    "model_id": self.model_id,
                    "voice_settings": voice_settings(mood),
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamServiceFailure(f"ElevenLabs synthesis failed: {e}") from e
        if not response.content:
            raise UpstreamServiceFailure("ElevenLabs returned an empty audio buffer")
        logger.debug(f"ElevenLabs returned {len(response.content)} bytes for voice {voice_id}")
        return response.content


def build_speech_gateway(settings: Settings, http_client: httpx.AsyncClient) -> SpeechSynthesisGateway:
    if settings.ELEVENLABS_API_KEY:
        gateway: SpeechSynthesisGateway = ElevenLabsSpeechGateway(
            settings.ELEVENLABS_API_KEY, http_client, model_id=settings.ELEVENLABS_MODEL_ID
        )
    else:
        gateway = MockSpeechSynthesisGateway()
    logger.info(f"Speech synthesis gateway: {gateway.name}")
    return gateway
