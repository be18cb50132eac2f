# besty/services/gateways/transcription.py
import abc
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger
from openai import AsyncOpenAI

from besty.core.config import Settings
from besty.core.errors import UpstreamServiceFailure
from besty.schemas.speech import Transcription
from besty.services.audio import is_silent, sniff_mime_type

DEFAULT_MIME_TYPE = "audio/webm"

_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/flac": "flac",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
}


class TranscriptionGateway(abc.ABC):
    name = "transcription"

    @abc.abstractmethod
    async def transcribe(self, audio: bytes, mime_type: Optional[str] = None) -> Transcription:
        """Return the transcript of `audio`; raises UpstreamServiceFailure on failure."""


class MockTranscriptionGateway(TranscriptionGateway):
    """Used when no speech-to-text credentials are configured."""

    name = "mock-transcription"

    def __init__(self, transcript: str = "This is a mock transcription.", confidence: float = 0.5):
        self.transcript = transcript
        self.confidence = confidence

    async def transcribe(self, audio: bytes, mime_type: Optional[str] = None) -> Transcription:
        if is_silent(audio):
            return Transcription(text="", confidence=0.0)
        return Transcription(text=self.transcript, confidence=self.confidence)


def _first_alternative(payload: Dict[str, Any]) -> Dict[str, Any]:
    channels = (payload.get("results") or {}).get("channels") or [{}]
    alternatives = channels[0].get("alternatives") or [{}]
    return alternatives[0]


class DeepgramTranscriptionGateway(TranscriptionGateway):
    name = "deepgram"
    URL = "https://api.deepgram.com/v1/listen"

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        model: str = "nova-2",
        default_mime_type: str = DEFAULT_MIME_TYPE,
    ):
        self.api_key = api_key
        self.http_client = http_client
        self.model = model
        self.default_mime_type = default_mime_type

    def content_types(self, audio: bytes, mime_type: Optional[str]) -> List[str]:
        """The declared container first, then whatever the audio header says it is."""
        candidates = [mime_type or self.default_mime_type]
        sniffed = sniff_mime_type(audio)
        if sniffed and not candidates[0].startswith(sniffed):
            candidates.append(sniffed)
        return candidates

    async def _request(self, audio: bytes, content_type: str) -> Transcription:
        response = await self.http_client.post(
            self.URL,
            params={"smart_format": "true", "model": self.model},
            headers={"Authorization": f"Token {self.api_key}", "Content-Type": content_type},
            content=audio,
        )
        response.raise_for_status()
        alternative = _first_alternative(response.json())
        confidence = float(alternative.get("confidence") or 0.0)
        return Transcription(
            text=alternative.get("transcript") or "",
            confidence=min(max(confidence, 0.0), 1.0),
        )

    async def transcribe(self, audio: bytes, mime_type: Optional[str] = None) -> Transcription:
        last_error: Optional[Exception] = None
        for content_type in self.content_types(audio, mime_type):
            try:
                result = await self._request(audio, content_type)
                logger.debug(f"Deepgram transcribed {len(audio)} bytes as {content_type} (confidence {result.confidence})")
                return result
            except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
                logger.warning(f"Deepgram transcription as {content_type} failed: {e}")
                last_error = e
        raise UpstreamServiceFailure(f"Deepgram transcription failed: {last_error}")


class WhisperTranscriptionGateway(TranscriptionGateway):
    name = "whisper"
    # Whisper reports no confidence score
    CONFIDENCE = 0.9

    def __init__(self, client: AsyncOpenAI, model: str = "whisper-1"):
        self.client = client
        self.model = model

    async def transcribe(self, audio: bytes, mime_type: Optional[str] = None) -> Transcription:
        content_type = sniff_mime_type(audio) or mime_type or DEFAULT_MIME_TYPE
        base_type = content_type.split(";")[0]
        filename = f"audio.{_EXTENSIONS.get(base_type, 'webm')}"
        try:
            result = await self.client.audio.transcriptions.create(
                file=(filename, audio, base_type),
                model=self.model,
            )
        except Exception as e:
            raise UpstreamServiceFailure(f"Whisper transcription failed: {e}") from e
        return Transcription(text=result.text or "", confidence=self.CONFIDENCE)


class FallbackTranscriptionGateway(TranscriptionGateway):
    """Tries the primary provider, then the secondary provider exactly once."""

    name = "fallback-transcription"

    def __init__(self, primary: TranscriptionGateway, secondary: TranscriptionGateway):
        self.primary = primary
        self.secondary = secondary

    async def transcribe(self, audio: bytes, mime_type: Optional[str] = None) -> Transcription:
        try:
            return await self.primary.transcribe(audio, mime_type)
        except Exception as e:
            logger.warning(f"{self.primary.name} failed ({e}); retrying with {self.secondary.name}")
        try:
            return await self.secondary.transcribe(audio, mime_type)
        except Exception as e:
            logger.error(f"{self.secondary.name} fallback failed: {e}")
            raise UpstreamServiceFailure("Both transcription providers failed to transcribe audio") from e


def build_transcription_gateway(settings: Settings, http_client: httpx.AsyncClient) -> TranscriptionGateway:
    primary: Optional[TranscriptionGateway] = None
    secondary: Optional[TranscriptionGateway] = None
    if settings.DEEPGRAM_API_KEY:
        primary = DeepgramTranscriptionGateway(settings.DEEPGRAM_API_KEY, http_client, model=settings.DEEPGRAM_MODEL)
    if settings.OPENAI_API_KEY:
        secondary = WhisperTranscriptionGateway(
            AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.GATEWAY_TIMEOUT_SECONDS, max_retries=0),
            model=settings.WHISPER_MODEL,
        )

    if primary and secondary:
        gateway: TranscriptionGateway = FallbackTranscriptionGateway(primary, secondary)
    else:
        gateway = primary or secondary or MockTranscriptionGateway()
    logger.info(f"Transcription gateway: {gateway.name}")
    return gateway
