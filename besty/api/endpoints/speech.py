# besty/api/endpoints/speech.py
import base64
import binascii

from fastapi import APIRouter, Depends
from loguru import logger

from besty.api.deps import get_services
from besty.core.errors import ValidationError
from besty.schemas.persona import DEFAULT_MOOD, DEFAULT_VOICE
from besty.schemas.speech import SpeechToTextRequest, TextToSpeechRequest, TextToSpeechResponse, Transcription
from besty.services.container import Services

router = APIRouter()


def decode_audio(payload: str) -> bytes:
    """Accepts raw base64 or a `data:audio/...;base64,` URL."""
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Audio must be base64 encoded")


def _mime_from_data_url(payload: str):
    if payload.startswith("data:") and ";" in payload:
        return payload[5:].split(";", 1)[0] or None
    return None


@router.post("/speech-to-text", response_model=Transcription, summary="Transcribe recorded audio")
async def speech_to_text(
    request: SpeechToTextRequest,
    services: Services = Depends(get_services),
):
    if not request.audio:
        raise ValidationError("Audio data is required")
    audio = decode_audio(request.audio)
    if not audio:
        raise ValidationError("Audio data is required")
    mime_type = request.mime_type or _mime_from_data_url(request.audio)
    return await services.orchestrator.transcribe(audio, mime_type)


@router.post("/text-to-speech", response_model=TextToSpeechResponse, summary="Synthesize speech")
async def text_to_speech(
    request: TextToSpeechRequest,
    services: Services = Depends(get_services),
):
    if not (request.text or "").strip():
        raise ValidationError("Text is required")

    logger.info(f"Text-to-speech request: {len(request.text)} chars, voice={request.voice}, mood={request.mood}")
    outcome = await services.orchestrator.synthesize(
        request.text,
        voice=request.voice or DEFAULT_VOICE.value,
        mood=request.mood or DEFAULT_MOOD.value,
        custom_voice_id=request.voice_id,
    )
    return TextToSpeechResponse(audio_url=outcome.audio_url, fallback=outcome.fallback)
