# besty/services/audio.py
"""Small audio helpers: container sniffing, silence checks and built-in clips."""
import asyncio
import base64
import io
import math
import struct
import uuid
import wave
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

SAMPLE_RATE = 16000
FALLBACK_AUDIO_FILENAME = "fallback.wav"

# Magic bytes -> MIME type, checked in order
_SIGNATURES = (
    (b"RIFF", "audio/wav"),
    (b"OggS", "audio/ogg"),
    (b"fLaC", "audio/flac"),
    (b"ID3", "audio/mpeg"),
    (b"\x1a\x45\xdf\xa3", "audio/webm"),
)


def sniff_mime_type(audio: bytes) -> Optional[str]:
    for signature, mime_type in _SIGNATURES:
        if audio.startswith(signature):
            return mime_type
    if len(audio) > 1 and audio[0] == 0xFF and (audio[1] & 0xE0) == 0xE0:
        return "audio/mpeg"  # bare MPEG frame sync
    if audio[4:8] == b"ftyp":
        return "audio/mp4"
    return None


def _payload(audio: bytes) -> bytes:
    # Skip the RIFF header so an all-zero WAV counts as silence
    if audio[:4] == b"RIFF" and audio[8:12] == b"WAVE":
        index = audio.find(b"data", 12)
        if index != -1:
            return audio[index + 8:]
    return audio


def is_silent(audio: bytes) -> bool:
    """True for empty input or a buffer holding nothing but zero samples."""
    payload = _payload(audio)
    return not payload or not payload.strip(b"\x00")


def _wav(samples: bytes) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(SAMPLE_RATE)
        wav.writeframes(samples)
    return buffer.getvalue()


def silent_wav(duration_ms: int = 250) -> bytes:
    frames = SAMPLE_RATE * duration_ms // 1000
    return _wav(b"\x00\x00" * frames)


def beep_wav(frequency: float = 880.0, duration_ms: int = 150, volume: float = 0.3) -> bytes:
    frames = SAMPLE_RATE * duration_ms // 1000
    amplitude = int(32767 * volume)
    samples = b"".join(
        struct.pack("<h", int(amplitude * math.sin(2 * math.pi * frequency * i / SAMPLE_RATE)))
        for i in range(frames)
    )
    return _wav(samples)


def data_url(audio: bytes, mime_type: str = "audio/wav") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(audio).decode('ascii')}"


NOTIFICATION_SOUND_URL = data_url(beep_wav())


def generate_filename(prefix: str, extension: str) -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    return f"{prefix}-{timestamp}-{uuid.uuid4().hex[:8]}.{extension}"


class AudioStore:
    """Writes synthesized audio under the uploads directory and hands back its URL."""

    def __init__(self, uploads_dir: str, url_prefix: str = "/uploads"):
        self.uploads_dir = Path(uploads_dir)
        self.url_prefix = url_prefix.rstrip("/")

    @property
    def fallback_url(self) -> str:
        return f"{self.url_prefix}/{FALLBACK_AUDIO_FILENAME}"

    def _write(self, filename: str, audio: bytes) -> Path:
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        path = self.uploads_dir / filename
        path.write_bytes(audio)
        return path

    async def save(self, audio: bytes, prefix: str = "tts", extension: str = "mp3") -> str:
        filename = generate_filename(prefix, extension)
        path = await asyncio.to_thread(self._write, filename, audio)
        logger.debug(f"Audio saved at {path} ({len(audio)} bytes)")
        return f"{self.url_prefix}/{filename}"

    async def ensure_fallback(self) -> str:
        """Make sure the silent placeholder clip exists; its URL is returned either way."""
        path = self.uploads_dir / FALLBACK_AUDIO_FILENAME
        if not path.exists():
            try:
                await asyncio.to_thread(self._write, FALLBACK_AUDIO_FILENAME, silent_wav())
            except OSError as e:
                logger.error(f"Could not write fallback audio to {path}: {e}")
        return self.fallback_url
