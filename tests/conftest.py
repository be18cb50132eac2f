import asyncio
from contextlib import asynccontextmanager
from typing import List, Optional

import pytest

from besty.core.config import Settings
from besty.core.database import build_engine, build_sessionmaker, create_tables
from besty.core.errors import UpstreamServiceFailure
from besty.schemas.speech import Transcription
from besty.services.audio import silent_wav
from besty.services.container import build_services
from besty.services.gateways.chat_completion import ChatCompletionGateway
from besty.services.gateways.speech_synthesis import SpeechSynthesisGateway
from besty.services.gateways.transcription import TranscriptionGateway
from besty.services.mailer import LoggingMailer
from besty.services.session_store import MemorySessionStore
from besty.services.sql_storage import SQLStorage
from besty.services.storage import MemoryStorage

SPEECH = b"\x1a\x45\xdf\xa3" + b"\x01voice" * 32  # webm header followed by non-zero payload


class StubChat(ChatCompletionGateway):
    name = "stub-chat"

    def __init__(self, reply: str = "Hi there!", fail: bool = False):
        self.reply = reply
        self.fail = fail
        self.calls = []

    async def complete(self, system_prompt, turns, user_text):
        self.calls.append((system_prompt, list(turns), user_text))
        if self.fail:
            raise UpstreamServiceFailure("chat model down")
        return self.reply


class StubSpeech(SpeechSynthesisGateway):
    name = "stub-speech"

    def __init__(self, audio: bytes = b"ID3" + b"\x01" * 64, fail: bool = False):
        self.audio = audio
        self.fail = fail
        self.calls = []

    async def synthesize(self, text, voice, mood, custom_voice_id=None):
        self.calls.append((text, voice, mood, custom_voice_id))
        if self.fail:
            raise UpstreamServiceFailure("tts down")
        return self.audio


class StubTranscription(TranscriptionGateway):
    name = "stub-transcription"

    def __init__(self, text: str = "hello", confidence: float = 0.9, fail: bool = False):
        self.text = text
        self.confidence = confidence
        self.fail = fail
        self.calls: List[bytes] = []

    async def transcribe(self, audio, mime_type=None):
        self.calls.append(audio)
        if self.fail:
            raise UpstreamServiceFailure("stt down")
        return Transcription(text=self.text, confidence=self.confidence)


class FakeMicrophone:
    """Yields whatever the test pushes; `None` ends the stream."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.queue: asyncio.Queue = asyncio.Queue()
        self.opened = False
        self.released = False

    def push(self, chunk: Optional[bytes]) -> None:
        self.queue.put_nowait(chunk)

    async def _chunks(self):
        while True:
            chunk = await self.queue.get()
            if chunk is None:
                return
            yield chunk

    @asynccontextmanager
    async def _stream(self):
        if self.fail:
            raise PermissionError("permission denied")
        self.opened = True
        try:
            yield self._chunks()
        finally:
            self.released = True

    def stream(self):
        return self._stream()


class FakeOutput:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.played: List[str] = []
        self.attempts: List[str] = []
        self.stops = 0
        self.volume: Optional[float] = None

    async def play(self, url: str) -> None:
        self.attempts.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("decode error")
        self.played.append(url)

    async def stop(self) -> None:
        self.stops += 1

    def set_volume(self, volume: float) -> None:
        self.volume = volume


class RecordingMailer(LoggingMailer):
    def __init__(self):
        super().__init__("http://testserver")
        self.sent = []

    async def send_magic_link(self, email: str, token: str) -> bool:
        self.sent.append((email, token))
        return True


async def wait_until(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        UPLOADS_DIR=str(tmp_path / "uploads"),
        DATABASE_URL=None,
        REDIS_HOST=None,
        OPENAI_API_KEY=None,
        GEMINI_API_KEY=None,
        DEEPGRAM_API_KEY=None,
        ELEVENLABS_API_KEY=None,
        GATEWAY_TIMEOUT_SECONDS=1.0,
        INTERIM_TRANSCRIPT_INTERVAL_SECONDS=0.01,
    )


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
async def sql_storage(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'besty.db'}", Settings())
    await create_tables(engine)
    yield SQLStorage(build_sessionmaker(engine))
    await engine.dispose()


@pytest.fixture
def chat_gateway():
    return StubChat()


@pytest.fixture
def speech_gateway():
    return StubSpeech()


@pytest.fixture
def transcription_gateway():
    return StubTranscription()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def services(settings, storage, chat_gateway, speech_gateway, transcription_gateway, mailer):
    return build_services(
        settings,
        storage=storage,
        sessions=MemorySessionStore(settings.SESSION_TTL_SECONDS),
        transcription=transcription_gateway,
        chat=chat_gateway,
        speech=speech_gateway,
        mailer=mailer,
    )


@pytest.fixture
def orchestrator(services):
    return services.orchestrator


@pytest.fixture
async def user(storage):
    return await storage.create_user("a@b.com")


@pytest.fixture
async def conversation(services, user):
    return await services.conversations.create(user)


@pytest.fixture
def silence():
    return silent_wav()
