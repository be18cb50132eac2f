# besty/voice/capture.py
import asyncio
import inspect
from contextlib import AsyncExitStack
from typing import AsyncIterator, List, Optional

from loguru import logger

from besty.core.errors import MicrophoneUnavailable
from besty.services.audio import is_silent
from besty.services.gateways.transcription import TranscriptionGateway
from besty.voice.interfaces import MicrophoneSource, TranscriptSink


class SpeechCapture:
    """
    Records microphone audio for one utterance.

    While recording, whatever has been buffered so far is transcribed every
    `interval` seconds and handed to the sink as an interim transcript. Interim
    failures are logged and counted; after `max_interim_failures` the interim
    timer gives up for this capture. `stop()` cancels the timer, releases the
    microphone and returns every buffered chunk joined together.
    """

    def __init__(
        self,
        microphone: MicrophoneSource,
        transcription: TranscriptionGateway,
        interval: float = 2.0,
        max_interim_failures: int = 3,
        mime_type: str = "audio/webm",
        timeout: float = 20.0,
    ):
        self.microphone = microphone
        self.transcription = transcription
        self.interval = interval
        self.max_interim_failures = max_interim_failures
        self.mime_type = mime_type
        self.timeout = timeout

        self._chunks: List[bytes] = []
        self._stack: Optional[AsyncExitStack] = None
        self._reader: Optional[asyncio.Task] = None
        self._interim: Optional[asyncio.Task] = None
        self._sink: Optional[TranscriptSink] = None
        self.interim_failures = 0

    @property
    def is_capturing(self) -> bool:
        return self._stack is not None

    @property
    def interim_running(self) -> bool:
        return self._interim is not None and not self._interim.done()

    def buffered_audio(self) -> bytes:
        return b"".join(self._chunks)

    async def start(self, sink: Optional[TranscriptSink] = None) -> None:
        if self._stack is not None:
            raise RuntimeError("Capture already started")

        stack = AsyncExitStack()
        try:
            chunks = await stack.enter_async_context(self.microphone.stream())
        except MicrophoneUnavailable:
            await stack.aclose()
            raise
        except Exception as e:
            await stack.aclose()
            logger.error(f"Failed to open microphone: {e}")
            raise MicrophoneUnavailable() from e

        self._stack = stack
        self._chunks = []
        self._sink = sink
        self.interim_failures = 0
        self._reader = asyncio.create_task(self._read(chunks))
        if sink is not None and self.interval > 0:
            self._interim = asyncio.create_task(self._interim_loop())
        logger.info("Microphone capture started")

    async def _read(self, chunks: AsyncIterator[bytes]) -> None:
        async for chunk in chunks:
            if chunk:
                self._chunks.append(chunk)

    async def _interim_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            audio = self.buffered_audio()
            if is_silent(audio):
                continue
            try:
                result = await asyncio.wait_for(
                    self.transcription.transcribe(audio, self.mime_type), self.timeout
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.interim_failures += 1
                logger.warning(
                    f"Interim transcription failed ({self.interim_failures}/{self.max_interim_failures}): {e}"
                )
                if self.interim_failures >= self.max_interim_failures:
                    logger.warning("Interim transcription disabled for the rest of this capture")
                    return
                continue
            if result.text.strip():
                await self._emit(result.text)

    async def _emit(self, text: str) -> None:
        try:
            outcome = self._sink(text)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Interim transcript sink raised: {e}")

    async def _teardown(self) -> None:
        tasks = [task for task in (self._interim, self._reader) if task is not None]
        for task in tasks:
            task.cancel()
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                    logger.warning(f"Capture task ended with error: {result}")
        finally:
            self._interim = None
            self._reader = None
            self._sink = None
            stack, self._stack = self._stack, None
            if stack is not None:
                await stack.aclose()
                logger.info("Microphone released")

    async def stop(self) -> bytes:
        """Stop recording and return the assembled audio."""
        if self._stack is None:
            raise RuntimeError("Capture has not started")
        await self._teardown()
        audio = self.buffered_audio()
        self._chunks = []
        return audio

    async def aclose(self) -> None:
        """Discard the recording. Safe to call at any time."""
        if self._stack is not None:
            await self._teardown()
        self._chunks = []

    async def __aenter__(self) -> "SpeechCapture":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
