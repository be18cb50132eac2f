"""Contracts for the audio devices the voice client drives."""

from typing import AsyncContextManager, AsyncIterator, Awaitable, Callable, Protocol, Union

# Receives provisional transcripts while recording is still running
TranscriptSink = Callable[[str], Union[None, Awaitable[None]]]


class MicrophoneSource(Protocol):
    """Opens the microphone for the lifetime of a context."""

    def stream(self) -> AsyncContextManager[AsyncIterator[bytes]]:
        """Yield encoded audio chunks; leaving the context releases the device."""


class AudioOutput(Protocol):
    """Something that can load and play an audio URL, like a browser audio element."""

    async def play(self, url: str) -> None:
        """Load `url` and start playback; raises if playback cannot start."""

    async def stop(self) -> None:
        """Pause and rewind the current clip."""

    def set_volume(self, volume: float) -> None: ...
