# besty/voice/playback.py
import asyncio
from loguru import logger

from besty.core.config import Settings
from besty.services.audio import NOTIFICATION_SOUND_URL
from besty.voice.interfaces import AudioOutput


def clamp_volume(volume: float) -> float:
    return max(0.0, min(1.0, float(volume)))


class PlaybackController:
    """
    Plays one clip at a time. A failed start is retried once after `retry_delay`;
    if that fails too, a short built-in notification sound is played instead.
    """

    def __init__(
        self,
        output: AudioOutput,
        retry_delay: float = 0.5,
        notification_url: str = NOTIFICATION_SOUND_URL,
        volume: float = 1.0,
    ):
        self.output = output
        self.retry_delay = retry_delay
        self.notification_url = notification_url
        self._volume = clamp_volume(volume)
        self._playing = False
        self._generation = 0

    @classmethod
    def from_settings(cls, output: AudioOutput, settings: Settings) -> "PlaybackController":
        return cls(output, retry_delay=settings.PLAYBACK_RETRY_DELAY_SECONDS)

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def volume(self) -> float:
        return self._volume

    def set_volume(self, volume: float) -> float:
        self._volume = clamp_volume(volume)
        self.output.set_volume(self._volume)
        return self._volume

    def on_ended(self) -> None:
        """Hook for the output to report that the clip finished."""
        self._playing = False

    async def _start(self, url: str, generation: int) -> bool:
        self.output.set_volume(self._volume)
        await self.output.play(url)
        if generation != self._generation:
            # Superseded by a newer play() or stop() while the output was starting
            await self._silence()
            return False
        self._playing = True
        return True

    async def _silence(self) -> None:
        try:
            await self.output.stop()
        except Exception as e:
            logger.warning(f"Failed to stop playback cleanly: {e}")

    async def play(self, url: str) -> bool:
        """Returns True if `url` itself started playing."""
        await self.stop()
        generation = self._generation

        try:
            return await self._start(url, generation)
        except Exception as e:
            logger.warning(f"Playback failed, retrying in {self.retry_delay}s: {e}")

        await asyncio.sleep(self.retry_delay)
        if generation != self._generation:
            # A newer play() or stop() took over while we waited
            return False
        try:
            return await self._start(url, generation)
        except Exception as e:
            logger.error(f"Playback retry failed, playing notification sound instead: {e}")

        try:
            await self._start(self.notification_url, generation)
        except Exception as e:
            logger.error(f"Notification sound failed as well: {e}")
        return False

    async def stop(self) -> None:
        self._generation += 1
        if not self._playing:
            return
        self._playing = False
        await self._silence()
