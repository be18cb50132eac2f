# besty/services/turn_orchestrator.py
"""
Drives one conversational turn from user input to a stored AI reply with playable audio.

    Idle -> Capturing (voice only) -> Transcribing -> AwaitingReply -> Synthesizing -> Idle

Playback of the returned audio URL belongs to the client. One turn at a time per
conversation: starting a second one while the first is running raises TurnInProgress.

Chat completion and speech synthesis never fail a turn. A completion failure is
answered with a canned keyword reply, a synthesis failure with a silent placeholder
clip. Transcription has no fallback, so its failures reach the caller.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from loguru import logger

from besty.core.errors import NoSpeechDetected, TurnInProgress, UpstreamServiceFailure, ValidationError
from besty.schemas.chat import TurnResult
from besty.schemas.conversation import Conversation, Message
from besty.schemas.persona import DEFAULT_MOOD, DEFAULT_VOICE, Persona
from besty.schemas.speech import Transcription
from besty.schemas.user import User
from besty.services.audio import AudioStore, is_silent
from besty.services.conversation_service import ConversationService
from besty.services.gateways.chat_completion import ChatCompletionGateway, ChatTurn
from besty.services.gateways.speech_synthesis import SpeechSynthesisGateway
from besty.services.gateways.transcription import TranscriptionGateway
from besty.services.prompts import fallback_reply, mood_prompt
from besty.services.storage import Storage
from besty.voice.capture import SpeechCapture
from besty.voice.interfaces import MicrophoneSource, TranscriptSink


class TurnState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    TRANSCRIBING = "transcribing"
    AWAITING_REPLY = "awaiting_reply"
    SYNTHESIZING = "synthesizing"
    PLAYING = "playing"


@dataclass
class ReplyOutcome:
    message: Message
    fallback: bool = False


@dataclass
class SpeechOutcome:
    audio_url: str
    fallback: bool = False


@dataclass
class TurnContext:
    mood: str
    voice: str
    custom_voice_id: Optional[str] = None


def _preview(text: str) -> str:
    return text[:30] + ("..." if len(text) > 30 else "")


class TurnOrchestrator:
    def __init__(
        self,
        storage: Storage,
        conversations: ConversationService,
        transcription: TranscriptionGateway,
        chat: ChatCompletionGateway,
        speech: SpeechSynthesisGateway,
        audio_store: AudioStore,
        gateway_timeout: float = 20.0,
        capture_interval: float = 2.0,
        max_interim_failures: int = 3,
    ):
        self.storage = storage
        self.conversations = conversations
        self.transcription = transcription
        self.chat = chat
        self.speech = speech
        self.audio_store = audio_store
        self.gateway_timeout = gateway_timeout
        self.capture_interval = capture_interval
        self.max_interim_failures = max_interim_failures

        self._states: Dict[int, TurnState] = {}
        self._captures: Dict[int, SpeechCapture] = {}

    # --- Turn state ---
    def state(self, conversation_id: int) -> TurnState:
        return self._states.get(conversation_id, TurnState.IDLE)

    def _begin(self, conversation_id: int, state: TurnState) -> None:
        # No await between the check and the set, so this is atomic on the event loop
        if self.state(conversation_id) is not TurnState.IDLE:
            logger.warning(f"Rejected overlapping turn for conversation {conversation_id}")
            raise TurnInProgress()
        self._states[conversation_id] = state

    def _advance(self, conversation_id: int, state: TurnState) -> None:
        self._states[conversation_id] = state
        logger.debug(f"Conversation {conversation_id} -> {state.value}")

    def _finish(self, conversation_id: int) -> None:
        self._states.pop(conversation_id, None)

    @staticmethod
    def _require_text(text: Optional[str]) -> str:
        if text is None or not text.strip():
            raise ValidationError("Message text is required")
        return text.strip()

    # --- Gateway calls, each bounded by the gateway timeout ---
    async def transcribe(self, audio: bytes, mime_type: Optional[str] = None) -> Transcription:
        try:
            return await asyncio.wait_for(self.transcription.transcribe(audio, mime_type), self.gateway_timeout)
        except asyncio.TimeoutError as e:
            raise UpstreamServiceFailure("Transcription timed out") from e
        except UpstreamServiceFailure:
            raise
        except Exception as e:
            raise UpstreamServiceFailure(f"Transcription failed: {e}") from e

    async def _reply_text(self, mood: str, history: List[Message], text: str) -> Tuple[str, bool]:
        turns = [ChatTurn("user" if m.is_user_message else "assistant", m.content) for m in history]
        try:
            reply = await asyncio.wait_for(
                self.chat.complete(mood_prompt(mood), turns, text), self.gateway_timeout
            )
            return reply, False
        except Exception as e:
            logger.warning(f"Chat completion failed, using fallback reply: {e!r}")
            return fallback_reply(text), True

    async def synthesize(
        self, text: str, voice: str, mood: str, custom_voice_id: Optional[str] = None
    ) -> SpeechOutcome:
        try:
            audio = await asyncio.wait_for(
                self.speech.synthesize(text, voice, mood, custom_voice_id), self.gateway_timeout
            )
            if not audio:
                raise UpstreamServiceFailure("Speech synthesis returned no audio")
            audio_url = await self.audio_store.save(audio, extension=self.speech.extension)
            return SpeechOutcome(audio_url=audio_url)
        except Exception as e:
            logger.warning(f"Speech synthesis failed, using placeholder audio: {e!r}")
            return SpeechOutcome(audio_url=await self.audio_store.ensure_fallback(), fallback=True)

    # --- Context ---
    async def _context(
        self, conversation: Conversation, mood: Optional[str], voice: Optional[str]
    ) -> TurnContext:
        persona: Optional[Persona] = None
        if conversation.persona_id is not None:
            persona = await self.storage.get_persona(conversation.persona_id)
        return TurnContext(
            mood=mood or (persona.mood.value if persona else DEFAULT_MOOD.value),
            voice=voice or (persona.voice.value if persona else DEFAULT_VOICE.value),
            custom_voice_id=persona.custom_voice_id if persona else None,
        )

    # --- Text path ---
    async def submit_text(
        self,
        user: User,
        conversation_id: Optional[int],
        text: Optional[str],
        mood: Optional[str] = None,
        voice: Optional[str] = None,
        audio_url: Optional[str] = None,
    ) -> TurnResult:
        text = self._require_text(text)
        conversation = await self.conversations.get_owned(user, conversation_id)
        self._begin(conversation.id, TurnState.AWAITING_REPLY)
        try:
            return await self._run_turn(conversation, text, mood, voice, audio_url)
        finally:
            self._finish(conversation.id)

    async def _run_turn(
        self,
        conversation: Conversation,
        text: str,
        mood: Optional[str],
        voice: Optional[str],
        audio_url: Optional[str] = None,
    ) -> TurnResult:
        logger.info(f"Turn started in conversation {conversation.id}: '{_preview(text)}'")
        history = await self.storage.list_messages(conversation.id)
        user_message = await self.storage.create_message(
            conversation.id, text, is_user_message=True, audio_url=audio_url
        )
        context = await self._context(conversation, mood, voice)

        self._advance(conversation.id, TurnState.AWAITING_REPLY)
        reply, fallback_used = await self._reply_text(context.mood, history, text)
        ai_message = await self.storage.create_message(conversation.id, reply, is_user_message=False)

        self._advance(conversation.id, TurnState.SYNTHESIZING)
        speech = await self.synthesize(ai_message.content, context.voice, context.mood, context.custom_voice_id)

        logger.info(
            f"Turn completed in conversation {conversation.id} "
            f"(fallback reply: {fallback_used}, fallback audio: {speech.fallback})"
        )
        return TurnResult(
            user_message=user_message,
            ai_message=ai_message,
            audio_url=speech.audio_url,
            fallback_reply=fallback_used,
            fallback_audio=speech.fallback,
        )

    async def generate_reply(
        self,
        user: User,
        conversation_id: Optional[int],
        text: Optional[str],
        mood: Optional[str] = None,
    ) -> ReplyOutcome:
        """Reply to text whose user message is already stored; persists only the AI message."""
        text = self._require_text(text)
        conversation = await self.conversations.get_owned(user, conversation_id)
        self._begin(conversation.id, TurnState.AWAITING_REPLY)
        try:
            history = await self.storage.list_messages(conversation.id)
            if history and history[-1].is_user_message and history[-1].content.strip() == text:
                # The prompt ends with the new text already
                history = history[:-1]
            context = await self._context(conversation, mood, None)
            reply, fallback_used = await self._reply_text(context.mood, history, text)
            message = await self.storage.create_message(conversation.id, reply, is_user_message=False)
            return ReplyOutcome(message=message, fallback=fallback_used)
        finally:
            self._finish(conversation.id)

    # --- Voice path ---
    async def start_capture(
        self,
        user: User,
        conversation_id: Optional[int],
        microphone: MicrophoneSource,
        sink: Optional[TranscriptSink] = None,
    ) -> SpeechCapture:
        conversation = await self.conversations.get_owned(user, conversation_id)
        self._begin(conversation.id, TurnState.CAPTURING)
        capture = SpeechCapture(
            microphone,
            self.transcription,
            interval=self.capture_interval,
            max_interim_failures=self.max_interim_failures,
            timeout=self.gateway_timeout,
        )
        try:
            await capture.start(sink)
        except BaseException:
            self._finish(conversation.id)
            raise
        self._captures[conversation.id] = capture
        return capture

    async def stop_capture(
        self,
        user: User,
        conversation_id: Optional[int],
        mood: Optional[str] = None,
        voice: Optional[str] = None,
    ) -> TurnResult:
        conversation = await self.conversations.get_owned(user, conversation_id)
        state = self.state(conversation.id)
        if state is TurnState.IDLE:
            raise ValidationError("No capture in progress for this conversation")
        if state is not TurnState.CAPTURING:
            raise TurnInProgress()

        capture = self._captures.pop(conversation.id)
        self._advance(conversation.id, TurnState.TRANSCRIBING)
        try:
            audio = await capture.stop()
            if is_silent(audio):
                raise NoSpeechDetected()
            transcription = await self.transcribe(audio, capture.mime_type)
            text = transcription.text.strip()
            if not text:
                raise NoSpeechDetected()
            logger.info(f"Final transcript for conversation {conversation.id} (confidence {transcription.confidence})")
            return await self._run_turn(conversation, text, mood, voice)
        except NoSpeechDetected:
            logger.info(f"No speech detected in conversation {conversation.id}")
            raise
        finally:
            await capture.aclose()
            self._finish(conversation.id)

    async def cancel_capture(self, conversation_id: int) -> None:
        capture = self._captures.pop(conversation_id, None)
        if capture is None:
            return
        try:
            await capture.aclose()
        finally:
            self._finish(conversation_id)
        logger.info(f"Capture cancelled for conversation {conversation_id}")

    async def aclose(self) -> None:
        """Release every open microphone and interim timer."""
        for conversation_id in list(self._captures):
            await self.cancel_capture(conversation_id)
