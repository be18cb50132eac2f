import asyncio

import pytest

from besty.core.errors import (
    Forbidden,
    MicrophoneUnavailable,
    NoSpeechDetected,
    TurnInProgress,
    UpstreamServiceFailure,
    ValidationError,
)
from besty.services.prompts import EMPATHY_REPLY, GREETING_REPLY, MOOD_PROMPTS, mood_prompt
from besty.services.turn_orchestrator import TurnState

from conftest import SPEECH, FakeMicrophone, StubSpeech, StubTranscription, wait_until


class SlowChat:
    name = "slow-chat"

    def __init__(self):
        self.release = asyncio.Event()

    async def complete(self, system_prompt, turns, user_text):
        await self.release.wait()
        return "done"


class HangingSpeech(StubSpeech):
    async def synthesize(self, text, voice, mood, custom_voice_id=None):
        self.calls.append((text, voice, mood, custom_voice_id))
        await asyncio.sleep(10)
        return self.audio


class HangingTranscription(StubTranscription):
    async def transcribe(self, audio, mime_type=None):
        self.calls.append(audio)
        await asyncio.sleep(10)


async def test_hello_scenario(orchestrator, services, storage, user, speech_gateway):
    persona = await services.personas.upsert(user.id, "female", "cheerful")
    conversation = await services.conversations.create(user, persona_id=persona.id)

    result = await orchestrator.submit_text(user, conversation.id, "hello")

    assert result.user_message.content == "hello"
    assert result.ai_message.content == "Hi there!"
    assert result.audio_url.startswith("/uploads/")
    assert result.fallback_reply is False
    assert result.fallback_audio is False
    messages = await storage.list_messages(conversation.id)
    assert [(m.content, m.is_user_message) for m in messages] == [("hello", True), ("Hi there!", False)]
    assert speech_gateway.calls == [("Hi there!", "female", "cheerful", None)]
    assert orchestrator.state(conversation.id) is TurnState.IDLE


async def test_user_message_keeps_a_supplied_audio_url(orchestrator, user, conversation):
    result = await orchestrator.submit_text(user, conversation.id, "hello", audio_url="/uploads/rec.webm")
    assert result.user_message.audio_url == "/uploads/rec.webm"
    assert result.ai_message.audio_url is None


async def test_audio_is_written_to_uploads(orchestrator, speech_gateway, user, conversation):
    result = await orchestrator.submit_text(user, conversation.id, "hello")
    filename = result.audio_url.rsplit("/", 1)[1]
    assert filename.endswith(".mp3")
    assert (orchestrator.audio_store.uploads_dir / filename).read_bytes() == speech_gateway.audio


async def test_prompt_carries_mood_template_and_history(orchestrator, chat_gateway, user, conversation):
    await orchestrator.submit_text(user, conversation.id, "first", mood="sassy")
    await orchestrator.submit_text(user, conversation.id, "second", mood="sassy")

    system_prompt, turns, user_text = chat_gateway.calls[-1]
    assert system_prompt == MOOD_PROMPTS["sassy"]
    assert [(t.role, t.content) for t in turns] == [("user", "first"), ("assistant", "Hi there!")]
    assert user_text == "second"


async def test_defaults_to_chill_and_female_without_persona(orchestrator, chat_gateway, speech_gateway, user, conversation):
    await orchestrator.submit_text(user, conversation.id, "hey")
    assert chat_gateway.calls[0][0] == MOOD_PROMPTS["chill"]
    assert speech_gateway.calls[0][1:3] == ("female", "chill")


def test_unknown_mood_uses_chill_template():
    assert mood_prompt("grumpy") == MOOD_PROMPTS["chill"]
    assert mood_prompt(None) == MOOD_PROMPTS["chill"]


async def test_sequential_turns_produce_four_ordered_messages(orchestrator, storage, user, conversation):
    await orchestrator.submit_text(user, conversation.id, "one")
    await orchestrator.submit_text(user, conversation.id, "two")

    messages = await storage.list_messages(conversation.id)
    assert len(messages) == 4
    assert [m.is_user_message for m in messages] == [True, False, True, False]
    assert all(b.created_at > a.created_at for a, b in zip(messages, messages[1:]))
    refreshed = await storage.get_conversation(conversation.id)
    assert refreshed.updated_at >= messages[-1].created_at


async def test_failing_chat_still_completes_the_turn(orchestrator, chat_gateway, storage, user, conversation):
    chat_gateway.fail = True

    result = await orchestrator.submit_text(user, conversation.id, "hello there")

    assert result.ai_message.content == GREETING_REPLY
    assert result.fallback_reply is True
    assert len(await storage.list_messages(conversation.id)) == 2


async def test_fallback_reply_uses_keywords(orchestrator, chat_gateway, user, conversation):
    chat_gateway.fail = True
    result = await orchestrator.submit_text(user, conversation.id, "Today was SAD")
    assert result.ai_message.content == EMPATHY_REPLY


async def test_chat_timeout_counts_as_failure(orchestrator, user, conversation):
    orchestrator.chat = SlowChat()
    orchestrator.gateway_timeout = 0.01

    result = await orchestrator.submit_text(user, conversation.id, "hello")
    assert result.fallback_reply is True
    assert result.ai_message.content


async def test_failing_synthesis_returns_placeholder_audio(orchestrator, speech_gateway, user, conversation):
    speech_gateway.fail = True

    result = await orchestrator.submit_text(user, conversation.id, "hello")

    assert result.audio_url == orchestrator.audio_store.fallback_url
    assert result.fallback_audio is True
    assert (orchestrator.audio_store.uploads_dir / "fallback.wav").exists()


async def test_synthesis_timeout_falls_back_to_placeholder_audio(orchestrator, storage, user, conversation):
    orchestrator.speech = HangingSpeech()
    orchestrator.gateway_timeout = 0.01

    result = await orchestrator.submit_text(user, conversation.id, "hello")

    assert result.fallback_audio is True
    assert result.audio_url == orchestrator.audio_store.fallback_url
    assert len(await storage.list_messages(conversation.id)) == 2
    assert orchestrator.state(conversation.id) is TurnState.IDLE


async def test_empty_synthesis_counts_as_failure(orchestrator, speech_gateway, user, conversation):
    speech_gateway.audio = b""
    result = await orchestrator.submit_text(user, conversation.id, "hello")
    assert result.fallback_audio is True


@pytest.mark.parametrize("text", ["", "   ", None])
async def test_blank_text_is_rejected(orchestrator, storage, user, conversation, text):
    with pytest.raises(ValidationError):
        await orchestrator.submit_text(user, conversation.id, text)
    assert await storage.list_messages(conversation.id) == []


async def test_missing_conversation_is_rejected(orchestrator, user):
    with pytest.raises(ValidationError):
        await orchestrator.submit_text(user, None, "hello")


async def test_other_users_conversation_is_forbidden(orchestrator, storage, conversation):
    intruder = await storage.create_user("intruder@b.com")
    with pytest.raises(Forbidden):
        await orchestrator.submit_text(intruder, conversation.id, "hello")


async def test_overlapping_turns_are_rejected(orchestrator, storage, user, conversation):
    slow = SlowChat()
    orchestrator.chat = slow

    first = asyncio.create_task(orchestrator.submit_text(user, conversation.id, "one"))
    await wait_until(lambda: orchestrator.state(conversation.id) is TurnState.AWAITING_REPLY)

    with pytest.raises(TurnInProgress):
        await orchestrator.submit_text(user, conversation.id, "two")

    slow.release.set()
    await first
    assert orchestrator.state(conversation.id) is TurnState.IDLE
    assert len(await storage.list_messages(conversation.id)) == 2


async def test_user_message_is_stored_before_reply_is_requested(orchestrator, storage, user, conversation):
    seen = []

    class InspectingChat:
        name = "inspecting-chat"

        async def complete(self, system_prompt, turns, user_text):
            seen.extend(await storage.list_messages(conversation.id))
            return "ok"

    orchestrator.chat = InspectingChat()
    await orchestrator.submit_text(user, conversation.id, "hello")
    assert [m.content for m in seen] == ["hello"]


async def test_generate_reply_stores_only_the_ai_message(orchestrator, services, chat_gateway, storage, user, conversation):
    await services.conversations.append_message(user, conversation.id, "hello", is_user_message=True)

    outcome = await orchestrator.generate_reply(user, conversation.id, "hello")

    assert outcome.message.content == "Hi there!"
    assert outcome.fallback is False
    assert len(await storage.list_messages(conversation.id)) == 2
    # The stored user message is not repeated in the history
    assert chat_gateway.calls[0][1] == []


async def test_transcribe_wraps_unexpected_errors(orchestrator):
    class ExplodingTranscription:
        name = "exploding"

        async def transcribe(self, audio, mime_type=None):
            raise KeyError("results")

    orchestrator.transcription = ExplodingTranscription()
    with pytest.raises(UpstreamServiceFailure):
        await orchestrator.transcribe(SPEECH)


# --- Voice path ---

async def test_voice_turn_runs_the_transcript_through_the_text_path(orchestrator, storage, transcription_gateway, user, conversation):
    transcription_gateway.text = "hello from my mic"
    microphone = FakeMicrophone()

    await orchestrator.start_capture(user, conversation.id, microphone)
    assert orchestrator.state(conversation.id) is TurnState.CAPTURING
    microphone.push(SPEECH)
    await asyncio.sleep(0.02)

    result = await orchestrator.stop_capture(user, conversation.id)

    assert result.user_message.content == "hello from my mic"
    assert transcription_gateway.calls[-1] == SPEECH
    assert microphone.released
    assert orchestrator.state(conversation.id) is TurnState.IDLE
    assert len(await storage.list_messages(conversation.id)) == 2


async def test_stop_capture_without_speech_persists_nothing(orchestrator, storage, transcription_gateway, user, conversation, silence):
    microphone = FakeMicrophone()
    await orchestrator.start_capture(user, conversation.id, microphone)
    microphone.push(silence)
    await asyncio.sleep(0.02)

    with pytest.raises(NoSpeechDetected):
        await orchestrator.stop_capture(user, conversation.id)

    assert transcription_gateway.calls == []
    assert await storage.list_messages(conversation.id) == []
    assert microphone.released
    assert orchestrator.state(conversation.id) is TurnState.IDLE


async def test_blank_transcript_is_no_speech(orchestrator, storage, transcription_gateway, user, conversation):
    transcription_gateway.text = "   "
    microphone = FakeMicrophone()
    await orchestrator.start_capture(user, conversation.id, microphone)
    microphone.push(SPEECH)
    await asyncio.sleep(0.02)

    with pytest.raises(NoSpeechDetected):
        await orchestrator.stop_capture(user, conversation.id)
    assert await storage.list_messages(conversation.id) == []


async def test_failed_final_transcription_surfaces_and_releases(orchestrator, transcription_gateway, user, conversation):
    microphone = FakeMicrophone()
    await orchestrator.start_capture(user, conversation.id, microphone)
    microphone.push(SPEECH)
    await asyncio.sleep(0.02)
    transcription_gateway.fail = True

    with pytest.raises(UpstreamServiceFailure):
        await orchestrator.stop_capture(user, conversation.id)
    assert microphone.released
    assert orchestrator.state(conversation.id) is TurnState.IDLE


async def test_final_transcription_timeout_surfaces_and_releases(orchestrator, storage, user, conversation):
    orchestrator.transcription = HangingTranscription()
    orchestrator.gateway_timeout = 0.01
    microphone = FakeMicrophone()
    await orchestrator.start_capture(user, conversation.id, microphone)
    microphone.push(SPEECH)
    await asyncio.sleep(0.02)

    with pytest.raises(UpstreamServiceFailure):
        await orchestrator.stop_capture(user, conversation.id)

    assert orchestrator.transcription.calls == [SPEECH]
    assert microphone.released
    assert orchestrator.state(conversation.id) is TurnState.IDLE
    assert await storage.list_messages(conversation.id) == []


async def test_capture_cannot_overlap_a_turn(orchestrator, user, conversation):
    await orchestrator.start_capture(user, conversation.id, FakeMicrophone())

    with pytest.raises(TurnInProgress):
        await orchestrator.start_capture(user, conversation.id, FakeMicrophone())
    with pytest.raises(TurnInProgress):
        await orchestrator.submit_text(user, conversation.id, "hello")

    await orchestrator.cancel_capture(conversation.id)
    assert orchestrator.state(conversation.id) is TurnState.IDLE


async def test_stop_capture_when_idle_is_rejected(orchestrator, user, conversation):
    with pytest.raises(ValidationError):
        await orchestrator.stop_capture(user, conversation.id)


async def test_denied_microphone_leaves_conversation_idle(orchestrator, user, conversation):
    with pytest.raises(MicrophoneUnavailable):
        await orchestrator.start_capture(user, conversation.id, FakeMicrophone(fail=True))
    assert orchestrator.state(conversation.id) is TurnState.IDLE


async def test_aclose_releases_open_captures(orchestrator, user, conversation):
    microphone = FakeMicrophone()
    capture = await orchestrator.start_capture(user, conversation.id, microphone, sink=lambda text: None)

    await orchestrator.aclose()

    assert microphone.released
    assert not capture.interim_running
    assert orchestrator.state(conversation.id) is TurnState.IDLE
