import asyncio

import pytest

from besty.core.errors import MicrophoneUnavailable
from besty.voice.capture import SpeechCapture

from conftest import SPEECH, FakeMicrophone, StubTranscription, wait_until


def make_capture(microphone, transcription, **kwargs):
    kwargs.setdefault("interval", 0.01)
    kwargs.setdefault("timeout", 0.5)
    return SpeechCapture(microphone, transcription, **kwargs)


async def test_interim_transcripts_reach_the_sink():
    microphone = FakeMicrophone()
    transcription = StubTranscription(text="so far so good")
    received = []
    capture = make_capture(microphone, transcription)

    await capture.start(received.append)
    microphone.push(SPEECH)
    await wait_until(lambda: received)
    audio = await capture.stop()

    assert received[0] == "so far so good"
    assert audio == SPEECH


async def test_async_sink_is_awaited():
    microphone = FakeMicrophone()
    received = []

    async def sink(text):
        received.append(text)

    capture = make_capture(microphone, StubTranscription())
    await capture.start(sink)
    microphone.push(SPEECH)
    await wait_until(lambda: received)
    await capture.aclose()


async def test_silent_buffer_is_not_sent_for_interim_transcription():
    microphone = FakeMicrophone()
    transcription = StubTranscription()
    capture = make_capture(microphone, transcription)

    await capture.start(lambda text: None)
    microphone.push(b"\x00" * 64)
    await asyncio.sleep(0.05)
    await capture.stop()

    assert transcription.calls == []


async def test_interim_failures_are_bounded():
    microphone = FakeMicrophone()
    transcription = StubTranscription(fail=True)
    capture = make_capture(microphone, transcription, max_interim_failures=3)

    await capture.start(lambda text: None)
    microphone.push(SPEECH)
    await wait_until(lambda: not capture.interim_running)
    calls = len(transcription.calls)
    await asyncio.sleep(0.05)

    assert capture.interim_failures == 3
    assert calls == 3
    assert len(transcription.calls) == 3
    assert capture.is_capturing
    await capture.stop()


async def test_sink_errors_do_not_stop_the_timer():
    microphone = FakeMicrophone()
    calls = []

    def sink(text):
        calls.append(text)
        raise RuntimeError("ui went away")

    capture = make_capture(microphone, StubTranscription())
    await capture.start(sink)
    microphone.push(SPEECH)
    await wait_until(lambda: len(calls) >= 2)
    assert capture.interim_running
    await capture.aclose()


async def test_stop_cancels_the_timer_and_releases_the_microphone():
    microphone = FakeMicrophone()
    transcription = StubTranscription()
    capture = make_capture(microphone, transcription)

    await capture.start(lambda text: None)
    microphone.push(SPEECH)
    await wait_until(lambda: transcription.calls)
    await capture.stop()

    assert microphone.released
    assert not capture.interim_running
    assert not capture.is_capturing
    calls = len(transcription.calls)
    await asyncio.sleep(0.05)
    assert len(transcription.calls) == calls


async def test_context_manager_tears_down_on_error():
    microphone = FakeMicrophone()
    with pytest.raises(RuntimeError):
        async with make_capture(microphone, StubTranscription()) as capture:
            await capture.start(lambda text: None)
            raise RuntimeError("boom")
    assert microphone.released
    assert not capture.interim_running


async def test_aclose_is_idempotent():
    capture = make_capture(FakeMicrophone(), StubTranscription())
    await capture.aclose()
    await capture.start()
    await capture.aclose()
    await capture.aclose()
    assert not capture.is_capturing


async def test_no_timer_without_a_sink():
    capture = make_capture(FakeMicrophone(), StubTranscription())
    await capture.start()
    assert not capture.interim_running
    await capture.aclose()


async def test_chunks_are_joined_in_order():
    microphone = FakeMicrophone()
    capture = make_capture(microphone, StubTranscription())
    await capture.start()
    for chunk in (b"\x01a", b"\x01b", b"\x01c"):
        microphone.push(chunk)
    await wait_until(lambda: capture.buffered_audio() == b"\x01a\x01b\x01c")
    assert await capture.stop() == b"\x01a\x01b\x01c"


async def test_microphone_error_becomes_unavailable():
    capture = make_capture(FakeMicrophone(fail=True), StubTranscription())
    with pytest.raises(MicrophoneUnavailable):
        await capture.start()
    assert not capture.is_capturing


async def test_stop_before_start_is_an_error():
    with pytest.raises(RuntimeError):
        await make_capture(FakeMicrophone(), StubTranscription()).stop()
