# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import threading
from typing import Any

import numpy as np

from adapters.base import RecognitionConfig
from adapters.recognition.whisper_adapter import WhisperRecognitionAdapter
from adapters.recognition.whisper_engine import WhisperBackendError, WhisperResult, whisper_language
from constants import AUDIO_SAMPLES_PER_FRAME, NO_SPEECH_TIMEOUT_MS, SILENCE_DETECTION_MS, AUDIO_FRAME_MS
from controller.enums.error_kind import ErrorKind
from controller.events import AdapterData, AdapterEnded, AdapterError, AdapterStarted, Event


LOUD = np.full(AUDIO_SAMPLES_PER_FRAME, 8000, dtype="<i2").tobytes()
SILENT = np.zeros(AUDIO_SAMPLES_PER_FRAME, dtype="<i2").tobytes()


class FakeEngine:
    def __init__(self, text: str = "hello there", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.gate: threading.Event | None = None
        self.calls: list[tuple[int, Any]] = []

    def transcribe(self, audio: np.ndarray, *, language: Any = None, temperature: float = 0.0) -> WhisperResult:
        self.calls.append((audio.shape[0], language))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return WhisperResult(text=self.text)


def make(engine: FakeEngine) -> tuple[WhisperRecognitionAdapter, list[Event]]:
    events: list[Event] = []

    async def sink(event: Event) -> None:
        events.append(event)

    return WhisperRecognitionAdapter(emit_event=sink, engine=engine, session_id="s"), events  # type: ignore[arg-type]


async def wait_for(events: list[Event], count: int) -> None:
    for _ in range(300):
        if len(events) >= count:
            return
        await asyncio.sleep(0.01)


def test_whisper_language_uses_primary_subtag():
    assert whisper_language("en-SG") == "en"
    assert whisper_language("ms_MY") == "ms"
    assert whisper_language(None) is None
    assert whisper_language("") is None


def test_silence_after_speech_finalizes_once():
    engine = FakeEngine(text="where is the hawker centre")
    adapter, events = make(engine)

    async def scenario() -> None:
        handle = await adapter.start(RecognitionConfig(generation=4, language="en-SG"))
        for _ in range(5):
            await adapter.feed(handle, LOUD)
        for _ in range(SILENCE_DETECTION_MS // AUDIO_FRAME_MS + 5):
            await adapter.feed(handle, SILENT)
        await wait_for(events, 3)

    asyncio.run(scenario())

    assert [type(e) for e in events] == [AdapterStarted, AdapterData, AdapterEnded]
    final = events[1]
    assert isinstance(final, AdapterData)
    assert final.final
    assert final.data == "where is the hawker centre"
    assert all(e.generation == 4 for e in events)  # type: ignore[attr-defined]
    assert len(engine.calls) == 1
    assert engine.calls[0][1] == "en-SG"


def test_stop_without_speech_is_no_speech_error():
    engine = FakeEngine()
    adapter, events = make(engine)

    async def scenario() -> None:
        handle = await adapter.start(RecognitionConfig(generation=1, language="en-SG"))
        await adapter.feed(handle, SILENT)
        await adapter.stop(handle)
        await wait_for(events, 2)

    asyncio.run(scenario())

    error = events[-1]
    assert isinstance(error, AdapterError)
    assert error.kind is ErrorKind.RECOGNITION_FAILURE
    assert error.reason == "no-speech"
    assert engine.calls == []


def test_no_speech_timeout_fails_without_stop():
    adapter, events = make(FakeEngine())

    async def scenario() -> None:
        handle = await adapter.start(RecognitionConfig(generation=1, language="en-SG"))
        for _ in range(NO_SPEECH_TIMEOUT_MS // AUDIO_FRAME_MS):
            await adapter.feed(handle, SILENT)
        await wait_for(events, 2)

    asyncio.run(scenario())

    assert isinstance(events[-1], AdapterError)


def test_stop_after_speech_decodes_what_was_heard():
    engine = FakeEngine(text="short")
    adapter, events = make(engine)

    async def scenario() -> None:
        handle = await adapter.start(RecognitionConfig(generation=2, language="en-US"))
        for _ in range(4):
            await adapter.feed(handle, LOUD)
        await adapter.stop(handle)
        await adapter.stop(handle)
        await wait_for(events, 3)

    asyncio.run(scenario())

    assert [type(e) for e in events] == [AdapterStarted, AdapterData, AdapterEnded]
    assert engine.calls[0][0] == 4 * AUDIO_SAMPLES_PER_FRAME


def test_cancel_during_decode_emits_nothing_more():
    engine = FakeEngine()
    engine.gate = threading.Event()
    adapter, events = make(engine)

    async def scenario() -> None:
        handle = await adapter.start(RecognitionConfig(generation=1, language="en-SG"))
        for _ in range(4):
            await adapter.feed(handle, LOUD)
        await adapter.stop(handle)
        await asyncio.sleep(0.05)
        await adapter.cancel(handle)
        engine.gate.set()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert [type(e) for e in events] == [AdapterStarted]


def test_backend_error_is_recognition_failure():
    adapter, events = make(FakeEngine(error=WhisperBackendError("model missing")))

    async def scenario() -> None:
        handle = await adapter.start(RecognitionConfig(generation=1, language="en-SG"))
        for _ in range(4):
            await adapter.feed(handle, LOUD)
        await adapter.stop(handle)
        await wait_for(events, 2)

    asyncio.run(scenario())

    error = events[-1]
    assert isinstance(error, AdapterError)
    assert error.kind is ErrorKind.RECOGNITION_FAILURE
    assert "model missing" in error.reason
