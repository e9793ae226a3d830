# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import itertools
from dataclasses import replace
from typing import Any

import pytest

import controller.runtime as runtime_mod
from adapters.base import Handle
from adapters.errors import PermissionDenied, TransportError
from adapters.reply.client import Reply
from controller.enums.capability import Capability
from controller.enums.error_kind import ErrorKind
from controller.enums.state import State
from controller.events import (
    AdapterData,
    AdapterEnded,
    AdapterStarted,
    Cancel,
    EventType,
    StartSpeaking,
)
from controller.projection import SessionSnapshot
from controller.runtime import SessionController
from controller.runtime_context import RuntimeExecutionContext
from controller.settings import SessionSettings
from session.voice_session import VoiceSession


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeAdapter:
    def __init__(self, capability: Capability, *, fail_start: Exception | None = None) -> None:
        self.capability = capability
        self.fail_start = fail_start
        self.start_gate: asyncio.Event | None = None
        self.configs: list[Any] = []
        self.stopped: list[Handle] = []
        self.cancelled: list[Handle] = []
        self.resets = 0
        self._ids = itertools.count(1)

    async def start(self, config: Any) -> Handle:
        self.configs.append(config)
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.fail_start is not None:
            raise self.fail_start
        return Handle(self.capability, config.generation, next(self._ids))

    async def stop(self, handle: Handle) -> None:
        self.stopped.append(handle)

    async def cancel(self, handle: Handle) -> None:
        self.cancelled.append(handle)

    def force_reset(self) -> None:
        self.resets += 1


class FakeRecognition(FakeAdapter):
    def __init__(self) -> None:
        super().__init__(Capability.RECOGNITION)
        self.fed: list[bytes] = []

    async def feed(self, handle: Handle, pcm_bytes: bytes) -> None:
        self.fed.append(pcm_bytes)


class FakeReplyClient:
    def __init__(self, reply: Reply | None = None, error: Exception | None = None) -> None:
        self.reply = reply or Reply(reply_text="Hello from the endpoint")
        self.error = error
        self.gate: asyncio.Event | None = None
        self.prompts: list[str] = []
        self.was_cancelled = False

    async def send(self, transcript: str) -> Reply:
        self.prompts.append(transcript)
        try:
            if self.gate is not None:
                await self.gate.wait()
        except asyncio.CancelledError:
            self.was_cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.reply


SETTINGS = SessionSettings(
    recognition_language="en-SG",
    synthesis_language="en-US",
    voice=None,
    avatar_variant="chinese",
)


def build(reply_client: Any = "default", capture: FakeAdapter | None = None):
    session = VoiceSession(session_id="sess_test", settings=SETTINGS)
    session.attach_capture_adapter(capture or FakeAdapter(Capability.CAPTURE))
    session.attach_recognition_adapter(FakeRecognition())
    session.attach_synthesis_adapter(FakeAdapter(Capability.SYNTHESIS))
    session.attach_playback_adapter(FakeAdapter(Capability.PLAYBACK))
    session.attach_reply_client(FakeReplyClient() if reply_client == "default" else reply_client)
    controller = SessionController(context=RuntimeExecutionContext(session=session))
    session.attach_controller(controller)
    return session, controller


async def settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def start() -> StartSpeaking:
    return StartSpeaking(event_type=EventType.START_SPEAKING, ts_ms=0)


def cancel() -> Cancel:
    return Cancel(event_type=EventType.CANCEL, ts_ms=0)


def data(capability: Capability, generation: int, payload: Any, final: bool = False) -> AdapterData:
    return AdapterData(
        event_type=EventType.ADAPTER_DATA,
        ts_ms=0,
        capability=capability,
        generation=generation,
        data=payload,
        final=final,
    )


def started(capability: Capability, generation: int) -> AdapterStarted:
    return AdapterStarted(
        event_type=EventType.ADAPTER_STARTED, ts_ms=0, capability=capability, generation=generation
    )


def ended(capability: Capability, generation: int) -> AdapterEnded:
    return AdapterEnded(
        event_type=EventType.ADAPTER_ENDED, ts_ms=0, capability=capability, generation=generation
    )


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(runtime_mod, "log_event", emitted.append)
    return emitted


# ---------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------

def test_round_trip_drives_adapters_and_publishes_snapshots():
    async def scenario() -> None:
        session, controller = build()
        snapshots: list[SessionSnapshot] = []

        async def listener(snapshot: SessionSnapshot) -> None:
            snapshots.append(snapshot)

        controller.subscribe(listener)

        await controller.handle_event(start())
        assert session.recognition_adapter.configs[0].language == "en-SG"
        assert set(controller.handles) == {Capability.CAPTURE, Capability.RECOGNITION}

        await controller.handle_event(data(Capability.CAPTURE, 1, b"\x01\x00"))
        assert session.recognition_adapter.fed == [b"\x01\x00"]

        await controller.handle_event(data(Capability.RECOGNITION, 1, "what is laksa", final=True))
        await settle()

        assert session.reply_client.prompts == ["what is laksa"]
        assert controller.state.state is State.REPLYING
        synthesis_config = session.synthesis_adapter.configs[0]
        assert synthesis_config.text == "Hello from the endpoint"
        assert synthesis_config.language == "en-US"

        # Capture was released gracefully, recognition cancelled
        assert len(session.capture_adapter.stopped) == 1
        assert len(session.recognition_adapter.cancelled) == 1

        await controller.handle_event(started(Capability.SYNTHESIS, 1))
        assert controller.snapshot.is_speaking

        await controller.handle_event(ended(Capability.SYNTHESIS, 1))
        await settle()

        assert controller.state.state is State.IDLE
        assert controller.handles == {}
        assert [s.state for s in snapshots] == [
            State.LISTENING,
            State.AWAITING_REPLY,
            State.REPLYING,
            State.SPEAKING,
            State.IDLE,
        ]

    asyncio.run(scenario())


def test_cancel_while_awaiting_reply_cancels_request_and_ignores_late_reply():
    async def scenario() -> None:
        client = FakeReplyClient()
        client.gate = asyncio.Event()
        session, controller = build(reply_client=client)

        await controller.handle_event(start())
        await controller.handle_event(data(Capability.RECOGNITION, 1, "hello", final=True))
        await settle()
        assert controller.state.state is State.AWAITING_REPLY

        await controller.handle_event(cancel())
        await settle()

        assert client.was_cancelled
        assert controller.state.state is State.IDLE
        assert controller.state.generation == 2
        assert session.synthesis_adapter.configs == []

    asyncio.run(scenario())


def test_reply_failure_enters_error_with_kind():
    async def scenario() -> None:
        client = FakeReplyClient(error=TransportError("reply endpoint answered HTTP 503", status_code=503))
        _, controller = build(reply_client=client)

        await controller.handle_event(start())
        await controller.handle_event(data(Capability.RECOGNITION, 1, "hello", final=True))
        await settle()

        state = controller.state
        assert state.state is State.ERRORED
        assert state.error is not None
        assert state.error.kind is ErrorKind.TRANSPORT_ERROR
        assert state.transcript == "hello"

    asyncio.run(scenario())


def test_missing_reply_client_is_transport_error():
    async def scenario() -> None:
        _, controller = build(reply_client=None)

        await controller.handle_event(start())
        await controller.handle_event(data(Capability.RECOGNITION, 1, "hello", final=True))

        assert controller.state.state is State.ERRORED
        assert controller.state.error is not None
        assert controller.state.error.kind is ErrorKind.TRANSPORT_ERROR

    asyncio.run(scenario())


def test_capture_permission_denied_releases_recognition():
    async def scenario() -> None:
        capture = FakeAdapter(Capability.CAPTURE, fail_start=PermissionDenied("microphone blocked"))
        session, controller = build(capture=capture)

        await controller.handle_event(start())
        await settle()

        state = controller.state
        assert state.state is State.ERRORED
        assert state.error is not None
        assert state.error.kind is ErrorKind.PERMISSION_DENIED
        assert state.error.reason == "microphone blocked"
        assert len(session.recognition_adapter.cancelled) == 1
        assert controller.handles == {}

    asyncio.run(scenario())


def test_untyped_synthesis_start_failure_maps_to_synthesis_failure():
    async def scenario() -> None:
        session, controller = build()
        session.synthesis_adapter.fail_start = OSError("no audio device")

        await controller.handle_event(start())
        await controller.handle_event(data(Capability.RECOGNITION, 1, "hello", final=True))
        await settle()

        assert controller.state.state is State.ERRORED
        assert controller.state.error is not None
        assert controller.state.error.kind is ErrorKind.SYNTHESIS_FAILURE
        assert "no audio device" in controller.state.error.reason

    asyncio.run(scenario())


def test_handle_finishing_start_after_cancel_is_released_immediately():
    async def scenario() -> None:
        capture = FakeAdapter(Capability.CAPTURE)
        capture.start_gate = asyncio.Event()
        _, controller = build(capture=capture)

        starting = asyncio.create_task(controller.handle_event(start()))
        await settle()

        await controller.handle_event(cancel())
        capture.start_gate.set()
        await starting
        await settle()

        assert controller.handles == {}
        assert len(capture.cancelled) == 1
        assert capture.cancelled[0].generation == 1

    asyncio.run(scenario())


def test_settings_are_snapshotted_when_the_exchange_starts():
    async def scenario() -> None:
        session, controller = build()

        await controller.handle_event(start())
        session.settings = replace(SETTINGS, synthesis_language="ms-MY")
        await controller.handle_event(data(Capability.RECOGNITION, 1, "hello", final=True))
        await settle()

        assert session.synthesis_adapter.configs[0].language == "en-US"

        await controller.handle_event(start())
        assert controller.settings.synthesis_language == "ms-MY"

    asyncio.run(scenario())


def test_shutdown_releases_resets_and_ignores_later_events():
    async def scenario() -> None:
        session, controller = build()

        await controller.handle_event(start())
        await controller.shutdown("test")
        await controller.shutdown("again")

        assert controller.closed
        assert controller.handles == {}
        assert len(session.capture_adapter.cancelled) == 1
        assert len(session.recognition_adapter.cancelled) == 1
        assert session.capture_adapter.resets == 1
        assert session.playback_adapter.resets == 1

        before = controller.state
        await controller.handle_event(start())
        assert controller.state == before

    asyncio.run(scenario())


def test_listener_failure_is_logged_and_does_not_break_dispatch(quiet_logs):
    async def scenario() -> None:
        _, controller = build()

        async def broken(snapshot: SessionSnapshot) -> None:
            raise RuntimeError("view gone")

        controller.subscribe(broken)
        await controller.handle_event(start())

        assert controller.state.state is State.LISTENING

    asyncio.run(scenario())

    assert any(e["event_type"] == "SNAPSHOT_LISTENER_FAILED" for e in quiet_logs)
