# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import itertools
import json
from typing import Any

import pytest

import session.gateway as gateway_mod
from adapters.base import Handle
from adapters.reply.client import Reply
from config import AppConfig
from controller.enums.capability import Capability
from controller.enums.state import State
from controller.events import AdapterData, AdapterStarted, EventType
from session.gateway import SessionAdapters, SessionGateway


class FakeAdapter:
    def __init__(self, capability: Capability) -> None:
        self.capability = capability
        self.configs: list[Any] = []
        self.cancelled: list[Handle] = []
        self._ids = itertools.count(1)

    async def start(self, config: Any) -> Handle:
        self.configs.append(config)
        return Handle(self.capability, config.generation, next(self._ids))

    async def stop(self, handle: Handle) -> None:
        pass

    async def cancel(self, handle: Handle) -> None:
        self.cancelled.append(handle)

    def force_reset(self) -> None:
        pass

    async def feed(self, handle: Handle, pcm_bytes: bytes) -> None:
        pass


class FakeReplyClient:
    def __init__(self) -> None:
        self.closed = False

    async def send(self, transcript: str) -> Reply:
        return Reply(reply_text=f"You said {transcript}")

    async def aclose(self) -> None:
        self.closed = True


def make_config(**overrides: Any) -> AppConfig:
    values: dict[str, Any] = {
        "env": "test",
        "log_level": "INFO",
        "reply_endpoint_url": "https://reply.example.test/gemini",
        "reply_timeout_s": 5.0,
        "recognition_language": "en-SG",
        "whisper_model": "tiny",
        "whisper_device": None,
        "whisper_compute_type": None,
        "whisper_preload": False,
        "synthesis_provider": "local",
        "synthesis_language": "en-US",
        "synthesis_voice": None,
        "elevenlabs_api_key": None,
        "elevenlabs_voice_id": None,
        "elevenlabs_model_id": None,
        "avatar_variant": "chinese",
        "enable_json_logs": False,
        "server_host": "127.0.0.1",
        "server_port": 8000,
    }
    values.update(overrides)
    return AppConfig(**values)


def fake_builder(config: AppConfig, **_: Any) -> SessionAdapters:
    return SessionAdapters(
        capture=FakeAdapter(Capability.CAPTURE),
        recognition=FakeAdapter(Capability.RECOGNITION),
        synthesis=FakeAdapter(Capability.SYNTHESIS),
        playback=FakeAdapter(Capability.PLAYBACK),
        reply_client=FakeReplyClient(),
    )


def make_gateway(**config_overrides: Any) -> SessionGateway:
    return SessionGateway(
        config=make_config(**config_overrides),
        whisper_engine=object(),  # type: ignore[arg-type]
        adapter_builder=fake_builder,
        mouth_interval_ms=5,
    )


def msg(kind: str, **fields: Any) -> str:
    return json.dumps({"type": kind, **fields})


@pytest.fixture
def logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(gateway_mod, "log_event", emitted.append)
    return emitted


def test_connect_returns_session_init(logs):
    async def scenario() -> None:
        gw = make_gateway()
        result = await gw.on_ws_connect()

        init = result.outbound_json[0]
        assert init["type"] == "SESSION_INIT"
        assert init["session_id"].startswith("sess_")
        assert init["settings"]["avatar"] == "chinese"
        assert [a["id"] for a in init["avatars"]] == ["chinese", "indian", "malay"]
        assert init["snapshot"]["state"] == "IDLE"

        await gw.on_ws_disconnect("test")

    asyncio.run(scenario())

    assert any(e["event_type"] == "SESSION_STARTED" for e in logs)


def test_invalid_configured_avatar_falls_back_to_default(logs):
    async def scenario() -> None:
        gw = make_gateway(avatar_variant="martian")
        result = await gw.on_ws_connect()
        assert result.outbound_json[0]["settings"]["avatar"] == "chinese"
        await gw.on_ws_disconnect("test")

    asyncio.run(scenario())

    assert any(e["event_type"] == "AVATAR_VARIANT_INVALID" for e in logs)


def test_start_pushes_listening_snapshot(logs):
    async def scenario() -> None:
        gw = make_gateway()
        await gw.on_ws_connect()

        await gw.on_json_message(msg("START"))

        pushes = gw.drain_outbound()
        assert pushes[-1]["type"] == "SESSION_SNAPSHOT"
        assert pushes[-1]["snapshot"]["state"] == "LISTENING"
        assert pushes[-1]["snapshot"]["is_listening"] is True

        await gw.on_json_message(msg("CANCEL"))
        assert gw.drain_outbound()[-1]["snapshot"]["state"] == "IDLE"

        await gw.on_ws_disconnect("test")

    asyncio.run(scenario())


def test_start_with_settings_applies_them_to_the_new_exchange(logs):
    async def scenario() -> None:
        gw = make_gateway()
        await gw.on_ws_connect()

        await gw.on_json_message(msg("START", settings={"language": "ms-MY", "avatar": "malay"}))

        session = gw.session
        assert session is not None
        assert session.settings.recognition_language == "ms-MY"
        assert session.settings.avatar_variant == "malay"
        assert session.recognition_adapter.configs[0].language == "ms-MY"

        await gw.on_ws_disconnect("test")

    asyncio.run(scenario())


def test_settings_mid_exchange_are_deferred_to_next_start(logs):
    async def scenario() -> None:
        gw = make_gateway()
        await gw.on_ws_connect()
        await gw.on_json_message(msg("START"))

        result = await gw.on_json_message(msg("SETTINGS", settings={"avatar": "indian"}))

        reply = result.outbound_json[0]
        assert reply["type"] == "SETTINGS"
        assert reply["applied"] is False
        assert reply["settings"]["avatar"] == "chinese"
        assert reply["pending"]["avatar"] == "indian"

        await gw.on_json_message(msg("START"))
        assert gw.session is not None
        assert gw.session.settings.avatar_variant == "indian"
        assert gw.session.pending_settings is None

        await gw.on_ws_disconnect("test")

    asyncio.run(scenario())


def test_settings_while_idle_apply_immediately(logs):
    async def scenario() -> None:
        gw = make_gateway()
        await gw.on_ws_connect()

        result = await gw.on_json_message(msg("SETTINGS", settings={"voice": "zira"}))

        assert result.outbound_json[0]["applied"] is True
        assert gw.session is not None
        assert gw.session.settings.voice == "zira"

        await gw.on_ws_disconnect("test")

    asyncio.run(scenario())


def test_invalid_settings_are_rejected(logs):
    async def scenario() -> None:
        gw = make_gateway()
        await gw.on_ws_connect()

        result = await gw.on_json_message(msg("START", settings={"avatar": "martian"}))

        assert result.outbound_json[0]["type"] == "ERROR"
        assert result.outbound_json[0]["error"] == "invalid_settings"
        assert gw.session is not None
        assert gw.session.controller is not None
        assert gw.session.controller.state.state is State.IDLE

        await gw.on_ws_disconnect("test")

    asyncio.run(scenario())

    assert any(e["event_type"] == "SETTINGS_REJECTED" for e in logs)


def test_unknown_and_malformed_messages_are_logged(logs):
    async def scenario() -> None:
        gw = make_gateway()
        await gw.on_ws_connect()

        await gw.on_json_message(msg("DANCE"))
        await gw.on_json_message("{not json")
        await gw.on_json_message("[1, 2]")

        await gw.on_ws_disconnect("test")

    asyncio.run(scenario())

    kinds = [e["event_type"] for e in logs]
    assert "UNKNOWN_MESSAGE_TYPE" in kinds
    assert "JSON_DECODE_ERROR" in kinds
    assert "MESSAGE_NOT_OBJECT" in kinds


def test_speaking_pushes_avatar_frames_and_disconnect_tears_down(logs):
    async def scenario() -> None:
        gw = make_gateway()
        await gw.on_ws_connect()
        session = gw.session
        assert session is not None and session.controller is not None
        controller = session.controller

        await gw.on_json_message(msg("START"))
        await controller.handle_event(
            AdapterData(
                event_type=EventType.ADAPTER_DATA,
                ts_ms=0,
                capability=Capability.RECOGNITION,
                generation=1,
                data="hello",
                final=True,
            )
        )
        for _ in range(100):
            if controller.state.state is State.REPLYING:
                break
            await asyncio.sleep(0.001)
        assert controller.state.state is State.REPLYING

        await controller.handle_event(
            AdapterStarted(
                event_type=EventType.ADAPTER_STARTED,
                ts_ms=0,
                capability=Capability.SYNTHESIS,
                generation=1,
            )
        )
        await asyncio.sleep(0.03)

        pushes = gw.drain_outbound()
        frames = [p for p in pushes if p["type"] == "AVATAR_FRAME"]
        assert frames[0]["talking"] is True
        assert any(f["mouth_open"] for f in frames)
        assert frames[0]["avatar"] == "chinese"

        reply_client = session.reply_client
        await gw.on_ws_disconnect("client_disconnect")

        assert controller.closed
        assert reply_client.closed
        assert session.animator is not None
        assert not session.animator.running
        assert session.synthesis_adapter.cancelled

    asyncio.run(scenario())

    assert any(e["event_type"] == "SESSION_ENDED" for e in logs)


def test_unknown_synthesis_provider_is_rejected():
    with pytest.raises(RuntimeError):
        gateway_mod.build_adapters(
            make_config(synthesis_provider="telepathy"),
            emit_event=None,  # type: ignore[arg-type]
            session_id="s",
            whisper_engine=object(),  # type: ignore[arg-type]
        )


def test_elevenlabs_requires_api_key():
    with pytest.raises(RuntimeError, match="ELEVENLABS_API_KEY"):
        gateway_mod.build_adapters(
            make_config(synthesis_provider="elevenlabs"),
            emit_event=None,  # type: ignore[arg-type]
            session_id="s",
            whisper_engine=object(),  # type: ignore[arg-type]
        )
