"""
Session gateway.

Responsibilities:
- Owns VoiceSession lifecycle (one gateway == one view)
- Builds the per-view adapters and the SessionController
- Routes inbound JSON control messages -> controller events
- Applies client settings between exchanges only
- Queues outbound pushes (snapshots, avatar frames) for the transport

NOT responsible for:
- Executing commands (controller)
- Any state machine logic (reducer)
- Socket I/O (server.routes)
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping
from uuid import uuid4

from adapters.base import EventSink
from adapters.capture.microphone import MicrophoneCaptureAdapter
from adapters.playback.sounddevice_player import SoundDevicePlaybackAdapter
from adapters.recognition.whisper_adapter import WhisperRecognitionAdapter
from adapters.recognition.whisper_engine import WhisperEngine
from adapters.reply.client import ReplyClient
from adapters.synthesis.elevenlabs_adapter import ElevenLabsSynthesisAdapter
from adapters.synthesis.pyttsx3_adapter import Pyttsx3SynthesisAdapter
from constants import (
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLE_WIDTH_BYTES,
    AVATAR_VARIANT_DEFAULT,
    AVATAR_VARIANTS,
)
from controller.enums.state import State
from controller.events import (
    Acknowledge,
    Cancel,
    Event,
    EventType,
    StartSpeaking,
    StopSpeaking,
)
from controller.projection import SessionSnapshot
from controller.runtime import SessionController
from controller.runtime_context import RuntimeExecutionContext
from controller.settings import InvalidSettings, SessionSettings
from observability.logger import log_event
from presenter.avatar import list_variants
from presenter.mouth import MouthAnimator, MouthFrame
from session.voice_session import VoiceSession

if TYPE_CHECKING:
    from config import AppConfig


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


# Settings may change immediately only when no exchange is in flight
_SETTLED_STATES: frozenset[State] = frozenset({State.IDLE, State.ERRORED})


# ------------------------------------------------------------------
# Gateway result
# ------------------------------------------------------------------

@dataclass(frozen=True)
class GatewayResult:
    """
    Return value for gateway boundary methods.

    outbound_json:
        Direct replies to the message just handled. Pushes caused by
        asynchronous adapter activity go through next_outbound() instead.
    """
    outbound_json: tuple[dict[str, Any], ...] = ()


# ------------------------------------------------------------------
# Adapter construction
# ------------------------------------------------------------------

@dataclass
class SessionAdapters:
    capture: Any = None
    recognition: Any = None
    synthesis: Any = None
    playback: Any = None
    reply_client: Any = None


AdapterBuilder = Callable[..., SessionAdapters]


def build_adapters(
    config: AppConfig,
    *,
    emit_event: EventSink,
    session_id: str,
    whisper_engine: WhisperEngine,
) -> SessionAdapters:
    """
    Construct the concrete adapters for one view.

    Raises:
        RuntimeError for an unknown or misconfigured SYNTHESIS_PROVIDER.
    """
    if config.synthesis_provider == "local":
        synthesis: Any = Pyttsx3SynthesisAdapter(
            emit_event=emit_event,
            session_id=session_id,
        )
    elif config.synthesis_provider == "elevenlabs":
        if not config.elevenlabs_api_key:
            raise RuntimeError("SYNTHESIS_PROVIDER=elevenlabs requires ELEVENLABS_API_KEY")
        assert config.elevenlabs_voice_id is not None
        assert config.elevenlabs_model_id is not None

        synthesis = ElevenLabsSynthesisAdapter(
            emit_event=emit_event,
            api_key=config.elevenlabs_api_key,
            session_id=session_id,
            voice_id=config.elevenlabs_voice_id,
            model_id=config.elevenlabs_model_id,
        )
    else:
        raise RuntimeError(f"Unknown SYNTHESIS_PROVIDER: {config.synthesis_provider}")

    return SessionAdapters(
        capture=MicrophoneCaptureAdapter(emit_event=emit_event, session_id=session_id),
        recognition=WhisperRecognitionAdapter(
            emit_event=emit_event,
            engine=whisper_engine,
            session_id=session_id,
        ),
        synthesis=synthesis,
        playback=SoundDevicePlaybackAdapter(emit_event=emit_event),
        reply_client=ReplyClient(
            endpoint_url=config.reply_endpoint_url,
            timeout_s=config.reply_timeout_s,
        ),
    )


# ------------------------------------------------------------------
# SessionGateway
# ------------------------------------------------------------------

class SessionGateway:
    """One gateway == one view == one session controller."""

    def __init__(
        self,
        *,
        config: AppConfig,
        whisper_engine: WhisperEngine | None = None,
        adapter_builder: AdapterBuilder = build_adapters,
        mouth_interval_ms: int | None = None,
    ) -> None:
        self._config = config
        self._whisper_engine = whisper_engine
        self._adapter_builder = adapter_builder
        self._mouth_interval_ms = mouth_interval_ms
        self.session: VoiceSession | None = None
        self._outbound: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def on_ws_connect(self) -> GatewayResult:
        """Called when a WebSocket connection is established."""
        session_id = _new_session_id()

        settings = SessionSettings.from_config(self._config)
        if settings.avatar_variant not in AVATAR_VARIANTS:
            log_event({
                "ts_ms": _now_ms(),
                "level": "WARNING",
                "event_type": "AVATAR_VARIANT_INVALID",
                "session_id": session_id,
                "configured": settings.avatar_variant,
            })
            settings = SessionSettings(
                recognition_language=settings.recognition_language,
                synthesis_language=settings.synthesis_language,
                voice=settings.voice,
                avatar_variant=AVATAR_VARIANT_DEFAULT,
            )

        session = VoiceSession(session_id=session_id, settings=settings)
        self.session = session

        controller = SessionController(context=RuntimeExecutionContext(session=session))

        engine = self._whisper_engine
        if engine is None:
            engine = WhisperEngine(
                model=self._config.whisper_model,
                device=self._config.whisper_device,
                compute_type=self._config.whisper_compute_type,
            )

        adapters = self._adapter_builder(
            self._config,
            emit_event=controller.handle_event,
            session_id=session_id,
            whisper_engine=engine,
        )
        session.attach_capture_adapter(adapters.capture)
        session.attach_recognition_adapter(adapters.recognition)
        session.attach_synthesis_adapter(adapters.synthesis)
        session.attach_playback_adapter(adapters.playback)
        session.attach_reply_client(adapters.reply_client)

        # Controller (must be AFTER adapters)
        session.attach_controller(controller)

        animator_kwargs: dict[str, Any] = {}
        if self._mouth_interval_ms is not None:
            animator_kwargs["interval_ms"] = self._mouth_interval_ms
        session.attach_animator(
            MouthAnimator(on_frame=self._on_mouth_frame, session_id=session_id, **animator_kwargs)
        )

        controller.subscribe(self._on_snapshot)

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_STARTED",
            **session.log_context(),
        })

        init_msg: dict[str, Any] = {
            "type": "SESSION_INIT",
            "session_id": session_id,
            "audio_format": {
                "sample_rate": AUDIO_SAMPLE_RATE_HZ,
                "sample_width": AUDIO_SAMPLE_WIDTH_BYTES,
                "channels": AUDIO_CHANNELS,
            },
            "settings": settings.to_message(),
            "avatars": list_variants(),
            "snapshot": controller.snapshot.to_message(),
        }
        return GatewayResult(outbound_json=(init_msg,))

    async def on_ws_disconnect(self, reason: str | None = None) -> GatewayResult:
        """Called when the WebSocket disconnects. Tears the view down."""
        session = self.session
        if session is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "WS_DISCONNECT_WITHOUT_SESSION",
                "reason": reason,
            })
            return GatewayResult()

        if session.controller is not None:
            await session.controller.shutdown(reason or "view_teardown")

        if session.animator is not None:
            await session.animator.close()

        await self._close_resources(session)

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_ENDED",
            "session_id": session.session_id,
            "reason": reason,
            "duration_s": round(time.time() - session.created_at, 3),
        })
        return GatewayResult()

    # ------------------------------------------------------------------
    # Inbound control messages
    # ------------------------------------------------------------------

    async def on_json_message(self, payload: str) -> GatewayResult:
        """Route inbound JSON to controller events."""
        session = self.session
        if session is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "MESSAGE_WITHOUT_SESSION",
                "payload_preview": payload[:100],
            })
            return GatewayResult()

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            log_event({
                "ts_ms": _now_ms(),
                "level": "WARNING",
                "event_type": "JSON_DECODE_ERROR",
                "session_id": session.session_id,
                "error": str(e),
                "payload_preview": payload[:100],
            })
            return GatewayResult()

        if not isinstance(data, dict):
            log_event({
                "ts_ms": _now_ms(),
                "level": "WARNING",
                "event_type": "MESSAGE_NOT_OBJECT",
                "session_id": session.session_id,
            })
            return GatewayResult()

        msg_type = data.get("type")
        ts_ms = data.get("ts_ms", _now_ms())
        overrides = data.get("settings")

        event: Event | None = None

        if msg_type == "START":
            if overrides is not None:
                rejected = self._stage_settings(overrides)
                if rejected is not None:
                    return rejected
            session.promote_pending_settings()
            event = StartSpeaking(event_type=EventType.START_SPEAKING, ts_ms=ts_ms)
        elif msg_type == "STOP":
            event = StopSpeaking(event_type=EventType.STOP_SPEAKING, ts_ms=ts_ms)
        elif msg_type == "CANCEL":
            event = Cancel(event_type=EventType.CANCEL, ts_ms=ts_ms)
        elif msg_type == "ACKNOWLEDGE":
            event = Acknowledge(event_type=EventType.ACKNOWLEDGE, ts_ms=ts_ms)
        elif msg_type == "SETTINGS":
            return self._on_settings(overrides)
        else:
            log_event({
                "ts_ms": _now_ms(),
                "level": "WARNING",
                "event_type": "UNKNOWN_MESSAGE_TYPE",
                "msg_type": msg_type,
                "session_id": session.session_id,
            })
            return GatewayResult()

        await self._dispatch(event)
        return GatewayResult()

    # ------------------------------------------------------------------
    # Outbound pushes
    # ------------------------------------------------------------------

    async def next_outbound(self) -> dict[str, Any]:
        """Wait for the next server push (SESSION_SNAPSHOT / AVATAR_FRAME)."""
        return await self._outbound.get()

    def drain_outbound(self) -> tuple[dict[str, Any], ...]:
        """Take every queued push without waiting."""
        out: list[dict[str, Any]] = []
        while not self._outbound.empty():
            out.append(self._outbound.get_nowait())
        return tuple(out)

    def recorded_audio(self) -> bytes | None:
        if self.session is None:
            return None
        return self.session.recorded_audio

    async def _on_snapshot(self, snapshot: SessionSnapshot) -> None:
        session = self.session
        if session is None:
            return

        self._outbound.put_nowait({
            "type": "SESSION_SNAPSHOT",
            "session_id": session.session_id,
            "snapshot": snapshot.to_message(),
            "settings": session.settings.to_message(),
        })

        if session.animator is not None:
            await session.animator.set_speaking(snapshot.is_speaking)

    async def _on_mouth_frame(self, frame: MouthFrame) -> None:
        session = self.session
        if session is None:
            return
        self._outbound.put_nowait({
            "type": "AVATAR_FRAME",
            "session_id": session.session_id,
            "avatar": session.settings.avatar_variant,
            "talking": frame.talking,
            "mouth_open": frame.mouth_open,
        })

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _on_settings(self, overrides: Any) -> GatewayResult:
        rejected = self._stage_settings(overrides)
        if rejected is not None:
            return rejected

        session = self.session
        assert session is not None

        applied = False
        controller = session.controller
        if controller is not None and controller.state.state in _SETTLED_STATES:
            session.promote_pending_settings()
            applied = True

        return GatewayResult(outbound_json=({
            "type": "SETTINGS",
            "session_id": session.session_id,
            "settings": session.settings.to_message(),
            "pending": (
                session.pending_settings.to_message()
                if session.pending_settings is not None
                else None
            ),
            "applied": applied,
        },))

    def _stage_settings(self, overrides: Any) -> GatewayResult | None:
        """
        Merge overrides into the pending settings.

        Returns an ERROR reply when the overrides are rejected, else None.
        """
        session = self.session
        assert session is not None

        try:
            if not isinstance(overrides, Mapping):
                raise InvalidSettings("settings must be an object")
            staged = self._effective_settings().with_overrides(overrides)
        except InvalidSettings as exc:
            log_event({
                "ts_ms": _now_ms(),
                "level": "WARNING",
                "event_type": "SETTINGS_REJECTED",
                "session_id": session.session_id,
                "error": str(exc),
            })
            return GatewayResult(outbound_json=({
                "type": "ERROR",
                "session_id": session.session_id,
                "error": "invalid_settings",
                "message": str(exc),
            },))

        session.pending_settings = staged
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SETTINGS_STAGED",
            "session_id": session.session_id,
            "settings": staged.to_message(),
        })
        return None

    def _effective_settings(self) -> SessionSettings:
        """Pending settings if any were staged, else the ones in effect."""
        session = self.session
        assert session is not None
        if session.pending_settings is not None:
            return session.pending_settings
        return session.settings

    # ------------------------------------------------------------------
    # Controller dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, event: Event) -> None:
        """Forward event into the controller."""
        if self.session is None or self.session.controller is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "DISPATCH_WITHOUT_SESSION",
                "dropped_event": event.event_type.value,
            })
            return

        await self.session.controller.handle_event(event)

    @staticmethod
    async def _close_resources(session: VoiceSession) -> None:
        synthesis_close = getattr(session.synthesis_adapter, "close", None)
        if synthesis_close is not None:
            synthesis_close()

        client_close = getattr(session.reply_client, "aclose", None)
        if client_close is not None:
            await client_close()
