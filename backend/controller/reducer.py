"""
Pure session reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from controller.commands import (
    Command,
    FeedRecognition,
    FinishRecognition,
    LogEvent,
    ReleaseHandle,
    RequestReply,
    StartCapture,
    StartPlayback,
    StartRecognition,
    StartSynthesis,
)
from controller.enums.capability import Capability, SPEECH_OUTPUTS
from controller.enums.error_kind import ErrorKind
from controller.enums.state import State
from controller.events import (
    Acknowledge,
    AdapterData,
    AdapterEnded,
    AdapterError,
    AdapterStarted,
    Cancel,
    CapabilityEvent,
    Event,
    ReplyFailed,
    ReplyReceived,
    ReplyRequested,
    StartSpeaking,
    StopSpeaking,
    Teardown,
)
from controller.state_dataclass import SessionError, SessionState


# =============================================================================
# Invariants
# =============================================================================
# - Generation is bumped ONLY on StartSpeaking, Cancel and Teardown
# - Every handle leaving `held` gets exactly one ReleaseHandle command
# - Releases are emitted before any Start* in the same reduction
# - Events from capabilities not in `held` are ignored, except the final
#   capture recording, which arrives after a graceful capture release

Result = tuple[SessionState, tuple[Command, ...]]

# Stable release order so command sequences are deterministic
_RELEASE_ORDER: tuple[Capability, ...] = (
    Capability.CAPTURE,
    Capability.RECOGNITION,
    Capability.REPLY,
    Capability.SYNTHESIS,
    Capability.PLAYBACK,
)


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: SessionState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
    *,
    level: str = "INFO",
) -> LogEvent:
    payload: dict[str, Any] = {
        "ts_ms": event.ts_ms,
        "level": level,
        "state": state.state.value,
        "event_type": event.event_type.value,
        "decision": decision,
        "generation": state.generation,
        "held": [c.value for c in _RELEASE_ORDER if c in state.held],
        "details": details or {},
    }
    if isinstance(event, CapabilityEvent):
        payload["capability"] = event.capability.value
        payload["event_generation"] = event.generation
    return LogEvent(event=payload)


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _state_changed(
    old: SessionState,
    new: SessionState,
    event: Event,
    source: str,
) -> LogEvent:
    return _log(
        new,
        event,
        "state_changed",
        {
            "from_state": old.state.value,
            "to_state": new.state.value,
            "source": source,
        },
    )


def _ignore(state: SessionState, event: Event, reason: str) -> Result:
    return state, (_log(state, event, "ignore", {"reason": reason}, level="DEBUG"),)


def _release(
    state: SessionState,
    event: Event,
    capabilities: frozenset[Capability],
    reason: str,
    *,
    graceful: frozenset[Capability] = frozenset(),
) -> tuple[SessionState, list[Command]]:
    """
    Drop `capabilities` from `held`, emitting one ReleaseHandle each.

    Capabilities not currently held are skipped. Releases are tagged with
    the generation the handle was acquired under (the current one).
    """
    cmds: list[Command] = []
    to_release = [c for c in _RELEASE_ORDER if c in capabilities and c in state.held]

    for capability in to_release:
        cmds.append(
            ReleaseHandle(
                capability=capability,
                generation=state.generation,
                reason=reason,
                graceful=capability in graceful,
            )
        )

    new_state = replace(state, held=state.held - frozenset(to_release))

    if to_release:
        cmds.append(
            _log(
                new_state,
                event,
                "release_handles",
                {
                    "released": [c.value for c in to_release],
                    "released_generation": state.generation,
                    "reason": reason,
                },
            )
        )
    return new_state, cmds


def _release_all(
    state: SessionState, event: Event, reason: str
) -> tuple[SessionState, list[Command]]:
    return _release(state, event, state.held, reason)


def _enter_error(
    state: SessionState,
    event: Event,
    kind: ErrorKind,
    reason: str,
) -> Result:
    """
    Terminal failure of the current exchange.

    Releases every held handle and keeps partial results (transcript)
    so the user can see how far the exchange got.
    """
    released, cmds = _release_all(state, event, f"error:{kind.value}")
    new_state = replace(
        released,
        state=State.ERRORED,
        finishing=False,
        error=SessionError(kind=kind, reason=reason, stage=state.state),
    )
    return new_state, _logs_last(tuple(cmds) + (
        _log(new_state, event, "enter_error", {"kind": kind.value, "reason": reason}),
        _state_changed(state, new_state, event, "enter_error"),
    ))


# =============================================================================
# User control
# =============================================================================

def _on_start_speaking(state: SessionState, event: StartSpeaking) -> Result:
    """
    Begin a fresh exchange from any state.

    Stale handles from the previous generation are released first; the
    generation bump invalidates every event they may still emit.
    """
    released, cmds = _release_all(state, event, "new_session")
    generation = state.generation + 1

    new_state = SessionState(
        state=State.LISTENING,
        generation=generation,
        held=frozenset({Capability.CAPTURE, Capability.RECOGNITION}),
    )

    # Recognizer first so no captured frame arrives before it can be fed
    cmds.append(StartRecognition(generation=generation))
    cmds.append(StartCapture(generation=generation))
    cmds.append(
        _log(
            new_state,
            event,
            "session_started",
            {
                "previous_generation": released.generation,
                "previous_state": state.state.value,
            },
        )
    )
    cmds.append(_state_changed(state, new_state, event, "start_speaking"))
    return new_state, _logs_last(tuple(cmds))


def _on_stop_speaking(state: SessionState, event: StopSpeaking) -> Result:
    if state.state is not State.LISTENING:
        return _ignore(state, event, "not_listening")
    if state.finishing:
        return _ignore(state, event, "already_finishing")
    if Capability.RECOGNITION not in state.held:
        return _ignore(state, event, "recognition_not_held")

    released, cmds = _release(
        state,
        event,
        frozenset({Capability.CAPTURE}),
        "user_stopped",
        graceful=frozenset({Capability.CAPTURE}),
    )
    new_state = replace(released, finishing=True)
    cmds.append(FinishRecognition(generation=state.generation))
    cmds.append(_log(new_state, event, "finish_recognition"))
    return new_state, _logs_last(tuple(cmds))


def _on_cancel(state: SessionState, event: Cancel) -> Result:
    """
    Abort whatever is in flight.

    Order: bump generation, release every held handle, enter IDLE.
    Cancel never waits for the cancelled adapters' ended events.
    """
    if state.state is State.IDLE and not state.held:
        return _ignore(state, event, "nothing_to_cancel")

    if state.state is State.ERRORED:
        return _clear_error(state, event, "cancel", bump_generation=True)

    _, cmds = _release_all(state, event, "cancel")
    new_state = replace(
        state,
        state=State.IDLE,
        generation=state.generation + 1,
        held=frozenset(),
        finishing=False,
    )
    cmds.append(_log(new_state, event, "cancelled", {"cancelled_stage": state.state.value}))
    cmds.append(_state_changed(state, new_state, event, "cancel"))
    return new_state, _logs_last(tuple(cmds))


def _on_acknowledge(state: SessionState, event: Acknowledge) -> Result:
    if state.state is not State.ERRORED:
        return _ignore(state, event, "no_error_to_acknowledge")
    return _clear_error(state, event, "acknowledge")


def _clear_error(
    state: SessionState,
    event: Event,
    source: str,
    *,
    bump_generation: bool = False,
) -> Result:
    released, cmds = _release_all(state, event, source)
    new_state = replace(released, state=State.IDLE, error=None)
    if bump_generation:
        new_state = replace(new_state, generation=state.generation + 1)
    cmds.append(_state_changed(state, new_state, event, source))
    return new_state, _logs_last(tuple(cmds))


def _on_teardown(state: SessionState, event: Teardown) -> Result:
    """
    View is going away: release everything, drop all buffered audio.

    Always succeeds, from any state.
    """
    _, cmds = _release_all(state, event, "teardown")
    new_state = SessionState(state=State.IDLE, generation=state.generation + 1)
    cmds.append(_log(new_state, event, "teardown", {"reason": event.reason}))
    if state.state is not State.IDLE:
        cmds.append(_state_changed(state, new_state, event, "teardown"))
    return new_state, _logs_last(tuple(cmds))


# =============================================================================
# Adapter events
# =============================================================================

def _on_adapter_started(state: SessionState, event: AdapterStarted) -> Result:
    if event.capability not in state.held:
        return _ignore(state, event, "capability_not_held")

    if event.capability in SPEECH_OUTPUTS:
        if state.state is not State.REPLYING:
            return _ignore(state, event, "speech_started_outside_replying")
        new_state = replace(state, state=State.SPEAKING)
        return new_state, _logs_last((
            _log(new_state, event, "speech_started"),
            _state_changed(state, new_state, event, "speech_started"),
        ))

    return state, (_log(state, event, "capability_started"),)


def _on_adapter_data(state: SessionState, event: AdapterData) -> Result:
    # The complete recording arrives after a graceful capture release
    if event.capability is Capability.CAPTURE and event.final:
        new_state = replace(state, recorded_audio=bytes(event.data))
        return new_state, (
            _log(new_state, event, "recording_stored", {"bytes": len(event.data)}),
        )

    if event.capability not in state.held:
        return _ignore(state, event, "capability_not_held")

    if event.capability is Capability.CAPTURE:
        if state.state is not State.LISTENING or state.finishing:
            return _ignore(state, event, "capture_frame_not_routable")
        if Capability.RECOGNITION not in state.held:
            return _ignore(state, event, "recognition_not_held")
        # Hot path: no log per frame
        return state, (
            FeedRecognition(generation=state.generation, pcm_bytes=bytes(event.data)),
        )

    if event.capability is Capability.RECOGNITION:
        if not event.final:
            return _ignore(state, event, "interim_result")
        if state.state is not State.LISTENING:
            return _ignore(state, event, "transcript_outside_listening")
        return _on_final_transcript(state, event)

    return _ignore(state, event, "unexpected_data")


def _on_final_transcript(state: SessionState, event: AdapterData) -> Result:
    transcript = str(event.data or "").strip()
    if not transcript:
        return _enter_error(state, event, ErrorKind.RECOGNITION_FAILURE, "no-speech")

    released, cmds = _release(
        state,
        event,
        frozenset({Capability.RECOGNITION, Capability.CAPTURE}),
        "recognized",
        graceful=frozenset({Capability.CAPTURE}),
    )
    new_state = replace(
        released,
        state=State.RECOGNIZED,
        transcript=transcript,
        finishing=False,
        held=released.held | {Capability.REPLY},
    )
    cmds.append(RequestReply(generation=state.generation, transcript=transcript))
    cmds.append(_log(new_state, event, "transcript_recognized", {"chars": len(transcript)}))
    cmds.append(_state_changed(state, new_state, event, "final_transcript"))
    return new_state, _logs_last(tuple(cmds))


def _on_adapter_error(state: SessionState, event: AdapterError) -> Result:
    if event.capability not in state.held:
        return _ignore(state, event, "error_from_released_handle")

    if state.state in (State.IDLE, State.ERRORED):
        return _ignore(state, event, "error_in_terminal_state")

    return _enter_error(state, event, event.kind, event.reason)


def _on_adapter_ended(state: SessionState, event: AdapterEnded) -> Result:
    if event.capability not in state.held:
        return _ignore(state, event, "ended_after_release")

    if event.capability in SPEECH_OUTPUTS:
        if state.state not in (State.SPEAKING, State.REPLYING):
            return _ignore(state, event, "speech_ended_outside_reply")
        source = "speech_ended" if state.state is State.SPEAKING else "ended_without_start"
        released, cmds = _release(
            state, event, frozenset({event.capability}), source
        )
        new_state = replace(released, state=State.IDLE)
        cmds.append(_log(new_state, event, "exchange_complete", {"source": source}))
        cmds.append(_state_changed(state, new_state, event, source))
        return new_state, _logs_last(tuple(cmds))

    if state.state is not State.LISTENING:
        return _ignore(state, event, "ended_outside_listening")

    if event.capability is Capability.RECOGNITION:
        # Recognizer finished without ever producing a final transcript
        return _enter_error(state, event, ErrorKind.RECOGNITION_FAILURE, "no-speech")

    if event.capability is Capability.CAPTURE:
        # Microphone stopped on its own; let the recognizer finalize
        released, cmds = _release(state, event, frozenset({Capability.CAPTURE}), "capture_ended")
        new_state = released
        if not state.finishing and Capability.RECOGNITION in state.held:
            new_state = replace(released, finishing=True)
            cmds.append(FinishRecognition(generation=state.generation))
            cmds.append(_log(new_state, event, "finish_recognition", {"source": "capture_ended"}))
        return new_state, _logs_last(tuple(cmds))

    return _ignore(state, event, "unexpected_ended")


# =============================================================================
# Remote reply events
# =============================================================================

def _on_reply_requested(state: SessionState, event: ReplyRequested) -> Result:
    if Capability.REPLY not in state.held or state.state is not State.RECOGNIZED:
        return _ignore(state, event, "reply_not_pending")

    new_state = replace(state, state=State.AWAITING_REPLY)
    return new_state, (_state_changed(state, new_state, event, "reply_requested"),)


def _on_reply_received(state: SessionState, event: ReplyReceived) -> Result:
    if Capability.REPLY not in state.held or state.state not in (
        State.RECOGNIZED,
        State.AWAITING_REPLY,
    ):
        return _ignore(state, event, "reply_not_pending")

    text = event.reply_text.strip() if event.reply_text else ""
    audio = event.reply_audio or None

    if not text and audio is None:
        return _enter_error(
            state, event, ErrorKind.NO_CONTENT, "reply had neither text nor audio"
        )

    released, cmds = _release(state, event, frozenset({Capability.REPLY}), "reply_received")

    if audio is not None:
        output = Capability.PLAYBACK
        cmds.append(StartPlayback(generation=state.generation, audio=audio))
    else:
        output = Capability.SYNTHESIS
        cmds.append(StartSynthesis(generation=state.generation, text=event.reply_text))

    new_state = replace(
        released,
        state=State.REPLYING,
        reply_text=event.reply_text if text else None,
        reply_audio=audio,
        held=released.held | {output},
    )
    cmds.append(
        _log(
            new_state,
            event,
            "reply_received",
            {
                "chars": len(text),
                "audio_bytes": len(audio) if audio is not None else 0,
                "output": output.value,
            },
        )
    )
    cmds.append(_state_changed(state, new_state, event, "reply_received"))
    return new_state, _logs_last(tuple(cmds))


def _on_reply_failed(state: SessionState, event: ReplyFailed) -> Result:
    if Capability.REPLY not in state.held or state.state not in (
        State.RECOGNIZED,
        State.AWAITING_REPLY,
    ):
        return _ignore(state, event, "reply_not_pending")

    return _enter_error(state, event, event.kind, event.reason)


# =============================================================================
# Entry point
# =============================================================================

def reduce(state: SessionState, event: Event) -> Result:
    """
    Pure reducer for the spoken-exchange state machine.

    Given the current session state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Generation-safe: ignores capability events from older generations
    """
    if isinstance(event, Teardown):
        return _on_teardown(state, event)

    if isinstance(event, StartSpeaking):
        return _on_start_speaking(state, event)

    if isinstance(event, StopSpeaking):
        return _on_stop_speaking(state, event)

    if isinstance(event, Cancel):
        return _on_cancel(state, event)

    if isinstance(event, Acknowledge):
        return _on_acknowledge(state, event)

    # ------------------------------------------------------------------
    # Generation gating: everything below is a capability event
    # ------------------------------------------------------------------
    if isinstance(event, CapabilityEvent) and event.generation != state.generation:
        return _ignore(state, event, "stale_generation")

    if isinstance(event, AdapterStarted):
        return _on_adapter_started(state, event)

    if isinstance(event, AdapterData):
        return _on_adapter_data(state, event)

    if isinstance(event, AdapterError):
        return _on_adapter_error(state, event)

    if isinstance(event, AdapterEnded):
        return _on_adapter_ended(state, event)

    if isinstance(event, ReplyRequested):
        return _on_reply_requested(state, event)

    if isinstance(event, ReplyReceived):
        return _on_reply_received(state, event)

    if isinstance(event, ReplyFailed):
        return _on_reply_failed(state, event)

    return _ignore(state, event, "unhandled_event")
