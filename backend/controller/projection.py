"""
Read-only projections of SessionState for rendering.

Every UI flag is derived from the single `state` enum, so contradictory
combinations (listening while talking, loading while idle) cannot exist.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from controller.enums.state import State
from controller.state_dataclass import SessionState


_LOADING_STATES: frozenset[State] = frozenset(
    {State.RECOGNIZED, State.AWAITING_REPLY, State.REPLYING}
)


@dataclass(frozen=True)
class SessionSnapshot:
    """The one value the view renders from."""
    state: State
    generation: int
    is_listening: bool
    is_loading: bool
    is_speaking: bool
    transcript: str | None
    reply_text: str | None
    has_recording: bool
    has_reply_audio: bool
    error_kind: str | None
    error_reason: str | None
    error_stage: str | None

    def to_message(self) -> dict[str, Any]:
        """JSON-ready form pushed to the client."""
        return {
            "state": self.state.value,
            "generation": self.generation,
            "is_listening": self.is_listening,
            "is_loading": self.is_loading,
            "is_speaking": self.is_speaking,
            "transcript": self.transcript,
            "reply_text": self.reply_text,
            "has_recording": self.has_recording,
            "has_reply_audio": self.has_reply_audio,
            "error": (
                {
                    "kind": self.error_kind,
                    "reason": self.error_reason,
                    "stage": self.error_stage,
                }
                if self.error_kind is not None
                else None
            ),
        }


def is_speaking(state: SessionState) -> bool:
    """The avatar's talking flag."""
    return state.state is State.SPEAKING


def project(state: SessionState) -> SessionSnapshot:
    """Pure projection of the authoritative state."""
    error = state.error
    return SessionSnapshot(
        state=state.state,
        generation=state.generation,
        is_listening=state.state is State.LISTENING,
        is_loading=state.state in _LOADING_STATES,
        is_speaking=is_speaking(state),
        transcript=state.transcript,
        reply_text=state.reply_text,
        has_recording=state.recorded_audio is not None,
        has_reply_audio=state.reply_audio is not None,
        error_kind=error.kind.value if error is not None else None,
        error_reason=error.reason if error is not None else None,
        error_stage=error.stage.value if error is not None else None,
    )
