"""
Voice session container.

- One per view (WebSocket connection)
- Owns the per-view settings and the concrete adapters
- Owned and mutated by SessionGateway
- NOT a state machine
- Contains no orchestration logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from controller.runtime import SessionController
from controller.settings import SessionSettings
from presenter.mouth import MouthAnimator


# ---------------------------------------------------------------------
# VoiceSession
# ---------------------------------------------------------------------


@dataclass
class VoiceSession:
    """Mutable runtime container for a single view."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    session_id: str
    settings: SessionSettings
    created_at: float = field(default_factory=time.time)

    # Settings received mid-exchange; applied on the next START
    pending_settings: SessionSettings | None = None

    # ------------------------------------------------------------------
    # Controller (executes commands + owns authoritative state)
    # ------------------------------------------------------------------

    controller: SessionController | None = None

    # ------------------------------------------------------------------
    # Capability adapters (concrete, side-effectful)
    # ------------------------------------------------------------------

    capture_adapter: Any = None
    recognition_adapter: Any = None
    synthesis_adapter: Any = None
    playback_adapter: Any = None
    reply_client: Any = None

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    animator: MouthAnimator | None = None

    # ------------------------------------------------------------------
    # Wiring helpers (called by SessionGateway)
    # ------------------------------------------------------------------

    def attach_capture_adapter(self, adapter: Any) -> None:
        self.capture_adapter = adapter

    def attach_recognition_adapter(self, adapter: Any) -> None:
        """Adapter must implement RecognitionAdapterProtocol (start/feed/stop/cancel)."""
        self.recognition_adapter = adapter

    def attach_synthesis_adapter(self, adapter: Any) -> None:
        self.synthesis_adapter = adapter

    def attach_playback_adapter(self, adapter: Any) -> None:
        self.playback_adapter = adapter

    def attach_reply_client(self, client: Any) -> None:
        self.reply_client = client

    def attach_controller(self, controller: SessionController) -> None:
        """
        Attach the controller.

        Must be called after adapters are attached.
        """
        self.controller = controller

    def attach_animator(self, animator: MouthAnimator) -> None:
        self.animator = animator

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def promote_pending_settings(self) -> bool:
        """Move pending settings into effect. Returns True if anything changed."""
        if self.pending_settings is None:
            return False
        changed = self.pending_settings != self.settings
        self.settings = self.pending_settings
        self.pending_settings = None
        return changed

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    @property
    def recorded_audio(self) -> bytes | None:
        """PCM16 recording of the current exchange, if capture delivered one."""
        if self.controller is None:
            return None
        return self.controller.state.recorded_audio

    def log_context(self) -> dict[str, Any]:
        """
        Return standard logging context for this session.

        Intended for gateway / observability enrichment.
        """
        return {
            "session_id": self.session_id,
            "state": (
                self.controller.state.state.value
                if self.controller is not None
                else None
            ),
            "avatar": self.settings.avatar_variant,
        }
