"""
Runtime execution context.

Provides the SessionController with live access to session-owned
imperative resources needed for command execution (adapters, the reply
client, settings).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero state-machine logic
- Zero state mutation
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from controller.enums.capability import Capability

if TYPE_CHECKING:
    from adapters.base import Handle
    from adapters.reply.client import Reply
    from controller.settings import SessionSettings
    from session.voice_session import VoiceSession


# ---------------------------------------------------------------------
# Adapter Protocols
# ---------------------------------------------------------------------

@runtime_checkable
class CapabilityAdapterProtocol(Protocol):
    async def start(self, config: object) -> Handle: ...
    async def stop(self, handle: Handle) -> None: ...
    async def cancel(self, handle: Handle) -> None: ...
    def force_reset(self) -> None:
        """
        Hard reset of every handle (release timeout, view teardown).
        """


@runtime_checkable
class RecognitionAdapterProtocol(CapabilityAdapterProtocol, Protocol):
    async def feed(self, handle: Handle, pcm_bytes: bytes) -> None: ...


@runtime_checkable
class ReplyClientProtocol(Protocol):
    """
    Contract:
    - send() returns a Reply or raises a CapabilityError subclass
      (TransportError / MalformedResponseError)
    - No retries
    """

    async def send(self, transcript: str) -> Reply: ...


# ---------------------------------------------------------------------
# Runtime Execution Context
# ---------------------------------------------------------------------

class RuntimeExecutionContext:
    """
    Imperative execution context for the SessionController.

    Live views into session-owned resources so the controller does not
    need to cache anything.

    The controller is allowed to:
    - Call adapters and the reply client
    - Read settings

    The controller is NOT allowed to:
    - Mutate session fields directly
    """

    def __init__(self, session: VoiceSession) -> None:
        self.session = session

    # ----------------------------
    # Session metadata
    # ----------------------------

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def settings(self) -> SessionSettings:
        return self.session.settings

    # ----------------------------
    # Adapters
    # ----------------------------

    @property
    def recognition_adapter(self) -> RecognitionAdapterProtocol | None:
        return self.session.recognition_adapter

    @property
    def reply_client(self) -> ReplyClientProtocol | None:
        return self.session.reply_client

    def adapter_for(self, capability: Capability) -> CapabilityAdapterProtocol | None:
        """Adapter owning a capability category (REPLY has none)."""
        if capability is Capability.CAPTURE:
            return self.session.capture_adapter
        if capability is Capability.RECOGNITION:
            return self.session.recognition_adapter
        if capability is Capability.SYNTHESIS:
            return self.session.synthesis_adapter
        if capability is Capability.PLAYBACK:
            return self.session.playback_adapter
        return None

    def all_adapters(self) -> tuple[CapabilityAdapterProtocol, ...]:
        candidates = (
            self.session.capture_adapter,
            self.session.recognition_adapter,
            self.session.synthesis_adapter,
            self.session.playback_adapter,
        )
        return tuple(a for a in candidates if a is not None)
