"""
Side-effect command definitions for the session controller.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Every command that touches a capability carries the generation it
      belongs to; the runtime refuses to act on stale generations.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from controller.enums.capability import Capability

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging and runtime dispatch.
    """

    # Capture / recognition
    START_CAPTURE = "START_CAPTURE"
    START_RECOGNITION = "START_RECOGNITION"
    FEED_RECOGNITION = "FEED_RECOGNITION"
    FINISH_RECOGNITION = "FINISH_RECOGNITION"

    # Remote reply
    REQUEST_REPLY = "REQUEST_REPLY"

    # Speech output
    START_SYNTHESIS = "START_SYNTHESIS"
    START_PLAYBACK = "START_PLAYBACK"

    # Handle lifecycle
    RELEASE_HANDLE = "RELEASE_HANDLE"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Capture / Recognition Commands
# =============================================================================

@dataclass(frozen=True)
class StartCapture(Command):
    """Acquire the microphone for this generation."""
    generation: int
    command_type: CommandType = CommandType.START_CAPTURE


@dataclass(frozen=True)
class StartRecognition(Command):
    """Acquire a recognition handle (language comes from session settings)."""
    generation: int
    command_type: CommandType = CommandType.START_RECOGNITION


@dataclass(frozen=True)
class FeedRecognition(Command):
    """Forward one captured PCM16 frame to the recognizer."""
    generation: int
    pcm_bytes: bytes
    command_type: CommandType = CommandType.FEED_RECOGNITION


@dataclass(frozen=True)
class FinishRecognition(Command):
    """Ask the recognizer to stop listening and deliver its final result."""
    generation: int
    command_type: CommandType = CommandType.FINISH_RECOGNITION


# =============================================================================
# Remote Reply Commands
# =============================================================================

@dataclass(frozen=True)
class RequestReply(Command):
    """
    Send the transcript to the remote reply endpoint.

    The runtime must answer with ReplyRequested, then exactly one of
    ReplyReceived / ReplyFailed (unless the request is released first).
    """
    generation: int
    transcript: str
    command_type: CommandType = CommandType.REQUEST_REPLY


# =============================================================================
# Speech Output Commands
# =============================================================================

@dataclass(frozen=True)
class StartSynthesis(Command):
    """Speak reply text (voice/language come from session settings)."""
    generation: int
    text: str
    command_type: CommandType = CommandType.START_SYNTHESIS


@dataclass(frozen=True)
class StartPlayback(Command):
    """Play reply audio returned by the endpoint."""
    generation: int
    audio: bytes
    command_type: CommandType = CommandType.START_PLAYBACK


# =============================================================================
# Handle Lifecycle Commands
# =============================================================================

@dataclass(frozen=True)
class ReleaseHandle(Command):
    """
    Release the held handle for a capability.

    Fire-and-forget: the reducer has already moved on and does not wait
    for the adapter's ended event.
    """
    capability: Capability
    generation: int
    reason: str
    # Graceful: stop() and let the adapter flush (e.g. the capture recording)
    graceful: bool = False
    command_type: CommandType = CommandType.RELEASE_HANDLE


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
