"""
Unified event definitions for the session reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Adapter and reply-client events are CapabilityEvents: they carry the
generation they were issued under so the reducer can drop stale ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from controller.enums.capability import Capability
from controller.enums.error_kind import ErrorKind


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # User control
    # ------------------------------------------------------------------
    START_SPEAKING = "START_SPEAKING"
    STOP_SPEAKING = "STOP_SPEAKING"
    CANCEL = "CANCEL"
    ACKNOWLEDGE = "ACKNOWLEDGE"

    # ------------------------------------------------------------------
    # View lifecycle
    # ------------------------------------------------------------------
    TEARDOWN = "TEARDOWN"

    # ------------------------------------------------------------------
    # Capability adapters (started / data / error / ended)
    # ------------------------------------------------------------------
    ADAPTER_STARTED = "ADAPTER_STARTED"
    ADAPTER_DATA = "ADAPTER_DATA"
    ADAPTER_ERROR = "ADAPTER_ERROR"
    ADAPTER_ENDED = "ADAPTER_ENDED"

    # ------------------------------------------------------------------
    # Remote reply
    # ------------------------------------------------------------------
    REPLY_REQUESTED = "REPLY_REQUESTED"
    REPLY_RECEIVED = "REPLY_RECEIVED"
    REPLY_FAILED = "REPLY_FAILED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class CapabilityEvent(Event):
    """
    Base class for events emitted on behalf of a held capability handle.

    The reducer MUST ignore events whose generation does not match the
    current session generation.
    """

    capability: Capability
    generation: int


# =============================================================================
# User Control Events
# =============================================================================

@dataclass(frozen=True)
class StartSpeaking(Event):
    """User pressed the talk button. Starts a fresh exchange."""


@dataclass(frozen=True)
class StopSpeaking(Event):
    """User finished talking; recognizer should finalize what it heard."""


@dataclass(frozen=True)
class Cancel(Event):
    """User aborted the current exchange."""


@dataclass(frozen=True)
class Acknowledge(Event):
    """User dismissed the error of a failed exchange."""


@dataclass(frozen=True)
class Teardown(Event):
    """The surrounding view is going away; every handle must be released."""
    reason: str | None = None


# =============================================================================
# Adapter Events
# =============================================================================

@dataclass(frozen=True)
class AdapterStarted(CapabilityEvent):
    """
    The capability began producing output.

    For synthesis and playback this is "speech started".
    """


@dataclass(frozen=True)
class AdapterData(CapabilityEvent):
    """
    Output produced by a capability.

    final:
        Recognition: True for the final transcript (data is str).
        Capture: False for a live PCM16 frame, True for the complete
        recording delivered once capture stops (data is bytes).
    """
    data: Any
    final: bool = False


@dataclass(frozen=True)
class AdapterError(CapabilityEvent):
    """Capability failed; kind is already mapped by the adapter."""
    kind: ErrorKind
    reason: str


@dataclass(frozen=True)
class AdapterEnded(CapabilityEvent):
    """
    The capability stopped producing output.

    For synthesis and playback this is "speech ended" (or paused).
    """


# =============================================================================
# Remote Reply Events
# =============================================================================

@dataclass(frozen=True)
class ReplyRequested(CapabilityEvent):
    """Runtime has issued the request to the reply endpoint."""


@dataclass(frozen=True)
class ReplyReceived(CapabilityEvent):
    """Reply endpoint answered with a well-formed body."""
    reply_text: str
    reply_audio: bytes | None = None


@dataclass(frozen=True)
class ReplyFailed(CapabilityEvent):
    """Reply endpoint could not be reached or answered unusably."""
    kind: ErrorKind
    reason: str
