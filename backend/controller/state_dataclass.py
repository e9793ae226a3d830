"""
Authoritative session state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic (see controller.projection).
"""
from __future__ import annotations

from dataclasses import dataclass

from controller.enums.capability import Capability
from controller.enums.error_kind import ErrorKind
from controller.enums.state import State


@dataclass(frozen=True)
class SessionError:
    """
    Typed failure of one exchange.

    stage records the state the exchange was in when it failed, so the UI
    can show how far it got.
    """
    kind: ErrorKind
    reason: str
    stage: State


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of one spoken exchange."""

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    state: State = State.IDLE

    # Bumped on every new exchange, cancel and teardown. Never reused.
    generation: int = 0

    # Capability categories the runtime currently holds a handle for
    held: frozenset[Capability] = frozenset()

    # ------------------------------------------------------------------
    # Exchange content
    # ------------------------------------------------------------------
    transcript: str | None = None
    reply_text: str | None = None

    # Locally buffered audio (each is one playable resource)
    recorded_audio: bytes | None = None
    reply_audio: bytes | None = None

    # ------------------------------------------------------------------
    # Listening bookkeeping
    # ------------------------------------------------------------------
    # True once the user pressed stop and the recognizer is finalizing
    finishing: bool = False

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    error: SessionError | None = None
