"""
Capability adapter contract.

This module defines the *interface only*: no endpointing, no device policy,
no orchestration decisions live here.

Key invariants:
- Generations are owned by the controller. Adapters copy the generation
  from the start config into every event they emit and never invent one.
- The adapter emits events through the injected async callback; it never
  calls the reducer or inspects session state.
- Native failures are translated into adapters.errors kinds before they
  are emitted.
- stop() and cancel() are idempotent: unknown or finished handles are a
  no-op.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine

from constants import AUDIO_SAMPLE_RATE_HZ, MAX_UTTERANCE_S
from controller.enums.capability import Capability
from controller.events import (
    AdapterData,
    AdapterEnded,
    AdapterError,
    AdapterStarted,
    Event,
    EventType,
)
from adapters.errors import CapabilityError


EventSink = Callable[[Event], Awaitable[None]]

_handle_ids = itertools.count(1)


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Handle
# =============================================================================

@dataclass(frozen=True)
class Handle:
    """
    Ownership token for one started capability.

    The controller holds it until the capability ends, errors or is
    released. Adapters key their private per-handle resources by handle_id.
    """
    capability: Capability
    generation: int
    handle_id: int


# =============================================================================
# Start configurations
# =============================================================================

@dataclass(frozen=True)
class CaptureConfig:
    generation: int
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
    max_utterance_s: float = MAX_UTTERANCE_S


@dataclass(frozen=True)
class RecognitionConfig:
    generation: int
    language: str


@dataclass(frozen=True)
class SynthesisConfig:
    generation: int
    text: str
    language: str
    voice: str | None = None


@dataclass(frozen=True)
class PlaybackConfig:
    generation: int
    audio: bytes


# =============================================================================
# Adapter base
# =============================================================================

class CapabilityAdapter(ABC):
    """
    Abstract interface for one capability category.

    Note: emit_event callback must be async.

    Lifecycle per handle:
        start(config) -> Handle
        [started] [data ...] (error | ended)
        stop(handle)    graceful: flush what was produced, then end
        cancel(handle)  abort: stop producing output as fast as possible
    """

    capability: Capability

    def __init__(self, *, emit_event: EventSink) -> None:
        self._emit_event = emit_event

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def start(self, config: Any) -> Handle:
        """
        Acquire the underlying resource for config.generation.

        Raises a CapabilityError when the resource cannot be acquired
        (e.g. microphone permission refused).
        """
        raise NotImplementedError

    @abstractmethod
    async def stop(self, handle: Handle) -> None:
        """Graceful stop. Idempotent."""
        raise NotImplementedError

    @abstractmethod
    async def cancel(self, handle: Handle) -> None:
        """
        Abort the handle.

        After cancel() returns, no further events may be emitted for it.
        Idempotent.
        """
        raise NotImplementedError

    def force_reset(self) -> None:
        """
        Hard reset of every handle this adapter owns.

        Last-resort path used by release supervision and view teardown.
        Must not await and must not emit events.
        """

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _new_handle(self, generation: int) -> Handle:
        return Handle(
            capability=self.capability,
            generation=generation,
            handle_id=next(_handle_ids),
        )

    async def _emit_started(self, handle: Handle) -> None:
        await self._emit_event(
            AdapterStarted(
                event_type=EventType.ADAPTER_STARTED,
                ts_ms=_now_ms(),
                capability=handle.capability,
                generation=handle.generation,
            )
        )

    async def _emit_data(self, handle: Handle, data: Any, *, final: bool = False) -> None:
        await self._emit_event(
            AdapterData(
                event_type=EventType.ADAPTER_DATA,
                ts_ms=_now_ms(),
                capability=handle.capability,
                generation=handle.generation,
                data=data,
                final=final,
            )
        )

    async def _emit_error(self, handle: Handle, error: CapabilityError) -> None:
        await self._emit_event(
            AdapterError(
                event_type=EventType.ADAPTER_ERROR,
                ts_ms=_now_ms(),
                capability=handle.capability,
                generation=handle.generation,
                kind=error.kind,
                reason=error.reason,
            )
        )

    async def _emit_ended(self, handle: Handle) -> None:
        await self._emit_event(
            AdapterEnded(
                event_type=EventType.ADAPTER_ENDED,
                ts_ms=_now_ms(),
                capability=handle.capability,
                generation=handle.generation,
            )
        )

    @staticmethod
    def _post_threadsafe(
        loop: asyncio.AbstractEventLoop,
        emit: Coroutine[Any, Any, None],
    ) -> None:
        """
        Hand an emission from a worker thread back to the event loop.

        Engine callbacks (PortAudio, pyttsx3) run off-loop; they must never
        touch the controller directly.
        """
        if loop.is_closed():
            emit.close()
            return
        asyncio.run_coroutine_threadsafe(emit, loop)


class StreamingInputAdapter(CapabilityAdapter):
    """
    Adapter that consumes audio fed by the controller (speech recognition).
    """

    @abstractmethod
    async def feed(self, handle: Handle, pcm_bytes: bytes) -> None:
        """
        Provide one PCM16 frame for handle.

        Frames for unknown or finished handles are dropped silently.
        """
        raise NotImplementedError
