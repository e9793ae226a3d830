"""
Runtime execution shell for a single view's session controller.

Responsibilities:
- Own the authoritative SessionState
- Call the pure reducer
- Execute commands with side effects (adapters, reply client, logging)
- Own exactly one current handle per capability category
- Publish a projected snapshot whenever it changes

Non-responsibilities:
- No state-machine decisions (reducer)
- No transport concerns (gateway)
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from adapters.base import (
    CaptureConfig,
    Handle,
    PlaybackConfig,
    RecognitionConfig,
    SynthesisConfig,
)
from adapters.errors import CapabilityError, describe
from constants import RELEASE_TIMEOUT_MS
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
from controller.enums.capability import Capability
from controller.enums.error_kind import ErrorKind
from controller.events import (
    AdapterError,
    Event,
    EventType,
    ReplyFailed,
    ReplyReceived,
    ReplyRequested,
    StartSpeaking,
    Teardown,
)
from controller.projection import SessionSnapshot, project
from controller.reducer import reduce
from controller.release import ReleaseManager
from controller.state_dataclass import SessionState
from observability.logger import log_event
from observability.metrics import timed

if TYPE_CHECKING:
    from controller.runtime_context import ReplyClientProtocol, RuntimeExecutionContext
    from controller.settings import SessionSettings


SnapshotListener = Callable[[SessionSnapshot], Awaitable[None]]

# Kind reported when an adapter fails to start without a typed error
_START_FAILURE_KIND: dict[Capability, ErrorKind] = {
    Capability.CAPTURE: ErrorKind.RECOGNITION_FAILURE,
    Capability.RECOGNITION: ErrorKind.RECOGNITION_FAILURE,
    Capability.SYNTHESIS: ErrorKind.SYNTHESIS_FAILURE,
    Capability.PLAYBACK: ErrorKind.SYNTHESIS_FAILURE,
}


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class SessionController:
    """
    Runtime execution boundary for one view.

    Architectural role:
    The bridge between the pure layer (reducer + immutable state) and the
    imperative world (adapters, reply endpoint, logging).

    Guarantees:
    - Reducer is called exactly once per incoming event
    - State is swapped in before any command executes
    - Commands execute in reducer-emitted order
    - A Start* command is executed only while its generation is current
      and its capability is held; anything that finishes starting after
      it was superseded is released immediately
    - Adapter failures never escape a command: they re-enter as events
    """

    def __init__(
        self,
        *,
        context: RuntimeExecutionContext,
        initial_state: SessionState | None = None,
        release_timeout_ms: int = RELEASE_TIMEOUT_MS,
    ) -> None:
        self._state = initial_state if initial_state is not None else SessionState()
        self._ctx = context

        # One current handle per capability category (REPLY is a task)
        self._handles: dict[Capability, Handle] = {}
        self._reply_task: asyncio.Task[None] | None = None
        self._reply_generation: int | None = None

        # Settings snapshot for the exchange in progress
        self._settings: SessionSettings = context.settings

        self._listeners: list[SnapshotListener] = []
        self._snapshot = project(self._state)
        self._closed = False

        self._releases = ReleaseManager(
            session_id=context.session_id,
            is_vacant=lambda capability: capability not in self._handles,
            timeout_ms=release_timeout_ms,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """
        Current immutable session state.

        Only the controller replaces it, via the reducer.
        """
        return self._state

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def settings(self) -> SessionSettings:
        """Settings the current (or last) exchange runs with."""
        return self._settings

    @property
    def handles(self) -> dict[Capability, Handle]:
        return dict(self._handles)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: SnapshotListener) -> None:
        """Register an async callback invoked with every new snapshot."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------

    async def handle_event(self, event: Event) -> None:
        """
        Process a single event through the pipeline.

        Processing steps:
        1. Pass the current state and event to the pure reducer
        2. Swap in the new state
        3. Execute all emitted commands sequentially
        4. Publish the projected snapshot if it changed

        All event sources converge here: gateway (user input, teardown),
        adapters (started/data/error/ended) and the reply task.
        Re-entrant calls from command execution are allowed; the generation
        guard in command execution keeps them safe.
        """
        if self._closed:
            log_event({
                "ts_ms": _now_ms(),
                "level": "DEBUG",
                "event_type": "EVENT_AFTER_SHUTDOWN",
                "session_id": self._ctx.session_id,
                "dropped_event": event.event_type.value,
            })
            return

        if isinstance(event, StartSpeaking):
            self._settings = self._ctx.settings

        new_state, commands = reduce(self._state, event)
        self._state = new_state

        for cmd in commands:
            await self._execute_command(cmd)

        await self._publish_if_changed()

    async def shutdown(self, reason: str = "view_teardown") -> None:
        """
        View teardown.

        Dispatches Teardown (which releases every held handle), then
        forcibly resets every adapter and waits for outstanding releases.
        Idempotent.
        """
        if self._closed:
            return

        await self.handle_event(
            Teardown(event_type=EventType.TEARDOWN, ts_ms=_now_ms(), reason=reason)
        )
        self._closed = True

        for capability, handle in list(self._handles.items()):
            adapter = self._ctx.adapter_for(capability)
            if adapter is not None:
                self._releases.release(adapter, handle, graceful=False, reason="teardown")
        self._handles.clear()

        task = self._reply_task
        self._reply_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        await self._releases.drain()

        for adapter in self._ctx.all_adapters():
            adapter.force_reset()

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CONTROLLER_SHUTDOWN",
            "session_id": self._ctx.session_id,
            "reason": reason,
            "generation": self._state.generation,
        })

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                "session_id": self._ctx.session_id,
            })

        elif isinstance(cmd, StartRecognition):
            await self._start(
                Capability.RECOGNITION,
                cmd.generation,
                RecognitionConfig(
                    generation=cmd.generation,
                    language=self._settings.recognition_language,
                ),
            )

        elif isinstance(cmd, StartCapture):
            await self._start(
                Capability.CAPTURE,
                cmd.generation,
                CaptureConfig(generation=cmd.generation),
            )

        elif isinstance(cmd, FeedRecognition):
            # Hot path: no logging
            handle = self._current_handle(Capability.RECOGNITION, cmd.generation)
            adapter = self._ctx.recognition_adapter
            if handle is not None and adapter is not None:
                await adapter.feed(handle, cmd.pcm_bytes)

        elif isinstance(cmd, FinishRecognition):
            await self._finish_recognition(cmd.generation)

        elif isinstance(cmd, RequestReply):
            await self._request_reply(cmd)

        elif isinstance(cmd, StartSynthesis):
            await self._start(
                Capability.SYNTHESIS,
                cmd.generation,
                SynthesisConfig(
                    generation=cmd.generation,
                    text=cmd.text,
                    language=self._settings.synthesis_language,
                    voice=self._settings.voice,
                ),
            )

        elif isinstance(cmd, StartPlayback):
            await self._start(
                Capability.PLAYBACK,
                cmd.generation,
                PlaybackConfig(generation=cmd.generation, audio=cmd.audio),
            )

        elif isinstance(cmd, ReleaseHandle):
            self._release(cmd)

        else:
            log_event({
                "ts_ms": _now_ms(),
                "level": "ERROR",
                "event_type": "COMMAND_NOT_IMPLEMENTED",
                "session_id": self._ctx.session_id,
                "command_type": type(cmd).__name__,
            })

    # ------------------------------------------------------------------
    # Capability handles
    # ------------------------------------------------------------------

    def _is_current(self, capability: Capability, generation: int) -> bool:
        return (
            generation == self._state.generation
            and capability in self._state.held
        )

    def _current_handle(self, capability: Capability, generation: int) -> Handle | None:
        handle = self._handles.get(capability)
        if handle is None or handle.generation != generation:
            return None
        return handle

    async def _start(self, capability: Capability, generation: int, config: Any) -> None:
        if not self._is_current(capability, generation):
            log_event({
                "ts_ms": _now_ms(),
                "level": "DEBUG",
                "event_type": "START_SKIPPED_STALE",
                "session_id": self._ctx.session_id,
                "capability": capability.value,
                "generation": generation,
            })
            return

        adapter = self._ctx.adapter_for(capability)
        if adapter is None:
            await self._adapter_failed(
                capability, generation, _START_FAILURE_KIND[capability], "adapter not configured"
            )
            return

        try:
            handle = await adapter.start(config)
        except CapabilityError as exc:
            await self._adapter_failed(capability, generation, exc.kind, exc.reason)
            return
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._adapter_failed(
                capability, generation, _START_FAILURE_KIND[capability], describe(exc)
            )
            return

        if not self._is_current(capability, generation):
            # Superseded (cancel, restart, error) while the adapter was starting
            self._releases.release(adapter, handle, graceful=False, reason="superseded")
            return

        self._handles[capability] = handle
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "START_EXECUTED",
            "session_id": self._ctx.session_id,
            "capability": capability.value,
            "generation": generation,
            "handle_id": handle.handle_id,
        })

    async def _finish_recognition(self, generation: int) -> None:
        handle = self._current_handle(Capability.RECOGNITION, generation)
        adapter = self._ctx.recognition_adapter
        if handle is None or adapter is None:
            return
        try:
            await adapter.stop(handle)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._adapter_failed(
                Capability.RECOGNITION, generation, ErrorKind.RECOGNITION_FAILURE, describe(exc)
            )

    def _release(self, cmd: ReleaseHandle) -> None:
        if cmd.capability is Capability.REPLY:
            self._cancel_reply(cmd.generation)
            return

        handle = self._current_handle(cmd.capability, cmd.generation)
        if handle is None:
            # Never started, start failed, or still starting (released on arrival)
            return

        del self._handles[cmd.capability]
        adapter = self._ctx.adapter_for(cmd.capability)
        if adapter is None:
            return
        self._releases.release(adapter, handle, graceful=cmd.graceful, reason=cmd.reason)

    async def _adapter_failed(
        self,
        capability: Capability,
        generation: int,
        kind: ErrorKind,
        reason: str,
    ) -> None:
        await self.handle_event(
            AdapterError(
                event_type=EventType.ADAPTER_ERROR,
                ts_ms=_now_ms(),
                capability=capability,
                generation=generation,
                kind=kind,
                reason=reason,
            )
        )

    # ------------------------------------------------------------------
    # Remote reply
    # ------------------------------------------------------------------

    async def _request_reply(self, cmd: RequestReply) -> None:
        if not self._is_current(Capability.REPLY, cmd.generation):
            return

        await self.handle_event(
            ReplyRequested(
                event_type=EventType.REPLY_REQUESTED,
                ts_ms=_now_ms(),
                capability=Capability.REPLY,
                generation=cmd.generation,
            )
        )

        client = self._ctx.reply_client
        if client is None:
            await self.handle_event(
                ReplyFailed(
                    event_type=EventType.REPLY_FAILED,
                    ts_ms=_now_ms(),
                    capability=Capability.REPLY,
                    generation=cmd.generation,
                    kind=ErrorKind.TRANSPORT_ERROR,
                    reason="reply client not configured",
                )
            )
            return

        self._reply_generation = cmd.generation
        self._reply_task = asyncio.create_task(
            self._run_reply(client, cmd.generation, cmd.transcript)
        )

    async def _run_reply(
        self,
        client: ReplyClientProtocol,
        generation: int,
        transcript: str,
    ) -> None:
        event: Event
        try:
            with timed(
                "reply_latency",
                session_id=self._ctx.session_id,
                generation=generation,
                details={"chars": len(transcript)},
            ):
                reply = await client.send(transcript)
        except CapabilityError as exc:
            event = ReplyFailed(
                event_type=EventType.REPLY_FAILED,
                ts_ms=_now_ms(),
                capability=Capability.REPLY,
                generation=generation,
                kind=exc.kind,
                reason=exc.reason,
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            event = ReplyFailed(
                event_type=EventType.REPLY_FAILED,
                ts_ms=_now_ms(),
                capability=Capability.REPLY,
                generation=generation,
                kind=ErrorKind.TRANSPORT_ERROR,
                reason=describe(exc),
            )
        else:
            event = ReplyReceived(
                event_type=EventType.REPLY_RECEIVED,
                ts_ms=_now_ms(),
                capability=Capability.REPLY,
                generation=generation,
                reply_text=reply.reply_text,
                reply_audio=reply.reply_audio,
            )

        # Detach first: the reducer releases REPLY while handling this event
        if self._reply_task is asyncio.current_task():
            self._reply_task = None
            self._reply_generation = None

        await self.handle_event(event)

    def _cancel_reply(self, generation: int) -> None:
        task = self._reply_task
        if task is None or self._reply_generation != generation:
            return
        self._reply_task = None
        self._reply_generation = None
        if not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Snapshot publishing
    # ------------------------------------------------------------------

    async def _publish_if_changed(self) -> None:
        snapshot = project(self._state)
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot

        for listener in list(self._listeners):
            try:
                await listener(snapshot)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "level": "ERROR",
                    "event_type": "SNAPSHOT_LISTENER_FAILED",
                    "session_id": self._ctx.session_id,
                    "error": describe(exc),
                })
