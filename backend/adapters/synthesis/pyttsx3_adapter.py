"""
Local speech synthesis adapter (pyttsx3).

Speaks one reply utterance per handle through the platform engine
(SAPI5 / NSSpeechSynthesizer / espeak).

Threading:
- pyttsx3 engines are bound to the thread that drives them, and
  runAndWait() blocks. All engine work runs on a single dedicated worker
  thread; callbacks are posted back to the event loop.
- cancel() marks the utterance cancelled and calls engine.stop() from the
  loop thread, which makes a blocked runAndWait() return. The worker
  re-checks the mark under the utterance lock before queueing text and
  again before runAndWait(), so a cancel that lands while the engine is
  still being set up never reaches the speaker.

Events per handle: started (engine began the utterance), then ended, or a
single error (SYNTHESIS_FAILURE).
"""

from __future__ import annotations

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

import pyttsx3

from adapters.base import CapabilityAdapter, EventSink, Handle, SynthesisConfig
from adapters.errors import SynthesisFailure, describe
from adapters.synthesis.voices import select_voice, voice_info_from_engine
from constants import SYNTHESIS_RATE_WPM, SYNTHESIS_VOLUME
from controller.enums.capability import Capability
from observability.logger import log_event


@dataclass
class _Utterance:
    handle: Handle
    engine: Any = None
    # Set from the loop thread, read by the worker
    cancelled: threading.Event = field(default_factory=threading.Event)
    lock: threading.Lock = field(default_factory=threading.Lock)


class Pyttsx3SynthesisAdapter(CapabilityAdapter):
    """Zero or one utterance outstanding at a time (the controller enforces it)."""

    capability = Capability.SYNTHESIS

    def __init__(
        self,
        *,
        emit_event: EventSink,
        session_id: str | None = None,
        engine_factory: Callable[[], Any] = pyttsx3.init,
    ) -> None:
        super().__init__(emit_event=emit_event)
        self._session_id = session_id
        self._engine_factory = engine_factory
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pyttsx3")
        self._active: dict[int, _Utterance] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # CapabilityAdapter
    # ------------------------------------------------------------------

    async def start(self, config: SynthesisConfig) -> Handle:
        loop = asyncio.get_running_loop()
        handle = self._new_handle(config.generation)
        utterance = _Utterance(handle=handle)
        self._active[handle.handle_id] = utterance

        future = loop.run_in_executor(
            self._executor, self._speak_blocking, loop, utterance, config
        )
        future.add_done_callback(
            lambda f: self._on_utterance_done(utterance, f)
        )
        return handle

    async def stop(self, handle: Handle) -> None:
        """Stop speaking now and report the utterance as ended."""
        utterance = self._active.pop(handle.handle_id, None)
        if utterance is None:
            return
        self._stop_engine(utterance)
        await self._emit_ended(handle)

    async def cancel(self, handle: Handle) -> None:
        utterance = self._active.pop(handle.handle_id, None)
        if utterance is None:
            return
        self._stop_engine(utterance)

    def force_reset(self) -> None:
        utterances = list(self._active.values())
        self._active.clear()
        for utterance in utterances:
            self._stop_engine(utterance)

    def close(self) -> None:
        self.force_reset()
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _speak_blocking(
        self,
        loop: asyncio.AbstractEventLoop,
        utterance: _Utterance,
        config: SynthesisConfig,
    ) -> None:
        handle = utterance.handle
        if utterance.cancelled.is_set():
            return  # cancelled before the worker picked it up

        engine = self._engine_factory()
        with utterance.lock:
            if utterance.cancelled.is_set():
                return
            utterance.engine = engine

        voices = [voice_info_from_engine(v) for v in engine.getProperty("voices") or ()]
        voice_id = select_voice(voices, config.language, config.voice)
        if voice_id is not None:
            engine.setProperty("voice", voice_id)
        engine.setProperty("rate", SYNTHESIS_RATE_WPM)
        engine.setProperty("volume", SYNTHESIS_VOLUME)

        log_event({
            "event_type": "synthesis_voice_selected",
            "session_id": self._session_id,
            "generation": handle.generation,
            "language": config.language,
            "requested_voice": config.voice,
            "voice_id": voice_id,
            "candidates": len(voices),
        })

        def _on_started(name: Any) -> None:
            del name
            if not utterance.cancelled.is_set():
                self._post_threadsafe(loop, self._emit_started(handle))

        token = engine.connect("started-utterance", _on_started)
        try:
            with utterance.lock:
                if utterance.cancelled.is_set():
                    return
                engine.say(config.text)
            # From here a cancel reaches engine.stop(), which drops the queued text
            if utterance.cancelled.is_set():
                return
            engine.runAndWait()
        finally:
            engine.disconnect(token)

    # ------------------------------------------------------------------
    # Loop thread
    # ------------------------------------------------------------------

    def _on_utterance_done(self, utterance: _Utterance, future: "asyncio.Future[None]") -> None:
        handle = utterance.handle
        if self._active.pop(handle.handle_id, None) is None:
            return  # released while speaking; stay silent

        exc = future.exception() if not future.cancelled() else None
        if exc is not None:
            self._spawn(self._emit_error(handle, SynthesisFailure(describe(exc))))
        else:
            self._spawn(self._emit_ended(handle))

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    def _stop_engine(utterance: _Utterance) -> None:
        with utterance.lock:
            utterance.cancelled.set()
            engine = utterance.engine
        if engine is None:
            return
        try:
            engine.stop()
        except RuntimeError:
            pass
