"""
Speech recognition adapter (faster-whisper).

This adapter is the *only* recognition-layer component allowed to make
recognition decisions:
- per-handle utterance buffering
- endpointing (silence after speech, no-speech timeout)
- finalize-on-stop
- cancellation + task cleanup
- event emission via injected sink

Final-results-only: each handle produces at most one AdapterData with
final=True (the transcript) followed by AdapterEnded, or exactly one
AdapterError. No interim results are ever emitted.

Design notes:
- Whisper is not streaming; the whole utterance is decoded once.
- transcribe() is blocking; it runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from adapters.base import EventSink, Handle, RecognitionConfig, StreamingInputAdapter
from adapters.errors import RecognitionFailure
from adapters.recognition.whisper_engine import WhisperBackendError, WhisperEngine
from audio.pcm import pcm16le_to_float32
from audio.vad import Endpoint, Endpointer
from constants import AUDIO_SAMPLE_RATE_HZ
from controller.enums.capability import Capability
from observability.logger import log_event
from observability.metrics import timed


@dataclass
class _Run:
    """
    Mutable runtime for a single recognition handle.

    Private to this adapter; the reducer never depends on any of this.
    """
    handle: Handle
    language: str
    endpointer: Endpointer
    audio: list[NDArray[np.float32]] = field(default_factory=list)
    finalizing: bool = False
    decode_task: Optional[asyncio.Task[None]] = None


class WhisperRecognitionAdapter(StreamingInputAdapter):
    """
    Final-only recognizer over a shared WhisperEngine.
    """

    capability = Capability.RECOGNITION

    def __init__(
        self,
        *,
        emit_event: EventSink,
        engine: WhisperEngine,
        session_id: str | None = None,
    ) -> None:
        super().__init__(emit_event=emit_event)
        self._engine = engine
        self._session_id = session_id
        self._active: dict[int, _Run] = {}

    # ------------------------------------------------------------------
    # CapabilityAdapter
    # ------------------------------------------------------------------

    async def start(self, config: RecognitionConfig) -> Handle:
        handle = self._new_handle(config.generation)
        self._active[handle.handle_id] = _Run(
            handle=handle,
            language=config.language,
            endpointer=Endpointer(),
        )
        await self._emit_started(handle)
        return handle

    async def feed(self, handle: Handle, pcm_bytes: bytes) -> None:
        """
        Ingest one frame.

        May trigger:
        - final decode, once speech has been followed by enough silence
        - a no-speech failure, if nothing was heard within the timeout
        """
        run = self._active.get(handle.handle_id)
        if run is None or run.finalizing:
            return

        f32 = pcm16le_to_float32(pcm_bytes)
        run.audio.append(f32)

        decision = run.endpointer.observe(f32)
        if decision is Endpoint.SPEECH_ENDED:
            self._finalize(run, source="endpoint")
        elif decision is Endpoint.NO_SPEECH:
            self._finalize(run, source="no_speech_timeout")

    async def stop(self, handle: Handle) -> None:
        """Stop listening and deliver the final result for what was heard."""
        run = self._active.get(handle.handle_id)
        if run is None or run.finalizing:
            return
        self._finalize(run, source="stop")

    async def cancel(self, handle: Handle) -> None:
        run = self._active.pop(handle.handle_id, None)
        if run is None:
            return
        task = run.decode_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def force_reset(self) -> None:
        runs = list(self._active.values())
        self._active.clear()
        for run in runs:
            if run.decode_task is not None and not run.decode_task.done():
                run.decode_task.cancel()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _finalize(self, run: _Run, *, source: str) -> None:
        run.finalizing = True
        log_event({
            "level": "DEBUG",
            "event_type": "recognition_finalize",
            "session_id": self._session_id,
            "generation": run.handle.generation,
            "source": source,
            "speech_seen": run.endpointer.speech_seen,
        })
        run.decode_task = asyncio.create_task(self._final_decode_task(run))

    async def _final_decode_task(self, run: _Run) -> None:
        handle = run.handle

        if not run.endpointer.speech_seen:
            self._active.pop(handle.handle_id, None)
            await self._emit_error(handle, RecognitionFailure("no-speech"))
            return

        audio = np.concatenate(run.audio) if run.audio else np.zeros((0,), dtype=np.float32)
        loop = asyncio.get_running_loop()

        try:
            with timed(
                "recognition_decode",
                session_id=self._session_id,
                generation=handle.generation,
                details={"audio_s": round(audio.shape[0] / AUDIO_SAMPLE_RATE_HZ, 2)},
            ):
                result = await loop.run_in_executor(
                    None,
                    lambda: self._engine.transcribe(audio, language=run.language),
                )
        except WhisperBackendError as e:
            if self._active.pop(handle.handle_id, None) is not None:
                await self._emit_error(handle, RecognitionFailure(str(e)))
            return

        # Cancelled while decoding
        if self._active.pop(handle.handle_id, None) is None:
            return

        # An empty final is surfaced as-is; the controller turns it into no-speech
        await self._emit_data(handle, result.text, final=True)
        await self._emit_ended(handle)
