"""
Microphone capture adapter.

Opens a PortAudio input stream (sounddevice) per handle and forwards each
20ms PCM16 block to the controller as AdapterData. The whole utterance is
buffered locally; a graceful stop delivers it as one final AdapterData
(the recording) before AdapterEnded.

Threading:
- The PortAudio callback runs on the audio thread. It only copies the
  block and hands it to the event loop with call_soon_threadsafe.
- Everything else runs on the loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

import sounddevice as sd

from adapters.base import CapabilityAdapter, CaptureConfig, EventSink, Handle
from adapters.errors import CapabilityError, PermissionDenied, RecognitionFailure
from constants import AUDIO_CHANNELS, AUDIO_SAMPLE_WIDTH_BYTES, AUDIO_SAMPLES_PER_FRAME
from controller.enums.capability import Capability
from observability.logger import log_event

# PortAudio codes hosts report when the OS refuses microphone access
_ACCESS_REFUSED_CODES = frozenset({
    -9985,  # paDeviceUnavailable
    -9999,  # paUnanticipatedHostError
})
_ACCESS_REFUSED_HINTS = ("permission", "access denied", "not authorized")


@dataclass
class _Capture:
    handle: Handle
    stream: Any
    max_bytes: int
    chunks: list[bytes] = field(default_factory=list)
    size: int = 0
    ending: bool = False


class MicrophoneCaptureAdapter(CapabilityAdapter):
    """
    sounddevice-backed capture.

    One input stream per handle. In practice the controller never holds
    more than one at a time.
    """

    capability = Capability.CAPTURE

    def __init__(
        self,
        *,
        emit_event: EventSink,
        device: int | str | None = None,
        session_id: str | None = None,
        stream_factory: Callable[..., Any] = sd.RawInputStream,
    ) -> None:
        super().__init__(emit_event=emit_event)
        self._device = device
        self._stream_factory = stream_factory
        self._session_id = session_id
        self._active: dict[int, _Capture] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # CapabilityAdapter
    # ------------------------------------------------------------------

    async def start(self, config: CaptureConfig) -> Handle:
        loop = asyncio.get_running_loop()
        handle = self._new_handle(config.generation)

        def _sd_callback(indata: Any, frames: int, time_info: Any, status: Any) -> None:
            del frames, time_info
            if status:
                log_event({
                    "level": "DEBUG",
                    "event_type": "capture_stream_status",
                    "session_id": self._session_id,
                    "status": str(status),
                })
            # Copy: sounddevice reuses the buffer
            loop.call_soon_threadsafe(self._on_block, handle.handle_id, bytes(indata))

        try:
            stream = self._stream_factory(
                samplerate=config.sample_rate_hz,
                channels=AUDIO_CHANNELS,
                dtype="int16",
                blocksize=AUDIO_SAMPLES_PER_FRAME,
                device=self._device,
                callback=_sd_callback,
            )
            stream.start()
        except sd.PortAudioError as exc:
            raise classify_open_error(exc) from exc

        max_bytes = int(
            config.max_utterance_s * config.sample_rate_hz * AUDIO_SAMPLE_WIDTH_BYTES
        )
        self._active[handle.handle_id] = _Capture(
            handle=handle, stream=stream, max_bytes=max_bytes
        )
        await self._emit_started(handle)
        return handle

    async def stop(self, handle: Handle) -> None:
        """Close the stream, then deliver the recording and end."""
        capture = self._active.pop(handle.handle_id, None)
        if capture is None:
            return
        await self._close_stream(capture)
        await self._emit_data(handle, b"".join(capture.chunks), final=True)
        await self._emit_ended(handle)

    async def cancel(self, handle: Handle) -> None:
        capture = self._active.pop(handle.handle_id, None)
        if capture is None:
            return
        await self._close_stream(capture)

    def force_reset(self) -> None:
        for capture in self._active.values():
            try:
                capture.stream.abort()
                capture.stream.close()
            except sd.PortAudioError:
                pass
        self._active.clear()
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _on_block(self, handle_id: int, block: bytes) -> None:
        capture = self._active.get(handle_id)
        if capture is None or capture.ending:
            return

        capture.chunks.append(block)
        capture.size += len(block)
        self._spawn(self._emit_data(capture.handle, block))

        if capture.size >= capture.max_bytes:
            # Utterance cap reached: capture ends on its own
            capture.ending = True
            self._spawn(self.stop(capture.handle))

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _close_stream(capture: _Capture) -> None:
        loop = asyncio.get_running_loop()
        # Pa_StopStream blocks until the callback thread drains
        await loop.run_in_executor(None, capture.stream.stop)
        capture.stream.close()


def classify_open_error(exc: sd.PortAudioError) -> CapabilityError:
    """Map a failure to open the input stream onto the user-facing kind."""
    code = exc.args[1] if len(exc.args) > 1 else None
    text = str(exc).lower()
    if code in _ACCESS_REFUSED_CODES or any(hint in text for hint in _ACCESS_REFUSED_HINTS):
        return PermissionDenied(f"microphone access refused: {exc}")
    return RecognitionFailure(f"microphone could not be opened: {exc}")
