"""
Audio playback adapter.

Plays one buffered audio resource (the reply audio blob returned by the
reply endpoint) on the default output device. The blob is decoded with
soundfile, so any container it understands (WAV, FLAC, OGG...) works.

Events per handle: started when the device begins playing, ended when
playback reaches the end, or a single SYNTHESIS_FAILURE error.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

import numpy as np
import sounddevice as sd
import soundfile as sf

from adapters.base import CapabilityAdapter, EventSink, Handle, PlaybackConfig
from adapters.errors import SynthesisFailure, describe
from audio.pcm import decode_audio
from constants import PLAYBACK_BLOCK_FRAMES
from controller.enums.capability import Capability


@dataclass
class _Playback:
    handle: Handle
    stop_flag: threading.Event = field(default_factory=threading.Event)
    task: asyncio.Task[None] | None = None


class SoundDevicePlaybackAdapter(CapabilityAdapter):
    """One output stream per handle, written block by block off-loop."""

    capability = Capability.PLAYBACK

    def __init__(
        self,
        *,
        emit_event: EventSink,
        device: int | str | None = None,
        stream_factory: Callable[..., Any] = sd.OutputStream,
    ) -> None:
        super().__init__(emit_event=emit_event)
        self._device = device
        self._stream_factory = stream_factory
        self._active: dict[int, _Playback] = {}

    # ------------------------------------------------------------------
    # CapabilityAdapter
    # ------------------------------------------------------------------

    async def start(self, config: PlaybackConfig) -> Handle:
        handle = self._new_handle(config.generation)
        try:
            frames, sample_rate_hz = decode_audio(config.audio)
        except sf.LibsndfileError as exc:
            raise SynthesisFailure(f"undecodable reply audio: {exc}") from exc

        playback = _Playback(handle=handle)
        self._active[handle.handle_id] = playback
        playback.task = asyncio.create_task(self._run(playback, frames, sample_rate_hz))
        return handle

    async def stop(self, handle: Handle) -> None:
        """Pause: stop the device and report the resource as ended."""
        playback = self._active.pop(handle.handle_id, None)
        if playback is None:
            return
        await self._halt(playback)
        await self._emit_ended(handle)

    async def cancel(self, handle: Handle) -> None:
        playback = self._active.pop(handle.handle_id, None)
        if playback is None:
            return
        await self._halt(playback)

    def force_reset(self) -> None:
        playbacks = list(self._active.values())
        self._active.clear()
        for playback in playbacks:
            playback.stop_flag.set()
            if playback.task is not None:
                playback.task.cancel()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _run(self, playback: _Playback, frames: np.ndarray, sample_rate_hz: int) -> None:
        handle = playback.handle
        loop = asyncio.get_running_loop()

        def _started() -> None:
            if handle.handle_id in self._active:
                self._post_threadsafe(loop, self._emit_started(handle))

        try:
            await loop.run_in_executor(
                None, self._play_blocking, frames, sample_rate_hz, playback.stop_flag, _started
            )
        except asyncio.CancelledError:
            playback.stop_flag.set()
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            if self._active.pop(handle.handle_id, None) is not None:
                await self._emit_error(handle, SynthesisFailure(describe(exc)))
            return

        if self._active.pop(handle.handle_id, None) is not None:
            await self._emit_ended(handle)

    def _play_blocking(
        self,
        frames: np.ndarray,
        sample_rate_hz: int,
        stop_flag: threading.Event,
        on_started: Any,
    ) -> None:
        """Blocking playback; runs in executor. Returns early once stop_flag is set."""
        channels = 1 if frames.ndim == 1 else int(frames.shape[1])
        with self._stream_factory(
            samplerate=sample_rate_hz,
            channels=channels,
            dtype="float32",
            device=self._device,
        ) as stream:
            on_started()
            for offset in range(0, frames.shape[0], PLAYBACK_BLOCK_FRAMES):
                if stop_flag.is_set():
                    stream.abort()
                    return
                stream.write(np.ascontiguousarray(frames[offset:offset + PLAYBACK_BLOCK_FRAMES]))

    @staticmethod
    async def _halt(playback: _Playback) -> None:
        playback.stop_flag.set()
        task = playback.task
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass
