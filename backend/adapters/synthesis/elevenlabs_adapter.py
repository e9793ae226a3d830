"""
ElevenLabs speech synthesis adapter.

Streams PCM16 16kHz audio from the ElevenLabs TTS API and plays it on the
default output device as it arrives.

Role in the system:
- One asyncio task per handle (fetch + play)
- started is emitted when the first audio reaches the device, ended once
  the device has drained
- Any provider or device failure is a single SYNTHESIS_FAILURE error
- No retries, no chunking: the reply is one utterance

Voice: a language match among the known voices, else the session voice
(taken as an ElevenLabs voice id when no known voice carries that name),
else the configured default voice id.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Sequence

import sounddevice as sd
from elevenlabs.client import AsyncElevenLabs

from adapters.base import CapabilityAdapter, EventSink, Handle, SynthesisConfig
from adapters.errors import SynthesisFailure, describe
from adapters.synthesis.voices import VoiceInfo, select_voice
from constants import AUDIO_CHANNELS, AUDIO_SAMPLE_RATE_HZ, AUDIO_SAMPLE_WIDTH_BYTES
from controller.enums.capability import Capability
from observability.metrics import timed


class ElevenLabsSynthesisAdapter(CapabilityAdapter):
    """
    ElevenLabs streaming synthesis.

    Design:
    - One asyncio task per handle
    - Fire-and-forget: start() schedules work and returns
    - All output delivered via events
    """

    capability = Capability.SYNTHESIS

    def __init__(
        self,
        *,
        emit_event: EventSink,
        api_key: str,
        session_id: str | None = None,
        voice_id: str = "21m00Tcm4TlvDq8ikWAM",  # default ElevenLabs voice
        model_id: str = "eleven_turbo_v2",
        voices: Sequence[VoiceInfo] = (),
        client: Any = None,
        stream_factory: Callable[..., Any] = sd.RawOutputStream,
    ) -> None:
        super().__init__(emit_event=emit_event)
        self._session_id = session_id
        self._voice_id = voice_id
        self._model_id = model_id
        self._voices = tuple(voices)
        self._client = client if client is not None else AsyncElevenLabs(api_key=api_key)
        self._stream_factory = stream_factory

        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._streams: dict[int, Any] = {}

    # ------------------------------------------------------------------
    # CapabilityAdapter
    # ------------------------------------------------------------------

    async def start(self, config: SynthesisConfig) -> Handle:
        handle = self._new_handle(config.generation)
        voice_id = self.resolve_voice(config.language, config.voice)

        task = asyncio.create_task(self._run_synthesis(handle, config.text, voice_id))
        self._tasks[handle.handle_id] = task

        def _cleanup(_: asyncio.Task[None]) -> None:
            self._tasks.pop(handle.handle_id, None)

        task.add_done_callback(_cleanup)
        return handle

    async def stop(self, handle: Handle) -> None:
        task = self._tasks.get(handle.handle_id)
        if task is None:
            return
        await self.cancel(handle)
        await self._emit_ended(handle)

    async def cancel(self, handle: Handle) -> None:
        task = self._tasks.pop(handle.handle_id, None)
        if task is None:
            return
        self._abort_stream(handle.handle_id)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def force_reset(self) -> None:
        for handle_id in list(self._streams):
            self._abort_stream(handle_id)
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()

    def resolve_voice(self, language: str | None, session_voice: str | None) -> str:
        voice_id = select_voice(self._voices, language, session_voice)
        if voice_id is not None:
            return voice_id
        if session_voice and session_voice.strip():
            return session_voice.strip()
        return self._voice_id

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _run_synthesis(self, handle: Handle, text: str, voice_id: str) -> None:
        """
        Internal synthesis task.

        Emits started once, then exactly one terminal event:
        - ended OR
        - error
        """
        loop = asyncio.get_running_loop()
        started = False
        carry = b""

        try:
            stream = self._stream_factory(
                samplerate=AUDIO_SAMPLE_RATE_HZ,
                channels=AUDIO_CHANNELS,
                dtype="int16",
            )
            stream.start()
            self._streams[handle.handle_id] = stream

            with timed(
                "synthesis_stream",
                session_id=self._session_id,
                generation=handle.generation,
                details={"chars": len(text), "provider": "elevenlabs"},
            ):
                async for chunk in self._client.text_to_speech.stream(
                    voice_id=voice_id,
                    model_id=self._model_id,
                    text=text,
                    output_format="pcm_16000",
                ):
                    if not chunk:
                        continue

                    data = carry + chunk
                    cut = len(data) - (len(data) % AUDIO_SAMPLE_WIDTH_BYTES)
                    data, carry = data[:cut], data[cut:]
                    if not data:
                        continue

                    if not started:
                        started = True
                        await self._emit_started(handle)

                    await loop.run_in_executor(None, stream.write, data)

            # Blocks until the device has played everything written
            await loop.run_in_executor(None, stream.stop)
            self._close_stream(handle.handle_id)
            await self._emit_ended(handle)

        except asyncio.CancelledError:
            # Released while speaking; silent termination
            self._abort_stream(handle.handle_id)
            raise

        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._abort_stream(handle.handle_id)
            await self._emit_error(handle, SynthesisFailure(describe(exc)))

    def _close_stream(self, handle_id: int) -> None:
        stream = self._streams.pop(handle_id, None)
        if stream is not None:
            stream.close()

    def _abort_stream(self, handle_id: int) -> None:
        stream = self._streams.pop(handle_id, None)
        if stream is None:
            return
        try:
            stream.abort()
            stream.close()
        except sd.PortAudioError:
            pass
