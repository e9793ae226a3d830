"""
A minimal, energy-based Voice Activity Detection (VAD) module.

Provides a simple RMS-energy threshold VAD intended for
real-time or streaming audio pipelines, plus the endpointing policy the
recognizer uses to decide when an utterance is over. Both operate on short,
fixed-size audio frames (float32 samples).
"""
from enum import Enum

import numpy as np

from audio.pcm import rms
from constants import (
    AUDIO_FRAME_MS,
    NO_SPEECH_TIMEOUT_MS,
    SILENCE_DETECTION_MS,
    VAD_FRAMES_REQUIRED,
    VAD_RMS_THRESHOLD,
)


class EnergyVAD:
    """
    Simple energy-based Voice Activity Detector (VAD).

    For each observed frame, it computes the RMS energy and compares it
    against a fixed threshold. Voice activity is considered present only
    after a configurable number of *consecutive* frames exceed the threshold.

    This provides basic temporal smoothing and avoids triggering on
    single-frame noise spikes.
    """
    def __init__(self, threshold: float, frames_required: int):
        self._threshold = threshold
        self._frames_required = frames_required
        self._count = 0

    def observe(self, f32: np.ndarray) -> bool:
        """
        Observe a single audio frame and update VAD state.

        Returns:
            True if at least `frames_required` consecutive frames (including
            this one) have exceeded the energy threshold. False otherwise.
        """
        if rms(f32) >= self._threshold:
            self._count += 1
        else:
            self._count = 0
        return self._count >= self._frames_required

    def is_silent(self, f32: np.ndarray) -> bool:
        return rms(f32) < self._threshold

    def reset(self) -> None:
        """Clear the count of consecutive above-threshold frames."""
        self._count = 0


class Endpoint(Enum):
    """Outcome of observing one frame."""
    CONTINUE = "CONTINUE"
    SPEECH_ENDED = "SPEECH_ENDED"
    NO_SPEECH = "NO_SPEECH"


class Endpointer:
    """
    Utterance endpointing on top of EnergyVAD.

    - No speech onset within no_speech_timeout_ms -> NO_SPEECH
    - After onset, silence_ms of continuous silence -> SPEECH_ENDED
    Once a terminal decision is returned, further frames return it again.
    """

    def __init__(
        self,
        *,
        threshold: float = VAD_RMS_THRESHOLD,
        frames_required: int = VAD_FRAMES_REQUIRED,
        silence_ms: int = SILENCE_DETECTION_MS,
        no_speech_timeout_ms: int = NO_SPEECH_TIMEOUT_MS,
        frame_ms: int = AUDIO_FRAME_MS,
    ) -> None:
        self._vad = EnergyVAD(threshold, frames_required)
        self._silence_ms = silence_ms
        self._no_speech_timeout_ms = no_speech_timeout_ms
        self._frame_ms = frame_ms

        self.speech_seen = False
        self._elapsed_ms = 0
        self._trailing_silence_ms = 0
        self._decision = Endpoint.CONTINUE

    def observe(self, f32: np.ndarray) -> Endpoint:
        if self._decision is not Endpoint.CONTINUE:
            return self._decision

        self._elapsed_ms += self._frame_ms

        if not self.speech_seen:
            if self._vad.observe(f32):
                self.speech_seen = True
            elif self._elapsed_ms >= self._no_speech_timeout_ms:
                self._decision = Endpoint.NO_SPEECH
            return self._decision

        if self._vad.is_silent(f32):
            self._trailing_silence_ms += self._frame_ms
            if self._trailing_silence_ms >= self._silence_ms:
                self._decision = Endpoint.SPEECH_ENDED
        else:
            self._trailing_silence_ms = 0
        return self._decision

    def reset(self) -> None:
        self._vad.reset()
        self.speech_seen = False
        self._elapsed_ms = 0
        self._trailing_silence_ms = 0
        self._decision = Endpoint.CONTINUE
