# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false
"""
Whisper engine wrapper.

This module is deliberately "dumb":
- Accepts a complete float32 mono utterance (16kHz)
- Runs transcription
- Returns text (+ segment timestamps)

Must NOT:
- Know about handles or generations
- Perform endpointing / silence detection
- Emit controller events

The recognition adapter owns buffering, endpointing, cancellation and event
emission, and calls transcribe() from an executor thread.

Determinism note:
- Whisper is not bitwise-deterministic across executions, even at
  temperature 0.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

import numpy as np
from faster_whisper import WhisperModel


# =============================================================================
# Public result types
# =============================================================================

@dataclass(frozen=True)
class WhisperSegment:
    """
    One timestamped segment of recognized speech.

    Times are in milliseconds relative to the start of the utterance.
    """
    start_ms: int
    end_ms: int
    text: str


@dataclass(frozen=True)
class WhisperResult:
    text: str
    segments: tuple[WhisperSegment, ...] = ()
    language: str | None = None


class WhisperBackendError(RuntimeError):
    """Raised when the model cannot be loaded or a transcription call fails."""


def whisper_language(tag: str | None) -> str | None:
    """
    BCP-47 tag -> Whisper language code.

    Whisper only knows primary subtags ("en-SG" and "en-US" are both "en").
    """
    if not tag:
        return None
    primary = tag.replace("_", "-").split("-", 1)[0].strip().lower()
    return primary or None


# =============================================================================
# Engine
# =============================================================================

class WhisperEngine:
    """
    Minimal faster-whisper inference wrapper (mechanism only).

    - Model is loaded lazily on first use and shared by every recognition
      handle of the process
    - Synchronous by design (caller must handle async via executor)
    """

    def __init__(
        self,
        *,
        model: str = "base",
        device: str | None = None,
        compute_type: str | None = None,
    ) -> None:
        self._model_name = model
        self._device = device
        self._compute_type = compute_type
        self._model: Any = None
        self._load_lock = threading.Lock()

    def _ensure_model(self) -> Any:
        with self._load_lock:
            if self._model is None:
                kwargs: dict[str, Any] = {}
                if self._device is not None:
                    kwargs["device"] = self._device
                if self._compute_type is not None:
                    kwargs["compute_type"] = self._compute_type
                try:
                    self._model = WhisperModel(self._model_name, **kwargs)
                except Exception as e:
                    raise WhisperBackendError(
                        f"Could not load whisper model {self._model_name!r}: {e!r}"
                    ) from e
            return self._model

    def warm_up(self) -> None:
        """Load the model ahead of the first utterance."""
        self._ensure_model()

    def transcribe(
        self,
        audio: np.ndarray,
        *,
        language: str | None = None,
        temperature: float = 0.0,
    ) -> WhisperResult:
        """
        Transcribe one complete utterance.

        Notes:
        - Empty audio returns empty text without touching the model
        - Blocking call (100-500ms typical for base model)
        - No VAD applied (vad_filter=False); endpointing happened upstream
        """
        if audio.size == 0:
            return WhisperResult(text="", language=language)

        model = self._ensure_model()

        kwargs: dict[str, Any] = {
            "language": whisper_language(language),
            "beam_size": 1,
            "temperature": temperature,
            "vad_filter": False,
        }

        try:
            segments_iter, info = model.transcribe(audio, **kwargs)

            segments: list[WhisperSegment] = []
            text_parts: list[str] = []
            for seg in segments_iter:
                seg_text = str(getattr(seg, "text", "")).strip()
                if seg_text:
                    text_parts.append(seg_text)
                segments.append(
                    WhisperSegment(
                        start_ms=int(seg.start * 1000),
                        end_ms=int(seg.end * 1000),
                        text=seg_text,
                    )
                )
        except Exception as e:
            raise WhisperBackendError(f"Whisper transcription failed: {e!r}") from e

        return WhisperResult(
            text=" ".join(text_parts).strip(),
            segments=tuple(segments),
            language=getattr(info, "language", None),
        )
