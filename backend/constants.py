"""
CONSTANTS
---------
Single source of truth for all behavioral constants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific values (URLs, keys, languages) live in config.py instead.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz, 20ms frames)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_FRAME_MS: Final[int] = 20

AUDIO_SAMPLES_PER_FRAME: Final[int] = (AUDIO_SAMPLE_RATE_HZ * AUDIO_FRAME_MS) // 1000

# =============================================================================
# Capture
# =============================================================================

# Hard cap on a single utterance; capture ends itself beyond this
MAX_UTTERANCE_S: Final[float] = 30.0

# =============================================================================
# Recognition / endpointing
# =============================================================================

# Silence after speech that finalizes the utterance
SILENCE_DETECTION_MS: Final[int] = 800

# No speech at all within this window -> RecognitionFailure("no-speech")
NO_SPEECH_TIMEOUT_MS: Final[int] = 6_000

# Energy VAD tuning
VAD_RMS_THRESHOLD: Final[float] = 0.02
VAD_FRAMES_REQUIRED: Final[int] = 3

# =============================================================================
# Remote reply
# =============================================================================

REPLY_TIMEOUT_S_DEFAULT: Final[float] = 30.0
REPLY_PROMPT_FIELD: Final[str] = "prompt"
REPLY_TEXT_FIELD: Final[str] = "response"
REPLY_AUDIO_FIELD: Final[str] = "audio"

# =============================================================================
# Synthesis / playback
# =============================================================================

SYNTHESIS_RATE_WPM: Final[int] = 180
SYNTHESIS_VOLUME: Final[float] = 0.9

PLAYBACK_BLOCK_FRAMES: Final[int] = 1024

# =============================================================================
# Release supervision
# =============================================================================

# An adapter whose cancel() has not returned within this window is hard-reset
RELEASE_TIMEOUT_MS: Final[int] = 500

# =============================================================================
# Avatar presenter
# =============================================================================

MOUTH_TOGGLE_INTERVAL_MS: Final[int] = 150

AVATAR_VARIANTS: Final[Tuple[str, ...]] = ("chinese", "indian", "malay")
AVATAR_VARIANT_DEFAULT: Final[str] = "chinese"

# =============================================================================
# Languages
# =============================================================================

RECOGNITION_LANGUAGE_DEFAULT: Final[str] = "en-SG"
SYNTHESIS_LANGUAGE_DEFAULT: Final[str] = "en-US"
