"""PCM conversion utilities."""
import io

import numpy as np
import soundfile as sf

from constants import AUDIO_SAMPLE_RATE_HZ


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    Runtime-safe, adapter-agnostic utility.
    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; caller should treat as malformed frame upstream.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    audio_f32 = audio_i16.astype(np.float32) / 32768.0
    return audio_f32


def float32_to_pcm16le(audio_f32: np.ndarray) -> bytes:
    """Inverse of pcm16le_to_float32 (clipped, no -32768 wraparound)."""
    audio_f32 = np.clip(audio_f32, -1.0, 1.0)
    audio_i16 = np.round(audio_f32 * 32767.0).astype("<i2")
    return audio_i16.tobytes()


def rms(audio_f32: np.ndarray) -> float:
    if audio_f32.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(audio_f32 * audio_f32)))


def pcm16_to_wav(pcm_bytes: bytes, *, sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ) -> bytes:
    """Wrap raw PCM16 mono in a WAV container (served as the recording)."""
    buf = io.BytesIO()
    samples = np.frombuffer(pcm_bytes[: len(pcm_bytes) - len(pcm_bytes) % 2], dtype="<i2")
    sf.write(buf, samples, sample_rate_hz, format="WAV", subtype="PCM_16")
    return buf.getvalue()


def decode_audio(blob: bytes) -> tuple[np.ndarray, int]:
    """
    Decode an encoded audio blob (WAV, FLAC, OGG...) into float32 frames.

    Returns (frames, sample_rate_hz); frames are shaped (n,) for mono and
    (n, channels) otherwise. Raises soundfile's error on undecodable input.
    """
    data, sample_rate_hz = sf.read(io.BytesIO(blob), dtype="float32", always_2d=False)
    return data, int(sample_rate_hz)
