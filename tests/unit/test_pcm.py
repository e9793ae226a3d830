# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from audio.pcm import decode_audio, float32_to_pcm16le, pcm16_to_wav, pcm16le_to_float32, rms


def test_pcm16_conversion_scale_and_odd_byte():
    pcm = np.array([0, 16384, -32768], dtype="<i2").tobytes() + b"\x01"

    f32 = pcm16le_to_float32(pcm)

    assert f32.dtype == np.float32
    assert f32.tolist() == [0.0, 0.5, -1.0]


def test_float32_to_pcm16_clips():
    pcm = float32_to_pcm16le(np.array([2.0, -2.0], dtype=np.float32))

    assert np.frombuffer(pcm, dtype="<i2").tolist() == [32767, -32767]


def test_rms_of_empty_is_zero():
    assert rms(np.zeros(0, dtype=np.float32)) == 0.0


def test_recording_wav_decodes_at_capture_rate():
    samples = (np.sin(np.linspace(0, 20, 1600)) * 10000).astype("<i2")

    wav = pcm16_to_wav(samples.tobytes(), sample_rate_hz=16000)
    frames, rate = decode_audio(wav)

    assert wav[:4] == b"RIFF"
    assert rate == 16000
    assert frames.shape == (1600,)


def test_undecodable_blob_raises():
    with pytest.raises(RuntimeError):
        decode_audio(b"definitely not audio")
