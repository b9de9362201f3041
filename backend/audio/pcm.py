"""
PCM framing utilities (Audio Framer).

Converts device-native float samples into the canonical relay frame format:
PCM16 signed little-endian, mono, at the session sample rate.

Design notes:
- Resampling is linear interpolation; deliberately low fidelity, low latency.
- Quantization uses the asymmetric PCM scale (negative through 0x8000,
  positive through 0x7FFF) and truncates toward zero.
- Pure functions only. No IO, no queues.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from constants import AUDIO_SAMPLE_RATE_HZ, PCM16_MAX, PCM16_MIN_MAGNITUDE


def resample_linear(
    samples: NDArray[np.floating],
    in_rate: int,
    out_rate: int,
) -> NDArray[np.floating]:
    """
    Resample mono float samples by linear interpolation.

    Equal rates return the input unchanged (same object).
    Output length is floor(len(samples) * out_rate / in_rate).
    """
    if in_rate <= 0 or out_rate <= 0:
        raise ValueError("sample rates must be > 0")

    if in_rate == out_rate:
        return samples

    ratio = in_rate / out_rate
    new_length = int(np.floor(len(samples) / ratio))
    if new_length <= 0:
        return np.zeros(0, dtype=np.float32)

    x = np.asarray(samples, dtype=np.float64)
    positions = np.arange(new_length, dtype=np.float64) * ratio
    i0 = np.floor(positions).astype(np.int64)
    i1 = np.minimum(i0 + 1, len(x) - 1)
    t = positions - i0

    out = x[i0] * (1.0 - t) + x[i1] * t
    return out.astype(np.float32)


def float_to_pcm16(samples: NDArray[np.floating]) -> NDArray[np.int16]:
    """
    Quantize float samples in [-1.0, 1.0] to signed 16-bit.

    Values outside the range are clamped first.
    1.0 -> 32767, -1.0 -> -32768.
    """
    s = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(s < 0, s * PCM16_MIN_MAGNITUDE, s * PCM16_MAX)
    return np.trunc(scaled).astype(np.int16)


def encode_pcm16_frame(
    samples: NDArray[np.floating],
    *,
    in_rate: int,
    out_rate: int = AUDIO_SAMPLE_RATE_HZ,
) -> bytes:
    """
    Convert one block of device samples into relay frame bytes.

    Returns little-endian PCM16 bytes (always an even length; may be empty
    for blocks too short to yield an output sample).
    """
    mono = np.asarray(samples, dtype=np.float32).reshape(-1)
    resampled = resample_linear(mono, in_rate, out_rate)
    return float_to_pcm16(resampled).astype("<i2").tobytes()
