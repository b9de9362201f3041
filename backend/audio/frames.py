"""
Audio frame primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FrameSource(str, Enum):
    """Where an audio frame entered the relay."""

    CLIENT = "client"
    CAPTURE = "capture"


@dataclass(frozen=True)
class AudioFrame:
    """
    Canonical audio frame carried through the relay.

    pcm_bytes:
        Raw PCM16 little-endian mono samples at the session sample rate.
        Length is always a non-zero multiple of 2; construct via
        protocol.messages.decode_audio_frame() to get that guarantee.

    ts_ms:
        Wall-clock timestamp (milliseconds) when the frame was received.
        Used for observability only (not control logic).

    source:
        Client transport or capture subprocess.
    """
    pcm_bytes: bytes
    ts_ms: int
    source: FrameSource = FrameSource.CLIENT

    def __len__(self) -> int:
        return len(self.pcm_bytes)
