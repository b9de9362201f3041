# backend/protocol/messages.py
"""
Wire-format helpers for both relay boundaries.

Client -> Relay:
    binary message  = raw PCM16 audio frame (even, non-zero length)
    text message    = JSON control message

Relay -> Provider (JSON text events):
    session.update              session configuration
    input_audio_buffer.append   {"audio": <base64 PCM16>}
    input_audio_buffer.commit   end of turn

Usage example:

    try:
        frame = decode_audio_frame(payload, ts_ms=now_ms)
    except RelayProtocolError as e:
        log_event({"event_type": "AUDIO_FRAME_DROPPED", "error": str(e)})
        return

    message = build_append_event(frame)
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any

from audio.frames import AudioFrame, FrameSource
from config import SessionConfig
from constants import (
    AUDIO_SAMPLE_WIDTH_BYTES,
    MSG_AUDIO_APPEND,
    MSG_AUDIO_COMMIT,
    MSG_SESSION_UPDATE,
)


# -------------------------
# Exceptions
# -------------------------

class RelayProtocolError(Exception):
    """Base class for relay wire-protocol errors."""


class EmptyFrame(RelayProtocolError):
    """
    Raised when a binary audio frame carries no bytes.

    Nothing to forward; the frame is dropped.
    """


class InvalidFrameLength(RelayProtocolError):
    """
    Raised when a binary audio frame is not 16-bit aligned.

    A partial sample would corrupt every following sample on the provider
    side; the frame must be dropped whole, never partially forwarded.
    """


class MalformedControlMessage(RelayProtocolError):
    """Raised when a text message is not valid JSON."""


# -------------------------
# Control messages
# -------------------------

@dataclass(frozen=True)
class ControlMessage:
    """
    Parsed client text message.

    raw:
        Original text, forwarded verbatim when the relay passes it through.

    msg_type:
        Value of the "type" field when the JSON value is an object carrying
        a string type; None otherwise.

    body:
        Parsed JSON object (empty dict for non-object JSON values).
    """
    raw: str
    msg_type: str | None
    body: dict[str, Any]


def decode_control_message(text: str) -> ControlMessage:
    """
    Parse a client text message.

    Raises:
        MalformedControlMessage if the text is not JSON.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedControlMessage(str(e)) from e

    if isinstance(data, dict):
        msg_type = data.get("type")
        return ControlMessage(
            raw=text,
            msg_type=msg_type if isinstance(msg_type, str) else None,
            body=data,
        )

    # Valid JSON, not an object: passed through verbatim
    return ControlMessage(raw=text, msg_type=None, body={})


# -------------------------
# Audio frames
# -------------------------

def decode_audio_frame(
    payload: bytes,
    *,
    ts_ms: int,
    source: FrameSource = FrameSource.CLIENT,
) -> AudioFrame:
    """
    Validate a raw binary payload as one PCM16 audio frame.
    """
    if not payload:
        raise EmptyFrame("audio frame is empty")

    if len(payload) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        raise InvalidFrameLength(
            f"audio frame length {len(payload)} is not 16-bit aligned"
        )

    return AudioFrame(pcm_bytes=bytes(payload), ts_ms=ts_ms, source=source)


# -------------------------
# Provider events
# -------------------------

def _dumps(event: dict[str, Any]) -> str:
    return json.dumps(event, separators=(",", ":"))


def build_append_event(frame: AudioFrame) -> str | None:
    """
    Wrap one frame into an input_audio_buffer.append event string.

    Returns None when the base64 encoding is empty (nothing to append).
    """
    audio = base64.b64encode(frame.pcm_bytes).decode("ascii")
    if not audio:
        return None
    return _dumps({"type": MSG_AUDIO_APPEND, "audio": audio})


def build_commit_event() -> str:
    """End-of-turn marker for the provider's input buffer."""
    return _dumps({"type": MSG_AUDIO_COMMIT})


def build_session_update(config: SessionConfig) -> str:
    """
    Initial session configuration sent once the provider socket opens.

    turn_detection is null when VAD is disabled.
    """
    turn_detection = (
        config.turn_detection.to_wire()
        if config.turn_detection is not None
        else None
    )
    return _dumps({
        "type": MSG_SESSION_UPDATE,
        "session": {
            "model": config.model,
            "input_audio_format": config.input_audio_format,
            "input_audio_transcription": {
                "model": config.transcription_model,
                "language": config.language,
                "prompt": config.prompt,
            },
            "turn_detection": turn_detection,
        },
    })
