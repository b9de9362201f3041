"""
Relay constants
---------------
Single source of truth for protocol names and behavioral defaults.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific overrides live in config.py, not here.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Audio Format (PCM16 mono @ 24kHz)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 24_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_INPUT_FORMAT: Final[str] = "pcm16"

PCM16_MAX: Final[int] = 0x7FFF
PCM16_MIN_MAGNITUDE: Final[int] = 0x8000

# Browser / sound card capture is typically 48kHz; framer resamples down
DEVICE_CAPTURE_SAMPLE_RATE_HZ_DEFAULT: Final[int] = 48_000
DEVICE_CAPTURE_BLOCK_SIZE: Final[int] = 4096

# =============================================================================
# Provider (realtime transcription service)
# =============================================================================

PROVIDER_URL_DEFAULT: Final[str] = "wss://api.openai.com/v1/realtime"
PROVIDER_REALTIME_MODEL_DEFAULT: Final[str] = "gpt-4o-transcribe"
PROVIDER_BETA_HEADER: Final[str] = "realtime=v1"
PROVIDER_MAX_MESSAGE_BYTES: Final[int] = 2**22
PROVIDER_CLOSE_TIMEOUT_S: Final[float] = 2.0

TRANSCRIPTION_MODEL_DEFAULT: Final[str] = "gpt-4o-transcribe"
TRANSCRIPTION_LANGUAGE_DEFAULT: Final[str] = "en"

VAD_TYPE: Final[str] = "server_vad"
VAD_THRESHOLD_DEFAULT: Final[float] = 0.5
VAD_PREFIX_PADDING_MS_DEFAULT: Final[int] = 300
VAD_SILENCE_DURATION_MS_DEFAULT: Final[int] = 500

# =============================================================================
# Wire message types
# =============================================================================

# Relay -> provider
MSG_SESSION_UPDATE: Final[str] = "session.update"
MSG_AUDIO_APPEND: Final[str] = "input_audio_buffer.append"
MSG_AUDIO_COMMIT: Final[str] = "input_audio_buffer.commit"

# Client -> relay, consumed by the relay itself
MSG_CAPTURE_START: Final[str] = "speaker.capture.start"
MSG_CAPTURE_STOP: Final[str] = "speaker.capture.stop"

# Provider -> client (interpreted by the client only)
MSG_TRANSCRIPTION_DELTA: Final[str] = "conversation.item.input_audio_transcription.delta"
MSG_TRANSCRIPTION_COMPLETED: Final[str] = (
    "conversation.item.input_audio_transcription.completed"
)
MSG_ERROR: Final[str] = "error"

# =============================================================================
# Pending queue (provider handshake window)
# =============================================================================

# 0 = unbounded
PENDING_QUEUE_MAX_MESSAGES_DEFAULT: Final[int] = 4096

# =============================================================================
# Capture subprocess
# =============================================================================

CAPTURE_EXECUTABLE_DEFAULT: Final[str] = "ffmpeg"
CAPTURE_INPUT_FORMAT_DEFAULT: Final[str] = "dshow"
CAPTURE_DEVICE_DEFAULT: Final[str] = "virtual-audio-capturer"
CAPTURE_READ_CHUNK_BYTES: Final[int] = 4096
CAPTURE_CHANNEL_MAX_CHUNKS: Final[int] = 64
CAPTURE_STREAM_LIMIT_BYTES: Final[int] = 1024 * 1024
CAPTURE_SHUTDOWN_TIMEOUT_S: Final[float] = 5.0

# =============================================================================
# Server
# =============================================================================

SERVER_HOST_DEFAULT: Final[str] = "0.0.0.0"
SERVER_PORT_DEFAULT: Final[int] = 3001
CLIENT_WS_PATH: Final[str] = "/ws"

LOG_PAYLOAD_PREVIEW_CHARS: Final[int] = 100
