"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide typed, immutable config objects
- Derive per-session transcription parameters

Non-responsibilities:
- No relay logic
- No protocol constants (see constants.py)
- No runtime mutation (overrides produce new objects)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Mapping

from constants import (
    AUDIO_CHANNELS,
    AUDIO_INPUT_FORMAT,
    AUDIO_SAMPLE_RATE_HZ,
    CAPTURE_DEVICE_DEFAULT,
    CAPTURE_EXECUTABLE_DEFAULT,
    CAPTURE_INPUT_FORMAT_DEFAULT,
    PENDING_QUEUE_MAX_MESSAGES_DEFAULT,
    PROVIDER_REALTIME_MODEL_DEFAULT,
    PROVIDER_URL_DEFAULT,
    SERVER_HOST_DEFAULT,
    SERVER_PORT_DEFAULT,
    TRANSCRIPTION_LANGUAGE_DEFAULT,
    TRANSCRIPTION_MODEL_DEFAULT,
    VAD_PREFIX_PADDING_MS_DEFAULT,
    VAD_SILENCE_DURATION_MS_DEFAULT,
    VAD_THRESHOLD_DEFAULT,
    VAD_TYPE,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the app factory and every SessionGateway.
    """

    # ------------------------------------------------------------------
    # Environment / server
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"
    host: str = SERVER_HOST_DEFAULT
    port: int = SERVER_PORT_DEFAULT
    frontend_dir: str | None = None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Provider
    # ------------------------------------------------------------------

    openai_api_key: str | None = None
    realtime_url: str = PROVIDER_URL_DEFAULT
    realtime_model: str = PROVIDER_REALTIME_MODEL_DEFAULT

    # ------------------------------------------------------------------
    # Transcription
    # ------------------------------------------------------------------

    transcription_model: str = TRANSCRIPTION_MODEL_DEFAULT
    transcription_language: str = TRANSCRIPTION_LANGUAGE_DEFAULT
    transcription_prompt: str = ""

    vad_enabled: bool = True
    vad_threshold: float = VAD_THRESHOLD_DEFAULT
    vad_prefix_padding_ms: int = VAD_PREFIX_PADDING_MS_DEFAULT
    vad_silence_duration_ms: int = VAD_SILENCE_DURATION_MS_DEFAULT

    audio_rate: int = AUDIO_SAMPLE_RATE_HZ

    # ------------------------------------------------------------------
    # Speaker capture subprocess
    # ------------------------------------------------------------------

    ffmpeg_path: str = CAPTURE_EXECUTABLE_DEFAULT
    speaker_device: str = CAPTURE_DEVICE_DEFAULT
    speaker_input_format: str = CAPTURE_INPUT_FORMAT_DEFAULT

    # ------------------------------------------------------------------
    # Backpressure
    # ------------------------------------------------------------------

    pending_queue_max_messages: int = PENDING_QUEUE_MAX_MESSAGES_DEFAULT

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            host=os.environ.get("HOST", SERVER_HOST_DEFAULT),
            port=int(os.environ.get("PORT", SERVER_PORT_DEFAULT)),
            frontend_dir=os.environ.get("FRONTEND_DIR") or None,

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            realtime_url=os.environ.get("OPENAI_REALTIME_URL", PROVIDER_URL_DEFAULT),
            realtime_model=os.environ.get(
                "OPENAI_REALTIME_MODEL", PROVIDER_REALTIME_MODEL_DEFAULT
            ),

            transcription_model=os.environ.get(
                "TRANSCRIPTION_MODEL", TRANSCRIPTION_MODEL_DEFAULT
            ),
            transcription_language=os.environ.get(
                "TRANSCRIPTION_LANGUAGE", TRANSCRIPTION_LANGUAGE_DEFAULT
            ),
            transcription_prompt=os.environ.get("TRANSCRIPTION_PROMPT", ""),

            # Only the literal "false" disables VAD
            vad_enabled=os.environ.get("VAD_ENABLED") != "false",
            vad_threshold=float(os.environ.get("VAD_THRESHOLD", VAD_THRESHOLD_DEFAULT)),
            vad_prefix_padding_ms=int(
                os.environ.get("VAD_PREFIX_PADDING_MS", VAD_PREFIX_PADDING_MS_DEFAULT)
            ),
            vad_silence_duration_ms=int(
                os.environ.get("VAD_SILENCE_DURATION_MS", VAD_SILENCE_DURATION_MS_DEFAULT)
            ),

            audio_rate=int(os.environ.get("AUDIO_RATE", AUDIO_SAMPLE_RATE_HZ)),

            ffmpeg_path=os.environ.get("FFMPEG_PATH", CAPTURE_EXECUTABLE_DEFAULT),
            speaker_device=os.environ.get("SPEAKER_DEVICE", CAPTURE_DEVICE_DEFAULT),
            speaker_input_format=os.environ.get(
                "SPEAKER_INPUT_FORMAT", CAPTURE_INPUT_FORMAT_DEFAULT
            ),

            pending_queue_max_messages=int(
                os.environ.get(
                    "PENDING_QUEUE_MAX_MESSAGES", PENDING_QUEUE_MAX_MESSAGES_DEFAULT
                )
            ),
        )


# ---------------------------------------------------------------------
# Per-session transcription parameters
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class TurnDetection:
    """Server-side VAD parameters. Absent (None) when VAD is disabled."""

    type: str = VAD_TYPE
    threshold: float | None = VAD_THRESHOLD_DEFAULT
    prefix_padding_ms: int | None = VAD_PREFIX_PADDING_MS_DEFAULT
    silence_duration_ms: int | None = VAD_SILENCE_DURATION_MS_DEFAULT

    def to_wire(self) -> dict[str, Any]:
        """Provider representation; unset fields are omitted."""
        out: dict[str, Any] = {"type": self.type}
        if self.threshold is not None:
            out["threshold"] = self.threshold
        if self.prefix_padding_ms is not None:
            out["prefix_padding_ms"] = self.prefix_padding_ms
        if self.silence_duration_ms is not None:
            out["silence_duration_ms"] = self.silence_duration_ms
        return out


@dataclass(frozen=True)
class SessionConfig:
    """
    Transcription parameters for one relay session.

    Resolved once at session start from AppConfig; a client session.update
    produces a new record via with_client_override().
    """

    model: str = TRANSCRIPTION_MODEL_DEFAULT
    transcription_model: str = TRANSCRIPTION_MODEL_DEFAULT
    language: str = TRANSCRIPTION_LANGUAGE_DEFAULT
    prompt: str = ""
    input_audio_format: str = AUDIO_INPUT_FORMAT
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
    turn_detection: TurnDetection | None = TurnDetection()

    @staticmethod
    def from_app_config(config: AppConfig) -> SessionConfig:
        turn_detection = (
            TurnDetection(
                threshold=config.vad_threshold,
                prefix_padding_ms=config.vad_prefix_padding_ms,
                silence_duration_ms=config.vad_silence_duration_ms,
            )
            if config.vad_enabled
            else None
        )
        return SessionConfig(
            model=config.transcription_model,
            transcription_model=config.transcription_model,
            language=config.transcription_language,
            prompt=config.transcription_prompt,
            sample_rate_hz=config.audio_rate,
            turn_detection=turn_detection,
        )

    def with_client_override(self, session: Mapping[str, Any]) -> SessionConfig:
        """
        Merge a client-supplied session.update body.

        Recognized keys: input_audio_format, turn_detection (dict or None).
        Unknown keys are ignored here; the raw message is still forwarded
        verbatim to the provider by the relay.
        """
        updated = self

        fmt = session.get("input_audio_format")
        if isinstance(fmt, str):
            updated = replace(updated, input_audio_format=fmt)

        if "turn_detection" in session:
            td = session["turn_detection"]
            if td is None:
                updated = replace(updated, turn_detection=None)
            elif isinstance(td, Mapping):
                # Client overrides typically carry silence_duration_ms only
                updated = replace(
                    updated,
                    turn_detection=TurnDetection(
                        type=str(td.get("type", VAD_TYPE)),
                        threshold=td.get("threshold"),
                        prefix_padding_ms=td.get("prefix_padding_ms"),
                        silence_duration_ms=td.get("silence_duration_ms"),
                    ),
                )

        return updated


@dataclass(frozen=True)
class CaptureConfig:
    """Launch parameters for the speaker/loopback capture subprocess."""

    executable: str = CAPTURE_EXECUTABLE_DEFAULT
    input_format: str = CAPTURE_INPUT_FORMAT_DEFAULT
    device: str = CAPTURE_DEVICE_DEFAULT
    channels: int = AUDIO_CHANNELS
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ

    @staticmethod
    def from_app_config(config: AppConfig) -> CaptureConfig:
        return CaptureConfig(
            executable=config.ffmpeg_path,
            input_format=config.speaker_input_format,
            device=config.speaker_device,
            sample_rate_hz=config.audio_rate,
        )
