# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import AppConfig, CaptureConfig, SessionConfig, TurnDetection


_ENV_VARS = (
    "PORT", "HOST", "ENV", "LOG_LEVEL", "ENABLE_JSON_LOGS", "OPENAI_API_KEY",
    "OPENAI_REALTIME_MODEL", "OPENAI_REALTIME_URL", "TRANSCRIPTION_MODEL",
    "TRANSCRIPTION_LANGUAGE", "TRANSCRIPTION_PROMPT", "VAD_ENABLED",
    "VAD_THRESHOLD", "VAD_PREFIX_PADDING_MS", "VAD_SILENCE_DURATION_MS",
    "AUDIO_RATE", "FFMPEG_PATH", "SPEAKER_DEVICE", "SPEAKER_INPUT_FORMAT",
    "PENDING_QUEUE_MAX_MESSAGES", "FRONTEND_DIR",
)


@pytest.fixture(name="clean_env")
def fixture_clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# ---------------------------------------------------------------------
# AppConfig.load_from_env
# ---------------------------------------------------------------------

def test_defaults(clean_env: pytest.MonkeyPatch):  # pylint: disable=unused-argument
    config = AppConfig.load_from_env()

    assert config.port == 3001
    assert config.audio_rate == 24000
    assert config.vad_enabled is True
    assert config.openai_api_key is None
    assert config.frontend_dir is None
    assert config.pending_queue_max_messages == 4096
    assert config.ffmpeg_path == "ffmpeg"


def test_overrides(clean_env: pytest.MonkeyPatch):
    clean_env.setenv("PORT", "8080")
    clean_env.setenv("OPENAI_API_KEY", "sk-test")
    clean_env.setenv("VAD_SILENCE_DURATION_MS", "900")
    clean_env.setenv("SPEAKER_DEVICE", "Stereo Mix")
    clean_env.setenv("PENDING_QUEUE_MAX_MESSAGES", "0")

    config = AppConfig.load_from_env()

    assert config.port == 8080
    assert config.openai_api_key == "sk-test"
    assert config.vad_silence_duration_ms == 900
    assert config.speaker_device == "Stereo Mix"
    assert config.pending_queue_max_messages == 0


def test_only_literal_false_disables_vad(clean_env: pytest.MonkeyPatch):
    clean_env.setenv("VAD_ENABLED", "false")
    assert AppConfig.load_from_env().vad_enabled is False

    clean_env.setenv("VAD_ENABLED", "0")
    assert AppConfig.load_from_env().vad_enabled is True


def test_bad_numeric_value_raises(clean_env: pytest.MonkeyPatch):
    clean_env.setenv("PORT", "not-a-port")

    with pytest.raises(ValueError):
        AppConfig.load_from_env()


# ---------------------------------------------------------------------
# SessionConfig
# ---------------------------------------------------------------------

def test_session_config_from_app_config_without_vad():
    config = AppConfig(vad_enabled=False, transcription_prompt="hi", audio_rate=16000)

    session = SessionConfig.from_app_config(config)

    assert session.turn_detection is None
    assert session.prompt == "hi"
    assert session.sample_rate_hz == 16000


def test_client_override_replaces_turn_detection():
    session = SessionConfig.from_app_config(AppConfig())

    updated = session.with_client_override({
        "input_audio_format": "pcm16",
        "turn_detection": {"type": "server_vad", "silence_duration_ms": 800},
    })

    assert updated.turn_detection == TurnDetection(
        threshold=None, prefix_padding_ms=None, silence_duration_ms=800
    )
    assert updated.turn_detection.to_wire() == {
        "type": "server_vad",
        "silence_duration_ms": 800,
    }
    # Original record untouched
    assert session.turn_detection is not None
    assert session.turn_detection.silence_duration_ms == 500


def test_client_override_null_turn_detection_disables_vad():
    session = SessionConfig.from_app_config(AppConfig())

    assert session.with_client_override({"turn_detection": None}).turn_detection is None


def test_client_override_ignores_unknown_keys():
    session = SessionConfig.from_app_config(AppConfig())

    assert session.with_client_override({"voice": "alloy"}) == session


# ---------------------------------------------------------------------
# CaptureConfig
# ---------------------------------------------------------------------

def test_capture_config_from_app_config():
    config = AppConfig(
        ffmpeg_path="/usr/bin/ffmpeg",
        speaker_device="default",
        speaker_input_format="pulse",
    )

    capture = CaptureConfig.from_app_config(config)

    assert capture == CaptureConfig(
        executable="/usr/bin/ffmpeg",
        input_format="pulse",
        device="default",
        channels=1,
        sample_rate_hz=24000,
    )
