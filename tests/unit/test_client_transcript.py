# pylint: disable=missing-module-docstring,missing-function-docstring

import json

from client.mic import build_session_override
from client.transcript import TranscriptView


def _msg(**kwargs) -> str:
    return json.dumps(kwargs)


def test_deltas_build_live_line_until_completed():
    view = TranscriptView()

    assert view.handle(_msg(type="conversation.item.input_audio_transcription.delta", delta="hel")) \
        == "conversation.item.input_audio_transcription.delta"
    view.handle(_msg(type="conversation.item.input_audio_transcription.delta", delta="lo"))
    assert view.live == "hello"
    assert view.render() == "hello..."

    view.handle(_msg(type="conversation.item.input_audio_transcription.completed", transcript="Hello."))

    assert view.lines == ["Hello."]
    assert view.live == ""
    assert view.render() == "Hello."


def test_completed_without_transcript_keeps_live_text():
    view = TranscriptView()
    view.handle(_msg(type="conversation.item.input_audio_transcription.delta", delta="partial"))
    view.handle(_msg(type="conversation.item.input_audio_transcription.completed"))

    assert view.lines == ["partial"]


def test_errors_are_collected():
    view = TranscriptView()
    changed = view.handle(_msg(type="error", error={"message": "bad"}))

    assert changed == "error"
    assert view.errors == [{"type": "error", "error": {"message": "bad"}}]


def test_bytes_frames_are_decoded():
    view = TranscriptView()
    view.handle(_msg(type="conversation.item.input_audio_transcription.completed", transcript="hi").encode())

    assert view.lines == ["hi"]


def test_unknown_and_malformed_frames_are_ignored():
    view = TranscriptView()

    assert view.handle("not json") is None
    assert view.handle("[1, 2]") is None
    assert view.handle(b"\xff\xfe") is None
    assert view.handle(_msg(type="session.created")) is None
    assert view.render() == ""


def test_session_override_toggles_turn_detection():
    with_vad = build_session_override(vad=True, silence_ms=300)
    without_vad = build_session_override(vad=False, silence_ms=300)

    assert with_vad["type"] == "session.update"
    assert with_vad["session"]["turn_detection"] == {
        "type": "server_vad",
        "silence_duration_ms": 300,
    }
    assert without_vad["session"]["turn_detection"] is None
