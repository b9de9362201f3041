"""
JSONL event logger for relay sessions.

Every relay decision is a single JSON object on its own line:

    {"ts_ms":...,"event_type":"AUDIO_FRAME_DROPPED","session_id":"sess_...",...}

Rules:
- One line per call, flushed immediately
- log_event() never raises; a session must not die because of a log line
- Output can be switched off (ENABLE_JSON_LOGS=0) or redirected (tests)
"""

from __future__ import annotations

import json
import sys
from enum import Enum
from typing import Any, Callable, Mapping, TextIO


# ------------------------------------------------------------------
# Output sink (patchable in tests)
# ------------------------------------------------------------------

_stream: TextIO | None = None


def _write_line(line: str) -> None:
    out = _stream if _stream is not None else sys.stdout
    out.write(line + "\n")
    out.flush()


_print: Callable[[str], None] = _write_line

_enabled: bool = True


def configure_logging(*, enabled: bool, stream: TextIO | None = None) -> None:
    """
    Process-wide logger setup, called once by the app factory.

    enabled:
        False silences log_event() entirely (ENABLE_JSON_LOGS=0).
    stream:
        Optional text stream to write to instead of stdout.
    """
    global _enabled, _stream  # pylint: disable=global-statement
    _enabled = enabled
    _stream = stream


def _json_default(value: Any) -> Any:
    # Values that show up in relay log records but are not JSON types
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return {"bytes": len(value)}
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL record.

    The caller supplies the whole record (ts_ms, event_type, session_id
    and whatever else describes the decision). Raw audio is never
    written; bytes values are reduced to their length.
    """
    if not _enabled:
        return

    try:
        line = json.dumps(
            event,
            ensure_ascii=False,
            separators=(",", ":"),
            default=_json_default,
        )
    except (TypeError, ValueError) as e:
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
