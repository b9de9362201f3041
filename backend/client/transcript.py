"""
Transcript view over relayed provider events.

Consumes the frames the relay forwards to the client and keeps:
- one live (in-progress) line built from transcription deltas
- the finalized lines, in order
- the provider error events seen so far

Frames that are not JSON objects are ignored.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from constants import (
    MSG_ERROR,
    MSG_TRANSCRIPTION_COMPLETED,
    MSG_TRANSCRIPTION_DELTA,
)


@dataclass
class TranscriptView:
    live: str = ""
    lines: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def handle(self, raw: str | bytes) -> str | None:
        """
        Apply one relayed frame.

        Returns the event type that changed the view, or None when the
        frame was ignored.
        """
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                return None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None

        msg_type = data.get("type")

        if msg_type == MSG_TRANSCRIPTION_DELTA:
            self.live += str(data.get("delta") or "")
            return msg_type

        if msg_type == MSG_TRANSCRIPTION_COMPLETED:
            transcript = data.get("transcript")
            self.lines.append(str(transcript) if transcript is not None else self.live)
            self.live = ""
            return msg_type

        if msg_type == MSG_ERROR:
            self.errors.append(data)
            return msg_type

        return None

    def render(self) -> str:
        out = list(self.lines)
        if self.live:
            out.append(f"{self.live}...")
        return "\n".join(out)
