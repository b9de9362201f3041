"""
Authoritative relay state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
- Imperative resources (sockets, queue, subprocess) live on RelaySession.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from config import SessionConfig
from orchestrator.enums.capture_status import CaptureStatus
from orchestrator.enums.state import State


@dataclass(frozen=True)
class RelayState:
    """Immutable snapshot of all reducer-owned session state."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    state: State = State.CONNECTING
    close_reason: str | None = None

    # ------------------------------------------------------------------
    # Session configuration
    # ------------------------------------------------------------------

    # Resolved once at session start; sent on provider open
    session_config: SessionConfig = field(default_factory=SessionConfig)

    # session_config with client session.update overrides applied
    # (the overrides themselves reach the provider verbatim)
    effective_config: SessionConfig = field(default_factory=SessionConfig)

    # ------------------------------------------------------------------
    # Capture subprocess
    # ------------------------------------------------------------------

    capture_status: CaptureStatus = CaptureStatus.NOT_STARTED

    # Monotonic; bumped on every StartCapture, never reset.
    # Only the current run's chunks and close notification are admitted.
    capture_run_id: int = 0

    # ------------------------------------------------------------------
    # Counters (observability only)
    # ------------------------------------------------------------------
    messages_queued: int = 0
    messages_forwarded: int = 0
