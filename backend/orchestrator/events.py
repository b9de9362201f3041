"""
Unified event definitions for the relay reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Capture events carry the capture run_id for stale gating.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from audio.frames import AudioFrame
from protocol.messages import ControlMessage


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Provider connection
    # ------------------------------------------------------------------
    PROVIDER_OPENED = "PROVIDER_OPENED"
    PROVIDER_MESSAGE = "PROVIDER_MESSAGE"
    PROVIDER_CLOSED = "PROVIDER_CLOSED"

    # ------------------------------------------------------------------
    # Client connection
    # ------------------------------------------------------------------
    CLIENT_AUDIO = "CLIENT_AUDIO"
    CLIENT_CONTROL = "CLIENT_CONTROL"
    CLIENT_CLOSED = "CLIENT_CLOSED"

    # ------------------------------------------------------------------
    # Capture subprocess
    # ------------------------------------------------------------------
    CAPTURE_CHUNK = "CAPTURE_CHUNK"
    CAPTURE_CLOSED = "CAPTURE_CLOSED"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    TEARDOWN_REQUESTED = "TEARDOWN_REQUESTED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


# =============================================================================
# Provider Events
# =============================================================================

@dataclass(frozen=True)
class ProviderOpened(Event):
    """Provider socket is open; handshake may proceed."""


@dataclass(frozen=True)
class ProviderMessage(Event):
    """One opaque frame received from the provider."""
    data: str | bytes


@dataclass(frozen=True)
class ProviderClosed(Event):
    """Provider connection closed, errored, or failed to open."""
    reason: str | None = None


# =============================================================================
# Client Events
# =============================================================================

@dataclass(frozen=True)
class ClientAudio(Event):
    """Validated binary audio frame from the client."""
    frame: AudioFrame


@dataclass(frozen=True)
class ClientControl(Event):
    """Parsed JSON control message from the client."""
    message: ControlMessage


@dataclass(frozen=True)
class ClientClosed(Event):
    """Client connection closed or errored."""
    reason: str | None = None


# =============================================================================
# Capture Events
# =============================================================================

@dataclass(frozen=True)
class CaptureChunk(Event):
    """Validated audio frame read from the capture subprocess."""
    run_id: int
    frame: AudioFrame


@dataclass(frozen=True)
class CaptureClosed(Event):
    """
    Capture subprocess is gone (exited, killed, or never spawned).

    returncode is None when the process could not be spawned.
    """
    run_id: int
    returncode: int | None = None
    reason: str | None = None


# =============================================================================
# Lifecycle Events
# =============================================================================

@dataclass(frozen=True)
class TeardownRequested(Event):
    """Explicit teardown (server shutdown, fatal endpoint error)."""
    reason: str | None = None
