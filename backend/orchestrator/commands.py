"""
Side-effect command definitions for the relay.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging and runtime dispatch.
    """

    # Provider
    FORWARD_TO_PROVIDER = "FORWARD_TO_PROVIDER"
    QUEUE_FOR_PROVIDER = "QUEUE_FOR_PROVIDER"
    FLUSH_PENDING = "FLUSH_PENDING"
    CLOSE_PROVIDER = "CLOSE_PROVIDER"

    # Client / transport
    SEND_TO_CLIENT = "SEND_TO_CLIENT"
    CLOSE_CLIENT = "CLOSE_CLIENT"

    # Capture subprocess
    START_CAPTURE = "START_CAPTURE"
    STOP_CAPTURE = "STOP_CAPTURE"
    RELEASE_CAPTURE = "RELEASE_CAPTURE"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Provider Commands
# =============================================================================

@dataclass(frozen=True)
class ForwardToProvider(Command):
    """Send an already-encoded message to the open provider socket."""
    message: str
    command_type: CommandType = CommandType.FORWARD_TO_PROVIDER


@dataclass(frozen=True)
class QueueForProvider(Command):
    """Append an already-encoded message to the pending queue."""
    message: str
    command_type: CommandType = CommandType.QUEUE_FOR_PROVIDER


@dataclass(frozen=True)
class FlushPending(Command):
    """Send every pending message to the provider in FIFO order."""
    command_type: CommandType = CommandType.FLUSH_PENDING


@dataclass(frozen=True)
class CloseProvider(Command):
    """Close the provider connection (idempotent)."""
    reason: str | None = None
    command_type: CommandType = CommandType.CLOSE_PROVIDER


# =============================================================================
# Client Commands
# =============================================================================

@dataclass(frozen=True)
class SendToClient(Command):
    """
    Relay one provider frame to the client, unmodified.

    Silently dropped by the transport if the client is not open.
    """
    data: str | bytes
    command_type: CommandType = CommandType.SEND_TO_CLIENT


@dataclass(frozen=True)
class CloseClient(Command):
    """Close the client connection (idempotent)."""
    reason: str | None = None
    command_type: CommandType = CommandType.CLOSE_CLIENT


# =============================================================================
# Capture Commands
# =============================================================================

@dataclass(frozen=True)
class StartCapture(Command):
    """Spawn the capture subprocess for the given capture run."""
    run_id: int
    command_type: CommandType = CommandType.START_CAPTURE


@dataclass(frozen=True)
class StopCapture(Command):
    """Signal the capture subprocess to terminate; never blocks on exit."""
    run_id: int
    command_type: CommandType = CommandType.STOP_CAPTURE


@dataclass(frozen=True)
class ReleaseCapture(Command):
    """Forget a capture subprocess that has reported closure."""
    run_id: int
    command_type: CommandType = CommandType.RELEASE_CAPTURE


# =============================================================================
# Observability
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Structured decision log line (enriched with session_id at execution)."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
