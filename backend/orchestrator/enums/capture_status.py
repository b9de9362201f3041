"""
Capture subprocess liveness, as seen by the reducer.

Orthogonal to the session State: capture may start and stop any number of
times while the session is CONNECTING or READY.
"""

from __future__ import annotations

from enum import Enum


class CaptureStatus(str, Enum):
    """Liveness of the session's (at most one) capture subprocess."""

    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
