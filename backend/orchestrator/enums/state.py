"""
Authoritative relay state enumeration.

Rules:
- This enum defines ONLY the session lifecycle states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class State(str, Enum):
    """
    Lifecycle of one relay session.

    CONNECTING:
        Provider handshake not complete; provider-bound messages are queued.

    READY:
        Session configuration sent and pending queue flushed; messages are
        forwarded immediately.

    CLOSED:
        Terminal. Both connections torn down; events are ignored.
    """

    CONNECTING = "CONNECTING"
    READY = "READY"
    CLOSED = "CLOSED"
