"""
Relay session container.

- Owns the imperative resources of one client connection
  (client transport, provider client, pending queue, capture factory)
- Owned and mutated by SessionGateway
- NOT a state machine
- Contains no routing logic (see orchestrator.reducer)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from audio.queues import PendingMessageQueue
from orchestrator.enums.state import State

if TYPE_CHECKING:
    from orchestrator.runtime import Runtime
    from orchestrator.runtime_context import (
        CaptureFactory,
        ClientTransportProtocol,
        ProviderClientProtocol,
    )


# ---------------------------------------------------------------------
# RelaySession
# ---------------------------------------------------------------------


@dataclass
class RelaySession:
    """Mutable runtime container for a single relay session."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    session_id: str
    client: ClientTransportProtocol
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Provider-bound buffering (used only while CONNECTING)
    # ------------------------------------------------------------------

    pending: PendingMessageQueue = field(default_factory=PendingMessageQueue)

    # ------------------------------------------------------------------
    # Attached during bootstrap
    # ------------------------------------------------------------------

    provider: ProviderClientProtocol | None = None
    capture_factory: CaptureFactory | None = None
    runtime: Runtime | None = None

    # ------------------------------------------------------------------
    # Inbound drop counters (observability only)
    # ------------------------------------------------------------------

    frames_dropped: int = 0
    messages_dropped: int = 0

    # ------------------------------------------------------------------
    # Wiring helpers (called by SessionGateway)
    # ------------------------------------------------------------------

    def attach_provider(self, provider: ProviderClientProtocol) -> None:
        """Attach the provider client. Must happen before any event dispatch."""
        self.provider = provider

    def attach_capture_factory(self, factory: CaptureFactory) -> None:
        self.capture_factory = factory

    def attach_runtime(self, runtime: Runtime) -> None:
        """
        Attach the runtime executor.

        Called by SessionGateway during session bootstrap.
        """
        self.runtime = runtime

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def ready(self) -> bool:
        """True once the provider is configured and the queue flushed."""
        return self.runtime is not None and self.runtime.state.state is State.READY

    def snapshot(self) -> dict[str, Any]:
        state = self.runtime.state if self.runtime is not None else None
        return {
            "session_id": self.session_id,
            "age_s": round(time.time() - self.created_at, 3),
            "state": state.state.value if state is not None else None,
            "capture_status": (
                state.capture_status.value if state is not None else None
            ),
            "queue": self.pending.snapshot(),
            "frames_dropped": self.frames_dropped,
            "messages_dropped": self.messages_dropped,
        }
