"""
Runtime execution context.

Provides Runtime with live access to session-owned imperative resources
needed for command execution and side effects (sockets, queue, capture).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero orchestration logic
- Zero state mutation
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Coroutine, Protocol, runtime_checkable

if TYPE_CHECKING:
    from audio.queues import PendingMessageQueue
    from orchestrator.events import Event
    from session.relay_session import RelaySession


EmitEvent = Callable[["Event"], Coroutine[Any, Any, None]]


# ---------------------------------------------------------------------
# Connection Protocols
# ---------------------------------------------------------------------

@runtime_checkable
class ProviderClientProtocol(Protocol):
    """
    Provider-side connection.

    Contract:
    - start() begins connecting in the background and returns immediately
    - Exactly one of ProviderOpened / ProviderClosed follows start()
    - send() raises if the socket is not open
    - close() is idempotent and never waits on the receive loop
    """

    @property
    def is_open(self) -> bool: ...

    def start(self) -> None: ...
    async def send(self, message: str) -> None: ...
    async def close(self) -> None: ...
    async def wait_closed(self) -> None: ...


@runtime_checkable
class ClientTransportProtocol(Protocol):
    """
    Client-side connection.

    send() is a no-op when the client is not open.
    """

    @property
    def is_open(self) -> bool: ...

    async def send(self, data: str | bytes) -> None: ...
    async def close(self) -> None: ...


# ---------------------------------------------------------------------
# Capture Protocols
# ---------------------------------------------------------------------

@runtime_checkable
class CaptureProcessProtocol(Protocol):
    """
    One capture subprocess run.

    Contract:
    - start() raises OSError if the executable cannot be spawned
    - Exactly one CaptureClosed(run_id) is emitted after a successful start()
    - stop() signals termination and returns immediately
    - wait_closed() escalates to kill after the timeout
    """

    run_id: int

    async def start(self) -> None: ...
    def stop(self) -> None: ...
    async def wait_closed(self, timeout: float | None = None) -> None: ...


class CaptureFactory(Protocol):
    def __call__(
        self, *, run_id: int, emit_event: EmitEvent
    ) -> CaptureProcessProtocol: ...


# ---------------------------------------------------------------------
# Runtime Execution Context
# ---------------------------------------------------------------------

class RuntimeExecutionContext:
    """
    Imperative execution context for Runtime.

    This object provides *live views* into session-owned resources
    so Runtime does not need to synchronize or cache anything.

    Runtime is allowed to:
    - Send on either connection
    - Read and drain the pending queue
    - Spawn and stop capture processes

    Runtime is NOT allowed to:
    - Mutate relay state directly
    - Perform routing decisions
    """

    def __init__(self, session: RelaySession) -> None:
        self.session = session

    # ----------------------------
    # Session metadata
    # ----------------------------

    @property
    def session_id(self) -> str:
        return self.session.session_id

    # ----------------------------
    # Connections
    # ----------------------------

    @property
    def provider(self) -> ProviderClientProtocol | None:
        return self.session.provider

    @property
    def client(self) -> ClientTransportProtocol:
        return self.session.client

    # ----------------------------
    # Pending queue
    # ----------------------------

    @property
    def pending(self) -> PendingMessageQueue:
        return self.session.pending

    # ----------------------------
    # Capture
    # ----------------------------

    @property
    def capture_factory(self) -> CaptureFactory | None:
        return self.session.capture_factory
