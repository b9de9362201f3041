"""
Runtime execution shell for a single relay session.

Responsibilities:
- Own relay state
- Call pure reducer
- Execute commands with side effects (sockets, pending queue, capture)
- Convert side-effect failures into events

Non-responsibilities:
- Routing decisions (reducer)
- Wire parsing and validation (gateway / protocol)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import TYPE_CHECKING, Deque

from constants import CAPTURE_SHUTDOWN_TIMEOUT_S
from observability.logger import log_event
from orchestrator.commands import (
    CloseClient,
    CloseProvider,
    Command,
    FlushPending,
    ForwardToProvider,
    LogEvent,
    QueueForProvider,
    ReleaseCapture,
    SendToClient,
    StartCapture,
    StopCapture,
)
from orchestrator.events import (
    CaptureClosed,
    ClientClosed,
    Event,
    EventType,
    ProviderClosed,
)
from orchestrator.reducer import reduce
from orchestrator.state_dataclass import RelayState

if TYPE_CHECKING:
    from orchestrator.runtime_context import (
        CaptureProcessProtocol,
        RuntimeExecutionContext,
    )


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class Runtime:
    """
    Runtime execution boundary for a single relay session.

    Responsibilities:
    - Own the authoritative relay state
    - Act as the universal event sink for the session
      (gateway events, provider events, capture events)
    - Invoke the pure reducer deterministically
    - Execute emitted commands with side effects

    Guarantees:
    - Reducer is always called exactly once per incoming event
    - State transitions are serialized (one event at a time, FIFO)
    - All side effects occur *after* state has been updated
    - Failures raised by side effects are fed back as events,
      processed after the current event's commands complete
    """

    def __init__(
        self,
        *,
        initial_state: RelayState,
        context: RuntimeExecutionContext,
    ) -> None:
        self._state = initial_state
        self._ctx = context
        self._lock = asyncio.Lock()
        self._deferred: Deque[Event] = deque()

        # Current capture run plus runs stopped but not yet reported closed
        self._captures: dict[int, CaptureProcessProtocol] = {}

    @property
    def state(self) -> RelayState:
        """
        Return the current immutable relay state.

        The returned object must be treated as read-only.
        """
        return self._state

    async def handle_event(self, event: Event) -> None:
        """
        Process a single event through the relay pipeline.

        Processing steps:
        1. Pass the current state and event to the pure reducer
        2. Swap in the new relay state
        3. Execute all emitted commands sequentially
        4. Repeat for any events deferred by failed side effects

        This method is the *only* entry point for events affecting
        relay state. All event sources converge here:
        - Gateway (client audio, control, disconnect)
        - Provider client (open, messages, close)
        - Capture processes (chunks, exit)

        Safe to call concurrently from any task on the event loop.
        """
        async with self._lock:
            self._deferred.append(event)
            while self._deferred:
                current = self._deferred.popleft()
                new_state, commands = reduce(self._state, current)
                self._state = new_state

                for cmd in commands:
                    await self._execute_command(cmd)

    async def shutdown(self) -> None:
        """
        Release everything the session still holds.

        Called by the gateway once the session has ended. Must not be
        called while holding the event lock (capture exit notifications
        need it).
        """
        captures = list(self._captures.values())
        for capture in captures:
            capture.stop()

        if captures:
            await asyncio.gather(
                *(c.wait_closed(CAPTURE_SHUTDOWN_TIMEOUT_S) for c in captures),
                return_exceptions=True,
            )
        self._captures.clear()

        self._ctx.pending.clear()

        provider = self._ctx.provider
        if provider is not None:
            await provider.close()
            await provider.wait_closed()

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    def _defer(self, event: Event) -> None:
        self._deferred.append(event)

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                "session_id": self._ctx.session_id,
                "pending": len(self._ctx.pending),
            })

        elif isinstance(cmd, ForwardToProvider):
            await self._send_to_provider(cmd.message)

        elif isinstance(cmd, QueueForProvider):
            if not self._ctx.pending.enqueue(cmd.message):
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "PENDING_MESSAGE_DROPPED",
                    "session_id": self._ctx.session_id,
                    "reason": "queue_full",
                    "queue": self._ctx.pending.snapshot(),
                })

        elif isinstance(cmd, FlushPending):
            messages = self._ctx.pending.drain()
            for i, message in enumerate(messages):
                if not await self._send_to_provider(message):
                    log_event({
                        "ts_ms": _now_ms(),
                        "event_type": "PENDING_FLUSH_ABORTED",
                        "session_id": self._ctx.session_id,
                        "sent": i,
                        "dropped": len(messages) - i,
                    })
                    break
            else:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "PENDING_FLUSHED",
                    "session_id": self._ctx.session_id,
                    "sent": len(messages),
                })

        elif isinstance(cmd, SendToClient):
            try:
                await self._ctx.client.send(cmd.data)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "CLIENT_SEND_FAILED",
                    "session_id": self._ctx.session_id,
                    "error": repr(exc),
                })
                self._defer(ClientClosed(
                    event_type=EventType.CLIENT_CLOSED,
                    ts_ms=_now_ms(),
                    reason="client_send_failed",
                ))

        elif isinstance(cmd, StartCapture):
            await self._start_capture(cmd.run_id)

        elif isinstance(cmd, StopCapture):
            capture = self._captures.get(cmd.run_id)
            if capture is not None:
                capture.stop()
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CAPTURE_STOP_EXECUTED",
                "session_id": self._ctx.session_id,
                "capture_run_id": cmd.run_id,
                "found": capture is not None,
            })

        elif isinstance(cmd, ReleaseCapture):
            self._captures.pop(cmd.run_id, None)

        elif isinstance(cmd, CloseProvider):
            provider = self._ctx.provider
            if provider is not None:
                await provider.close()

        elif isinstance(cmd, CloseClient):
            try:
                await self._ctx.client.close()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "CLIENT_CLOSE_FAILED",
                    "session_id": self._ctx.session_id,
                    "reason": cmd.reason,
                    "error": repr(exc),
                })

        else:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "UNKNOWN_COMMAND",
                "session_id": self._ctx.session_id,
                "command_type": getattr(cmd, "command_type", None),
            })

    async def _send_to_provider(self, message: str) -> bool:
        """
        Send one message; on failure defer a ProviderClosed.

        Returns:
            True if the provider accepted the message.
        """
        provider = self._ctx.provider
        if provider is None:
            self._defer(ProviderClosed(
                event_type=EventType.PROVIDER_CLOSED,
                ts_ms=_now_ms(),
                reason="provider_missing",
            ))
            return False

        try:
            await provider.send(message)
            return True
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "PROVIDER_SEND_FAILED",
                "session_id": self._ctx.session_id,
                "error": repr(exc),
            })
            self._defer(ProviderClosed(
                event_type=EventType.PROVIDER_CLOSED,
                ts_ms=_now_ms(),
                reason="provider_send_failed",
            ))
            return False

    async def _start_capture(self, run_id: int) -> None:
        factory = self._ctx.capture_factory
        if factory is None:
            self._defer(CaptureClosed(
                event_type=EventType.CAPTURE_CLOSED,
                ts_ms=_now_ms(),
                run_id=run_id,
                reason="capture_unavailable",
            ))
            return

        capture = factory(run_id=run_id, emit_event=self.handle_event)
        try:
            await capture.start()
        except OSError as exc:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CAPTURE_SPAWN_FAILED",
                "session_id": self._ctx.session_id,
                "capture_run_id": run_id,
                "error": repr(exc),
            })
            self._defer(CaptureClosed(
                event_type=EventType.CAPTURE_CLOSED,
                ts_ms=_now_ms(),
                run_id=run_id,
                reason="spawn_failed",
            ))
            return

        self._captures[run_id] = capture
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CAPTURE_START_EXECUTED",
            "session_id": self._ctx.session_id,
            "capture_run_id": run_id,
        })

