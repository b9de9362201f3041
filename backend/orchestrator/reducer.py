"""
Pure relay reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from audio.frames import AudioFrame
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
from orchestrator.enums.capture_status import CaptureStatus
from orchestrator.enums.state import State
from orchestrator.events import (
    CaptureChunk,
    CaptureClosed,
    ClientAudio,
    ClientClosed,
    ClientControl,
    Event,
    ProviderClosed,
    ProviderMessage,
    ProviderOpened,
    TeardownRequested,
)
from orchestrator.state_dataclass import RelayState
from protocol.messages import (
    ControlMessage,
    build_append_event,
    build_commit_event,
    build_session_update,
)
from constants import MSG_CAPTURE_START, MSG_CAPTURE_STOP, MSG_SESSION_UPDATE


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: RelayState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "state": state.state.value,
            "capture_status": state.capture_status.value,
            "capture_run_id": state.capture_run_id,
            "event_type": event.event_type.value,
            "decision": decision,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(
    state: RelayState, event: Event, reason: str
) -> tuple[RelayState, tuple[Command, ...]]:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _state_changed(
    old: RelayState, new: RelayState, event: Event, source: str
) -> LogEvent:
    return _log(
        new,
        event,
        "state_changed",
        {
            "from_state": old.state.value,
            "to_state": new.state.value,
            "source": source,
        },
    )


# =============================================================================
# Provider-bound messages
# =============================================================================

def _send_to_provider(
    state: RelayState, message: str
) -> tuple[RelayState, tuple[Command, ...]]:
    """
    Single routing rule for every provider-bound message:

    READY       -> forward now
    CONNECTING  -> append to the pending queue
    CLOSED      -> dropped (callers gate CLOSED before reaching here)
    """
    if state.state is State.READY:
        return (
            replace(state, messages_forwarded=state.messages_forwarded + 1),
            (ForwardToProvider(message=message),),
        )
    if state.state is State.CONNECTING:
        return (
            replace(state, messages_queued=state.messages_queued + 1),
            (QueueForProvider(message=message),),
        )
    return state, ()


def _send_audio(
    state: RelayState, event: Event, frame: AudioFrame
) -> tuple[RelayState, tuple[Command, ...]]:
    message = build_append_event(frame)
    if message is None:
        return _ignore(state, event, "empty_audio_payload")

    new_state, cmds = _send_to_provider(state, message)

    # Forwarding is the steady-state hot path; only queueing is logged
    if new_state.state is State.CONNECTING:
        cmds = cmds + (
            _log(
                new_state,
                event,
                "audio_queued",
                {
                    "bytes": len(frame),
                    "source": frame.source.value,
                    "queued_total": new_state.messages_queued,
                },
            ),
        )
    return new_state, cmds


# =============================================================================
# Event handlers
# =============================================================================

def _on_provider_opened(
    state: RelayState, event: ProviderOpened
) -> tuple[RelayState, tuple[Command, ...]]:
    if state.state is not State.CONNECTING:
        return _ignore(state, event, "provider_already_open")

    new_state = replace(state, state=State.READY)

    # Order matters: configuration first, then everything buffered meanwhile
    return new_state, _logs_last((
        ForwardToProvider(message=build_session_update(state.session_config)),
        FlushPending(),
        _log(
            new_state,
            event,
            "session_configured",
            {
                "model": state.session_config.model,
                "vad": state.session_config.turn_detection is not None,
                "pending": state.messages_queued,
            },
        ),
        _state_changed(state, new_state, event, "provider_opened"),
    ))


def _on_provider_message(
    state: RelayState, event: ProviderMessage
) -> tuple[RelayState, tuple[Command, ...]]:
    return state, (SendToClient(data=event.data),)


def _on_capture_start(
    state: RelayState, event: ClientControl
) -> tuple[RelayState, tuple[Command, ...]]:
    if state.capture_status is CaptureStatus.RUNNING:
        return _ignore(state, event, "capture_already_running")

    run_id = state.capture_run_id + 1
    new_state = replace(
        state,
        capture_status=CaptureStatus.RUNNING,
        capture_run_id=run_id,
    )
    return new_state, (
        StartCapture(run_id=run_id),
        _log(new_state, event, "capture_started", {"run_id": run_id}),
    )


def _on_capture_stop(
    state: RelayState, event: ClientControl
) -> tuple[RelayState, tuple[Command, ...]]:
    cmds: list[Command] = []
    new_state = state

    if state.capture_status is CaptureStatus.RUNNING:
        new_state = replace(state, capture_status=CaptureStatus.STOPPED)
        cmds.append(StopCapture(run_id=state.capture_run_id))

    # Commit is sent whether or not capture was running
    new_state, send_cmds = _send_to_provider(new_state, build_commit_event())
    cmds.extend(send_cmds)
    cmds.append(
        _log(
            new_state,
            event,
            "capture_stopped",
            {
                "was_running": state.capture_status is CaptureStatus.RUNNING,
                "run_id": state.capture_run_id,
            },
        )
    )
    return new_state, tuple(cmds)


def _on_session_update(
    state: RelayState, event: ClientControl, message: ControlMessage
) -> tuple[RelayState, tuple[Command, ...]]:
    session = message.body.get("session")
    new_state = state
    if isinstance(session, dict):
        new_state = replace(
            state,
            effective_config=state.effective_config.with_client_override(session),
        )

    new_state, cmds = _send_to_provider(new_state, message.raw)
    td = new_state.effective_config.turn_detection
    return new_state, cmds + (
        _log(
            new_state,
            event,
            "session_update_forwarded",
            {
                "input_audio_format": new_state.effective_config.input_audio_format,
                "turn_detection": td.to_wire() if td is not None else None,
            },
        ),
    )


def _on_client_control(
    state: RelayState, event: ClientControl
) -> tuple[RelayState, tuple[Command, ...]]:
    message = event.message

    if message.msg_type == MSG_CAPTURE_START:
        return _on_capture_start(state, event)

    if message.msg_type == MSG_CAPTURE_STOP:
        return _on_capture_stop(state, event)

    if message.msg_type == MSG_SESSION_UPDATE:
        return _on_session_update(state, event, message)

    # Everything else is the provider's business
    new_state, cmds = _send_to_provider(state, message.raw)
    return new_state, cmds + (
        _log(new_state, event, "control_forwarded", {"type": message.msg_type}),
    )


def _on_capture_chunk(
    state: RelayState, event: CaptureChunk
) -> tuple[RelayState, tuple[Command, ...]]:
    if event.run_id != state.capture_run_id:
        return _ignore(state, event, "stale_capture_run")

    if state.capture_status is not CaptureStatus.RUNNING:
        return _ignore(state, event, "capture_not_running")

    return _send_audio(state, event, event.frame)


def _on_capture_closed(
    state: RelayState, event: CaptureClosed
) -> tuple[RelayState, tuple[Command, ...]]:
    details = {
        "run_id": event.run_id,
        "returncode": event.returncode,
        "reason": event.reason,
    }

    if (
        event.run_id == state.capture_run_id
        and state.capture_status is CaptureStatus.RUNNING
    ):
        new_state = replace(state, capture_status=CaptureStatus.STOPPED)
        return new_state, (
            ReleaseCapture(run_id=event.run_id),
            _log(new_state, event, "capture_exited", details),
        )

    return state, (
        ReleaseCapture(run_id=event.run_id),
        _log(state, event, "capture_released", details),
    )


def _teardown(
    state: RelayState, event: Event, reason: str
) -> tuple[RelayState, tuple[Command, ...]]:
    cmds: list[Command] = []

    if state.capture_status is CaptureStatus.RUNNING:
        cmds.append(StopCapture(run_id=state.capture_run_id))

    cmds.append(CloseProvider(reason=reason))
    cmds.append(CloseClient(reason=reason))

    new_state = replace(
        state,
        state=State.CLOSED,
        close_reason=reason,
        capture_status=(
            CaptureStatus.STOPPED
            if state.capture_status is CaptureStatus.RUNNING
            else state.capture_status
        ),
    )
    cmds.append(_log(new_state, event, "session_summary", {
        "reason": reason,
        "messages_queued": state.messages_queued,
        "messages_forwarded": state.messages_forwarded,
    }))
    cmds.append(_state_changed(state, new_state, event, reason))
    return new_state, _logs_last(tuple(cmds))


# =============================================================================
# Reducer
# =============================================================================

def reduce(
    state: RelayState, event: Event
) -> tuple[RelayState, tuple[Command, ...]]:
    """
    Pure reducer for the relay session state machine.

    Given the current relay state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Version-safe: ignores capture events with stale run IDs
    """

    # ------------------------------------------------------------------
    # CLOSED gating
    # ------------------------------------------------------------------
    if state.state is State.CLOSED:
        if isinstance(event, CaptureClosed):
            # Late exit of a process stopped during teardown
            return state, (ReleaseCapture(run_id=event.run_id),)
        return _ignore(state, event, "session_closed")

    # ------------------------------------------------------------------
    # Teardown triggers
    # ------------------------------------------------------------------
    if isinstance(event, ProviderClosed):
        return _teardown(state, event, event.reason or "provider_closed")

    if isinstance(event, ClientClosed):
        return _teardown(state, event, event.reason or "client_closed")

    if isinstance(event, TeardownRequested):
        return _teardown(state, event, event.reason or "teardown")

    # ------------------------------------------------------------------
    # Provider
    # ------------------------------------------------------------------
    if isinstance(event, ProviderOpened):
        return _on_provider_opened(state, event)

    if isinstance(event, ProviderMessage):
        return _on_provider_message(state, event)

    # ------------------------------------------------------------------
    # Client
    # ------------------------------------------------------------------
    if isinstance(event, ClientAudio):
        return _send_audio(state, event, event.frame)

    if isinstance(event, ClientControl):
        return _on_client_control(state, event)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------
    if isinstance(event, CaptureChunk):
        return _on_capture_chunk(state, event)

    if isinstance(event, CaptureClosed):
        return _on_capture_closed(state, event)

    return _ignore(state, event, "unhandled_event")
