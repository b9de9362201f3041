"""
Session gateway.

Responsibilities:
- Owns RelaySession lifecycle (one gateway per client connection)
- Constructs the provider client, capture factory and runtime
- Validates inbound binary frames and parses inbound JSON text
- Converts valid client input into relay events
- Forwards events into runtime

NOT responsible for:
- Routing decisions (reducer)
- Executing side effects (runtime)
- Socket I/O (server transport / provider adapter)

Malformed client input is logged and dropped; it never reaches the
provider and never ends the session.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Callable
from uuid import uuid4

from adapters.capture.ffmpeg import make_capture_factory
from adapters.provider.realtime import RealtimeProviderClient
from audio.queues import PendingMessageQueue
from config import CaptureConfig, SessionConfig
from constants import LOG_PAYLOAD_PREVIEW_CHARS
from observability.logger import log_event
from orchestrator.events import (
    ClientAudio,
    ClientClosed,
    ClientControl,
    Event,
    EventType,
    TeardownRequested,
)
from orchestrator.runtime import Runtime
from orchestrator.runtime_context import RuntimeExecutionContext
from orchestrator.state_dataclass import RelayState
from protocol.messages import (
    RelayProtocolError,
    decode_audio_frame,
    decode_control_message,
)
from session.relay_session import RelaySession

if TYPE_CHECKING:
    from config import AppConfig
    from orchestrator.runtime_context import (
        CaptureFactory,
        ClientTransportProtocol,
        EmitEvent,
        ProviderClientProtocol,
    )

    ProviderFactory = Callable[..., ProviderClientProtocol]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


def default_provider_factory(
    config: AppConfig,
    *,
    emit_event: EmitEvent,
    session_id: str,
) -> ProviderClientProtocol:
    """Realtime provider client built from deployment config."""
    return RealtimeProviderClient(
        emit_event=emit_event,
        api_key=config.openai_api_key,
        url=config.realtime_url,
        model=config.realtime_model,
        session_id=session_id,
    )


# ------------------------------------------------------------------
# SessionGateway
# ------------------------------------------------------------------

class SessionGateway:
    """
    One gateway == one relay session.

    provider_factory / capture_factory are injectable for tests; the
    defaults talk to the realtime provider and spawn ffmpeg.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        client: ClientTransportProtocol,
        provider_factory: ProviderFactory | None = None,
        capture_factory: CaptureFactory | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._provider_factory = provider_factory or default_provider_factory
        self._capture_factory = capture_factory
        self.session: RelaySession | None = None
        self._shut_down = False

    async def on_ws_connect(self) -> None:
        """
        Called once the client connection is accepted.

        Creates the session and starts connecting to the provider in the
        background. Client input is accepted immediately (queued until
        the provider is ready).
        """
        session_id = _new_session_id()

        self.session = RelaySession(
            session_id=session_id,
            client=self._client,
            pending=PendingMessageQueue(
                max_messages=self._config.pending_queue_max_messages
            ),
        )

        session_config = SessionConfig.from_app_config(self._config)
        runtime = Runtime(
            initial_state=RelayState(
                session_config=session_config,
                effective_config=session_config,
            ),
            context=RuntimeExecutionContext(session=self.session),
        )

        provider = self._provider_factory(
            self._config,
            emit_event=runtime.handle_event,
            session_id=session_id,
        )
        self.session.attach_provider(provider)

        capture_factory = self._capture_factory or make_capture_factory(
            CaptureConfig.from_app_config(self._config),
            session_id=session_id,
        )
        self.session.attach_capture_factory(capture_factory)

        # Attach runtime (must be AFTER provider)
        self.session.attach_runtime(runtime)

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_STARTED",
            "session_id": session_id,
            "model": session_config.model,
            "vad": session_config.turn_detection is not None,
            "sample_rate_hz": session_config.sample_rate_hz,
        })

        provider.start()

    async def on_binary_message(self, payload: bytes) -> None:
        """Validate one client audio frame and hand it to the runtime."""
        if self.session is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "BINARY_WITHOUT_SESSION",
                "payload_len": len(payload),
            })
            return

        try:
            frame = decode_audio_frame(payload, ts_ms=_now_ms())
        except RelayProtocolError as e:
            self.session.frames_dropped += 1
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "AUDIO_FRAME_DROPPED",
                "session_id": self.session.session_id,
                "error": str(e),
                "payload_len": len(payload),
            })
            return

        await self._dispatch(
            ClientAudio(
                event_type=EventType.CLIENT_AUDIO,
                ts_ms=frame.ts_ms,
                frame=frame,
            )
        )

    async def on_json_message(self, payload: str) -> None:
        """Parse one client control message and hand it to the runtime."""
        if self.session is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "MESSAGE_WITHOUT_SESSION",
                "payload_preview": payload[:LOG_PAYLOAD_PREVIEW_CHARS],
            })
            return

        try:
            message = decode_control_message(payload)
        except RelayProtocolError as e:
            self.session.messages_dropped += 1
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "JSON_DECODE_ERROR",
                "session_id": self.session.session_id,
                "error": str(e),
                "payload_preview": payload[:LOG_PAYLOAD_PREVIEW_CHARS],
            })
            return

        await self._dispatch(
            ClientControl(
                event_type=EventType.CLIENT_CONTROL,
                ts_ms=_now_ms(),
                message=message,
            )
        )

    async def on_ws_disconnect(self, reason: str | None = None) -> None:
        """Called when the client connection closes or errors."""
        if self.session is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "WS_DISCONNECT_WITHOUT_SESSION",
                "reason": reason,
            })
            return

        await self._dispatch(
            ClientClosed(
                event_type=EventType.CLIENT_CLOSED,
                ts_ms=_now_ms(),
                reason=reason or "client_closed",
            )
        )

    async def request_teardown(self, reason: str) -> None:
        """Explicit teardown (fatal endpoint error, server shutdown)."""
        await self._dispatch(
            TeardownRequested(
                event_type=EventType.TEARDOWN_REQUESTED,
                ts_ms=_now_ms(),
                reason=reason,
            )
        )

    async def shutdown(self) -> None:
        """
        Release session resources. Idempotent.

        Waits (bounded) for capture processes to exit and for the
        provider's background tasks to finish.
        """
        if self.session is None or self._shut_down:
            return
        self._shut_down = True

        runtime = self.session.runtime
        if runtime is not None:
            await runtime.shutdown()

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_ENDED",
            **self.session.snapshot(),
            "close_reason": (
                runtime.state.close_reason if runtime is not None else None
            ),
        })

    # ------------------------------------------------------------------
    # Runtime dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, event: Event) -> None:
        """Forward event into runtime."""
        if self.session is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "DISPATCH_WITHOUT_SESSION",
                "dropped_event": event.event_type.value,
            })
            return

        runtime = self.session.runtime
        assert runtime is not None, "Runtime must exist before dispatch"

        await runtime.handle_event(event)
