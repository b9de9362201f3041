# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import base64
import json
from typing import Any

from websockets.protocol import State as ConnectionState

from adapters.provider.realtime import RealtimeProviderClient
from audio.frames import AudioFrame, FrameSource
from config import AppConfig
from orchestrator.enums.capture_status import CaptureStatus
from orchestrator.enums.state import State
from orchestrator.events import (
    CaptureChunk,
    CaptureClosed,
    EventType,
    ProviderClosed,
    ProviderMessage,
    ProviderOpened,
)
from session.gateway import SessionGateway


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeClient:
    def __init__(self) -> None:
        self.is_open = True
        self.sent: list[str | bytes] = []
        self.close_calls = 0

    async def send(self, data: str | bytes) -> None:
        if self.is_open:
            self.sent.append(data)

    async def close(self) -> None:
        self.close_calls += 1
        self.is_open = False


class FakeProvider:
    def __init__(self, *, emit_event: Any, fail_send: bool = False) -> None:
        self._emit = emit_event
        self.fail_send = fail_send
        self.is_open = False
        self.started = False
        self.closed = False
        self.sent: list[str] = []

    def start(self) -> None:
        self.started = True

    async def open(self) -> None:
        self.is_open = True
        await self._emit(ProviderOpened(event_type=EventType.PROVIDER_OPENED, ts_ms=1))

    async def deliver(self, data: str) -> None:
        await self._emit(
            ProviderMessage(event_type=EventType.PROVIDER_MESSAGE, ts_ms=1, data=data)
        )

    async def drop(self) -> None:
        self.is_open = False
        await self._emit(
            ProviderClosed(event_type=EventType.PROVIDER_CLOSED, ts_ms=1, reason="gone")
        )

    async def send(self, message: str) -> None:
        if not self.is_open or self.fail_send:
            raise ConnectionError("provider down")
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self.is_open = False

    async def wait_closed(self) -> None:
        return None

    def sent_json(self) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self.sent]

    def sent_types(self) -> list[str]:
        return [m.get("type") for m in self.sent_json() if isinstance(m, dict)]


class FakeCapture:
    def __init__(self, *, run_id: int, emit_event: Any, fail: bool = False) -> None:
        self.run_id = run_id
        self._emit = emit_event
        self.fail = fail
        self.started = False
        self.stopped = False
        self.closed_emitted = False
        self._exit_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self.fail:
            raise FileNotFoundError("ffmpeg")
        self.started = True

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        self._exit_task = asyncio.create_task(self._exit())

    async def _exit(self) -> None:
        await self._emit(
            CaptureClosed(
                event_type=EventType.CAPTURE_CLOSED,
                ts_ms=1,
                run_id=self.run_id,
                returncode=-15,
                reason="stopped",
            )
        )
        self.closed_emitted = True

    async def wait_closed(self, timeout: float | None = None) -> None:  # pylint: disable=unused-argument
        if self._exit_task is not None:
            await self._exit_task

    async def push(self, pcm: bytes) -> None:
        await self._emit(
            CaptureChunk(
                event_type=EventType.CAPTURE_CHUNK,
                ts_ms=1,
                run_id=self.run_id,
                frame=AudioFrame(pcm_bytes=pcm, ts_ms=1, source=FrameSource.CAPTURE),
            )
        )


class Harness:
    def __init__(
        self,
        *,
        fail_send: bool = False,
        fail_capture: bool = False,
        **config: Any,
    ) -> None:
        self.client = FakeClient()
        self.providers: list[FakeProvider] = []
        self.captures: list[FakeCapture] = []

        def provider_factory(_config: AppConfig, *, emit_event: Any, session_id: str) -> FakeProvider:  # pylint: disable=unused-argument
            provider = FakeProvider(emit_event=emit_event, fail_send=fail_send)
            self.providers.append(provider)
            return provider

        def capture_factory(*, run_id: int, emit_event: Any) -> FakeCapture:
            capture = FakeCapture(run_id=run_id, emit_event=emit_event, fail=fail_capture)
            self.captures.append(capture)
            return capture

        self.gateway = SessionGateway(
            config=AppConfig(openai_api_key="sk-test", **config),
            client=self.client,
            provider_factory=provider_factory,
            capture_factory=capture_factory,
        )

    @property
    def provider(self) -> FakeProvider:
        return self.providers[0]

    @property
    def state(self) -> Any:
        assert self.gateway.session is not None
        assert self.gateway.session.runtime is not None
        return self.gateway.session.runtime.state

    async def text(self, payload: Any) -> None:
        await self.gateway.on_json_message(json.dumps(payload))


# ---------------------------------------------------------------------
# Buffering while connecting
# ---------------------------------------------------------------------

def test_connect_starts_provider_and_accepts_input_immediately():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()

        assert h.provider.started
        assert h.state.state is State.CONNECTING
        assert h.gateway.session is not None
        assert not h.gateway.session.ready

    asyncio.run(scenario())


def test_audio_before_ready_is_delivered_once_after_open():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        pcm = bytes(range(256)) * 16  # 4096 bytes

        await h.gateway.on_binary_message(pcm)
        assert not h.provider.sent

        await h.provider.open()

        messages = h.provider.sent_json()
        assert messages[0]["type"] == "session.update"
        appends = [m for m in messages if m["type"] == "input_audio_buffer.append"]
        assert len(appends) == 1
        assert base64.b64decode(appends[0]["audio"]) == pcm
        assert h.gateway.session is not None
        assert h.gateway.session.ready
        assert len(h.gateway.session.pending) == 0

    asyncio.run(scenario())


def test_pending_flush_preserves_arrival_order():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()

        await h.gateway.on_binary_message(b"\x01\x00")
        await h.text({"type": "session.update", "session": {"turn_detection": None}})
        await h.gateway.on_binary_message(b"\x02\x00")
        await h.text({"type": "input_audio_buffer.commit"})
        await h.provider.open()
        await h.gateway.on_binary_message(b"\x03\x00")

        assert h.provider.sent_types() == [
            "session.update",
            "input_audio_buffer.append",
            "session.update",
            "input_audio_buffer.append",
            "input_audio_buffer.commit",
            "input_audio_buffer.append",
        ]
        audio = [
            base64.b64decode(m["audio"])
            for m in h.provider.sent_json()
            if m["type"] == "input_audio_buffer.append"
        ]
        assert audio == [b"\x01\x00", b"\x02\x00", b"\x03\x00"]

        # Client override reaches the provider verbatim
        assert h.provider.sent_json()[2] == {
            "type": "session.update",
            "session": {"turn_detection": None},
        }

    asyncio.run(scenario())


def test_pending_queue_bound_drops_newest():
    async def scenario() -> None:
        h = Harness(pending_queue_max_messages=2)
        await h.gateway.on_ws_connect()

        for i in range(1, 5):
            await h.gateway.on_binary_message(bytes([i, 0]))
        await h.provider.open()

        audio = [
            base64.b64decode(m["audio"])
            for m in h.provider.sent_json()
            if m["type"] == "input_audio_buffer.append"
        ]
        assert audio == [b"\x01\x00", b"\x02\x00"]

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Malformed client input
# ---------------------------------------------------------------------

def test_odd_length_frame_is_dropped_without_touching_queue():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        assert h.gateway.session is not None

        await h.gateway.on_binary_message(b"\x00" * 4095)
        await h.gateway.on_binary_message(b"")

        assert len(h.gateway.session.pending) == 0
        assert h.gateway.session.frames_dropped == 2

        await h.provider.open()
        assert h.provider.sent_types() == ["session.update"]
        assert h.client.is_open

    asyncio.run(scenario())


def test_malformed_json_is_dropped_and_session_continues():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        await h.provider.open()

        await h.gateway.on_json_message("{nope")
        await h.gateway.on_binary_message(b"\x01\x00")

        assert h.provider.sent_types() == ["session.update", "input_audio_buffer.append"]
        assert h.state.state is State.READY

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Provider -> client
# ---------------------------------------------------------------------

def test_provider_messages_reach_client_unmodified():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        await h.provider.open()
        raw = '{"type":"conversation.item.input_audio_transcription.completed","transcript":"hi"}'

        await h.provider.deliver(raw)

        assert h.client.sent == [raw]

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Capture control
# ---------------------------------------------------------------------

def test_capture_stop_without_start_sends_exactly_one_commit():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        await h.provider.open()

        await h.text({"type": "speaker.capture.stop"})

        assert h.provider.sent[1:] == ['{"type":"input_audio_buffer.commit"}']
        assert not h.captures

    asyncio.run(scenario())


def test_double_capture_start_spawns_once():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        await h.provider.open()

        await h.text({"type": "speaker.capture.start"})
        await h.text({"type": "speaker.capture.start"})

        assert len(h.captures) == 1
        assert h.captures[0].started
        # Relay-handled messages never reach the provider
        assert h.provider.sent_types() == ["session.update"]

    asyncio.run(scenario())


def test_capture_audio_is_forwarded_as_append_events():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        await h.provider.open()
        await h.text({"type": "speaker.capture.start"})

        await h.captures[0].push(b"\x10\x00\x20\x00")

        append = h.provider.sent_json()[-1]
        assert append["type"] == "input_audio_buffer.append"
        assert base64.b64decode(append["audio"]) == b"\x10\x00\x20\x00"

    asyncio.run(scenario())


def test_capture_stop_then_restart_uses_new_run():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        await h.provider.open()

        await h.text({"type": "speaker.capture.start"})
        await h.text({"type": "speaker.capture.stop"})
        first = h.captures[0]
        await first.wait_closed()

        await h.text({"type": "speaker.capture.start"})
        assert len(h.captures) == 2
        assert h.captures[1].run_id == 2

        # Late chunks from the first run are ignored
        sent_before = len(h.provider.sent)
        await first.push(b"\x00\x00")
        assert len(h.provider.sent) == sent_before

        assert h.provider.sent_types().count("input_audio_buffer.commit") == 1

    asyncio.run(scenario())


def test_capture_spawn_failure_keeps_session_alive():
    async def scenario() -> None:
        h = Harness(fail_capture=True)
        await h.gateway.on_ws_connect()
        await h.provider.open()

        await h.text({"type": "speaker.capture.start"})

        assert h.state.capture_status is CaptureStatus.STOPPED
        assert h.state.state is State.READY
        assert h.client.is_open

        # A retry is allowed
        await h.text({"type": "speaker.capture.start"})
        assert len(h.captures) == 2

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------

def test_client_close_closes_provider_and_stops_capture():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        await h.provider.open()
        await h.text({"type": "speaker.capture.start"})
        capture = h.captures[0]

        await h.gateway.on_ws_disconnect(reason="client_disconnect")
        await h.gateway.shutdown()

        assert h.provider.closed
        assert capture.stopped
        assert capture.closed_emitted
        assert h.state.state is State.CLOSED
        assert h.state.close_reason == "client_disconnect"

    asyncio.run(scenario())


def test_provider_close_closes_client():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        await h.provider.open()

        await h.provider.drop()

        assert h.client.close_calls == 1
        assert not h.client.is_open
        assert h.state.state is State.CLOSED

        # Client disconnect afterwards is a no-op
        await h.gateway.on_ws_disconnect(reason="client_disconnect")
        await h.gateway.shutdown()
        assert h.client.close_calls == 1

    asyncio.run(scenario())


def test_provider_connect_failure_closes_client_and_discards_queue():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        await h.gateway.on_binary_message(b"\x01\x00")

        await h.provider.drop()
        await h.gateway.shutdown()

        assert not h.client.is_open
        assert not h.provider.sent
        assert h.gateway.session is not None
        assert len(h.gateway.session.pending) == 0

    asyncio.run(scenario())


def test_provider_send_failure_tears_session_down():
    async def scenario() -> None:
        h = Harness(fail_send=True)
        await h.gateway.on_ws_connect()

        await h.provider.open()

        assert h.state.state is State.CLOSED
        assert h.state.close_reason == "provider_send_failed"
        assert not h.client.is_open

    asyncio.run(scenario())


def test_client_close_failure_does_not_escape_teardown():
    async def scenario() -> None:
        h = Harness()
        await h.gateway.on_ws_connect()
        await h.provider.open()

        async def broken_close() -> None:
            raise RuntimeError("peer vanished")

        h.client.close = broken_close  # type: ignore[method-assign]

        await h.provider.drop()

        assert h.state.state is State.CLOSED
        assert h.provider.closed

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Teardown through the realtime provider client
# ---------------------------------------------------------------------

class SlowCloseClient(FakeClient):
    """Client whose close() suspends, like a starlette WebSocket."""

    async def close(self) -> None:
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await super().close()


class ProviderConnection:
    def __init__(self, incoming: list[str | None], *, fail_send: bool = False) -> None:
        self.state = ConnectionState.OPEN
        self.close_code: int | None = None
        self.fail_send = fail_send
        self.sent: list[str] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()
        for item in incoming:
            self._incoming.put_nowait(item)

    async def send(self, message: str) -> None:
        if self.fail_send:
            raise ConnectionError("provider went away")
        self.sent.append(message)

    async def close(self) -> None:
        await asyncio.sleep(0)
        self.state = ConnectionState.CLOSED
        self.close_code = 1000
        self.closed = True
        await self._incoming.put(None)

    def __aiter__(self) -> "ProviderConnection":
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            self.state = ConnectionState.CLOSED
            raise StopAsyncIteration
        return item


class RealtimeHarness:
    def __init__(
        self,
        *,
        connection: ProviderConnection | None = None,
        connect_error: Exception | None = None,
    ) -> None:
        self.client = SlowCloseClient()
        self.connection = connection
        self.providers: list[RealtimeProviderClient] = []

        async def connect(url: str, **kwargs: Any) -> ProviderConnection:  # pylint: disable=unused-argument
            if connect_error is not None:
                raise connect_error
            assert connection is not None
            return connection

        def provider_factory(config: AppConfig, *, emit_event: Any, session_id: str) -> RealtimeProviderClient:
            provider = RealtimeProviderClient(
                emit_event=emit_event,
                api_key=config.openai_api_key,
                session_id=session_id,
                connect=connect,
            )
            self.providers.append(provider)
            return provider

        self.gateway = SessionGateway(
            config=AppConfig(openai_api_key="sk-test"),
            client=self.client,
            provider_factory=provider_factory,
        )

    @property
    def provider(self) -> RealtimeProviderClient:
        return self.providers[0]

    @property
    def state(self) -> Any:
        assert self.gateway.session is not None
        assert self.gateway.session.runtime is not None
        return self.gateway.session.runtime.state


def test_realtime_connect_failure_closes_client():
    async def scenario() -> RealtimeHarness:
        h = RealtimeHarness(connect_error=OSError("HTTP 401"))
        await h.gateway.on_ws_connect()
        await h.gateway.on_binary_message(b"\x01\x00")

        await h.provider.wait_closed()
        return h

    h = asyncio.run(scenario())

    assert h.state.state is State.CLOSED
    assert h.state.close_reason.startswith("provider_connect_failed")
    assert h.client.close_calls == 1
    assert not h.client.is_open


def test_realtime_send_failure_after_open_closes_both_sides():
    async def scenario() -> RealtimeHarness:
        conn = ProviderConnection([], fail_send=True)
        h = RealtimeHarness(connection=conn)
        await h.gateway.on_ws_connect()
        await h.gateway.on_binary_message(b"\x01\x00")

        await h.provider.wait_closed()
        await h.gateway.shutdown()
        return h

    h = asyncio.run(scenario())

    assert h.state.state is State.CLOSED
    assert h.state.close_reason == "provider_send_failed"
    assert h.connection is not None and h.connection.closed
    assert h.client.close_calls == 1
    assert not h.provider.is_open


def test_realtime_provider_hang_up_closes_client_after_relaying():
    raw = '{"type":"conversation.item.input_audio_transcription.completed","transcript":"hi"}'

    async def scenario() -> RealtimeHarness:
        h = RealtimeHarness(connection=ProviderConnection([raw, None]))
        await h.gateway.on_ws_connect()

        await h.provider.wait_closed()
        await h.gateway.shutdown()
        return h

    h = asyncio.run(scenario())

    assert h.client.sent == [raw]
    assert h.client.close_calls == 1
    assert h.state.state is State.CLOSED
    assert h.state.close_reason.startswith("provider_closed")
    assert h.connection is not None
    assert json.loads(h.connection.sent[0])["type"] == "session.update"
