"""
Session-scoped realtime transcription provider socket.

Core model:
- One provider WebSocket per client session, opened when the session starts.
- The adapter is a dumb pipe: text goes out via send(), every inbound
  frame is emitted as ProviderMessage without inspection.
- Lifecycle is reported as events (ProviderOpened / ProviderClosed);
  the reducer decides what they mean.

Design constraints:
- Adapter must not call reducer directly.
- Adapter must not know about the client connection or the pending queue.
- close() never waits on the receive loop (the receive loop may be blocked
  delivering an event to the runtime that is executing close()).
"""

from __future__ import annotations

import asyncio
import time
import urllib.parse
from typing import Any, Callable, Coroutine

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State as ConnectionState

from constants import (
    PROVIDER_BETA_HEADER,
    PROVIDER_CLOSE_TIMEOUT_S,
    PROVIDER_MAX_MESSAGE_BYTES,
    PROVIDER_REALTIME_MODEL_DEFAULT,
    PROVIDER_URL_DEFAULT,
)
from observability.logger import log_event
from orchestrator.events import (
    Event,
    EventType,
    ProviderClosed,
    ProviderMessage,
    ProviderOpened,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ProviderNotOpen(Exception):
    """Raised by send() when the provider socket is not open."""


class RealtimeProviderClient:
    """
    Realtime provider WebSocket client.

    Public interface:
    - start(): begin connecting in the background
    - send(message): send one text frame (raises ProviderNotOpen if closed)
    - close(): idempotent close, does not wait for the receive loop
    - wait_closed(): await background tasks (used at session shutdown)

    Emits exactly one of ProviderOpened / ProviderClosed after start(),
    then ProviderMessage per inbound frame, then ProviderClosed once.
    """

    def __init__(
        self,
        *,
        emit_event: Callable[[Event], Coroutine[Any, Any, None]],
        api_key: str | None,
        url: str = PROVIDER_URL_DEFAULT,
        model: str = PROVIDER_REALTIME_MODEL_DEFAULT,
        session_id: str | None = None,
        connect: Callable[..., Any] = ws_connect,
    ) -> None:
        self._emit_event = emit_event
        self._api_key = api_key
        self._url = url
        self._model = model
        self._session_id = session_id
        self._connect = connect

        self._ws: ClientConnection | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._recv_task: asyncio.Task[None] | None = None

        self._closing: bool = False
        self._closed_emitted: bool = False

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        ws = self._ws
        return (
            ws is not None
            and not self._closing
            and ws.state is ConnectionState.OPEN
        )

    def start(self) -> None:
        if self._connect_task is not None:
            return
        self._connect_task = asyncio.create_task(self._open())

    async def send(self, message: str) -> None:
        if not self.is_open:
            raise ProviderNotOpen("provider socket is not open")
        assert self._ws is not None
        await self._ws.send(message)

    async def close(self) -> None:
        """
        Close the provider socket.

        Safe to call before the socket opened, while it is opening,
        and any number of times afterwards.
        """
        if self._closing:
            return
        self._closing = True

        # Only a handshake still in flight is cancelled. Once the socket is
        # set, the connect task is delivering ProviderOpened and may itself
        # be the caller (teardown while handling that event).
        ct = self._connect_task
        if (
            ct is not None
            and not ct.done()
            and self._ws is None
            and ct is not asyncio.current_task()
        ):
            ct.cancel()

        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "PROVIDER_CLOSE_FAILED",
                    "session_id": self._session_id,
                    "error": repr(e),
                })

    async def wait_closed(self) -> None:
        # The receive task only exists once the connect task has finished
        if self._connect_task is not None:
            await asyncio.gather(self._connect_task, return_exceptions=True)
        if self._recv_task is not None:
            await asyncio.gather(self._recv_task, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    def _build_url(self) -> str:
        qs = urllib.parse.urlencode({"model": self._model})
        sep = "&" if "?" in self._url else "?"
        return f"{self._url}{sep}{qs}"

    def _build_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": PROVIDER_BETA_HEADER,
        }

    async def _open(self) -> None:
        url = self._build_url()
        try:
            ws = await self._connect(
                url,
                additional_headers=self._build_headers(),
                max_size=PROVIDER_MAX_MESSAGE_BYTES,
                close_timeout=PROVIDER_CLOSE_TIMEOUT_S,
            )
        except asyncio.CancelledError:
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "PROVIDER_CONNECT_FAILED",
                "session_id": self._session_id,
                "url": url,
                "error": repr(e),
            })
            await self._emit_closed(f"provider_connect_failed: {e!r}")
            return

        if self._closing:
            # Session ended while the handshake was in flight
            await ws.close()
            return

        self._ws = ws
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "PROVIDER_CONNECTED",
            "session_id": self._session_id,
            "model": self._model,
        })

        await self._emit_event(
            ProviderOpened(event_type=EventType.PROVIDER_OPENED, ts_ms=_now_ms())
        )

        if self._closing:
            # Session was torn down while handling the open
            return

        # Started after ProviderOpened is processed so that no provider
        # message can overtake the open notification
        self._recv_task = asyncio.create_task(self._recv_loop(ws))

    async def _emit_closed(self, reason: str) -> None:
        if self._closed_emitted:
            return
        self._closed_emitted = True
        await self._emit_event(
            ProviderClosed(
                event_type=EventType.PROVIDER_CLOSED,
                ts_ms=_now_ms(),
                reason=reason,
            )
        )

    # -------------------------------------------------------------------------
    # Background loops
    # -------------------------------------------------------------------------

    async def _recv_loop(self, ws: ClientConnection) -> None:
        """
        Emits every inbound provider frame unmodified, then ProviderClosed.
        """
        reason = "provider_closed"
        try:
            async for raw in ws:
                await self._emit_event(
                    ProviderMessage(
                        event_type=EventType.PROVIDER_MESSAGE,
                        ts_ms=_now_ms(),
                        data=raw,
                    )
                )
        except asyncio.CancelledError:
            return
        except ConnectionClosed as e:
            reason = f"provider_closed: {e.rcvd.code if e.rcvd else 'no_close_frame'}"
        except Exception as e:  # pylint: disable=broad-exception-caught
            reason = f"provider_recv_failed: {e!r}"

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "PROVIDER_DISCONNECTED",
            "session_id": self._session_id,
            "reason": reason,
            "close_code": ws.close_code,
        })
        await self._emit_closed(reason)
