"""
Client-side WebSocket transport.

Thin wrapper over a Starlette WebSocket that the runtime can hold:
- receive() normalizes ASGI messages into InboundMessage (None on disconnect)
- send() is a silent no-op unless the socket is connected
- close() is idempotent
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fastapi import WebSocket
from starlette.websockets import WebSocketState


class MessageKind(str, Enum):
    TEXT = "text"
    BINARY = "binary"


@dataclass(frozen=True)
class InboundMessage:
    kind: MessageKind
    data: str | bytes


class ClientTransport:
    """One accepted client WebSocket."""

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.client_state is WebSocketState.CONNECTED
            and self._ws.application_state is WebSocketState.CONNECTED
        )

    async def receive(self) -> InboundMessage | None:
        """
        Wait for the next client message.

        Returns None once the client has disconnected.
        """
        while True:
            msg = await self._ws.receive()

            if msg["type"] == "websocket.disconnect":
                self._closed = True
                return None

            if msg.get("bytes") is not None:
                return InboundMessage(kind=MessageKind.BINARY, data=msg["bytes"])

            if msg.get("text") is not None:
                return InboundMessage(kind=MessageKind.TEXT, data=msg["text"])

    async def send(self, data: str | bytes) -> None:
        if not self.is_open:
            return
        if isinstance(data, bytes):
            await self._ws.send_bytes(data)
        else:
            await self._ws.send_text(data)

    async def close(self, code: int = 1000) -> None:
        if not self.is_open:
            self._closed = True
            return
        self._closed = True
        await self._ws.close(code=code)
