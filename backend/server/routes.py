"""
Route registration for the transcription relay.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire gateway to WebSocket lifecycle
- Pull dependencies from app.state
"""

from __future__ import annotations

import time

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from constants import CLIENT_WS_PATH
from observability.logger import log_event
from server.transport import ClientTransport, MessageKind
from session.gateway import SessionGateway


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, bool]: # pyright: ignore[reportUnusedFunction]
        return {"ok": True}

    @app.websocket(CLIENT_WS_PATH)
    async def websocket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        client = ClientTransport(ws)
        gateway = SessionGateway(
            config=app.state.config,
            client=client,
            provider_factory=app.state.provider_factory,
            capture_factory=app.state.capture_factory,
        )

        try:
            await gateway.on_ws_connect()

            while True:
                msg = await client.receive()
                if msg is None:
                    break

                if msg.kind is MessageKind.BINARY:
                    assert isinstance(msg.data, bytes)
                    await gateway.on_binary_message(msg.data)
                else:
                    assert isinstance(msg.data, str)
                    await gateway.on_json_message(msg.data)

            await gateway.on_ws_disconnect(reason="client_disconnect")

        except WebSocketDisconnect:
            await gateway.on_ws_disconnect(reason="client_disconnect")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": time.time_ns() // 1_000_000,
                "event_type": "WS_FATAL_ERROR",
                "session_id": gateway.session.session_id if gateway.session else None,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            await gateway.request_teardown("server_error")

        finally:
            await gateway.shutdown()
