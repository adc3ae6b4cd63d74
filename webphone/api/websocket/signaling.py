"""WebSocket Signaling - transport adapter for browser clients.

Each WebSocket connection is one signaling session. Frames are JSON
envelopes ({"type": ..., ...payload}) handed to the relay router; outbound
messages are written back as JSON text frames.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from webphone.config.constants import RELAY
from webphone.exceptions import DuplicateSessionError, SessionLimitError, TransportError
from webphone.observability.logging import bind_session, get_logger, unbind_session
from webphone.signaling.messages import parse_envelope
from webphone.signaling.router import RelayRouter

logger = get_logger(__name__)


class SignalingWebSocket:
    """Transport adapter over a FastAPI WebSocket.

    Usage:
        transport = SignalingWebSocket(session_id, websocket)
        await transport.accept()

        await transport.send({"type": "answer", "sdp": sdp})

        await transport.close()
    """

    def __init__(self, session_id: str, websocket: WebSocket) -> None:
        self._session_id = session_id
        self._websocket = websocket
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Whether the WebSocket is open."""
        return self._connected

    async def accept(self) -> None:
        """Accept the WebSocket handshake."""
        await self._websocket.accept()
        self._connected = True
        logger.info("signaling_ws_connected", session_id=self._session_id)

    async def send(self, message: dict[str, Any]) -> None:
        """Write one message.

        Raises:
            TransportError: Socket closed or write failed
        """
        if not self._connected:
            raise TransportError("socket not connected", self._session_id)
        try:
            await self._websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._connected = False
            raise TransportError(str(e) or type(e).__name__, self._session_id) from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the WebSocket if still open."""
        was_connected = self._connected
        self._connected = False
        if not was_connected or self._websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            await self._websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError) as e:
            raise TransportError(str(e) or type(e).__name__, self._session_id) from e

    def mark_disconnected(self) -> None:
        """Record that the peer closed the socket."""
        self._connected = False


async def serve_signaling(websocket: WebSocket, session_id: str, relay: RelayRouter) -> None:
    """Run one client's signaling session until the socket closes.

    Registers the session, pumps inbound frames into the router and always
    drives teardown when the connection ends.
    """
    transport = SignalingWebSocket(session_id, websocket)
    await transport.accept()

    try:
        await relay.on_connect(session_id, transport)
    except SessionLimitError as e:
        logger.warning("signaling_ws_rejected", session_id=session_id, error=e.to_dict())
        await transport.close(code=RELAY.WS_CLOSE_SESSION_LIMIT, reason="session limit reached")
        return
    except DuplicateSessionError as e:
        logger.warning("signaling_ws_rejected", session_id=session_id, error=e.to_dict())
        await transport.close(code=RELAY.WS_CLOSE_DUPLICATE, reason="session already connected")
        return

    bind_session(session_id)
    try:
        while transport.is_connected:
            try:
                text = await websocket.receive_text()
            except WebSocketDisconnect:
                transport.mark_disconnected()
                break

            try:
                kind, payload = parse_envelope(json.loads(text))
            except ValueError as e:
                # json.JSONDecodeError is a ValueError
                logger.warning("frame_dropped", session_id=session_id, error=str(e))
                continue

            await relay.on_inbound_message(session_id, kind, payload)
    finally:
        await relay.on_disconnect(session_id)
        unbind_session()
