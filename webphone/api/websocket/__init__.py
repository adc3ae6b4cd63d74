"""WebSocket API package."""

from webphone.api.websocket.signaling import SignalingWebSocket, serve_signaling

__all__ = [
    "SignalingWebSocket",
    "serve_signaling",
]
