"""Session API Routes - signaling sessions.

Provides:
- List sessions with phase counts
- Get session status
- WebSocket signaling endpoint
"""

import uuid
from typing import Any

from fastapi import APIRouter, HTTPException, Request, WebSocket
from pydantic import BaseModel, Field

from webphone.api.websocket.signaling import serve_signaling
from webphone.observability.metrics import update_sessions_by_phase
from webphone.signaling.router import RelayRouter

router = APIRouter(tags=["sessions"])


def get_relay(request: Request) -> RelayRouter:
    """Relay router installed by the application lifespan."""
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(status_code=503, detail="Relay not initialized")
    return relay


# Response models
class SessionStatusResponse(BaseModel):
    """Signaling state of one session."""

    session_id: str
    phase: str
    peer_session_id: str | None = None
    username: str | None = None
    is_caller: bool = False
    telephony_channel_id: str | None = None
    telephony_bridge_id: str | None = None
    pending_ice_candidates: int = 0
    protocol_violations: int = 0
    created_at: float


class SessionListResponse(BaseModel):
    """Connected sessions."""

    sessions: list[str] = Field(default_factory=list)
    count: int = 0
    available_slots: int = 0
    by_phase: dict[str, int] = Field(default_factory=dict)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(request: Request) -> dict[str, Any]:
    """List connected sessions."""
    registry = get_relay(request).registry
    by_phase = registry.counts_by_phase()
    update_sessions_by_phase(by_phase)
    sessions = registry.list_sessions()
    return {
        "sessions": sessions,
        "count": len(sessions),
        "available_slots": registry.available_slots,
        "by_phase": by_phase,
    }


@router.get("/sessions/{session_id}", response_model=SessionStatusResponse)
async def get_session(session_id: str, request: Request) -> dict[str, Any]:
    """Get session status."""
    session = get_relay(request).registry.find(session_id)
    if session is None:
        raise HTTPException(
            status_code=404,
            detail=f"Session not found: {session_id}",
        )
    return session.to_dict()


@router.websocket("/ws")
async def signaling_websocket(websocket: WebSocket) -> None:
    """Signaling endpoint; the server assigns the session id."""
    await serve_signaling(websocket, str(uuid.uuid4()), websocket.app.state.relay)


@router.websocket("/ws/{session_id}")
async def signaling_websocket_with_id(websocket: WebSocket, session_id: str) -> None:
    """Signaling endpoint with a client-chosen session id."""
    await serve_signaling(websocket, session_id, websocket.app.state.relay)
