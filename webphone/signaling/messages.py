"""Signaling Messages - wire envelope and payload schemas.

Every frame on the client transport is a JSON object carrying a "type" field
plus the payload fields of that kind:

    {"type": "offer", "sdp": "v=0...", "target": "alice"}
    {"type": "icecandidate", "candidate": {"candidate": "...", "sdpMid": "0"}}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageKind(str, Enum):
    """Message kinds exchanged with clients."""

    # Inbound (and relayed)
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "icecandidate"
    REGISTER = "register"

    # Outbound only
    CALL_ERROR = "call_error"
    HANGUP = "hangup"
    REGISTRATION_SUCCESS = "registration_success"
    REGISTRATION_ERROR = "registration_error"


INBOUND_KINDS = frozenset({
    MessageKind.OFFER,
    MessageKind.ANSWER,
    MessageKind.ICE_CANDIDATE,
    MessageKind.REGISTER,
})


class OfferPayload(BaseModel):
    """SDP offer from the calling client."""

    model_config = ConfigDict(extra="ignore")

    sdp: str = Field(..., min_length=1, description="SDP offer string")
    target: str | None = Field(
        None,
        description="Registered username to call (first waiting client if omitted)",
    )


class AnswerPayload(BaseModel):
    """SDP answer from the called client."""

    model_config = ConfigDict(extra="ignore")

    sdp: str = Field(..., min_length=1, description="SDP answer string")


class IceCandidatePayload(BaseModel):
    """Trickled ICE candidate (RTCIceCandidateInit or raw candidate line)."""

    model_config = ConfigDict(extra="ignore")

    candidate: dict[str, Any] | str


class RegisterPayload(BaseModel):
    """Registration request relayed to the identity directory."""

    model_config = ConfigDict(extra="ignore")

    username: str = Field(..., min_length=1, max_length=64)


PAYLOAD_MODELS: dict[MessageKind, type[BaseModel]] = {
    MessageKind.OFFER: OfferPayload,
    MessageKind.ANSWER: AnswerPayload,
    MessageKind.ICE_CANDIDATE: IceCandidatePayload,
    MessageKind.REGISTER: RegisterPayload,
}


@dataclass
class Outbound:
    """A message to deliver to one session."""

    target_session_id: str
    kind: MessageKind
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire envelope."""
        return {"type": self.kind.value, **self.payload}


def parse_envelope(frame: Any) -> tuple[str, dict[str, Any]]:
    """Split a decoded frame into (kind, payload).

    Raises:
        ValueError: Frame is not an object with a string "type"
    """
    if not isinstance(frame, dict):
        raise ValueError("frame must be a JSON object")
    kind = frame.get("type")
    if not isinstance(kind, str) or not kind:
        raise ValueError("frame missing 'type'")
    payload = {k: v for k, v in frame.items() if k != "type"}
    return kind, payload


def call_error(target_session_id: str, message: str, kind: str) -> Outbound:
    """Build a call_error notification."""
    return Outbound(
        target_session_id,
        MessageKind.CALL_ERROR,
        {"message": message, "kind": kind},
    )


def hangup(target_session_id: str, reason: str) -> Outbound:
    """Build a hangup notification for the surviving peer."""
    return Outbound(target_session_id, MessageKind.HANGUP, {"reason": reason})
