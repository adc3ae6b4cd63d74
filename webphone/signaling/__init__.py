"""Signaling module - call-setup sessions and relay.

Provides:
- Session / SessionRegistry: per-connection signaling state
- SignalingStateMachine: phase validation and transitions
- RelayRouter: executes decisions over client transports
"""

from webphone.signaling.directory import InMemoryDirectory, RegistrationError
from webphone.signaling.messages import MessageKind, Outbound
from webphone.signaling.router import RelayRouter, Transport
from webphone.signaling.session import Session, SessionRegistry
from webphone.signaling.state_machine import (
    CallPhase,
    PhaseTransition,
    SignalingStateMachine,
    TelephonyResources,
    VALID_TRANSITIONS,
)

__all__ = [
    # Sessions
    "Session",
    "SessionRegistry",
    # State machine
    "CallPhase",
    "PhaseTransition",
    "SignalingStateMachine",
    "TelephonyResources",
    "VALID_TRANSITIONS",
    # Relay
    "MessageKind",
    "Outbound",
    "RelayRouter",
    "Transport",
    # Registration
    "InMemoryDirectory",
    "RegistrationError",
]
