"""Signaling State Machine - call-setup phases for one client session.

Phases:
- IDLE: Connected, no call in progress
- OFFERING: Offer received; PBX resources being allocated
- OFFERED: Offer forwarded to the counterpart; waiting for its answer
- ANSWERING: Offer delivered to this (called) client; waiting for its answer
- CONNECTED: Descriptions exchanged; candidates flow directly
- CLOSING: Teardown in progress
- CLOSED: Terminal

The machine owns every mutation of a Session. Callers hold the session's
registry lock (and the peer's, for two-party operations) while invoking it;
methods return the outbound messages the router must deliver.
"""

from __future__ import annotations

import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from webphone.config.constants import RELAY
from webphone.exceptions import (
    ProtocolViolationError,
    SessionNotFoundError,
    SessionStateError,
)
from webphone.observability.logging import get_logger
from webphone.observability.metrics import record_phase_transition
from webphone.signaling.messages import MessageKind, Outbound, hangup

if TYPE_CHECKING:
    from webphone.signaling.session import Session

logger = get_logger(__name__)


class CallPhase(Enum):
    """Call-setup phase of a session."""

    IDLE = "idle"
    OFFERING = "offering"
    OFFERED = "offered"
    ANSWERING = "answering"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


# Valid phase transitions; every phase may also jump to CLOSED
VALID_TRANSITIONS: dict[CallPhase, set[CallPhase]] = {
    CallPhase.IDLE: {CallPhase.OFFERING, CallPhase.ANSWERING, CallPhase.CLOSING, CallPhase.CLOSED},
    CallPhase.OFFERING: {CallPhase.OFFERED, CallPhase.CLOSING, CallPhase.CLOSED},
    CallPhase.OFFERED: {CallPhase.CONNECTED, CallPhase.CLOSING, CallPhase.CLOSED},
    CallPhase.ANSWERING: {CallPhase.CONNECTED, CallPhase.CLOSING, CallPhase.CLOSED},
    CallPhase.CONNECTED: {CallPhase.CLOSING, CallPhase.CLOSED},
    CallPhase.CLOSING: {CallPhase.CLOSED},
    CallPhase.CLOSED: set(),
}

# Phases that may hold telephony resources
RESOURCE_PHASES = frozenset({
    CallPhase.OFFERING,
    CallPhase.OFFERED,
    CallPhase.ANSWERING,
    CallPhase.CONNECTED,
})

# Phases in which trickled candidates are accepted
CANDIDATE_PHASES = RESOURCE_PHASES


@dataclass
class PhaseTransition:
    """Record of a phase transition."""

    old_phase: CallPhase
    new_phase: CallPhase
    reason: str
    t_monotonic: float = field(default_factory=time.monotonic)
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class TelephonyResources:
    """PBX resources detached from a session for release."""

    channel_id: str | None = None
    bridge_id: str | None = None

    def __bool__(self) -> bool:
        return bool(self.channel_id or self.bridge_id)


TransitionCallback = Callable[["Session", PhaseTransition], Any]


class SignalingStateMachine:
    """Validates and drives phase transitions for signaling sessions.

    Usage:
        machine = SignalingStateMachine()

        machine.begin_offer(caller, sdp, callee)
        machine.attach_resources(caller, channel_id="ch1")
        machine.attach_resources(caller, bridge_id="br1")
        outbound = machine.complete_offer(caller, callee)

        outbound = machine.accept_answer(callee, caller, answer_sdp)
    """

    def __init__(self, max_protocol_violations: int = RELAY.MAX_PROTOCOL_VIOLATIONS) -> None:
        self._max_protocol_violations = max_protocol_violations
        self._callbacks: list[TransitionCallback] = []

    @property
    def max_protocol_violations(self) -> int:
        """Violations tolerated before the router tears a session down."""
        return self._max_protocol_violations

    def on_transition(self, callback: TransitionCallback) -> None:
        """Register callback for every phase transition."""
        self._callbacks.append(callback)

    def transition(
        self,
        session: Session,
        new_phase: CallPhase,
        reason: str = "",
        metadata: dict | None = None,
    ) -> PhaseTransition:
        """Move session to new_phase.

        Raises:
            SessionStateError: If the transition is not allowed
        """
        old_phase = session.phase
        if new_phase not in VALID_TRANSITIONS[old_phase]:
            raise SessionStateError(
                f"Invalid transition: {old_phase.value} → {new_phase.value}",
                session_id=session.session_id,
                current_phase=old_phase.value,
                target_phase=new_phase.value,
            )

        transition = PhaseTransition(
            old_phase=old_phase,
            new_phase=new_phase,
            reason=reason,
            metadata=metadata or {},
        )
        session.phase = new_phase

        session.history.append(transition)
        if len(session.history) > RELAY.PHASE_HISTORY_LIMIT:
            session.history.pop(0)

        session.logger.phase_change(old_phase.value, new_phase.value, reason)
        record_phase_transition(old_phase.value, new_phase.value)

        for callback in self._callbacks:
            try:
                result = callback(session, transition)
                if inspect.isawaitable(result):
                    logger.warning("async_transition_callback_ignored", callback=repr(callback))
                    result.close()
            except Exception:
                # Observers never block a transition
                logger.exception("transition_callback_failed", session_id=session.session_id)

        return transition

    # -------------------------------------------------------------------------
    # Offer
    # -------------------------------------------------------------------------

    @staticmethod
    def is_available_callee(session: Session | None) -> bool:
        """Whether session can receive a new offer.

        A CLOSED session still in the registry is connected and is recycled
        before it takes the call.
        """
        return (
            session is not None
            and session.phase in (CallPhase.IDLE, CallPhase.CLOSED)
            and session.peer_session_id is None
            and not session.close_requested
        )

    def begin_offer(self, caller: Session, sdp: str, callee: Session | None = None) -> None:
        """IDLE → OFFERING; pair caller with callee when one is given.

        Raises:
            ProtocolViolationError: Caller is not idle
        """
        if caller.phase is not CallPhase.IDLE:
            raise ProtocolViolationError(
                MessageKind.OFFER.value,
                caller.phase.value,
                session_id=caller.session_id,
                reason="a call is already in progress",
            )

        caller.offer_sdp = sdp
        caller.is_caller = True
        if callee is not None:
            caller.peer_session_id = callee.session_id
            callee.peer_session_id = caller.session_id

        self.transition(caller, CallPhase.OFFERING, "offer_received")

    def attach_resources(
        self,
        session: Session,
        channel_id: str | None = None,
        bridge_id: str | None = None,
    ) -> None:
        """Record PBX resources as they are allocated.

        Raises:
            SessionStateError: Outside OFFERING, or a resource is already held
        """
        if session.phase is not CallPhase.OFFERING:
            raise SessionStateError(
                "Telephony resources can only be attached while offering",
                session_id=session.session_id,
                current_phase=session.phase.value,
            )
        if channel_id is not None:
            if session.telephony_channel_id is not None:
                raise SessionStateError("Session already holds a channel", session.session_id)
            session.telephony_channel_id = channel_id
        if bridge_id is not None:
            if session.telephony_bridge_id is not None:
                raise SessionStateError("Session already holds a bridge", session.session_id)
            if session.telephony_channel_id is None:
                raise SessionStateError("Bridge requires a channel", session.session_id)
            session.telephony_bridge_id = bridge_id

    def complete_offer(self, caller: Session, callee: Session | None) -> list[Outbound]:
        """OFFERING → OFFERED after allocation succeeded.

        With a counterpart the offer is forwarded and the callee moves to
        ANSWERING. Without one the PBX leg is the counterpart: the caller
        receives a locally synthesized (empty) answer and is CONNECTED.
        """
        self.transition(caller, CallPhase.OFFERED, "allocation_succeeded")

        if callee is not None:
            self.transition(callee, CallPhase.ANSWERING, "offer_forwarded")
            return [
                Outbound(
                    callee.session_id,
                    MessageKind.OFFER,
                    {"sdp": caller.offer_sdp, "from": caller.username or caller.session_id},
                )
            ]

        self.transition(caller, CallPhase.CONNECTED, "pbx_answer")
        return [Outbound(caller.session_id, MessageKind.ANSWER, {"sdp": None})]

    def fail_offer(
        self,
        caller: Session,
        callee: Session | None,
        reason: str,
    ) -> TelephonyResources | None:
        """OFFERING → CLOSED; unpair and detach partial allocations."""
        self._unlink(caller, callee)
        resources = self.release_resources(caller)
        self._close(caller, reason, via_closing=False)
        return resources

    # -------------------------------------------------------------------------
    # Answer
    # -------------------------------------------------------------------------

    def accept_answer(
        self,
        callee: Session,
        caller: Session | None,
        sdp: str,
    ) -> list[Outbound]:
        """Callee ANSWERING and caller OFFERED → both CONNECTED.

        Returns the answer for the caller followed by each side's buffered
        candidates in receipt order.

        Raises:
            ProtocolViolationError: Sender has no offer to answer
            SessionNotFoundError: Offering side is gone or no longer paired
        """
        if callee.phase is not CallPhase.ANSWERING:
            raise ProtocolViolationError(
                MessageKind.ANSWER.value,
                callee.phase.value,
                session_id=callee.session_id,
                reason="no offer to answer",
            )

        if (
            caller is None
            or caller.phase is not CallPhase.OFFERED
            or caller.peer_session_id != callee.session_id
            or callee.peer_session_id != caller.session_id
        ):
            raise SessionNotFoundError(callee.peer_session_id or "<unpaired>")

        self.transition(callee, CallPhase.CONNECTED, "answer_sent")
        self.transition(caller, CallPhase.CONNECTED, "answer_received")
        callee.remote_description_applied = True
        caller.remote_description_applied = True

        outbound = [Outbound(caller.session_id, MessageKind.ANSWER, {"sdp": sdp})]
        outbound.extend(self.flush_candidates(caller, callee))
        outbound.extend(self.flush_candidates(callee, caller))
        return outbound

    # -------------------------------------------------------------------------
    # ICE
    # -------------------------------------------------------------------------

    def accept_candidate(
        self,
        session: Session,
        peer: Session | None,
        candidate: dict[str, Any] | str,
    ) -> list[Outbound]:
        """Buffer or forward a trickled candidate.

        Raises:
            ProtocolViolationError: No call in progress
        """
        if session.phase not in CANDIDATE_PHASES:
            raise ProtocolViolationError(
                MessageKind.ICE_CANDIDATE.value,
                session.phase.value,
                session_id=session.session_id,
                reason="no call in progress",
            )

        if (
            session.remote_description_applied
            and peer is not None
            and peer.phase not in (CallPhase.CLOSING, CallPhase.CLOSED)
        ):
            # Anything still buffered goes first
            outbound = self.flush_candidates(session, peer)
            outbound.append(
                Outbound(peer.session_id, MessageKind.ICE_CANDIDATE, {"candidate": candidate})
            )
            return outbound

        session.pending_ice_candidates.append(candidate)
        session.logger.candidate_buffered(len(session.pending_ice_candidates))
        return []

    @staticmethod
    def flush_candidates(session: Session, peer: Session) -> list[Outbound]:
        """Drain session's buffered candidates toward peer, oldest first."""
        pending = session.pending_ice_candidates
        session.pending_ice_candidates = []
        return [
            Outbound(peer.session_id, MessageKind.ICE_CANDIDATE, {"candidate": c})
            for c in pending
        ]

    # -------------------------------------------------------------------------
    # Registration / violations
    # -------------------------------------------------------------------------

    @staticmethod
    def bind_username(session: Session, username: str) -> None:
        """Record the directory name the session registered under."""
        session.username = username

    def record_violation(self, session: Session, error: ProtocolViolationError) -> bool:
        """Count a protocol violation.

        Returns:
            True if the session has exhausted its tolerance and must be torn down
        """
        session.protocol_violations += 1
        session.logger.protocol_violation(error.event, error.phase, session.protocol_violations)
        return session.protocol_violations >= self._max_protocol_violations

    @staticmethod
    def request_close(session: Session) -> None:
        """Record a pending-close intent; honoured once the lock holder finishes."""
        session.close_requested = True

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def close_call(
        self,
        session: Session,
        peer: Session | None,
        reason: str,
    ) -> tuple[list[Outbound], list[TelephonyResources]]:
        """Drive session (and its paired peer) to CLOSED.

        Both sides are unpaired together. The peer receives a hangup; any PBX
        resources either side holds are detached exactly once and returned
        for release.
        """
        outbound: list[Outbound] = []
        resources: list[TelephonyResources] = []

        self._unlink(session, peer)

        detached = self.release_resources(session)
        if detached:
            resources.append(detached)
        self._close(session, reason)

        if peer is not None and peer.phase is not CallPhase.CLOSED:
            detached = self.release_resources(peer)
            if detached:
                resources.append(detached)
            self._close(peer, "peer_hangup")
            outbound.append(hangup(peer.session_id, reason))

        return outbound, resources

    @staticmethod
    def release_resources(session: Session) -> TelephonyResources | None:
        """Detach PBX ids from session; None if already released or none held."""
        if session.released:
            return None
        session.released = True

        resources = TelephonyResources(session.telephony_channel_id, session.telephony_bridge_id)
        session.telephony_channel_id = None
        session.telephony_bridge_id = None
        return resources or None

    def _close(self, session: Session, reason: str, via_closing: bool = True) -> None:
        if session.phase is CallPhase.CLOSED:
            return
        if via_closing and session.phase is not CallPhase.CLOSING:
            self.transition(session, CallPhase.CLOSING, reason)
        self.transition(session, CallPhase.CLOSED, reason)

        if session.pending_ice_candidates:
            session.logger.candidates_discarded(len(session.pending_ice_candidates))
            session.pending_ice_candidates = []
        session.remote_description_applied = False
        session.offer_sdp = None

    @staticmethod
    def _unlink(session: Session, peer: Session | None) -> None:
        if peer is not None and peer.peer_session_id == session.session_id:
            peer.peer_session_id = None
        session.peer_session_id = None
