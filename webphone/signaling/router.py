"""Relay Router - executes state machine decisions over client transports.

Inbound client events arrive here from the transport adapter. The router
takes the registry locks, asks the state machine what to do, performs the
side effects (ARI calls, outbound messages) and turns failures into a
call_error for the originating client only.

Error policy at the router boundary:
- unknown sender session or malformed payload: dropped and logged
- ProtocolViolationError / TelephonyUnavailableError / missing peer on
  offer or answer: call_error to the sender
- failures handling icecandidate: logged, never reported to the sender
- TransportError on send: the target is disconnected
"""

from __future__ import annotations

import time
from typing import Any, Protocol

from pydantic import ValidationError

from webphone.exceptions import (
    PeerUnavailableError,
    ProtocolViolationError,
    SessionNotFoundError,
    TransportError,
    WebphoneError,
)
from webphone.observability.logging import get_logger
from webphone.observability.metrics import (
    record_call_error,
    record_call_setup,
    record_message_relayed,
)
from webphone.signaling.directory import IdentityDirectory, InMemoryDirectory, RegistrationError
from webphone.signaling.messages import (
    INBOUND_KINDS,
    PAYLOAD_MODELS,
    AnswerPayload,
    IceCandidatePayload,
    MessageKind,
    OfferPayload,
    Outbound,
    RegisterPayload,
    call_error,
)
from webphone.signaling.session import Session, SessionRegistry
from webphone.signaling.state_machine import SignalingStateMachine, TelephonyResources
from webphone.telephony.ari_client import AriClient

logger = get_logger(__name__)

# Attempts at claiming an automatically chosen callee before giving up
PAIRING_ATTEMPTS = 3


class Transport(Protocol):
    """Duplex message channel to one connected client."""

    async def send(self, message: dict[str, Any]) -> None:
        """Deliver one message; raise TransportError on failure."""
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the channel."""
        ...


class RelayRouter:
    """Dispatches client events through the signaling state machine.

    Usage:
        router = RelayRouter(registry, machine, telephony=ari_client)

        await router.on_connect("conn-1", transport)
        await router.on_inbound_message("conn-1", "offer", {"sdp": sdp})
        await router.on_disconnect("conn-1")
    """

    def __init__(
        self,
        registry: SessionRegistry,
        machine: SignalingStateMachine,
        telephony: AriClient | None = None,
        directory: IdentityDirectory | None = None,
        endpoint_ref: str = "",
        auto_pair: bool = True,
    ) -> None:
        self._registry = registry
        self._machine = machine
        self._telephony = telephony
        self._directory = directory or InMemoryDirectory()
        self._endpoint_ref = endpoint_ref
        self._auto_pair = auto_pair
        self._transports: dict[str, Transport] = {}

    @property
    def registry(self) -> SessionRegistry:
        """Session registry."""
        return self._registry

    @property
    def telephony_enabled(self) -> bool:
        """Whether calls are bridged through the PBX."""
        return self._telephony is not None

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def on_connect(self, session_id: str, transport: Transport) -> Session:
        """Register a newly connected client.

        Raises:
            DuplicateSessionError: Id already connected
            SessionLimitError: Registry is full
        """
        session = self._registry.create(session_id)
        self._transports[session_id] = transport
        return session

    async def on_disconnect(self, session_id: str, reason: str = "disconnect") -> None:
        """Tear a session down: release PBX resources, hang up the peer, remove.

        Safe to call any number of times; release runs once.
        """
        session = self._registry.find(session_id)
        if session is None:
            return
        # A lock holder mid-allocation sees the intent and aborts the call
        self._machine.request_close(session)

        failed: set[str] = set()
        while True:
            peer_id = session.peer_session_id
            async with self._registry.locked(session_id, peer_id) as (current, peer):
                if current is None:
                    return
                if current.peer_session_id != peer_id:
                    # Paired or unpaired while waiting for the locks
                    session = current
                    continue

                outbound, resources = self._machine.close_call(current, peer, reason)
                for item in resources:
                    await self._release(item)
                failed |= await self._deliver(outbound)

                self._registry.remove(session_id, reason=reason)
                self._directory.forget(session_id)
                transport = self._transports.pop(session_id, None)
                break

        if transport is not None and reason != "disconnect":
            await self._close_transport(session_id, transport, reason)

        for target in failed - {session_id}:
            await self.on_disconnect(target, reason="transport_error")

    async def shutdown(self) -> int:
        """Tear down every session.

        Returns:
            Number of sessions torn down
        """
        session_ids = self._registry.list_sessions()
        for session_id in session_ids:
            await self.on_disconnect(session_id, reason="shutdown")
        return len(session_ids)

    # -------------------------------------------------------------------------
    # Inbound messages
    # -------------------------------------------------------------------------

    async def on_inbound_message(
        self,
        session_id: str,
        event_kind: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        """Handle one client message. Never raises."""
        if self._registry.find(session_id) is None:
            logger.warning("message_dropped", session_id=session_id, kind=event_kind, reason="unknown_session")
            return

        try:
            kind = MessageKind(event_kind)
            if kind not in INBOUND_KINDS:
                raise ValueError(f"'{event_kind}' is not an inbound message kind")
            parsed = PAYLOAD_MODELS[kind].model_validate(payload or {})
        except (ValueError, ValidationError) as e:
            logger.warning("message_dropped", session_id=session_id, kind=event_kind, reason="malformed", error=str(e))
            return

        failed: set[str] = set()
        try:
            if kind is MessageKind.OFFER:
                failed = await self._handle_offer(session_id, parsed)
            elif kind is MessageKind.ANSWER:
                failed = await self._handle_answer(session_id, parsed)
            elif kind is MessageKind.ICE_CANDIDATE:
                failed = await self._handle_candidate(session_id, parsed)
            else:
                failed = await self._handle_register(session_id, parsed)

        except WebphoneError as e:
            if kind is MessageKind.ICE_CANDIDATE:
                # Candidate failures are not reported to the sender
                logger.warning("icecandidate_rejected", session_id=session_id, error=e.to_dict())
            else:
                failed = await self._reject(session_id, kind, e)

        for target in failed:
            await self.on_disconnect(target, reason="transport_error")

    async def _handle_offer(self, session_id: str, payload: OfferPayload) -> set[str]:
        for _ in range(PAIRING_ATTEMPTS):
            callee_id = self._resolve_callee(session_id, payload.target)
            async with self._registry.locked(session_id, callee_id) as (caller, callee):
                if caller is None or caller.close_requested:
                    return set()
                if caller.is_terminal:
                    caller = self._registry.recycle(session_id)

                if callee_id is not None and not self._machine.is_available_callee(callee):
                    if payload.target is None:
                        # Claimed by another caller while we waited; pick again
                        continue
                    raise PeerUnavailableError(f"{payload.target} is busy", session_id)
                if callee_id is None and self._telephony is None:
                    raise PeerUnavailableError("no client is waiting", session_id)
                if callee is not None and callee.is_terminal:
                    callee = self._registry.recycle(callee.session_id)

                return await self._place_call(caller, callee, payload.sdp)

        raise PeerUnavailableError("every waiting client was claimed", session_id)

    async def _place_call(self, caller: Session, callee: Session | None, sdp: str) -> set[str]:
        """Run the offer with caller (and callee) locks held."""
        started = time.perf_counter()
        self._machine.begin_offer(caller, sdp, callee)

        if self._telephony is not None:
            try:
                await self._allocate(caller)
            except WebphoneError:
                await self._abort_offer(caller, callee, "allocation_failed")
                raise

        if caller.close_requested:
            await self._abort_offer(caller, callee, "closed_during_allocation")
            return set()
        if callee is not None and callee.close_requested:
            await self._abort_offer(caller, callee, "peer_closed_during_allocation")
            raise SessionNotFoundError(callee.session_id)

        outbound = self._machine.complete_offer(caller, callee)
        record_call_setup(time.perf_counter() - started)
        return await self._deliver(outbound)

    async def _allocate(self, caller: Session) -> None:
        channel_id = await self._telephony.allocate_channel(self._endpoint_ref)
        self._machine.attach_resources(caller, channel_id=channel_id)
        bridge_id = await self._telephony.allocate_bridge()
        self._machine.attach_resources(caller, bridge_id=bridge_id)
        await self._telephony.attach_channel_to_bridge(channel_id, bridge_id)

    async def _abort_offer(self, caller: Session, callee: Session | None, reason: str) -> None:
        resources = self._machine.fail_offer(caller, callee, reason)
        if resources:
            await self._release(resources)

    async def _handle_answer(self, session_id: str, payload: AnswerPayload) -> set[str]:
        peer_id = self._registry.get(session_id).peer_session_id
        async with self._registry.locked(session_id, peer_id) as (callee, caller):
            if callee is None:
                return set()
            outbound = self._machine.accept_answer(callee, caller, payload.sdp)
            return await self._deliver(outbound)

    async def _handle_candidate(self, session_id: str, payload: IceCandidatePayload) -> set[str]:
        async with self._registry.locked(session_id) as (session,):
            if session is None:
                return set()
            peer = self._registry.find(session.peer_session_id)
            outbound = self._machine.accept_candidate(session, peer, payload.candidate)
            return await self._deliver(outbound)

    async def _handle_register(self, session_id: str, payload: RegisterPayload) -> set[str]:
        async with self._registry.locked(session_id) as (session,):
            if session is None:
                return set()
            try:
                username = await self._directory.register(session_id, payload.username)
            except RegistrationError as e:
                reply = Outbound(session_id, MessageKind.REGISTRATION_ERROR, {"message": str(e)})
            else:
                self._machine.bind_username(session, username)
                reply = Outbound(session_id, MessageKind.REGISTRATION_SUCCESS, {"username": username})
            return await self._deliver([reply])

    def _resolve_callee(self, session_id: str, target: str | None) -> str | None:
        if target is not None:
            callee_id = self._directory.lookup(target)
            if callee_id is None:
                raise SessionNotFoundError(target)
            if callee_id == session_id:
                raise PeerUnavailableError("cannot call yourself", session_id)
            return callee_id

        if not self._auto_pair:
            return None
        waiting = self._registry.find_waiting_peer(exclude=session_id)
        return waiting.session_id if waiting else None

    # -------------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------------

    async def _reject(self, session_id: str, kind: MessageKind, error: WebphoneError) -> set[str]:
        """Report an offer/answer failure to its sender only."""
        logger.warning("call_rejected", session_id=session_id, kind=kind.value, error=error.to_dict())

        teardown = False
        if isinstance(error, ProtocolViolationError):
            async with self._registry.locked(session_id) as (session,):
                if session is not None:
                    teardown = self._machine.record_violation(session, error)

        record_call_error(error.kind)
        failed = await self._deliver([call_error(session_id, error.message, error.kind)])
        if teardown:
            await self.on_disconnect(session_id, reason="protocol")
        return failed - {session_id}

    async def _deliver(self, outbound: list[Outbound]) -> set[str]:
        """Send messages in order.

        Returns:
            Session ids whose transport failed
        """
        failed: set[str] = set()
        for message in outbound:
            target = message.target_session_id
            if target in failed:
                continue
            transport = self._transports.get(target)
            if transport is None:
                logger.warning("outbound_dropped", session_id=target, kind=message.kind.value, reason="no_transport")
                continue
            try:
                await transport.send(message.to_dict())
            except TransportError as e:
                logger.warning("transport_send_failed", session_id=target, kind=message.kind.value, error=str(e))
                failed.add(target)
                continue
            record_message_relayed(message.kind.value)
        return failed

    async def _release(self, resources: TelephonyResources) -> None:
        if self._telephony is None:
            return
        await self._telephony.release(resources.channel_id, resources.bridge_id)

    @staticmethod
    async def _close_transport(session_id: str, transport: Transport, reason: str) -> None:
        try:
            await transport.close(code=1011 if reason == "transport_error" else 1000, reason=reason)
        except TransportError as e:
            logger.debug("transport_close_failed", session_id=session_id, error=str(e))
