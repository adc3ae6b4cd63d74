"""Session Registry - signaling sessions keyed by connection identity.

The registry is the single owner of Session records. Each session has an
asyncio.Lock; every read-modify-write of a session happens while holding it,
so events of one session are applied in arrival order. Operations spanning
two sessions take both locks in sorted id order.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from webphone.config.constants import RELAY
from webphone.exceptions import (
    DuplicateSessionError,
    SessionLimitError,
    SessionNotFoundError,
)
from webphone.observability.logging import SessionLogger
from webphone.observability.metrics import record_session_end, record_session_start
from webphone.signaling.state_machine import CallPhase, PhaseTransition


@dataclass
class Session:
    """Signaling state for one connected client.

    Mutated only by SignalingStateMachine while the registry lock is held.
    """

    session_id: str
    phase: CallPhase = CallPhase.IDLE
    peer_session_id: str | None = None
    telephony_channel_id: str | None = None
    telephony_bridge_id: str | None = None
    pending_ice_candidates: list[Any] = field(default_factory=list)
    remote_description_applied: bool = False
    offer_sdp: str | None = None
    is_caller: bool = False
    username: str | None = None
    close_requested: bool = False
    released: bool = False
    protocol_violations: int = 0
    created_at: float = field(default_factory=time.monotonic)
    history: list[PhaseTransition] = field(default_factory=list)
    logger: SessionLogger = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.logger = SessionLogger(self.session_id)

    @property
    def is_terminal(self) -> bool:
        """Whether the session reached CLOSED."""
        return self.phase is CallPhase.CLOSED

    @property
    def has_telephony(self) -> bool:
        """Whether PBX resources are held."""
        return self.telephony_channel_id is not None

    def to_dict(self) -> dict[str, Any]:
        """Status snapshot for the HTTP API."""
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "peer_session_id": self.peer_session_id,
            "username": self.username,
            "is_caller": self.is_caller,
            "telephony_channel_id": self.telephony_channel_id,
            "telephony_bridge_id": self.telephony_bridge_id,
            "pending_ice_candidates": len(self.pending_ice_candidates),
            "protocol_violations": self.protocol_violations,
            "created_at": self.created_at,
        }


class SessionRegistry:
    """In-memory map of session id → Session.

    Usage:
        registry = SessionRegistry(max_sessions=100)

        registry.create("conn-1")

        async with registry.locked("conn-1", "conn-2") as (caller, callee):
            machine.begin_offer(caller, sdp, callee)

        registry.remove("conn-1")
    """

    def __init__(self, max_sessions: int = RELAY.MAX_SESSIONS) -> None:
        self._max_sessions = max_sessions
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def active_count(self) -> int:
        """Number of registered sessions."""
        return len(self._sessions)

    @property
    def available_slots(self) -> int:
        """Number of free session slots."""
        return self._max_sessions - len(self._sessions)

    def create(self, session_id: str) -> Session:
        """Register a new IDLE session.

        Raises:
            DuplicateSessionError: Id already registered
            SessionLimitError: Registry is full
        """
        if session_id in self._sessions:
            raise DuplicateSessionError(session_id)
        if len(self._sessions) >= self._max_sessions:
            raise SessionLimitError(self._max_sessions, len(self._sessions))

        session = Session(session_id=session_id)
        self._sessions[session_id] = session
        self._locks[session_id] = asyncio.Lock()

        record_session_start()
        session.logger.session_started()
        return session

    def get(self, session_id: str) -> Session:
        """Get session by id.

        Raises:
            SessionNotFoundError: Not registered
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def find(self, session_id: str | None) -> Session | None:
        """Get session by id, or None."""
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def remove(self, session_id: str, reason: str = "disconnect") -> None:
        """Drop a session. Removing an absent id is a no-op."""
        session = self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)
        if session is None:
            return

        record_session_end(reason)
        session.logger.session_ended(reason=reason, phase=session.phase.value)

    def recycle(self, session_id: str) -> Session:
        """Replace a CLOSED session with a fresh IDLE one on the same connection.

        The caller must hold the session's lock; the lock is kept.

        Raises:
            SessionNotFoundError: Not registered
        """
        old = self.get(session_id)
        session = Session(
            session_id=session_id,
            username=old.username,
            created_at=old.created_at,
        )
        self._sessions[session_id] = session
        return session

    @asynccontextmanager
    async def locked(self, *session_ids: str | None) -> AsyncIterator[tuple[Session | None, ...]]:
        """Hold the locks of the given sessions.

        Locks are acquired in sorted id order. Yields the sessions in argument
        order, read after the locks are held; absent ids (or None) yield None.
        """
        ordered = sorted({sid for sid in session_ids if sid is not None})
        held: list[asyncio.Lock] = []
        try:
            for sid in ordered:
                lock = self._locks.get(sid)
                if lock is None:
                    continue
                await lock.acquire()
                held.append(lock)
            yield tuple(self.find(sid) for sid in session_ids)
        finally:
            for lock in reversed(held):
                lock.release()

    def find_waiting_peer(self, exclude: str) -> Session | None:
        """Oldest idle (or closed, still connected) unpaired session other than exclude."""
        waiting = [
            s for s in self._sessions.values()
            if s.session_id != exclude
            and s.phase in (CallPhase.IDLE, CallPhase.CLOSED)
            and s.peer_session_id is None
            and not s.close_requested
        ]
        if not waiting:
            return None
        return min(waiting, key=lambda s: s.created_at)

    def list_sessions(self) -> list[str]:
        """List all registered session ids."""
        return list(self._sessions.keys())

    def counts_by_phase(self) -> dict[str, int]:
        """Number of sessions in each phase (all phases present)."""
        counts = Counter(s.phase.value for s in self._sessions.values())
        return {phase.value: counts.get(phase.value, 0) for phase in CallPhase}

    def clear(self) -> None:
        """Drop every session without teardown (tests / process exit)."""
        for session_id in list(self._sessions):
            self.remove(session_id, reason="shutdown")
