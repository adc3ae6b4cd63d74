"""Tests for Session Registry."""

import asyncio

import pytest

from webphone.exceptions import (
    DuplicateSessionError,
    SessionLimitError,
    SessionNotFoundError,
)
from webphone.signaling.session import Session, SessionRegistry
from webphone.signaling.state_machine import CallPhase


class TestSession:
    """Tests for the Session record."""

    def test_defaults(self):
        session = Session(session_id="conn-1")
        assert session.phase is CallPhase.IDLE
        assert session.peer_session_id is None
        assert session.pending_ice_candidates == []
        assert session.has_telephony is False
        assert session.is_terminal is False

    def test_to_dict(self):
        session = Session(session_id="conn-1")
        session.pending_ice_candidates.extend(["c1", "c2"])
        data = session.to_dict()
        assert data["session_id"] == "conn-1"
        assert data["phase"] == "idle"
        assert data["pending_ice_candidates"] == 2
        assert "created_at" in data


class TestRegistryLifecycle:
    """Create / get / remove."""

    def test_create_and_get(self, registry):
        session = registry.create("conn-1")
        assert registry.get("conn-1") is session
        assert registry.active_count == 1

    def test_duplicate_rejected(self, registry):
        registry.create("conn-1")
        with pytest.raises(DuplicateSessionError):
            registry.create("conn-1")

    def test_limit(self):
        registry = SessionRegistry(max_sessions=2)
        registry.create("a")
        registry.create("b")
        assert registry.available_slots == 0
        with pytest.raises(SessionLimitError):
            registry.create("c")

    def test_get_missing(self, registry):
        with pytest.raises(SessionNotFoundError):
            registry.get("nope")

    def test_find_missing(self, registry):
        assert registry.find("nope") is None
        assert registry.find(None) is None

    def test_remove_idempotent(self, registry):
        registry.create("conn-1")
        registry.remove("conn-1")
        registry.remove("conn-1")
        assert registry.find("conn-1") is None
        assert registry.active_count == 0

    def test_recycle_keeps_username(self, registry, machine):
        session = registry.create("conn-1")
        session.username = "alice"
        machine.transition(session, CallPhase.CLOSED)

        fresh = registry.recycle("conn-1")

        assert fresh is not session
        assert fresh.phase is CallPhase.IDLE
        assert fresh.username == "alice"
        assert fresh.created_at == session.created_at
        assert registry.get("conn-1") is fresh

    def test_counts_by_phase(self, registry, machine):
        registry.create("a")
        b = registry.create("b")
        machine.transition(b, CallPhase.CLOSED)
        counts = registry.counts_by_phase()
        assert counts["idle"] == 1
        assert counts["closed"] == 1
        assert counts["connected"] == 0

    def test_clear(self, registry):
        registry.create("a")
        registry.create("b")
        registry.clear()
        assert registry.list_sessions() == []


class TestWaitingPeer:
    """Auto-pairing candidate selection."""

    def test_oldest_idle_chosen(self, registry):
        registry.create("a")
        registry.create("b")
        registry.create("c")
        assert registry.find_waiting_peer(exclude="c").session_id == "a"

    def test_excludes_self_and_busy(self, registry, machine):
        a = registry.create("a")
        registry.create("b")
        machine.transition(a, CallPhase.OFFERING)
        assert registry.find_waiting_peer(exclude="b") is None

    def test_skips_closing_sessions(self, registry):
        a = registry.create("a")
        a.close_requested = True
        registry.create("b")
        assert registry.find_waiting_peer(exclude="b") is None


class TestLocking:
    """Per-session locks."""

    @pytest.mark.asyncio
    async def test_locked_yields_in_argument_order(self, registry):
        registry.create("b")
        registry.create("a")
        async with registry.locked("b", "a") as (first, second):
            assert first.session_id == "b"
            assert second.session_id == "a"

    @pytest.mark.asyncio
    async def test_locked_absent_ids_yield_none(self, registry):
        registry.create("a")
        async with registry.locked("a", None, "ghost") as (a, none, ghost):
            assert a is not None
            assert none is None
            assert ghost is None

    @pytest.mark.asyncio
    async def test_events_serialized_per_session(self, registry):
        registry.create("a")
        order = []

        async def worker(tag: str) -> None:
            async with registry.locked("a"):
                order.append(f"{tag}-start")
                await asyncio.sleep(0.01)
                order.append(f"{tag}-end")

        await asyncio.gather(worker("x"), worker("y"))
        assert order == ["x-start", "x-end", "y-start", "y-end"]

    @pytest.mark.asyncio
    async def test_opposite_order_does_not_deadlock(self, registry):
        registry.create("a")
        registry.create("b")

        async def pair(first: str, second: str) -> None:
            async with registry.locked(first, second):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(
            asyncio.gather(pair("a", "b"), pair("b", "a")),
            timeout=1.0,
        )
