"""Tests for Exception Hierarchy.

Tests cover:
- WebphoneError base class
- Session exceptions
- Protocol and telephony exceptions
- Transport and configuration exceptions
"""

import pytest

from webphone.exceptions import (
    WebphoneError,
    SessionError,
    SessionNotFoundError,
    DuplicateSessionError,
    SessionLimitError,
    PeerUnavailableError,
    SessionStateError,
    ProtocolViolationError,
    TelephonyError,
    TelephonyUnavailableError,
    TelephonyAuthError,
    TransportError,
    ConfigurationError,
    MissingConfigError,
    InvalidConfigError,
)


class TestWebphoneError:
    """Tests for WebphoneError base class."""

    def test_basic_creation(self):
        """Create basic error with message."""
        error = WebphoneError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details == {}
        assert error.recoverable is False

    def test_with_details(self):
        """Details are appended to the string form."""
        error = WebphoneError("Operation failed", details={"code": 42})
        assert "Operation failed" in str(error)
        assert "42" in str(error)

    def test_to_dict(self):
        """Serialization includes type, kind and details."""
        error = WebphoneError("boom", details={"a": 1}, recoverable=True)
        assert error.to_dict() == {
            "type": "WebphoneError",
            "kind": "WebphoneError",
            "message": "boom",
            "details": {"a": 1},
            "recoverable": True,
        }


class TestSessionErrors:
    """Tests for session exceptions."""

    def test_not_found(self):
        error = SessionNotFoundError("conn-1")
        assert isinstance(error, SessionError)
        assert error.kind == "NotFound"
        assert error.session_id == "conn-1"
        assert error.details["session_id"] == "conn-1"

    def test_duplicate(self):
        error = DuplicateSessionError("conn-1")
        assert error.kind == "DuplicateSession"
        assert "conn-1" in error.message

    def test_limit_is_recoverable(self):
        error = SessionLimitError(max_sessions=5, current_sessions=5)
        assert error.recoverable is True
        assert error.details == {"max_sessions": 5, "current_sessions": 5}

    def test_peer_unavailable(self):
        error = PeerUnavailableError("no client is waiting", "conn-1")
        assert error.kind == "PeerUnavailable"
        assert error.recoverable is True
        assert "no client is waiting" in error.message

    def test_state_error_records_phases(self):
        error = SessionStateError(
            "Invalid transition",
            session_id="conn-1",
            current_phase="closed",
            target_phase="idle",
        )
        assert error.details["current_phase"] == "closed"
        assert error.details["target_phase"] == "idle"


class TestProtocolViolationError:
    """Tests for ProtocolViolationError."""

    def test_fields(self):
        error = ProtocolViolationError("answer", "idle", session_id="conn-1", reason="no offer to answer")
        assert error.kind == "ProtocolViolation"
        assert error.event == "answer"
        assert error.phase == "idle"
        assert error.message == "'answer' not allowed in phase 'idle': no offer to answer"
        assert error.recoverable is True

    def test_without_reason(self):
        error = ProtocolViolationError("offer", "connected")
        assert error.message == "'offer' not allowed in phase 'connected'"


class TestTelephonyErrors:
    """Tests for telephony exceptions."""

    def test_unavailable(self):
        error = TelephonyUnavailableError("allocate_bridge", "unexpected status", status_code=500)
        assert isinstance(error, TelephonyError)
        assert error.kind == "TelephonyUnavailable"
        assert error.operation == "allocate_bridge"
        assert error.status_code == 500
        assert error.details["status_code"] == 500

    def test_unavailable_without_status(self):
        error = TelephonyUnavailableError("authenticate", "connection refused")
        assert "status_code" not in error.details

    def test_auth_error(self):
        error = TelephonyAuthError("allocate_channel", 401)
        assert isinstance(error, TelephonyError)
        assert error.status_code == 401
        assert error.recoverable is True


class TestOtherErrors:
    """Tests for transport and configuration exceptions."""

    def test_transport_error(self):
        error = TransportError("connection reset", "conn-1")
        assert error.kind == "TransportError"
        assert error.session_id == "conn-1"

    def test_missing_config(self):
        error = MissingConfigError("ARI_USERNAME", "required when telephony is enabled")
        assert isinstance(error, ConfigurationError)
        assert "ARI_USERNAME" in error.message

    def test_invalid_config(self):
        error = InvalidConfigError("ari_timeout_s", -1, "must be positive")
        assert error.details["value"] == "-1"

    @pytest.mark.parametrize("cls", [
        SessionError,
        ProtocolViolationError,
        TelephonyError,
        TransportError,
        ConfigurationError,
    ])
    def test_all_derive_from_base(self, cls):
        assert issubclass(cls, WebphoneError)
