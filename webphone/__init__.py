"""Webphone - WebRTC call-signaling relay with an Asterisk ARI bridge."""

__version__ = "1.0.0"

# Export exception hierarchy for easy importing
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

__all__ = [
    "__version__",
    # Base
    "WebphoneError",
    # Session
    "SessionError",
    "SessionNotFoundError",
    "DuplicateSessionError",
    "SessionLimitError",
    "PeerUnavailableError",
    "SessionStateError",
    # Protocol
    "ProtocolViolationError",
    # Telephony
    "TelephonyError",
    "TelephonyUnavailableError",
    "TelephonyAuthError",
    # Transport
    "TransportError",
    # Configuration
    "ConfigurationError",
    "MissingConfigError",
    "InvalidConfigError",
]
