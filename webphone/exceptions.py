"""Webphone Exception Hierarchy.

Structured exception classes for the signaling relay. The relay router
catches these at its boundary and turns them into client notifications.

Hierarchy:
    WebphoneError (base)
    ├── SessionError
    │   ├── SessionNotFoundError
    │   ├── DuplicateSessionError
    │   ├── SessionLimitError
    │   ├── PeerUnavailableError
    │   └── SessionStateError
    ├── ProtocolViolationError
    ├── TelephonyError
    │   ├── TelephonyUnavailableError
    │   └── TelephonyAuthError
    ├── TransportError
    └── ConfigurationError
        ├── MissingConfigError
        └── InvalidConfigError
"""

from typing import Any


class WebphoneError(Exception):
    """Base exception for all webphone relay errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the client can recover without reconnecting
    """

    kind: str = "WebphoneError"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(WebphoneError):
    """Base exception for session registry errors."""

    kind = "SessionError"

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        details = details or {}
        if session_id:
            details["session_id"] = session_id
        super().__init__(message, details, recoverable)
        self.session_id = session_id


class SessionNotFoundError(SessionError):
    """Raised when a session cannot be found in the registry."""

    kind = "NotFound"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            message=f"Session not found: {session_id}",
            session_id=session_id,
            recoverable=False,
        )


class DuplicateSessionError(SessionError):
    """Raised when a session id is registered twice."""

    kind = "DuplicateSession"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            message=f"Session already exists: {session_id}",
            session_id=session_id,
            recoverable=False,
        )


class SessionLimitError(SessionError):
    """Raised when the registry is at capacity."""

    kind = "SessionLimit"

    def __init__(self, max_sessions: int, current_sessions: int) -> None:
        super().__init__(
            message=f"Session limit reached: {current_sessions}/{max_sessions}",
            details={
                "max_sessions": max_sessions,
                "current_sessions": current_sessions,
            },
            recoverable=True,  # Can retry when a session ends
        )


class PeerUnavailableError(SessionError):
    """Raised when no counterpart can take the call."""

    kind = "PeerUnavailable"

    def __init__(self, reason: str, session_id: str | None = None) -> None:
        super().__init__(
            message=f"No peer available: {reason}",
            session_id=session_id,
            recoverable=True,  # Retry once someone is waiting
        )


class SessionStateError(SessionError):
    """Raised for illegal phase transitions."""

    kind = "SessionState"

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        current_phase: str | None = None,
        target_phase: str | None = None,
    ) -> None:
        details = {}
        if current_phase:
            details["current_phase"] = current_phase
        if target_phase:
            details["target_phase"] = target_phase
        super().__init__(message, session_id, details, recoverable=False)


# =============================================================================
# Protocol Errors
# =============================================================================


class ProtocolViolationError(WebphoneError):
    """Raised when a message arrives in a phase that does not permit it."""

    kind = "ProtocolViolation"

    def __init__(
        self,
        event: str,
        phase: str,
        session_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        details: dict[str, Any] = {"event": event, "phase": phase}
        if session_id:
            details["session_id"] = session_id
        message = f"'{event}' not allowed in phase '{phase}'"
        if reason:
            message += f": {reason}"
        super().__init__(
            message=message,
            details=details,
            recoverable=True,  # Client can restart negotiation
        )
        self.event = event
        self.phase = phase


# =============================================================================
# Telephony Errors
# =============================================================================


class TelephonyError(WebphoneError):
    """Base exception for PBX control-plane errors."""

    kind = "TelephonyError"


class TelephonyUnavailableError(TelephonyError):
    """Raised when an ARI operation or authentication fails."""

    kind = "TelephonyUnavailable"

    def __init__(
        self,
        operation: str,
        reason: str,
        status_code: int | None = None,
    ) -> None:
        details: dict[str, Any] = {"operation": operation, "reason": reason}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(
            message=f"Telephony operation {operation} failed: {reason}",
            details=details,
            recoverable=False,
        )
        self.operation = operation
        self.status_code = status_code


class TelephonyAuthError(TelephonyError):
    """Raised when a downstream ARI call reports an expired credential."""

    kind = "TelephonyAuth"

    def __init__(self, operation: str, status_code: int) -> None:
        super().__init__(
            message=f"Telephony credential rejected during {operation}",
            details={"operation": operation, "status_code": status_code},
            recoverable=True,  # Re-authenticate and retry once
        )
        self.operation = operation
        self.status_code = status_code


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(WebphoneError):
    """Raised when sending to a client transport fails."""

    kind = "TransportError"

    def __init__(self, reason: str, session_id: str | None = None) -> None:
        details: dict[str, Any] = {"reason": reason}
        if session_id:
            details["session_id"] = session_id
        super().__init__(
            message=f"Transport error: {reason}",
            details=details,
            recoverable=False,
        )
        self.session_id = session_id


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(WebphoneError):
    """Base exception for configuration-related errors."""

    kind = "ConfigurationError"


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration is missing."""

    def __init__(self, config_key: str, description: str | None = None) -> None:
        message = f"Missing required configuration: {config_key}"
        if description:
            message += f" - {description}"
        super().__init__(
            message=message,
            details={"config_key": config_key},
            recoverable=False,
        )


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""

    def __init__(
        self,
        config_key: str,
        value: Any,
        reason: str,
    ) -> None:
        super().__init__(
            message=f"Invalid configuration for {config_key}: {reason}",
            details={
                "config_key": config_key,
                "value": str(value),
                "reason": reason,
            },
            recoverable=False,
        )
