"""Structured Logging - JSON logs with correlation.

Provides structured logging for:
- Session events (connect, phase changes, teardown)
- Relay decisions (forwarded, buffered, rejected)
- Telephony control-plane calls and cleanup failures

All session logs include session_id for correlation.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; else human-readable
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route stdlib logging (uvicorn, httpx) to the same stream
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Bound structlog logger
    """
    return structlog.get_logger(name)


def bind_session(session_id: str) -> None:
    """Bind session_id to all logs in current context.

    Args:
        session_id: Session identifier
    """
    structlog.contextvars.bind_contextvars(session_id=session_id)


def unbind_session() -> None:
    """Remove session_id from log context."""
    structlog.contextvars.unbind_contextvars("session_id")


# -----------------------------------------------------------------------------
# Event-specific logging functions
# -----------------------------------------------------------------------------


class SessionLogger:
    """Logger for signaling session events."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._log = get_logger("session").bind(session_id=session_id)

    def session_started(self, metadata: dict[str, Any] | None = None) -> None:
        """Log session creation."""
        self._log.info(
            "session_started",
            event_type="session.started",
            **(metadata or {}),
        )

    def session_ended(self, reason: str, phase: str) -> None:
        """Log session removal."""
        self._log.info(
            "session_ended",
            event_type="session.ended",
            reason=reason,
            phase=phase,
        )

    def phase_change(
        self,
        old_phase: str,
        new_phase: str,
        reason: str,
    ) -> None:
        """Log phase transition."""
        self._log.info(
            "phase_change",
            event_type="session.phase_change",
            old_phase=old_phase,
            new_phase=new_phase,
            reason=reason,
        )

    def candidate_buffered(self, pending: int) -> None:
        """Log ICE candidate held until the remote description is applied."""
        self._log.debug(
            "candidate_buffered",
            event_type="ice.buffered",
            pending=pending,
        )

    def candidates_discarded(self, count: int) -> None:
        """Log buffered candidates dropped at close."""
        self._log.info(
            "candidates_discarded",
            event_type="ice.discarded",
            count=count,
        )

    def protocol_violation(self, event: str, phase: str, count: int) -> None:
        """Log a rejected out-of-order message."""
        self._log.warning(
            "protocol_violation",
            event_type="session.protocol_violation",
            event_kind=event,
            phase=phase,
            count=count,
        )


class TelephonyLogger:
    """Logger for PBX control-plane events."""

    def __init__(self, session_id: str | None = None) -> None:
        self._log = get_logger("telephony")
        if session_id:
            self._log = self._log.bind(session_id=session_id)

    def resource_allocated(self, resource: str, resource_id: str) -> None:
        """Log channel or bridge creation."""
        self._log.info(
            "telephony_resource_allocated",
            event_type="telephony.allocated",
            resource=resource,
            resource_id=resource_id,
        )

    def reauthenticating(self, operation: str, status_code: int) -> None:
        """Log credential refresh after an auth rejection."""
        self._log.warning(
            "telephony_reauthenticating",
            event_type="telephony.reauth",
            operation=operation,
            status_code=status_code,
        )

    def operation_failed(self, operation: str, error: str) -> None:
        """Log a failed control-plane call."""
        self._log.error(
            "telephony_operation_failed",
            event_type="telephony.failed",
            operation=operation,
            error=error,
        )

    def release_step_failed(self, step: str, error: str, **ids: str) -> None:
        """Log a cleanup step failure; teardown continues."""
        self._log.error(
            "telephony_release_step_failed",
            event_type="telephony.release_failed",
            step=step,
            error=error,
            **ids,
        )

    def released(self, channel_id: str | None, bridge_id: str | None) -> None:
        """Log completion of a release sequence."""
        self._log.info(
            "telephony_released",
            event_type="telephony.released",
            channel_id=channel_id,
            bridge_id=bridge_id,
        )


def init_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Initialize logging with defaults.

    Call this once at application startup.
    """
    configure_logging(level=level, json_format=json_format)
