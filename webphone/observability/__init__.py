"""Observability module - structured logging and Prometheus metrics."""

from webphone.observability.logging import (
    SessionLogger,
    TelephonyLogger,
    configure_logging,
    get_logger,
    init_logging,
)

__all__ = [
    "SessionLogger",
    "TelephonyLogger",
    "configure_logging",
    "get_logger",
    "init_logging",
]
