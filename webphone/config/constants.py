"""Relay Constants - Protocol limits and ARI defaults.

Values used as settings defaults and by the signaling core.
"""

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class RelayConstants:
    """Immutable relay limits and PBX defaults.

    All timing values in seconds unless otherwise noted.
    """

    # Sessions
    MAX_SESSIONS: Final[int] = 100  # Max concurrent connected clients per process
    MAX_PROTOCOL_VIOLATIONS: Final[int] = 3  # Violations tolerated before teardown
    PHASE_HISTORY_LIMIT: Final[int] = 100  # Transition records kept per session

    # Asterisk ARI
    ARI_APP: Final[str] = "webphone"  # Stasis application name
    ARI_APP_ARGS: Final[str] = "dialed"  # Arguments passed with new channels
    ARI_BRIDGE_APP: Final[str] = "bridge"  # Dialplan app used to join a bridge
    ARI_BRIDGE_APP_ARGS: Final[str] = "both_bridges"  # Prefix for bridge app args
    ARI_TIMEOUT_S: Final[float] = 10.0  # Per-request timeout

    # WebSocket close codes
    WS_CLOSE_SESSION_LIMIT: Final[int] = 4003
    WS_CLOSE_DUPLICATE: Final[int] = 4009


# Singleton instance for import convenience
RELAY = RelayConstants()
