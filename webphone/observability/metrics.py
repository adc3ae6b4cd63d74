"""Prometheus Metrics - signaling relay observability.

Exports:
- Session counts (connected, by phase)
- Phase transitions
- Relayed messages and call errors
- Telephony operation outcomes and cleanup failures
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# -----------------------------------------------------------------------------
# Latency Histograms
# -----------------------------------------------------------------------------

# Offer received → offer forwarded (includes PBX allocation)
CALL_SETUP_HISTOGRAM = Histogram(
    "webphone_call_setup_seconds",
    "Time from offer received to offer forwarded or answered",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

TELEPHONY_LATENCY = Histogram(
    "webphone_telephony_latency_seconds",
    "ARI request latency",
    ["operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

# -----------------------------------------------------------------------------
# Counters
# -----------------------------------------------------------------------------

SESSION_STARTED = Counter(
    "webphone_sessions_started_total",
    "Total sessions created",
)

SESSION_ENDED = Counter(
    "webphone_sessions_ended_total",
    "Total sessions removed",
    ["reason"],  # disconnect, shutdown, transport_error, protocol
)

PHASE_TRANSITIONS = Counter(
    "webphone_phase_transitions_total",
    "Phase transitions",
    ["old_phase", "new_phase"],
)

MESSAGES_RELAYED = Counter(
    "webphone_messages_relayed_total",
    "Messages delivered to a client",
    ["kind"],  # offer, answer, icecandidate, hangup, call_error
)

CALL_ERRORS = Counter(
    "webphone_call_errors_total",
    "call_error notifications by error kind",
    ["kind"],  # ProtocolViolation, TelephonyUnavailable, NotFound
)

TELEPHONY_OPERATIONS = Counter(
    "webphone_telephony_operations_total",
    "ARI operations by outcome",
    ["operation", "status"],  # status: ok, error, reauth
)

TELEPHONY_RELEASE_FAILURES = Counter(
    "webphone_telephony_release_failures_total",
    "Cleanup steps that failed (possible leaked PBX resource)",
    ["step"],  # remove_channel, destroy_bridge, hangup_channel
)

# -----------------------------------------------------------------------------
# Gauges
# -----------------------------------------------------------------------------

ACTIVE_SESSIONS = Gauge(
    "webphone_active_sessions",
    "Currently connected sessions",
)

SESSIONS_BY_PHASE = Gauge(
    "webphone_sessions_by_phase",
    "Sessions in each phase",
    ["phase"],
)

# -----------------------------------------------------------------------------
# Info
# -----------------------------------------------------------------------------

BUILD_INFO = Info(
    "webphone_build",
    "Build information",
)


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def record_call_setup(latency_s: float) -> None:
    """Record offer-to-forward latency in seconds."""
    CALL_SETUP_HISTOGRAM.observe(latency_s)


def record_session_start() -> None:
    """Record session creation."""
    SESSION_STARTED.inc()
    ACTIVE_SESSIONS.inc()


def record_session_end(reason: str = "disconnect") -> None:
    """Record session removal."""
    SESSION_ENDED.labels(reason=reason).inc()
    ACTIVE_SESSIONS.dec()


def record_phase_transition(old_phase: str, new_phase: str) -> None:
    """Record a phase transition."""
    PHASE_TRANSITIONS.labels(old_phase=old_phase, new_phase=new_phase).inc()


def record_message_relayed(kind: str) -> None:
    """Record an outbound message."""
    MESSAGES_RELAYED.labels(kind=kind).inc()


def record_call_error(kind: str) -> None:
    """Record a call_error sent to a client."""
    CALL_ERRORS.labels(kind=kind).inc()


def record_telephony_operation(operation: str, status: str, latency_s: float | None = None) -> None:
    """Record an ARI operation outcome."""
    TELEPHONY_OPERATIONS.labels(operation=operation, status=status).inc()
    if latency_s is not None:
        TELEPHONY_LATENCY.labels(operation=operation).observe(latency_s)


def record_release_failure(step: str) -> None:
    """Record a failed cleanup step."""
    TELEPHONY_RELEASE_FAILURES.labels(step=step).inc()


def update_sessions_by_phase(counts: dict[str, int]) -> None:
    """Update sessions-in-phase gauge."""
    for phase, count in counts.items():
        SESSIONS_BY_PHASE.labels(phase=phase).set(count)


def set_build_info(version: str, environment: str) -> None:
    """Set build information."""
    BUILD_INFO.info({
        "version": version,
        "environment": environment,
    })
