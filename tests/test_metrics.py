"""Tests for Prometheus Metrics.

Tests cover:
- Helper function invocations
- Counter/gauge updates read back from the default registry
- Build info setting
"""

from prometheus_client import REGISTRY

from webphone.observability.metrics import (
    record_call_error,
    record_call_setup,
    record_message_relayed,
    record_phase_transition,
    record_release_failure,
    record_session_end,
    record_session_start,
    record_telephony_operation,
    set_build_info,
    update_sessions_by_phase,
)


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestCounters:
    """Counter helpers."""

    def test_session_start_end(self):
        started = _sample("webphone_sessions_started_total")
        active = _sample("webphone_active_sessions")

        record_session_start()
        assert _sample("webphone_sessions_started_total") == started + 1
        assert _sample("webphone_active_sessions") == active + 1

        record_session_end("protocol")
        assert _sample("webphone_active_sessions") == active
        assert _sample("webphone_sessions_ended_total", reason="protocol") >= 1

    def test_phase_transition(self):
        before = _sample("webphone_phase_transitions_total", old_phase="idle", new_phase="offering")
        record_phase_transition("idle", "offering")
        after = _sample("webphone_phase_transitions_total", old_phase="idle", new_phase="offering")
        assert after == before + 1

    def test_message_and_error(self):
        before = _sample("webphone_call_errors_total", kind="NotFound")
        record_message_relayed("offer")
        record_call_error("NotFound")
        assert _sample("webphone_call_errors_total", kind="NotFound") == before + 1

    def test_telephony_operation_with_latency(self):
        before = _sample("webphone_telephony_latency_seconds_count", operation="allocate_bridge")
        record_telephony_operation("allocate_bridge", "ok", 0.02)
        record_telephony_operation("allocate_bridge", "error")
        after = _sample("webphone_telephony_latency_seconds_count", operation="allocate_bridge")
        assert after == before + 1

    def test_release_failure(self):
        before = _sample("webphone_telephony_release_failures_total", step="destroy_bridge")
        record_release_failure("destroy_bridge")
        assert _sample("webphone_telephony_release_failures_total", step="destroy_bridge") == before + 1


class TestGaugesAndInfo:
    """Gauges, histograms and info."""

    def test_sessions_by_phase(self):
        update_sessions_by_phase({"idle": 3, "connected": 2})
        assert _sample("webphone_sessions_by_phase", phase="idle") == 3
        assert _sample("webphone_sessions_by_phase", phase="connected") == 2

    def test_call_setup(self):
        before = _sample("webphone_call_setup_seconds_count")
        record_call_setup(0.15)
        assert _sample("webphone_call_setup_seconds_count") == before + 1

    def test_build_info(self):
        set_build_info("1.0.0", "development")
        assert _sample("webphone_build_info", version="1.0.0", environment="development") == 1
