from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from adept.core.audit import ToolAuditLog, hash_payload
from adept.services.outcomes import OutcomeMonitor, classify_error
from adept.tools.exceptions import IntegrationError, ToolErrorType, create_tool_error


def test_hash_payload_is_key_order_independent():
    assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})
    assert hash_payload({}) is None
    assert hash_payload(None) is None


def test_audit_log_keeps_bounded_history():
    audit = ToolAuditLog(history_size=2)

    audit.log_tool_call(call_id="c1", tool="search", integration_id=None, inputs={"q": "x"}, user_id="U1")
    audit.log_tool_result(call_id="c1", tool="search", integration_id=None, success=True, duration_ms=12.34567)
    audit.log_tool_call(call_id="c2", tool="search", integration_id=None, inputs={"q": "y"})

    records = audit.records()
    assert [record.call_id for record in records] == ["c1", "c2"]
    assert records[0].status == "success"
    assert records[0].duration_ms == 12.346
    assert audit.records(call_id="c2")[0].payload_hash == hash_payload({"q": "y"})

    audit.clear()
    assert audit.records() == []


def test_classify_error_labels():
    assert classify_error(None) is None
    assert classify_error(IntegrationError(ToolErrorType.UPSTREAM, "down")) == "upstream"
    assert classify_error(TimeoutError()) == "TimeoutError"
    assert classify_error(create_tool_error(None, "nope", kind=ToolErrorType.NOT_FOUND)) == "not_found"
    assert classify_error({"error": "nope"}) == "tool_error"


def test_outcome_monitor_tracks_stats_and_metrics():
    monitor = OutcomeMonitor()
    labels = {"tool": "outcome_probe", "error_type": "upstream"}
    before = REGISTRY.get_sample_value("adept_tool_errors_total", labels) or 0.0

    monitor.record_outcome("outcome_probe", "acme", True, 100.0)
    monitor.record_outcome("outcome_probe", "acme", False, 300.0, IntegrationError(ToolErrorType.UPSTREAM, "down"))

    stats = monitor.stats("outcome_probe")
    assert stats.calls == 2
    assert stats.failures == 1
    assert stats.success_rate == pytest.approx(0.5)
    assert stats.average_duration_ms == pytest.approx(200.0)
    assert stats.last_error == "upstream"
    assert monitor.stats("never_called").success_rate == 1.0
    assert REGISTRY.get_sample_value("adept_tool_errors_total", labels) == pytest.approx(before + 1)
    success = REGISTRY.get_sample_value(
        "adept_tool_outcomes_total", {"tool": "outcome_probe", "integration": "acme", "outcome": "success"}
    )
    assert success is not None and success >= 1
