from __future__ import annotations

from datetime import datetime, timezone

import pytest
from prometheus_client import REGISTRY

from adept.orchestration.handoff import HandoffStatus
from adept.orchestration.handoff_monitor import HandoffMonitor


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def test_record_rolls_up_failures_fields_and_block_reasons():
    clock = _Clock(datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc))
    monitor = HandoffMonitor(clock=clock)

    monitor.record(parsed=True, missing_fields=[], status=HandoffStatus.DONE)
    monitor.record(parsed=False, missing_fields=["header"], status="blocked", blocked_reasons=["executor_handoff_format"])
    snapshot = monitor.record(parsed=False, missing_fields=["data", "draft"], status=HandoffStatus.BLOCKED)

    assert snapshot.day == "2026-10-18"
    assert snapshot.total == 3
    assert snapshot.parse_failures == 2
    assert snapshot.missing_fields == {"header": 1, "data": 1, "draft": 1}
    assert snapshot.blocked_reasons == {"executor_handoff_format": 1, "unspecified": 1}
    assert snapshot.last_updated == clock.now


def test_block_reasons_are_ignored_for_other_statuses():
    monitor = HandoffMonitor(clock=_Clock(datetime(2026, 10, 18, tzinfo=timezone.utc)))

    snapshot = monitor.record(parsed=True, missing_fields=[], status="needs_info", blocked_reasons=["project"])

    assert snapshot.blocked_reasons == {}


def test_buckets_are_kept_per_day():
    clock = _Clock(datetime(2026, 10, 17, 23, 59, tzinfo=timezone.utc))
    monitor = HandoffMonitor(clock=clock)
    monitor.record(parsed=False, missing_fields=["status"])

    clock.now = datetime(2026, 10, 18, 0, 1, tzinfo=timezone.utc)
    monitor.record(parsed=True, missing_fields=[], status="done")

    assert monitor.snapshot("2026-10-17").parse_failures == 1
    today = monitor.snapshot()
    assert today.day == "2026-10-18"
    assert today.total == 1
    assert today.parse_failures == 0


def test_snapshot_is_a_copy():
    monitor = HandoffMonitor(clock=_Clock(datetime(2026, 10, 18, tzinfo=timezone.utc)))
    monitor.record(parsed=False, missing_fields=["errors"])

    snapshot = monitor.snapshot()
    snapshot.missing_fields["errors"] = 99

    assert monitor.snapshot().missing_fields == {"errors": 1}
    assert monitor.snapshot("2026-01-01").total == 0


def test_record_updates_prometheus_counters():
    status_labels = {"status": "planning"}
    field_labels = {"field": "follow_up"}
    status_before = REGISTRY.get_sample_value("adept_handoff_status_total", status_labels) or 0.0
    field_before = REGISTRY.get_sample_value("adept_handoff_missing_field_total", field_labels) or 0.0

    HandoffMonitor().record(parsed=False, missing_fields=["follow_up"], status="planning")

    assert REGISTRY.get_sample_value("adept_handoff_status_total", status_labels) == pytest.approx(status_before + 1)
    assert REGISTRY.get_sample_value("adept_handoff_missing_field_total", field_labels) == pytest.approx(field_before + 1)
