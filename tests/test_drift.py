from __future__ import annotations

import logging

from gateway_pipeline.models.validation import (
    DriftDetectionConfig,
    DriftStatus,
    ValidationIssueCode,
    ValidationMode,
    ValidationResult,
)
from gateway_pipeline.validation.drift import DriftTracker
from gateway_pipeline.validation.reporter import create_issue


class _FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _issue(path: str = "$.name", code: ValidationIssueCode = ValidationIssueCode.TYPE_MISMATCH):
    return create_issue(code, path, "bad", ValidationMode.WARN, expected="string", received="number")


def _result(*issues) -> ValidationResult:
    return ValidationResult(valid=True, mode=ValidationMode.WARN, issues=list(issues))


def test_status_progresses_from_normal_to_alert():
    tracker = DriftTracker(clock=_FakeClock())
    config = DriftDetectionConfig(failureThreshold=3)

    assert tracker.drift_status("act", "t1", config).status == DriftStatus.NORMAL

    tracker.record("act", "t1", _result(_issue()), config)
    warning = tracker.drift_status("act", "t1", config)
    assert warning.status == DriftStatus.WARNING
    assert "1 validation failure(s)" in warning.message

    tracker.record("act", "t1", _result(_issue(), _issue("$.id")), config)
    alert = tracker.drift_status("act", "t1", config)
    assert alert.status == DriftStatus.ALERT
    assert alert.shouldAlert
    assert alert.stats.totalFailures == 3
    assert alert.stats.uniqueIssues == 2
    assert alert.stats.failuresByPath == {"$.name": 2, "$.id": 1}


def test_alert_fires_once_until_reset(caplog):
    tracker = DriftTracker(clock=_FakeClock())
    config = DriftDetectionConfig(failureThreshold=1)
    tracker.record("act", "t1", _result(_issue()), config)

    with caplog.at_level(logging.WARNING, logger="gateway_pipeline.validation.drift"):
        first = tracker.drift_status("act", "t1", config)
        second = tracker.drift_status("act", "t1", config)
    assert first.shouldAlert
    assert not second.shouldAlert
    assert second.status == DriftStatus.ALERT
    assert sum("Schema drift alert" in r.getMessage() for r in caplog.records) == 1

    assert tracker.reset("act", "t1") == 1
    assert tracker.drift_status("act", "t1", config).status == DriftStatus.NORMAL
    tracker.record("act", "t1", _result(_issue()), config)
    assert tracker.drift_status("act", "t1", config).shouldAlert


def test_alert_suppressed_when_alert_on_drift_disabled():
    tracker = DriftTracker(clock=_FakeClock())
    config = DriftDetectionConfig(failureThreshold=1, alertOnDrift=False)
    tracker.record("act", "t1", _result(_issue()), config)
    check = tracker.drift_status("act", "t1", config)
    assert check.status == DriftStatus.ALERT
    assert not check.shouldAlert


def test_failures_outside_window_are_ignored():
    clock = _FakeClock()
    tracker = DriftTracker(clock=clock)
    config = DriftDetectionConfig(windowMinutes=5, failureThreshold=1)
    tracker.record("act", "t1", _result(_issue()), config)
    clock.now += 6 * 60
    assert tracker.drift_status("act", "t1", config).status == DriftStatus.NORMAL


def test_tenants_are_tracked_separately():
    tracker = DriftTracker(clock=_FakeClock())
    config = DriftDetectionConfig(failureThreshold=1)
    tracker.record("act", "t1", _result(_issue()), config)
    assert tracker.drift_status("act", "t2", config).status == DriftStatus.NORMAL


def test_disabled_config_records_nothing():
    tracker = DriftTracker(clock=_FakeClock())
    config = DriftDetectionConfig(enabled=False)
    assert tracker.record("act", "t1", _result(_issue()), config) == 0
    assert tracker.failure_stats("act", "t1", 60).totalFailures == 0
    assert tracker.drift_status("act", "t1", config).status == DriftStatus.NORMAL


def test_summary_orders_top_issues_by_count():
    tracker = DriftTracker(clock=_FakeClock())
    tracker.record_issues("act", "t1", [_issue("$.a"), _issue("$.b"), _issue("$.b")])
    summary = tracker.summary("act", "t1", threshold=5)
    assert summary.status == DriftStatus.WARNING
    assert summary.failureCount == 3
    assert summary.uniqueIssues == 2
    assert [(i.path, i.count) for i in summary.topIssues] == [("$.b", 2), ("$.a", 1)]

    tracker.record_issues("act", "t1", [_issue("$.c"), _issue("$.c")])
    assert tracker.summary("act", "t1", threshold=5).status == DriftStatus.ALERT


def test_cleanup_drops_old_timestamps():
    clock = _FakeClock()
    tracker = DriftTracker(clock=clock)
    tracker.record_issues("act", "t1", [_issue("$.a")])
    clock.now += 31 * 86400
    tracker.record_issues("act", "t1", [_issue("$.b")])
    assert tracker.cleanup(older_than_days=30) == 1
    assert tracker.failure_stats("act", "t1", 60).failuresByPath == {"$.b": 1}
