"""Schema drift detection from validation failure patterns.

Every issue of a validation run is recorded as a timestamped failure keyed by
``(actionId, tenantId, code, path)``. The drift status for an action/tenant
pair is derived from the failures inside the configured window:

* ``alert``   - at least ``failureThreshold`` failures
* ``warning`` - at least one failure
* ``normal``  - none

``shouldAlert`` is reported once per action/tenant until ``reset`` (or until
the window drains below the threshold again); the alert itself is a warning
log line.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..models.validation import (
    DriftCheckResult,
    DriftDetectionConfig,
    DriftStatus,
    DriftSummary,
    FailureStats,
    TopIssue,
    ValidationIssue,
    ValidationResult,
)

__all__ = ["DriftTracker", "FailureRecord", "DEFAULT_SUMMARY_THRESHOLD"]

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_THRESHOLD = 5
_TOP_ISSUES = 5

_Key = Tuple[str, str, str, str]


@dataclass
class FailureRecord:
    action_id: str
    tenant_id: str
    code: str
    path: str
    expected: Optional[str] = None
    received: Optional[str] = None
    timestamps: List[float] = field(default_factory=list)


class DriftTracker:
    """In-memory failure log shared by concurrent invocations.

    Args:
        clock: Wall-clock seconds source (injectable for tests).
    """

    def __init__(self, *, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._records: Dict[_Key, FailureRecord] = {}
        self._alerted: Set[Tuple[str, str]] = set()

    # ---------------- Recording -----------------

    def record_issues(self, action_id: str, tenant_id: str, issues: Iterable[ValidationIssue]) -> int:
        """Record each issue as one failure; returns the number recorded."""
        now = self._clock()
        count = 0
        with self._lock:
            for issue in issues:
                key = (action_id, tenant_id, issue.code.value, issue.path)
                rec = self._records.get(key)
                if rec is None:
                    rec = FailureRecord(action_id, tenant_id, issue.code.value, issue.path)
                    self._records[key] = rec
                rec.expected = issue.expected
                rec.received = issue.received
                rec.timestamps.append(now)
                count += 1
        return count

    def record(
        self,
        action_id: str,
        tenant_id: str,
        result: ValidationResult,
        config: DriftDetectionConfig,
    ) -> int:
        if not config.enabled or not result.issues:
            return 0
        return self.record_issues(action_id, tenant_id, result.issues)

    # ---------------- Queries -----------------

    def _window_counts(self, action_id: str, tenant_id: str, window_minutes: int) -> List[Tuple[FailureRecord, int]]:
        cutoff = self._clock() - window_minutes * 60
        out: List[Tuple[FailureRecord, int]] = []
        with self._lock:
            for (a, t, _, _), rec in self._records.items():
                if a != action_id or t != tenant_id:
                    continue
                n = sum(1 for ts in rec.timestamps if ts >= cutoff)
                if n:
                    out.append((rec, n))
        return out

    def failure_stats(self, action_id: str, tenant_id: str, window_minutes: int) -> FailureStats:
        counts = self._window_counts(action_id, tenant_id, window_minutes)
        by_code: Counter[str] = Counter()
        by_path: Counter[str] = Counter()
        for rec, n in counts:
            by_code[rec.code] += n
            by_path[rec.path] += n
        return FailureStats(
            totalFailures=sum(n for _, n in counts),
            uniqueIssues=len(counts),
            failuresByCode=dict(by_code),
            failuresByPath=dict(by_path),
        )

    def drift_status(self, action_id: str, tenant_id: str, config: DriftDetectionConfig) -> DriftCheckResult:
        """Classify recent failures for one action/tenant pair.

        The first check that reaches the threshold returns ``shouldAlert``
        (when ``alertOnDrift``) and logs the alert; later checks report
        ``alert`` without re-alerting.
        """
        if not config.enabled:
            return DriftCheckResult()
        stats = self.failure_stats(action_id, tenant_id, config.windowMinutes)
        pair = (action_id, tenant_id)

        if stats.totalFailures >= config.failureThreshold:
            with self._lock:
                already = pair in self._alerted
                if not already:
                    self._alerted.add(pair)
            if already:
                return DriftCheckResult(
                    status=DriftStatus.ALERT,
                    message=(
                        f"Schema drift detected. {stats.uniqueIssues} unique issues with "
                        f"{stats.totalFailures} total failures in the last {config.windowMinutes} minutes."
                    ),
                    stats=stats,
                )
            should_alert = config.alertOnDrift
            if should_alert:
                self._send_alert(action_id, tenant_id, stats)
            return DriftCheckResult(
                status=DriftStatus.ALERT,
                message=(
                    f"Schema drift threshold reached. {stats.uniqueIssues} unique issues with "
                    f"{stats.totalFailures} total failures."
                ),
                stats=stats,
                shouldAlert=should_alert,
            )

        with self._lock:
            self._alerted.discard(pair)
        if stats.totalFailures > 0:
            return DriftCheckResult(
                status=DriftStatus.WARNING,
                message=(
                    f"{stats.totalFailures} validation failure(s) detected in the last "
                    f"{config.windowMinutes} minutes. Monitoring for drift."
                ),
                stats=stats,
            )
        return DriftCheckResult(stats=stats)

    def _send_alert(self, action_id: str, tenant_id: str, stats: FailureStats) -> None:
        logger.warning(
            "Schema drift alert action=%s tenant=%s failures=%d unique=%d by_code=%s by_path=%s",
            action_id,
            tenant_id,
            stats.totalFailures,
            stats.uniqueIssues,
            stats.failuresByCode,
            stats.failuresByPath,
        )

    def summary(
        self,
        action_id: str,
        tenant_id: str,
        window_minutes: int = 60,
        threshold: int = DEFAULT_SUMMARY_THRESHOLD,
    ) -> DriftSummary:
        counts = self._window_counts(action_id, tenant_id, window_minutes)
        counts.sort(key=lambda pair: pair[1], reverse=True)
        total = sum(n for _, n in counts)
        if total >= threshold:
            status = DriftStatus.ALERT
        elif total > 0:
            status = DriftStatus.WARNING
        else:
            status = DriftStatus.NORMAL
        return DriftSummary(
            status=status,
            failureCount=total,
            uniqueIssues=len(counts),
            topIssues=[TopIssue(code=rec.code, path=rec.path, count=n) for rec, n in counts[:_TOP_ISSUES]],
        )

    # ---------------- Maintenance -----------------

    def reset(self, action_id: str, tenant_id: str) -> int:
        """Forget every failure for the pair (e.g. after a schema fix)."""
        with self._lock:
            doomed = [k for k in self._records if k[0] == action_id and k[1] == tenant_id]
            for k in doomed:
                del self._records[k]
            self._alerted.discard((action_id, tenant_id))
        logger.info("Reset drift tracking for action=%s tenant=%s", action_id, tenant_id)
        return len(doomed)

    def cleanup(self, older_than_days: int = 30) -> int:
        """Drop failure timestamps older than the cutoff; returns how many were removed."""
        cutoff = self._clock() - older_than_days * 86400
        removed = 0
        with self._lock:
            for key in list(self._records):
                rec = self._records[key]
                kept = [ts for ts in rec.timestamps if ts >= cutoff]
                removed += len(rec.timestamps) - len(kept)
                if kept:
                    rec.timestamps = kept
                else:
                    del self._records[key]
        logger.info("Cleaned up %d old drift records", removed)
        return removed
