from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from ..core import metrics
from ..core.logging import get_logger
from .handoff import HandoffStatus

logger = get_logger(name=__name__)

_UNSPECIFIED = "unspecified"


@dataclass(slots=True)
class HandoffQualityBucket:
    day: str
    total: int = 0
    parse_failures: int = 0
    missing_fields: dict[str, int] = field(default_factory=dict)
    blocked_reasons: dict[str, int] = field(default_factory=dict)
    last_updated: datetime | None = None

    def copy(self) -> "HandoffQualityBucket":
        return HandoffQualityBucket(
            day=self.day,
            total=self.total,
            parse_failures=self.parse_failures,
            missing_fields=dict(self.missing_fields),
            blocked_reasons=dict(self.blocked_reasons),
            last_updated=self.last_updated,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day,
            "total": self.total,
            "parse_failures": self.parse_failures,
            "missing_fields": dict(self.missing_fields),
            "blocked_reasons": dict(self.blocked_reasons),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


def _increment(target: dict[str, int], key: str) -> None:
    target[key] = target.get(key, 0) + 1


class HandoffMonitor:
    """Daily handoff-quality rollups: parse failures, missing fields and block reasons."""

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._buckets: dict[str, HandoffQualityBucket] = {}
        self._lock = threading.Lock()

    def _bucket_key(self, now: datetime) -> str:
        return now.date().isoformat()

    def record(
        self,
        *,
        parsed: bool,
        missing_fields: Iterable[str],
        status: HandoffStatus | str | None = None,
        blocked_reasons: Iterable[str] | None = None,
    ) -> HandoffQualityBucket:
        now = self._clock()
        fields = list(missing_fields)
        status_value = HandoffStatus(status).value if status is not None else None
        reasons = [reason for reason in (blocked_reasons or ()) if reason]
        if status_value == HandoffStatus.BLOCKED.value and not reasons:
            reasons = [_UNSPECIFIED]

        with self._lock:
            key = self._bucket_key(now)
            bucket = self._buckets.setdefault(key, HandoffQualityBucket(day=key))
            bucket.total += 1
            if not parsed:
                bucket.parse_failures += 1
            for name in fields:
                _increment(bucket.missing_fields, name)
            if status_value == HandoffStatus.BLOCKED.value:
                for reason in reasons:
                    _increment(bucket.blocked_reasons, reason)
            bucket.last_updated = now
            snapshot = bucket.copy()

        metrics.record_handoff_quality(status=status_value or "unknown", missing_fields=fields)
        logger.info(
            "handoff_quality_record",
            parsed=parsed,
            missing_fields=fields,
            status=status_value,
            blocked_reasons=reasons if status_value == HandoffStatus.BLOCKED.value else None,
        )
        return snapshot

    def snapshot(self, day: str | None = None) -> HandoffQualityBucket:
        key = day or self._bucket_key(self._clock())
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return HandoffQualityBucket(day=key)
            return bucket.copy()


__all__ = ["HandoffQualityBucket", "HandoffMonitor"]
