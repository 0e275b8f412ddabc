from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from ..core import metrics
from ..core.logging import get_logger
from ..tools.exceptions import IntegrationError, ToolErrorType

logger = get_logger(name=__name__)


@dataclass(slots=True)
class ToolOutcomeStats:
    calls: int = 0
    failures: int = 0
    total_duration_ms: float = 0.0
    last_error: str | None = None

    @property
    def success_rate(self) -> float:
        if self.calls == 0:
            return 1.0
        return (self.calls - self.failures) / self.calls

    @property
    def average_duration_ms(self) -> float:
        return self.total_duration_ms / self.calls if self.calls else 0.0


def classify_error(error: Any) -> str | None:
    """Map a tool failure onto a short, low-cardinality label."""
    if error is None:
        return None
    if isinstance(error, IntegrationError):
        return ToolErrorType(error.kind).value
    if isinstance(error, BaseException):
        return type(error).__name__
    if isinstance(error, dict):
        return str(error.get("errorType") or "tool_error")
    return "tool_error"


class OutcomeMonitor:
    """Records tool outcomes to Prometheus and keeps per-tool rolling totals."""

    def __init__(self) -> None:
        self._stats: dict[str, ToolOutcomeStats] = {}
        self._lock = threading.Lock()

    def record_outcome(
        self,
        tool: str,
        integration_id: str | None,
        success: bool,
        duration_ms: float,
        error: Any = None,
    ) -> None:
        error_type = classify_error(error) if not success else None
        metrics.record_tool_outcome(
            tool=tool,
            integration=integration_id,
            success=success,
            latency=duration_ms / 1000.0,
            error_type=error_type,
        )
        with self._lock:
            stats = self._stats.setdefault(tool, ToolOutcomeStats())
            stats.calls += 1
            stats.total_duration_ms += max(0.0, duration_ms)
            if not success:
                stats.failures += 1
                stats.last_error = error_type
        if not success:
            logger.info(
                "tool_outcome_failure",
                tool=tool,
                integration=integration_id,
                error_type=error_type,
                duration_ms=round(duration_ms, 3),
            )

    def stats(self, tool: str) -> ToolOutcomeStats:
        with self._lock:
            current = self._stats.get(tool)
            if current is None:
                return ToolOutcomeStats()
            return ToolOutcomeStats(
                calls=current.calls,
                failures=current.failures,
                total_duration_ms=current.total_duration_ms,
                last_error=current.last_error,
            )


__all__ = ["ToolOutcomeStats", "OutcomeMonitor", "classify_error"]
