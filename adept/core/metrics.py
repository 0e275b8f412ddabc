from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

PIPELINE_RUNS_TOTAL = Counter(
    "adept_pipeline_runs_total",
    "Assistant pipeline runs grouped by final handoff status",
    labelnames=("status",),
)

PIPELINE_LATENCY_SECONDS = Histogram(
    "adept_pipeline_latency_seconds",
    "End-to-end assistant pipeline latency by phase",
    labelnames=("phase",),
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, float("inf")),
)

PIPELINE_ACTIVE_GAUGE = Gauge(
    "adept_pipeline_runs_active",
    "Assistant pipeline runs in flight",
)

EXECUTOR_STEPS = Histogram(
    "adept_executor_steps",
    "Tool-calling rounds used by the executor phase",
    buckets=(0, 1, 2, 3, 5, 8, 13, 21),
)

HANDOFF_PARSE_TOTAL = Counter(
    "adept_handoff_parse_total",
    "Execution handoff parse outcomes",
    labelnames=("stage", "outcome"),
)

HANDOFF_MISSING_FIELD_TOTAL = Counter(
    "adept_handoff_missing_field_total",
    "Handoff fields missing from executor output",
    labelnames=("field",),
)

HANDOFF_STATUS_TOTAL = Counter(
    "adept_handoff_status_total",
    "Final handoff statuses handed to the presenter",
    labelnames=("status",),
)

GUARDRAIL_REJECTIONS_TOTAL = Counter(
    "adept_guardrail_rejections_total",
    "Tool calls rejected in-band by guardrails",
    labelnames=("tool", "reason"),
)

TOOL_OUTCOMES_TOTAL = Counter(
    "adept_tool_outcomes_total",
    "Tool invocation outcomes",
    labelnames=("tool", "integration", "outcome"),
)

TOOL_ERRORS_TOTAL = Counter(
    "adept_tool_errors_total",
    "Tool invocation failures grouped by classified error",
    labelnames=("tool", "error_type"),
)

TOOL_LATENCY_SECONDS = Histogram(
    "adept_tool_latency_seconds",
    "Latency for tool invocations",
    labelnames=("tool",),
)

RETRY_ATTEMPTS_TOTAL = Counter(
    "adept_retry_attempts_total",
    "Retries scheduled by the backoff engine",
    labelnames=("integration", "reason"),
)

RATE_LIMIT_ESCALATIONS_TOTAL = Counter(
    "adept_rate_limit_escalations_total",
    "Upstream rate limits converted into terminal errors",
    labelnames=("integration",),
)


def mark_pipeline_started() -> None:
    PIPELINE_ACTIVE_GAUGE.inc()


def mark_pipeline_completed(*, status: str) -> None:
    PIPELINE_ACTIVE_GAUGE.dec()
    PIPELINE_RUNS_TOTAL.labels(status=status).inc()


def observe_phase_latency(*, phase: str, latency: float) -> None:
    PIPELINE_LATENCY_SECONDS.labels(phase=phase).observe(max(0.0, latency))


def observe_executor_steps(*, steps: int) -> None:
    EXECUTOR_STEPS.observe(max(0, steps))


def record_handoff_parse(*, stage: str, ok: bool) -> None:
    HANDOFF_PARSE_TOTAL.labels(stage=stage, outcome="ok" if ok else "failed").inc()


def record_handoff_quality(*, status: str, missing_fields: list[str] | None = None) -> None:
    HANDOFF_STATUS_TOTAL.labels(status=status).inc()
    for field in missing_fields or ():
        HANDOFF_MISSING_FIELD_TOTAL.labels(field=field).inc()


def increment_guardrail_rejection(*, tool: str, reason: str) -> None:
    GUARDRAIL_REJECTIONS_TOTAL.labels(tool=tool, reason=reason).inc()


def record_tool_outcome(
    *,
    tool: str,
    integration: str | None,
    success: bool,
    latency: float,
    error_type: str | None = None,
) -> None:
    outcome = "success" if success else "failure"
    TOOL_OUTCOMES_TOTAL.labels(tool=tool, integration=integration or "builtin", outcome=outcome).inc()
    TOOL_LATENCY_SECONDS.labels(tool=tool).observe(max(0.0, latency))
    if not success:
        TOOL_ERRORS_TOTAL.labels(tool=tool, error_type=error_type or "unknown").inc()


def increment_retry(*, integration: str | None, reason: str) -> None:
    RETRY_ATTEMPTS_TOTAL.labels(integration=integration or "unknown", reason=reason).inc()


def increment_rate_limit_escalation(*, integration: str | None) -> None:
    RATE_LIMIT_ESCALATIONS_TOTAL.labels(integration=integration or "unknown").inc()
