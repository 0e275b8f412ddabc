"""
Backoff engine for outbound integration calls.

``with_retry`` wraps a zero-argument coroutine function and retries transient
failures with capped exponential backoff and jitter. Upstream rate limits whose
server-provided wait exceeds the delay cap are converted into a terminal
``IntegrationRateLimitError`` instead of burning through the remaining attempts.
"""

from __future__ import annotations

import asyncio
import errno
import math
import random
import socket
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from ..core import metrics
from ..core.config import RetrySettings
from ..core.logging import get_logger
from ..tools.exceptions import IntegrationRateLimitError

logger = get_logger(name=__name__)

T = TypeVar("T")

RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})
RETRYABLE_CODES = frozenset({"ECONNRESET", "ETIMEDOUT", "EAI_AGAIN", "ENOTFOUND"})
_ERRNO_CODES = {
    errno.ECONNRESET: "ECONNRESET",
    errno.ETIMEDOUT: "ETIMEDOUT",
    getattr(socket, "EAI_AGAIN", -3): "EAI_AGAIN",
    getattr(socket, "EAI_NONAME", -2): "ENOTFOUND",
}
_TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.ConnectError,
    ConnectionResetError,
    TimeoutError,
)


@dataclass(slots=True)
class RetryOptions:
    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 5.0
    jitter_seconds: float = 0.25

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryOptions":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.base_delay_seconds,
            max_delay_seconds=settings.max_delay_seconds,
            jitter_seconds=settings.jitter_seconds,
        )


@dataclass(slots=True)
class RetryContext:
    integration_id: str | None = None
    operation: str | None = None


@dataclass(slots=True)
class FailureClassification:
    status: int | None = None
    code: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    rate_limited: bool = False
    retryable: bool = False
    server_wait_seconds: float | None = None

    @property
    def reason(self) -> str:
        if self.rate_limited:
            return "rate_limit"
        if self.status is not None:
            return f"status_{self.status}"
        if self.code:
            return self.code.lower()
        return "exception"


def _status_code(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status", "status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def _error_code(error: BaseException) -> str | None:
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code.upper()
    if isinstance(error, OSError) and error.errno is not None:
        return _ERRNO_CODES.get(error.errno)
    return None


def normalize_headers(headers: Any) -> dict[str, str]:
    """Lower-case header names; list values collapse to their first element."""
    normalized: dict[str, str] = {}
    if not headers:
        return normalized
    if isinstance(headers, httpx.Headers):
        return {key.lower(): value for key, value in headers.items()}
    if not isinstance(headers, Mapping):
        return normalized
    for key, value in headers.items():
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            normalized[str(key).lower()] = str(value)
        elif isinstance(value, (list, tuple)) and value:
            normalized[str(key).lower()] = str(value[0])
    return normalized


def _error_headers(error: BaseException) -> dict[str, str]:
    response = getattr(error, "response", None)
    if response is not None and getattr(response, "headers", None):
        return normalize_headers(response.headers)
    return normalize_headers(getattr(error, "headers", None))


def parse_retry_after(value: str | None, *, now: float | None = None) -> float | None:
    """Parse a ``Retry-After`` value given as delta-seconds or an HTTP-date."""
    if not value:
        return None
    text = value.strip()
    try:
        return max(0.0, float(text))
    except ValueError:
        pass
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    current = time.time() if now is None else now
    return max(0.0, parsed.timestamp() - current)


def parse_rate_limit_reset(value: str | None, *, now: float | None = None) -> float | None:
    """Parse an ``x-ratelimit-reset`` epoch-seconds value into a wait in seconds."""
    if not value:
        return None
    try:
        reset_at = float(value.strip())
    except ValueError:
        return None
    if not math.isfinite(reset_at):
        return None
    current = time.time() if now is None else now
    return max(0.0, reset_at - current)


def classify_failure(error: BaseException) -> FailureClassification:
    status = _status_code(error)
    code = _error_code(error)
    headers = _error_headers(error)
    rate_limited = status == 429 or (status == 403 and headers.get("x-ratelimit-remaining") == "0")
    server_wait = parse_retry_after(headers.get("retry-after"))
    if server_wait is None:
        server_wait = parse_rate_limit_reset(headers.get("x-ratelimit-reset"))
    retryable = (
        rate_limited
        or (status is not None and status in RETRYABLE_STATUS)
        or (code is not None and code in RETRYABLE_CODES)
        or isinstance(error, _TRANSIENT_EXCEPTIONS)
    )
    return FailureClassification(
        status=status,
        code=code,
        headers=headers,
        rate_limited=rate_limited,
        retryable=retryable,
        server_wait_seconds=server_wait,
    )


def _exceeds_cap(classification: FailureClassification, options: RetryOptions) -> bool:
    wait = classification.server_wait_seconds
    return classification.rate_limited and wait is not None and wait > options.max_delay_seconds


def compute_delay(
    attempt: int,
    classification: FailureClassification,
    options: RetryOptions,
    *,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """Delay before the next attempt; ``attempt`` is the 1-based number of the failed attempt."""
    backoff = options.base_delay_seconds * (2 ** max(0, attempt - 1))
    hint = classification.server_wait_seconds
    base = min(options.max_delay_seconds, hint if hint is not None else backoff)
    jitter = rng(0.0, options.jitter_seconds) if options.jitter_seconds > 0 else 0.0
    return max(0.0, base + jitter)


def _rate_limit_error(
    classification: FailureClassification,
    context: RetryContext,
) -> IntegrationRateLimitError:
    wait = classification.server_wait_seconds or 0.0
    label = context.integration_id or "Integration"
    return IntegrationRateLimitError(
        f"{label} rate limit exceeded.",
        integration_id=context.integration_id,
        retry_after_seconds=int(math.ceil(wait)),
        retry_at=datetime.now(timezone.utc) + timedelta(seconds=wait),
    )


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    context: RetryContext | None = None,
    options: RetryOptions | None = None,
) -> T:
    """Run ``operation`` and retry retryable failures with capped exponential backoff."""
    context = context or RetryContext()
    options = options or RetryOptions()

    def _should_retry(error: BaseException) -> bool:
        classification = classify_failure(error)
        return classification.retryable and not _exceeds_cap(classification, options)

    def _wait(retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        classification = classify_failure(error) if error is not None else FailureClassification()
        return compute_delay(retry_state.attempt_number, classification, options)

    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        classification = classify_failure(error) if error is not None else FailureClassification()
        delay = retry_state.next_action.sleep if retry_state.next_action else None
        metrics.increment_retry(integration=context.integration_id, reason=classification.reason)
        logger.warning(
            "integration_retry_scheduled",
            integration=context.integration_id,
            operation=context.operation,
            attempt=retry_state.attempt_number,
            max_attempts=options.max_attempts,
            status=classification.status,
            code=classification.code,
            rate_limited=classification.rate_limited,
            delay_seconds=delay,
            error=str(error) if error is not None else None,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, options.max_attempts)),
        retry=retry_if_exception(_should_retry),
        wait=_wait,
        sleep=_sleep,
        before_sleep=_before_sleep,
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await operation()
    except IntegrationRateLimitError:
        raise
    except Exception as exc:
        classification = classify_failure(exc)
        if _exceeds_cap(classification, options):
            metrics.increment_rate_limit_escalation(integration=context.integration_id)
            logger.warning(
                "integration_rate_limit_escalated",
                integration=context.integration_id,
                operation=context.operation,
                retry_after_seconds=classification.server_wait_seconds,
            )
            raise _rate_limit_error(classification, context) from exc
        raise
    raise RuntimeError("retry loop exited without a result")  # pragma: no cover - tenacity always returns or raises


__all__ = [
    "RETRYABLE_STATUS",
    "RETRYABLE_CODES",
    "RetryOptions",
    "RetryContext",
    "FailureClassification",
    "classify_failure",
    "compute_delay",
    "normalize_headers",
    "parse_retry_after",
    "parse_rate_limit_reset",
    "with_retry",
]
